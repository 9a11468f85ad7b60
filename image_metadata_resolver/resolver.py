import logging

from image_metadata_resolver.config import RegistryConfig
from image_metadata_resolver.errors import AllEndpointsFailedError, ResolverError, UnknownTagError
from image_metadata_resolver.image import ImageMetadata
from image_metadata_resolver.reference import parse_reference
from image_metadata_resolver.registry import locator
from image_metadata_resolver.registry.session import Credential, RegistrySession
from image_metadata_resolver.registry.transport import AiohttpTransport, Transport


logger = logging.getLogger(__name__)


class MetadataResolver:
    """Resolves repository and tag into image metadata.

    Each call to :meth:`fetch_metadata` opens its own session; nothing is
    shared between calls apart from the transport.
    """

    def __init__(self, config: RegistryConfig, transport: Transport,
                 session_factory=RegistrySession.create, credential: Credential = None):
        self.config = config
        self.transport = transport
        self.session_factory = session_factory
        self.credential = credential or Credential()

    async def fetch_metadata(self, repository_name: str, tag: str) -> ImageMetadata:
        hostname, remote_name = locator.resolve_repository_name(repository_name, self.config)
        endpoint = locator.expand_and_verify(hostname, self.config)

        session = await self.session_factory(
            self.credential, self.transport, endpoint, self.config.allow_insecure_fallback, config=self.config,
        )

        repo_data = await session.get_repository_data(remote_name)
        tags = await session.get_remote_tags(repo_data.endpoints, remote_name, repo_data.tokens)
        repo_data = repo_data._replace(tags=tags)

        image_id = repo_data.tags.get(tag)
        if image_id is None:
            raise UnknownTagError(remote_name, tag)

        logger.info('Tag %s:%s is image %s', remote_name, tag, image_id)

        last_error = None
        for mirror in repo_data.endpoints:
            try:
                raw_json, size = await session.get_remote_image_json(image_id, mirror, repo_data.tokens)
            except ResolverError as exc:
                logger.warning('Mirror %s failed to serve image %s: %s', mirror.host_address, image_id, exc)
                last_error = exc
                continue
            return ImageMetadata.from_json(raw_json, size)

        raise AllEndpointsFailedError(remote_name, tag, last_error)


async def fetch_metadata(repository_name: str, tag: str, config: RegistryConfig = None,
                         credential: Credential = None) -> ImageMetadata:
    """Fetch image metadata over a transport owned by this call."""
    config = config or RegistryConfig()
    async with AiohttpTransport(config) as transport:
        resolver = MetadataResolver(config, transport, credential=credential)
        return await resolver.fetch_metadata(repository_name, tag)


async def fetch_reference(reference, config: RegistryConfig = None, credential: Credential = None) -> ImageMetadata:
    """Parse an image reference or ``docker://`` URL and fetch its metadata."""
    config = config or RegistryConfig()
    repository_name, tag = parse_reference(reference, config.default_tag)
    return await fetch_metadata(repository_name, tag, config, credential)


__all__ = ['MetadataResolver', 'fetch_metadata', 'fetch_reference']
