"""Authenticated conversation with a Docker v1 registry."""
import abc
import base64
import collections
import json
import logging
import os
import types

import yarl

from image_metadata_resolver.config import RegistryConfig
from image_metadata_resolver.errors import (
    AuthenticationError,
    RepositoryNotFoundError,
    TagListUnavailableError,
    TransportError,
)
from image_metadata_resolver.registry.locator import DEFAULT_NAMESPACE, RegistryEndpoint
from image_metadata_resolver.registry.transport import Transport


logger = logging.getLogger(__name__)

RepositoryData = collections.namedtuple(
    'RepositoryData',
    ['endpoints', 'tokens', 'images', 'tags'],
    defaults=[types.MappingProxyType({}), types.MappingProxyType({})],
)


class Credential:
    """Username and password forwarded to registries which accept basic auth."""

    def __init__(self, username=None, password=None):
        self._username = username
        self._password = password

    @classmethod
    def from_auth_file(cls, auth_file):
        """Load credential from a file holding ``<username>:<password>``."""
        if not auth_file or not os.path.exists(auth_file):
            return cls()
        with open(auth_file, 'r') as fl:
            username, _, password = fl.read().strip().partition(':')
        logger.info('Loaded auth file')
        return cls(username, password)

    def authorization_header(self):
        if not self._username:
            return None
        auth_str = base64.b64encode(f'{self._username}:{self._password or ""}'.encode()).decode()
        return f'Basic {auth_str}'

    def __repr__(self):
        return f'{self.__class__.__name__}(username={self._username!r})'


class Session(abc.ABC):
    """Registry operations needed to resolve image metadata."""

    @abc.abstractmethod
    async def get_repository_data(self, repository_name: str) -> RepositoryData:
        raise NotImplementedError()

    @abc.abstractmethod
    async def get_remote_tags(self, endpoints, repository_name: str, tokens) -> dict:
        """Get tag to image id mapping from the first mirror that answers."""
        raise NotImplementedError()

    @abc.abstractmethod
    async def get_remote_image_json(self, image_id: str, endpoint: RegistryEndpoint, tokens):
        """Get raw image JSON and image size from exactly one mirror."""
        raise NotImplementedError()


def build_endpoints_list(headers, index_endpoint: RegistryEndpoint):
    """Turn ``X-Docker-Endpoints`` header values into mirror endpoints.

    Mirrors always use the scheme of the index they were announced by.
    """
    scheme = yarl.URL(index_endpoint.host_address).scheme
    endpoints = []
    for header in headers:
        for host in header.split(','):
            host = host.strip()
            if host:
                endpoints.append(RegistryEndpoint(f'{scheme}://{host}/v1/', scheme == 'https'))
    return tuple(endpoints)


class RegistrySession(Session):

    def __init__(self, credential: Credential, transport: Transport, endpoint: RegistryEndpoint):
        self.credential = credential or Credential()
        self.transport = transport
        self.endpoint = endpoint
        self.use_basic_auth = False

    @classmethod
    async def create(cls, credential, transport, endpoint, allow_insecure_fallback, config=None):
        """Open a session against ``endpoint``.

        Registries other than the default index are pinged first to find out
        whether they are standalone and accept basic auth.
        """
        config = config or RegistryConfig()
        session = cls(credential, transport, endpoint)
        if endpoint.host_address != config.index_server_address:
            await session.ping(allow_insecure_fallback)
        return session

    async def ping(self, allow_insecure_fallback=False):
        try:
            response = await self.transport.request('GET', f'{self.endpoint.host_address}_ping')
        except TransportError as exc:
            if not (allow_insecure_fallback and self.endpoint.is_secure):
                raise
            insecure = RegistryEndpoint('http://' + self.endpoint.host_address.partition('://')[2], False)
            logger.warning('Registry %s does not work (%s), falling back to %s',
                           self.endpoint.host_address, exc, insecure.host_address)
            self.endpoint = insecure
            response = await self.transport.request('GET', f'{self.endpoint.host_address}_ping')

        if response.status == 401:
            raise AuthenticationError(f'Registry {self.endpoint.host_address} rejected credentials')

        # Absent header means an old standalone registry
        standalone = response.headers.get('X-Docker-Registry-Standalone', '')
        is_standalone = not standalone or standalone.lower() == 'true' or standalone == '1'
        self.use_basic_auth = (self.endpoint.is_secure and is_standalone
                               and self.credential.authorization_header() is not None)
        if self.use_basic_auth:
            logger.debug('Endpoint %s is a standalone registry, enabling basic auth', self.endpoint.host_address)

    def auth_headers(self, tokens=None) -> dict:
        if self.use_basic_auth:
            return {'Authorization': self.credential.authorization_header()}
        if tokens:
            return {'Authorization': 'Token ' + ','.join(tokens)}
        return {}

    async def get_repository_data(self, repository_name: str) -> RepositoryData:
        url = f'{self.endpoint.host_address}repositories/{repository_name}/images'
        headers = {'X-Docker-Token': 'true'}
        basic_auth = self.credential.authorization_header()
        if basic_auth and self.endpoint.is_secure:
            headers['Authorization'] = basic_auth

        response = await self.transport.request('GET', url, headers=headers)

        if response.status == 401:
            raise AuthenticationError(f'Login required to access {repository_name}')
        if response.status == 404:
            raise RepositoryNotFoundError(f'Repository {repository_name} not found')
        if response.status != 200:
            raise TransportError(f'HTTP code {response.status} from {url}', status=response.status)

        tokens = tuple(response.headers.getall('X-Docker-Token', ()))

        endpoint_headers = response.headers.getall('X-Docker-Endpoints', ())
        if endpoint_headers:
            endpoints = build_endpoints_list(endpoint_headers, self.endpoint)
        else:
            # Assume the mirror is on the same host
            origin = yarl.URL(self.endpoint.host_address).origin()
            endpoints = (RegistryEndpoint(f'{origin}/v1/', self.endpoint.is_secure),)

        try:
            checksums = json.loads(response.body)
        except ValueError:
            logger.debug('Ignoring unreadable image list of %s', repository_name)
            checksums = []
        images = {
            elem['id']: elem for elem in checksums if isinstance(elem, dict) and 'id' in elem
        } if isinstance(checksums, list) else {}

        logger.debug('Repository %s has mirrors %s', repository_name, [ep.host_address for ep in endpoints])
        return RepositoryData(endpoints, tokens, types.MappingProxyType(images))

    async def get_remote_tags(self, endpoints, repository_name: str, tokens) -> dict:
        if '/' not in repository_name:
            repository_name = f'{DEFAULT_NAMESPACE}/{repository_name}'

        for endpoint in endpoints:
            url = f'{endpoint.host_address}repositories/{repository_name}/tags'
            try:
                response = await self.transport.request('GET', url, headers=self.auth_headers(tokens))
            except TransportError as exc:
                logger.warning('Could not list tags at %s: %s', url, exc)
                continue

            logger.debug('Got status code %s from %s', response.status, url)
            if response.status == 404:
                raise RepositoryNotFoundError(f'Repository {repository_name} not found')
            if response.status != 200:
                continue

            try:
                tags = json.loads(response.body)
            except ValueError as exc:
                raise TagListUnavailableError(f'Unreadable tag list from {url}: {exc}') from exc
            if not isinstance(tags, dict) or not all(isinstance(image_id, str) for image_id in tags.values()):
                raise TagListUnavailableError(f'Unknown tag list format from {url}')
            return tags

        raise TagListUnavailableError(f'Could not reach any registry endpoint for {repository_name}')

    async def get_remote_image_json(self, image_id: str, endpoint: RegistryEndpoint, tokens):
        url = f'{endpoint.host_address}images/{image_id}/json'
        response = await self.transport.request('GET', url, headers=self.auth_headers(tokens))
        if response.status != 200:
            raise TransportError(f'HTTP code {response.status} from {url}', status=response.status)

        try:
            size = int(response.headers.get('X-Docker-Size', -1))
        except ValueError:
            size = -1

        return response.body, size


__all__ = ['Credential', 'RepositoryData', 'Session', 'RegistrySession', 'build_endpoints_list']
