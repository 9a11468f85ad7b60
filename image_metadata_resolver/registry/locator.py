"""Locate the registry serving a repository and turn its host into an endpoint."""
import collections
import logging
import re

import yarl

from image_metadata_resolver.config import RegistryConfig
from image_metadata_resolver.errors import InvalidReferenceError, UnreachableRegistryError


logger = logging.getLogger(__name__)

RegistryEndpoint = collections.namedtuple('RegistryEndpoint', ['host_address', 'is_secure'])

INDEX_HOST_ALIASES = ('docker.io', 'index.docker.io')
DEFAULT_NAMESPACE = 'library'

NAMESPACE_RE = re.compile(r'[a-z0-9_-]{2,255}')
REPOSITORY_RE = re.compile(r'[a-z0-9_.-]+(/[a-z0-9_.-]+)*')
HOST_RE = re.compile(
    r'(?P<host>\[[0-9a-fA-F:.]+\]'
    r'|[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*)'
    r'(?::(?P<port>[0-9]+))?'
)


def _is_registry_host(component: str) -> bool:
    return '.' in component or ':' in component or component == 'localhost'


def validate_remote_name(remote_name: str):
    """Check a repository name as the registry knows it (without host)."""

    namespace, sep, name = remote_name.partition('/')
    if not sep:
        namespace, name = DEFAULT_NAMESPACE, remote_name

    if (not NAMESPACE_RE.fullmatch(namespace) or namespace.startswith('-')
            or namespace.endswith('-') or '--' in namespace):
        raise InvalidReferenceError(
            f'Invalid namespace name ({namespace}), only [a-z0-9-_] are allowed, size between 2 and 255')

    if not REPOSITORY_RE.fullmatch(name):
        raise InvalidReferenceError(f'Invalid repository name ({name}), only [a-z0-9-_.] are allowed')


def resolve_repository_name(repository_name: str, config: RegistryConfig = None):
    """Split a repository name into the registry host and the remote name.

    Names without a host component belong to the default index.

    :returns: ``(host_address, remote_name)`` tuple.
    """
    config = config or RegistryConfig()

    if not repository_name:
        raise InvalidReferenceError('Repository name can not be empty')
    if '://' in repository_name:
        raise InvalidReferenceError(f'Invalid repository name {repository_name}: it can not contain a scheme')

    parts = repository_name.split('/', 1)
    if len(parts) == 1 or not _is_registry_host(parts[0]):
        hostname, remote_name = config.index_server_address, repository_name
    else:
        hostname, remote_name = parts
        if hostname in INDEX_HOST_ALIASES:
            hostname = config.index_server_address

    validate_remote_name(remote_name)

    logger.debug('Repository %s is served by %s as %s', repository_name, hostname, remote_name)
    return hostname, remote_name


def _valid_host(host: str) -> bool:
    match = HOST_RE.fullmatch(host)
    if not match:
        return False
    port = match.group('port')
    return port is None or 0 < int(port) < 65536


def expand_and_verify(host_address: str, config: RegistryConfig = None) -> RegistryEndpoint:
    """Expand a registry host into a fully qualified ``/v1/`` endpoint URL.

    Only the syntax is checked, no request is made.
    """
    config = config or RegistryConfig()

    if host_address.startswith(('http://', 'https://')):
        scheme, _, rest = host_address.partition('://')
        host, _, path = rest.partition('/')
        address = host_address if path else f'{scheme}://{host}/v1/'
    else:
        scheme = 'http' if host_address in config.insecure_registries else 'https'
        host = host_address
        address = f'{scheme}://{host}/v1/'

    if not _valid_host(host):
        raise UnreachableRegistryError(f'Invalid registry endpoint: {host_address}')

    try:
        url = yarl.URL(address)
    except ValueError as exc:
        raise UnreachableRegistryError(f'Invalid registry endpoint {host_address}: {exc}') from exc
    if not url.host:
        raise UnreachableRegistryError(f'Invalid registry endpoint: {host_address}')

    if not address.endswith('/'):
        address += '/'

    return RegistryEndpoint(address, scheme == 'https')


__all__ = ['RegistryEndpoint', 'resolve_repository_name', 'expand_and_verify', 'validate_remote_name']
