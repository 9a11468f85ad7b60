from .locator import RegistryEndpoint, expand_and_verify, resolve_repository_name
from .session import Credential, RegistrySession, RepositoryData, Session
from .transport import AiohttpTransport, Transport, TransportResponse


__all__ = [
    'RegistryEndpoint', 'expand_and_verify', 'resolve_repository_name',
    'Credential', 'RegistrySession', 'RepositoryData', 'Session',
    'AiohttpTransport', 'Transport', 'TransportResponse',
]
