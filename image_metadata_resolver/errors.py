"""Failures raised while resolving image metadata."""


class ResolverError(Exception):
    """Base class for every resolution failure."""


class ConfigError(ResolverError):
    pass


class InvalidReferenceError(ResolverError):
    """Malformed image reference or repository name."""


class UnreachableRegistryError(ResolverError):
    """Registry host can not be expanded into a valid endpoint URL."""


class AuthenticationError(ResolverError):
    pass


class TransportError(ResolverError):
    """Connection level failure, or an HTTP status the caller did not expect."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class RepositoryNotFoundError(ResolverError):
    pass


class TagListUnavailableError(ResolverError):
    pass


class UnknownTagError(ResolverError):

    def __init__(self, repository, tag):
        super().__init__(f'unknown tag: {repository}:{tag}')
        self.repository = repository
        self.tag = tag


class AllEndpointsFailedError(ResolverError):
    """Every mirror endpoint failed to serve the image JSON.

    ``last_error`` holds the failure of the last mirror tried.
    """

    def __init__(self, repository, tag, last_error=None):
        super().__init__(f'all endpoints failed for {repository}:{tag}: {last_error}')
        self.repository = repository
        self.tag = tag
        self.last_error = last_error


class MalformedMetadataError(ResolverError):
    pass


__all__ = [
    'ResolverError',
    'ConfigError',
    'InvalidReferenceError',
    'UnreachableRegistryError',
    'AuthenticationError',
    'TransportError',
    'RepositoryNotFoundError',
    'TagListUnavailableError',
    'UnknownTagError',
    'AllEndpointsFailedError',
    'MalformedMetadataError',
]
