"""HTTP transport used by registry sessions."""
import abc
import asyncio
import collections
import logging

import aiohttp
import multidict

from image_metadata_resolver.config import RegistryConfig
from image_metadata_resolver.errors import TransportError


logger = logging.getLogger(__name__)

TransportResponse = collections.namedtuple('TransportResponse', ['status', 'headers', 'body'])


class Transport(abc.ABC):
    """Performs a single HTTP request and returns the whole response."""

    @abc.abstractmethod
    async def request(self, method: str, url: str, headers=None) -> TransportResponse:
        raise NotImplementedError()

    async def close(self):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()


class AiohttpTransport(Transport):

    def __init__(self, config: RegistryConfig = None):
        self.config = config or RegistryConfig()
        self.client = None

    def ensure_client(self):
        """Create HTTP client for interacting with Docker registry."""
        if self.client is None:
            self.client = aiohttp.ClientSession(
                headers=self.get_client_headers(),
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            )

    def get_client_headers(self):
        return {
            'User-Agent': self.config.user_agent,
        }

    async def request(self, method: str, url: str, headers=None) -> TransportResponse:
        self.ensure_client()
        logger.debug('%s %s', method, url)
        try:
            async with self.client.request(method, url, headers=headers) as response:
                body = await response.read()
                return TransportResponse(response.status, multidict.CIMultiDict(response.headers), body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportError(f'{method} {url} failed: {exc!r}') from exc

    async def close(self):
        if self.client is not None:
            await self.client.close()
            self.client = None


__all__ = ['Transport', 'TransportResponse', 'AiohttpTransport']
