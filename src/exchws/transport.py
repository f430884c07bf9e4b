"""Http transport of the request core, based on aiohttp."""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Protocol

import aiohttp
from aiohttp.client import ClientSession, ClientTimeout, TCPConnector
from multidict import CIMultiDict, CIMultiDictProxy

from exchws import commlog, loghelper
from exchws.cancellation import race
from exchws.compression import CompressionError, CompressionHandler
from exchws.exceptions import MalformedResponseError, RequestCancelledError, TransportError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from exchws.cancellation import CancellationToken
    from exchws.config import ServiceConfig


def format_headers(headers: Mapping[str, str]) -> str:
    """Return headers as text, one header per line."""
    return '\n'.join(f'{key}: {value}' for key, value in headers.items())


class TransportResponse:
    """Status, headers and body of a http response.

    The body is read (and decompressed) only once, later calls of read return the same data.
    release must be called when the response is no longer needed; the async context manager does this.
    """

    def __init__(self, status: int, reason: str | None, headers: CIMultiDictProxy[str] | CIMultiDict[str]):
        self.status = status
        self.reason = reason
        self.headers = headers
        self._body: bytes | None = None
        self._released = False

    @property
    def content_type(self) -> str | None:
        return self.headers.get('Content-Type')

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300  # noqa: PLR2004

    @property
    def released(self) -> bool:
        return self._released

    async def read(self, cancel_token: CancellationToken | None = None) -> bytes:
        """Return the decompressed body.

        :raises MalformedResponseError: if the body cannot be decompressed
        :raises TransportError: if the connection fails while reading
        :raises RequestCancelledError: if cancel_token is set before the body is read
        """
        if self._body is None:
            try:
                raw = await race(cancel_token, self._read_raw())
            except (RequestCancelledError, MalformedResponseError, TransportError):
                raise
            except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as ex:
                raise TransportError(f'reading response failed: {ex!r}', self.status, self.reason,
                                     cause=ex) from ex
            try:
                self._body = CompressionHandler.decode_content(self.headers.get('Content-Encoding'), raw)
            except CompressionError as ex:
                raise MalformedResponseError(str(ex), ex) from ex
        return self._body

    def release(self):
        if not self._released:
            self._released = True
            self._do_release()

    async def _read_raw(self) -> bytes:
        raise NotImplementedError

    def _do_release(self):
        pass

    async def __aenter__(self) -> TransportResponse:
        return self

    async def __aexit__(self, *args):  # noqa: ANN002
        self.release()

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(status={self.status}, reason={self.reason})'


class AiohttpTransportResponse(TransportResponse):
    """Wraps an aiohttp.ClientResponse."""

    def __init__(self, response: aiohttp.ClientResponse):
        super().__init__(response.status, response.reason, response.headers)
        self._response = response

    async def _read_raw(self) -> bytes:
        return await self._response.read()

    def _do_release(self):
        self._response.release()


class TransportProtocol(Protocol):
    """The interface that the request core expects from a transport."""

    def __init__(self, config: ServiceConfig):
        ...

    async def send(self, method: str,
                   url: str,
                   headers: Mapping[str, str],
                   body: bytes,
                   cancel_token: CancellationToken | None = None) -> TransportResponse:
        """Send a request and return the response.

        :raises TransportError: if the status is not 2xx (with the response attached) or no response was received
        :raises RequestCancelledError: if cancel_token was set before the response was received
        """

    async def close(self):
        """Release all connections."""


class AiohttpTransport:
    """Sends requests with one shared aiohttp.ClientSession.

    Decompression is done by CompressionHandler, not by aiohttp. There are no retries.
    """

    def __init__(self, config: ServiceConfig):
        self._config = config
        self._session: ClientSession | None = None
        self._logger = loghelper.get_logger_adapter('exchws.transport')

    def _mk_session(self) -> ClientSession:
        if self._config.ssl_context is not None:
            connector = TCPConnector(ssl=self._config.ssl_context, force_close=not self._config.keep_alive)
        else:
            connector = TCPConnector(force_close=not self._config.keep_alive)
        skip_auto_headers = () if self._config.accept_gzip_encoding else ('Accept-Encoding',)
        return ClientSession(connector=connector,
                             timeout=ClientTimeout(total=self._config.timeout),
                             auto_decompress=False,
                             skip_auto_headers=skip_auto_headers)

    @property
    def is_closed(self) -> bool:
        return self._session is None

    async def send(self, method: str,
                   url: str,
                   headers: Mapping[str, str],
                   body: bytes,
                   cancel_token: CancellationToken | None = None) -> TransportResponse:
        if self._session is None:
            self._session = self._mk_session()
        session = self._session
        logging.getLogger(commlog.HTTP_HEADERS_OUT).debug(format_headers(headers),
                                                          extra={'http_method': method})

        async def _request() -> aiohttp.ClientResponse:
            return await session.request(method, url, headers=dict(headers), data=body)

        try:
            aiohttp_response = await race(cancel_token, _request())
        except RequestCancelledError:
            self._logger.info('request to {} was cancelled', url)
            raise
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as ex:
            self._logger.warning('request to {} failed: {!r}', url, ex)
            raise TransportError(f'request to {url} failed: {ex!r}', cause=ex) from ex

        response = AiohttpTransportResponse(aiohttp_response)
        logging.getLogger(commlog.HTTP_HEADERS_IN).debug(format_headers(response.headers),
                                                         extra={'http_status': response.status})
        if not response.is_success:
            self._logger.info('request to {} returned status {} {}', url, response.status, response.reason)
            raise TransportError(f'http status {response.status} {response.reason}',
                                 response.status, response.reason, response=response)
        return response

    async def close(self):
        if self._session is not None:
            self._logger.info('closing http session')
            await self._session.close()
            self._session = None
