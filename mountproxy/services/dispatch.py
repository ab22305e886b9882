"""Outbound HTTP for the forwarder.

`Dispatch` is the seam the forwarder talks to. `HttpxDispatcher` is the
default implementation: one fresh httpx client per request, the transport
chosen by the URL scheme, HTTP/1.1 only.
"""
from __future__ import annotations

from typing import AsyncIterable, AsyncIterator, Callable, Mapping, Optional, Protocol

import anyio
import httpx

from mountproxy.metrics.prometheus import UPSTREAM_LATENCY
from mountproxy.models.schemas import RequestDescriptor
from mountproxy.services.headers import fold_headers

TransportFactory = Callable[[], httpx.AsyncBaseTransport]


class UnsupportedSchemeError(Exception):
    """The outbound URL uses a scheme no transport is registered for."""

    def __init__(self, scheme: str):
        super().__init__(f"no transport for scheme {scheme!r}")
        self.scheme = scheme


class UpstreamResponse(Protocol):
    """A live upstream response whose body has not been read yet."""

    status_code: int
    reason_phrase: str
    headers: httpx.Headers
    trailers: httpx.Headers

    def aiter_raw(self) -> AsyncIterator[bytes]:
        """Body bytes exactly as sent (content-encoding untouched)."""
        ...

    def aiter_decoded(self) -> AsyncIterator[bytes]:
        """Body bytes with any content-encoding removed."""
        ...

    async def aclose(self) -> None:
        ...


class Dispatch(Protocol):
    """Opens the outbound request and returns once response headers arrive."""

    async def dispatch(
        self, descriptor: RequestDescriptor, body: Optional[AsyncIterable[bytes]] = None
    ) -> UpstreamResponse:
        ...


def plain_transport() -> httpx.AsyncBaseTransport:
    return httpx.AsyncHTTPTransport(http1=True, http2=False, retries=0)


def tls_transport() -> httpx.AsyncBaseTransport:
    return httpx.AsyncHTTPTransport(verify=True, http1=True, http2=False, retries=0)


DEFAULT_TRANSPORTS: Mapping[str, TransportFactory] = {
    "http": plain_transport,
    "https": tls_transport,
}


class HttpxUpstream:
    """Wraps a streamed httpx response together with the client that owns it."""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self._client = client
        self._response = response
        self.status_code = response.status_code
        self.reason_phrase = response.reason_phrase
        self.headers = fold_headers(response.headers.raw)
        # h11 drops trailer fields before httpx sees them
        self.trailers = httpx.Headers()

    def aiter_raw(self) -> AsyncIterator[bytes]:
        return self._response.aiter_raw()

    def aiter_decoded(self) -> AsyncIterator[bytes]:
        return self._response.aiter_bytes()

    async def aclose(self) -> None:
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()


class HttpxDispatcher:
    """
    Default `Dispatch` backed by httpx.

    `transports` maps a URL scheme to a factory building a fresh transport for
    every request; tests plug `httpx.MockTransport` in here.
    """

    def __init__(
        self,
        transports: Optional[Mapping[str, TransportFactory]] = None,
        timeout_s: Optional[float] = None,
    ):
        self._transports = dict(DEFAULT_TRANSPORTS if transports is None else transports)
        self._timeout = httpx.Timeout(timeout_s)

    def transport_for(self, scheme: str) -> httpx.AsyncBaseTransport:
        factory = self._transports.get(scheme.lower())
        if factory is None:
            raise UnsupportedSchemeError(scheme)
        return factory()

    async def dispatch(
        self, descriptor: RequestDescriptor, body: Optional[AsyncIterable[bytes]] = None
    ) -> HttpxUpstream:
        url = httpx.URL(descriptor.url)
        transport = self.transport_for(url.scheme)
        client = httpx.AsyncClient(transport=transport, timeout=self._timeout, follow_redirects=False)
        # build the request by hand so the client's default headers stay out
        request = httpx.Request(descriptor.method, url, headers=descriptor.headers, content=body)
        try:
            with UPSTREAM_LATENCY.time():
                response = await client.send(request, stream=True)
        except BaseException:
            # cancellation included
            with anyio.CancelScope(shield=True):
                await client.aclose()
            raise
        return HttpxUpstream(client, response)
