"""Reverse-proxy forwarder.

Maps an inbound ASGI request under `base` onto `target`, streams the body
both ways, and fixes up the response headers (`Location`, CORS) on the way
back to the client.
"""
from __future__ import annotations

import dataclasses
import enum
import logging
import re
from typing import Any, AsyncIterator, Awaitable, Callable, MutableMapping, Optional, Tuple
from urllib.parse import urlsplit

import anyio
import httpx

from mountproxy.metrics.prometheus import LOCATION_REWRITES, PROXY_ERRORS, PROXY_REQUESTS
from mountproxy.models.schemas import ProxyConfig, RequestDescriptor, ResponseDescriptor
from mountproxy.services.cors import apply_cors
from mountproxy.services.dispatch import Dispatch, HttpxDispatcher, UnsupportedSchemeError, UpstreamResponse
from mountproxy.services.headers import add_forwarded, fold_headers, strip_hop_by_hop, to_asgi
from mountproxy.services.location import LocationStrategy, rewrite_location
from mountproxy.services.rewrite import Identity, Override

Scope = MutableMapping[str, Any]
Message = MutableMapping[str, Any]
Receive = Callable[[], Awaitable[Message]]
Send = Callable[[Message], Awaitable[None]]

log = logging.getLogger("Mount-Proxy.Forwarder")

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")

# upstreams may reject these without an explicit zero length
_LENGTH_REQUIRED = {"DELETE", "OPTIONS"}


class ClientDisconnected(Exception):
    """The inbound client closed its connection mid-exchange."""


TRANSPORT_ERRORS = (httpx.HTTPError, httpx.InvalidURL, OSError, ClientDisconnected, UnsupportedSchemeError)


class Outcome(enum.Enum):
    UNHANDLED = "unhandled"
    COMPLETED = "completed"
    FAILED = "failed"


def request_path(scope: Scope) -> str:
    raw = scope.get("raw_path")
    if raw:
        return raw.split(b"?", 1)[0].decode("latin-1")
    return scope.get("path") or "/"


async def _inbound_body(receive: Receive, consumed: anyio.Event) -> AsyncIterator[bytes]:
    more = True
    while more:
        message = await receive()
        if message["type"] == "http.disconnect":
            raise ClientDisconnected("client disconnected while sending the request body")
        more = message.get("more_body", False)
        if not more:
            consumed.set()
        chunk = message.get("body", b"")
        if chunk:
            yield chunk


async def _wait_for_disconnect(receive: Receive) -> None:
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            return


class Forwarder:
    """
    Forwards requests under `config.base` to `config.target`.

    `request_override` sees the outbound `RequestDescriptor` before dispatch.
    `response_override` sees the `ResponseDescriptor` before the head is
    written, and once more with the trailers if they are forwarded.

    Trailers only come through with a `Dispatch` that reports them;
    `HttpxDispatcher` never does, since h11 drops trailer fields.
    """

    def __init__(
        self,
        config: ProxyConfig,
        dispatcher: Optional[Dispatch] = None,
        request_override: Optional[Override[RequestDescriptor]] = None,
        response_override: Optional[Override[ResponseDescriptor]] = None,
    ):
        self.config = config
        self.dispatcher = dispatcher or HttpxDispatcher()
        self.request_override = request_override or Identity()
        self.response_override = response_override or Identity()

    def outbound_url(self, path: str, query: str, inbound_scheme: str = "http") -> str:
        """`target` + the path below `base`, query kept, scheme filled in if missing."""
        remainder = path[len(self.config.base):]
        if not remainder.startswith("/"):
            remainder = "/" + remainder
        if query:
            remainder = f"{remainder}?{query}"
        url = self.config.target + remainder

        if not _SCHEME_RE.match(url):
            scheme = "https" if inbound_scheme in ("https", "wss") else "http"
            url = f"{scheme}:{url}" if url.startswith("//") else f"{scheme}://{url}"
        return url

    def build_request(self, scope: Scope) -> Tuple[RequestDescriptor, bool]:
        """Return the outbound descriptor and whether the inbound request has a body."""
        inbound = fold_headers(scope.get("headers") or [])
        has_body = "content-length" in inbound or "transfer-encoding" in inbound
        method = scope["method"].upper()
        query = scope.get("query_string", b"").decode("latin-1")
        url = self.outbound_url(request_path(scope), query, scope.get("scheme", "http"))

        headers = strip_hop_by_hop(inbound.copy())
        headers["host"] = urlsplit(url).netloc.rpartition("@")[2]
        if scope.get("http_version") == "1.0":
            headers.pop("transfer-encoding", None)
        if method in _LENGTH_REQUIRED and not has_body:
            headers["content-length"] = "0"
        if self.config.drop_encoding_headers:
            headers.pop("accept-encoding", None)
        if self.config.referer:
            headers["referer"] = self.config.referer
        if self.config.forwarded_headers:
            add_forwarded(scope, headers)
        return RequestDescriptor(method=method, url=url, headers=headers), has_body

    def build_response(self, upstream: UpstreamResponse) -> ResponseDescriptor:
        headers = upstream.headers.copy()
        headers.pop("connection", None)
        if self.config.drop_encoding_headers:
            if "content-encoding" in headers:
                # the body is decoded on the way through, so the length changes
                headers.pop("content-length", None)
            headers.pop("content-encoding", None)
            headers.pop("transfer-encoding", None)
        return ResponseDescriptor(
            status_code=upstream.status_code,
            reason_phrase=upstream.reason_phrase,
            headers=headers,
        )

    def _apply_response_override(self, response: ResponseDescriptor) -> ResponseDescriptor:
        result = self.response_override.apply(response)
        # a Replace override hands back the same object on every request
        return dataclasses.replace(result, headers=result.headers.copy(), trailers=result.trailers.copy())

    def _rewrite_location(self, headers: httpx.Headers) -> None:
        location = headers.get("location")
        if not location:
            return
        rewritten = rewrite_location(
            strategy=self.config.location_strategy,
            location=location,
            base=self.config.base,
            target=self.config.target,
        )
        if rewritten != location:
            LOCATION_REWRITES.labels(strategy=LocationStrategy(self.config.location_strategy).value).inc()
            headers["location"] = rewritten

    def _report(self, exc: BaseException) -> None:
        PROXY_ERRORS.labels(kind=type(exc).__name__).inc()
        self.config.on_error(exc)

    async def handle(self, scope: Scope, receive: Receive, send: Send) -> Outcome:
        if scope["type"] != "http":
            return Outcome.UNHANDLED
        path = request_path(scope)
        if not path.startswith(self.config.base):
            return Outcome.UNHANDLED

        PROXY_REQUESTS.labels(method=scope["method"]).inc()
        descriptor, has_body = self.build_request(scope)
        result = self.request_override.apply(descriptor)
        descriptor = dataclasses.replace(result, headers=result.headers.copy())
        log.debug("%s %s -> %s", scope["method"], path, descriptor.url)

        try:
            upstream = await self._dispatch(receive, descriptor, has_body)
        except TRANSPORT_ERRORS as exc:
            self._report(exc)
            return Outcome.FAILED

        try:
            return await self._relay(scope, receive, send, upstream)
        finally:
            await upstream.aclose()

    async def _dispatch(self, receive: Receive, descriptor: RequestDescriptor, has_body: bool) -> UpstreamResponse:
        """Open the upstream exchange, giving up if the client leaves before the response head."""
        consumed = anyio.Event()
        body = _inbound_body(receive, consumed) if has_body else None
        if body is None:
            consumed.set()
        upstream: Optional[UpstreamResponse] = None
        disconnected = False
        failure: Optional[BaseException] = None

        async with anyio.create_task_group() as tg:

            async def watch() -> None:
                nonlocal disconnected
                # the request body owns `receive` until it is used up
                await consumed.wait()
                await _wait_for_disconnect(receive)
                disconnected = True
                tg.cancel_scope.cancel()

            tg.start_soon(watch)
            try:
                upstream = await self.dispatcher.dispatch(descriptor, body)
            except TRANSPORT_ERRORS as exc:
                failure = exc
            finally:
                tg.cancel_scope.cancel()

        if failure is not None:
            raise failure
        if disconnected or upstream is None:
            if upstream is not None:
                await upstream.aclose()
            raise ClientDisconnected("client disconnected while waiting for the upstream response")
        return upstream

    async def _relay(self, scope: Scope, receive: Receive, send: Send, upstream: UpstreamResponse) -> Outcome:
        inbound = fold_headers(scope.get("headers") or [])
        response = self._apply_response_override(self.build_response(upstream))
        self._rewrite_location(response.headers)
        response.headers.update(
            apply_cors(
                request_origin=inbound.get("origin"),
                request_method=scope["method"],
                requested_headers=inbound.get("access-control-request-headers"),
                requested_method=inbound.get("access-control-request-method"),
                policy=self.config.cors,
            )
        )

        with_trailers = (
            "http.response.trailers" in (scope.get("extensions") or {})
            and "trailer" in response.headers
        )
        start: Message = {
            "type": "http.response.start",
            "status": response.status_code,
            "headers": to_asgi(response.headers),
        }
        if with_trailers:
            start["trailers"] = True

        try:
            await send(start)
            await self._stream_body(receive, send, upstream, more_after=with_trailers)
        except TRANSPORT_ERRORS as exc:
            self._report(exc)
            return Outcome.FAILED

        if with_trailers:
            final = dataclasses.replace(response, trailers=upstream.trailers.copy())
            final = self._apply_response_override(final)
            self._rewrite_location(final.trailers)
            try:
                await send({"type": "http.response.trailers", "headers": to_asgi(final.trailers), "more_trailers": False})
            except OSError as exc:
                self._report(exc)
                return Outcome.FAILED
        return Outcome.COMPLETED

    async def _stream_body(self, receive: Receive, send: Send, upstream: UpstreamResponse, more_after: bool) -> None:
        """Pipe the upstream body to the client, aborting if the client goes away."""
        chunks = upstream.aiter_decoded() if self.config.drop_encoding_headers else upstream.aiter_raw()
        finished = False
        disconnected = False
        failure: Optional[BaseException] = None

        async with anyio.create_task_group() as tg:

            async def watch() -> None:
                nonlocal disconnected
                await _wait_for_disconnect(receive)
                if not finished:
                    disconnected = True
                    tg.cancel_scope.cancel()

            tg.start_soon(watch)
            try:
                async for chunk in chunks:
                    if chunk:
                        await send({"type": "http.response.body", "body": chunk, "more_body": True})
                await send({"type": "http.response.body", "body": b"", "more_body": more_after})
            except TRANSPORT_ERRORS as exc:
                failure = exc
            finally:
                finished = True
                tg.cancel_scope.cancel()

        if failure is not None:
            raise failure
        if disconnected:
            raise ClientDisconnected("client disconnected while the response was streaming")


class ProxyMiddleware:
    """
    ASGI middleware around `Forwarder`.

    Requests outside `base` go to the wrapped app. When forwarding fails
    before anything was written, the client gets a 502.
    """

    def __init__(self, app: Callable[..., Awaitable[None]], forwarder: Forwarder):
        self.app = app
        self.forwarder = forwarder

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        started = False

        async def tracked_send(message: Message) -> None:
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        outcome = await self.forwarder.handle(scope, receive, tracked_send)
        if outcome is Outcome.UNHANDLED:
            await self.app(scope, receive, send)
        elif outcome is Outcome.FAILED and not started:
            body = b"Bad Gateway"
            await send({
                "type": "http.response.start",
                "status": 502,
                "headers": [(b"content-type", b"text/plain; charset=utf-8"), (b"content-length", str(len(body)).encode())],
            })
            await send({"type": "http.response.body", "body": body})
