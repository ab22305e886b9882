import anyio
import httpx
import pytest


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeUpstream:
    """Stand-in for a live upstream response."""

    def __init__(self, status=200, headers=None, chunks=(b"ok",), trailers=None, reason="OK", hang=False):
        self.status_code = status
        self.reason_phrase = reason
        self.headers = httpx.Headers(headers or {})
        self.trailers = httpx.Headers(trailers or {})
        self._chunks = list(chunks)
        self._hang = hang
        self.closed = False

    async def _iter(self):
        for chunk in self._chunks:
            yield chunk
        if self._hang:
            await anyio.sleep_forever()

    def aiter_raw(self):
        return self._iter()

    def aiter_decoded(self):
        return self._iter()

    async def aclose(self):
        self.closed = True


class FakeDispatcher:
    """Records what the forwarder dispatches and hands back a canned response."""

    def __init__(self, upstream=None, error=None):
        self.upstream = upstream or FakeUpstream()
        self.error = error
        self.requests = []
        self.bodies = []

    async def dispatch(self, descriptor, body=None):
        self.requests.append(descriptor)
        if body is not None:
            self.bodies.append(b"".join([chunk async for chunk in body]))
        if self.error is not None:
            raise self.error
        return self.upstream


class SendRecorder:
    def __init__(self):
        self.messages = []

    async def __call__(self, message):
        self.messages.append(message)

    def of_type(self, kind):
        return [m for m in self.messages if m["type"] == kind]


def make_scope(path="/npm/pkg", method="GET", headers=(), query=b"", http_version="1.1", scheme="http", extensions=None):
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": http_version,
        "method": method,
        "scheme": scheme,
        "path": path,
        "raw_path": path.encode(),
        "query_string": query,
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers],
        "client": ("127.0.0.1", 50000),
        "server": ("proxy.local", 8090),
        "extensions": extensions or {},
    }


def make_receive(chunks=(), disconnect=False):
    """ASGI receive that delivers `chunks`, then either disconnects or blocks."""
    if chunks:
        messages = [
            {"type": "http.request", "body": c, "more_body": i < len(chunks) - 1}
            for i, c in enumerate(chunks)
        ]
    else:
        messages = [{"type": "http.request", "body": b"", "more_body": False}]

    async def receive():
        if messages:
            return messages.pop(0)
        if disconnect:
            return {"type": "http.disconnect"}
        await anyio.sleep_forever()

    return receive
