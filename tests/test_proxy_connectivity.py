# tests/test_proxy_connectivity.py
import socket
import threading
import time
from contextlib import closing

import httpx
import pytest
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import RedirectResponse, StreamingResponse

from mountproxy.core.config import Settings
from mountproxy.main import create_app

# --- helpers ---------------------------------------------------------------

def _free_port() -> int:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]

class _BgServer:
    """Run a uvicorn server in a background thread; stop with should_exit=True."""
    def __init__(self, app, host: str, port: int):
        self.config = uvicorn.Config(app, host=host, port=port, log_level="error")
        self.server = uvicorn.Server(self.config)
        self.thread = threading.Thread(target=self.server.run, daemon=True)

    def start(self):
        self.thread.start()
        # Wait until port is accepting connections
        deadline = time.time() + 5
        while time.time() < deadline:
            try:
                with socket.create_connection((self.config.host, self.config.port), timeout=0.25):
                    return
            except OSError:
                time.sleep(0.05)
        raise RuntimeError("Server failed to start")

    def stop(self):
        self.server.should_exit = True
        self.thread.join(timeout=3)

# --- mock upstream site ----------------------------------------------------

def _make_upstream_app() -> FastAPI:
    app = FastAPI()

    @app.get("/site/echo")
    async def echo(request: Request, x: str = ""):
        return {"echo": x, "host": request.headers.get("host")}

    @app.post("/site/upload")
    async def upload(request: Request):
        body = await request.body()
        return {"size": len(body)}

    @app.get("/site/moved")
    async def moved():
        return RedirectResponse(url="/site/echo?x=moved", status_code=302)

    @app.get("/site/chunks")
    async def chunks():
        async def gen():
            for i in range(5):
                yield f"chunk-{i};".encode()
        return StreamingResponse(gen(), media_type="text/plain")

    return app


@pytest.fixture(scope="module")
def upstream_port():
    port = _free_port()
    server = _BgServer(_make_upstream_app(), "127.0.0.1", port)
    server.start()
    try:
        yield port
    finally:
        server.stop()


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://proxy.local")

# --- tests ----------------------------------------------------------------

@pytest.mark.anyio
async def test_proxy_reaches_real_upstream(upstream_port):
    app = create_app(Settings(target=f"http://127.0.0.1:{upstream_port}/site", base="/app", location="rewrite"))
    async with _client(app) as client:
        resp = await client.get("/app/echo", params={"x": "42"})
        assert resp.status_code == 200
        assert resp.json() == {"echo": "42", "host": f"127.0.0.1:{upstream_port}"}

        moved = await client.get("/app/moved")
        assert moved.status_code == 302
        assert moved.headers["location"] == "/app/echo?x=moved"

        chunked = await client.get("/app/chunks")
        assert chunked.text == "".join(f"chunk-{i};" for i in range(5))

        upload = await client.post("/app/upload", content=b"x" * 100_000)
        assert upload.json() == {"size": 100_000}


@pytest.mark.anyio
async def test_refused_connection_gives_502():
    errors = []
    dead_port = _free_port()
    app = create_app(Settings(target=f"http://127.0.0.1:{dead_port}", base="/"), on_error=errors.append)
    async with _client(app) as client:
        resp = await client.get("/anything")
    assert resp.status_code == 502
    assert len(errors) == 1 and isinstance(errors[0], httpx.ConnectError)
