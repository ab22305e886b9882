"""Service routes that live next to the proxy.

They are reached only for paths outside the proxy's mount base.
"""
from __future__ import annotations

from logging import getLogger

from fastapi import APIRouter, Request

log = getLogger("Mount-Proxy.API")
router = APIRouter()


@router.get("/healthz")
async def health_check():
    """Liveness probe."""
    return {"status": "OK"}


@router.get("/readyz")
async def readyz(request: Request):
    """Readiness probe reporting where the proxy is mounted and what it forwards to."""
    config = getattr(request.app.state, "proxy_config", None)
    if config is None:
        return {"status": "ok"}
    log.info("Readiness check for %s -> %s", config.base, config.target)
    return {"status": "ok", "base": config.base, "target": config.target}
