"""Mount proxy FastAPI application.

Builds the service: the reverse-proxy middleware mounted at the configured
base, with health and Prometheus metrics endpoints behind it for any path the
proxy does not claim. Run with `uvicorn --factory mountproxy.main:create_app`.
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from mountproxy.api.routes import router
from mountproxy.core.config import Settings, load_settings
from mountproxy.core.logging import log_proxy_error, setup_logging
from mountproxy.metrics.prometheus import metrics_router
from mountproxy.models.schemas import ErrorSink, RequestDescriptor, ResponseDescriptor
from mountproxy.services.dispatch import Dispatch, HttpxDispatcher
from mountproxy.services.forwarder import Forwarder, ProxyMiddleware
from mountproxy.services.headers import remove_restriction_headers
from mountproxy.services.rewrite import Identity, Override, Transform, compose


def _unframe(response: ResponseDescriptor) -> ResponseDescriptor:
    remove_restriction_headers(response.headers)
    return response


def create_app(
    settings: Optional[Settings] = None,
    *,
    dispatcher: Optional[Dispatch] = None,
    request_override: Optional[Override[RequestDescriptor]] = None,
    response_override: Optional[Override[ResponseDescriptor]] = None,
    on_error: ErrorSink = log_proxy_error,
) -> FastAPI:
    """Create the proxy application from `settings` (environment when omitted)."""
    settings = settings or load_settings()
    setup_logging(settings.log_level)
    config = settings.to_proxy_config(on_error)

    response_override = response_override or Identity()
    if settings.strip_restriction_headers:
        response_override = compose(response_override, Transform(_unframe))

    forwarder = Forwarder(
        config,
        dispatcher=dispatcher or HttpxDispatcher(timeout_s=settings.upstream_timeout_s),
        request_override=request_override,
        response_override=response_override,
    )

    app = FastAPI(title="Mount Proxy", version="0.1.0")
    app.state.proxy_config = config
    app.include_router(router)
    app.include_router(metrics_router)
    app.add_middleware(ProxyMiddleware, forwarder=forwarder)
    return app
