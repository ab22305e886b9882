from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

metrics_router = APIRouter()

PROXY_REQUESTS = Counter("proxy_requests_total", "Requests handled by the proxy", ["method"])
PROXY_ERRORS = Counter("proxy_errors_total", "Errors delivered to the proxy error sink", ["kind"])
UPSTREAM_LATENCY = Histogram("proxy_upstream_latency_seconds", "Time until upstream response headers arrive")
LOCATION_REWRITES = Counter("proxy_location_rewrites_total", "Location headers changed on the way back", ["strategy"])


@metrics_router.get("/metrics")
async def metrics():
    """Prometheus exposition endpoint for proxy process metrics."""
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
