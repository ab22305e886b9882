"""Header helpers shared by the forwarder.

Header maps are `httpx.Headers`: ordered, case-insensitive, and able to hold
repeated fields. `fold_headers` decides how repeated fields collapse.
"""
from __future__ import annotations

from typing import Any, Iterable, List, Mapping, Tuple, Union

import httpx

RawPair = Tuple[Union[bytes, str], Union[bytes, str]]

# RFC 9110 per-hop headers (must not be forwarded)
HOP_BY_HOP = {
    "connection", "proxy-connection", "keep-alive", "te", "transfer-encoding", "upgrade",
}

# Fields where a repeated occurrence is dropped instead of joined
SINGLETON_FIELDS = {
    "age", "authorization", "content-length", "content-type", "etag", "expires",
    "from", "host", "if-modified-since", "if-unmodified-since", "last-modified",
    "location", "max-forwards", "proxy-authorization", "referer", "retry-after",
    "server", "user-agent",
}

RESTRICTION_HEADERS = (
    "strict-transport-security",
    "content-security-policy",
    "content-security-policy-report-only",
    "cross-origin-resource-policy",
    "cross-origin-embedder-policy",
    "permissions-policy",
    "x-frame-options",
)


def _raw(value: Union[bytes, str]) -> bytes:
    return value if isinstance(value, bytes) else value.encode("latin-1")


def _text(value: Union[bytes, str]) -> str:
    return value.decode("latin-1") if isinstance(value, bytes) else value


def fold_headers(raw: Iterable[RawPair]) -> httpx.Headers:
    """Build a header map from raw pairs, folding duplicates.

    `set-cookie` keeps every value, `cookie` joins with "; ", singleton
    fields keep the first value, and everything else joins with ", ".
    """
    order: List[bytes] = []
    values: dict[bytes, List[bytes]] = {}
    for name, value in raw:
        key = _raw(name).lower()
        if key not in values:
            order.append(key)
            values[key] = []
        values[key].append(_raw(value))

    pairs: List[Tuple[bytes, bytes]] = []
    for key in order:
        vals = values[key]
        if key == b"set-cookie":
            pairs.extend((key, v) for v in vals)
        elif key == b"cookie":
            pairs.append((key, b"; ".join(vals)))
        elif _text(key) in SINGLETON_FIELDS:
            pairs.append((key, vals[0]))
        else:
            pairs.append((key, b", ".join(vals)))
    return httpx.Headers(pairs)


def strip_hop_by_hop(headers: httpx.Headers) -> httpx.Headers:
    """Remove per-hop headers, including any listed by `connection`."""
    listed = {
        token.strip().lower()
        for token in headers.get("connection", "").split(",")
        if token.strip()
    }
    for name in HOP_BY_HOP | listed:
        headers.pop(name, None)
    return headers


def remove_restriction_headers(headers: httpx.Headers) -> httpx.Headers:
    """Drop headers that stop the proxied site from being framed or embedded."""
    for name in RESTRICTION_HEADERS:
        headers.pop(name, None)
    return headers


def add_forwarded(scope: Mapping[str, Any], headers: httpx.Headers) -> httpx.Headers:
    client = scope.get("client")
    client_ip = client[0] if client else "unknown"
    scheme = scope.get("scheme", "http")
    prior = headers.get("x-forwarded-for")
    headers["x-forwarded-for"] = f"{prior}, {client_ip}" if prior else client_ip
    if "x-forwarded-proto" not in headers:
        headers["x-forwarded-proto"] = scheme
    if "x-forwarded-host" not in headers:
        inbound_host = dict(scope.get("headers") or []).get(b"host", b"")
        headers["x-forwarded-host"] = _text(inbound_host)
    if "x-forwarded-port" not in headers:
        server = scope.get("server")
        port = server[1] if server and server[1] else (443 if scheme == "https" else 80)
        headers["x-forwarded-port"] = str(port)
    return headers


def to_asgi(headers: httpx.Headers) -> List[Tuple[bytes, bytes]]:
    """Convert a header map into ASGI's list of byte pairs."""
    return [(name.lower(), value) for name, value in headers.raw]
