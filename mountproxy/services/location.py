"""Rewriting of the `Location` header for a proxied site.

The upstream thinks it lives at `target`; clients see it under `base`.
`rewrite_location` maps a `Location` value between the two according to a
`LocationStrategy`. It never raises: a value `urllib.parse` cannot handle is
returned as it was.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple
from urllib.parse import SplitResult, quote, urljoin, urlsplit

DEFAULT_PORTS = {"http": 80, "https": 443}

# characters a URL path keeps as they are; existing escapes survive
_PATH_SAFE = "/%@:+,;=!$&'()*~"


class LocationStrategy(str, Enum):
    """How a `Location` header from upstream is handed to the client."""
    SAME = "same"
    REWRITE = "rewrite"
    REDIRECT = "redirect"


def is_url(value: str) -> bool:
    return value.startswith("http://") or value.startswith("https://")


def _origin(parts: SplitResult) -> Tuple[str, str, Optional[int]]:
    scheme = parts.scheme.lower()
    port = parts.port or DEFAULT_PORTS.get(scheme)
    return scheme, (parts.hostname or "").lower(), port


def _path(parts: SplitResult) -> str:
    return quote(parts.path or "/", safe=_PATH_SAFE)


def _rewrite_into_base(location: str, base: str, target: str) -> str:
    resolved = urljoin(target, location)
    loc = urlsplit(resolved)
    tgt = urlsplit(target)
    loc_path, tgt_path = _path(loc), _path(tgt)
    # raw prefix test, so /npm2 counts as inside /npm
    in_scope = loc_path.startswith(tgt_path)

    if is_url(location):
        if _origin(loc) != _origin(tgt) or not in_scope:
            return location
        return base + loc_path[len(tgt_path):]

    if not in_scope:
        return resolved

    rewritten = base + loc_path[len(tgt_path):]
    if loc.query:
        rewritten += "?" + loc.query
    if location.startswith("/") and loc.fragment:
        rewritten += "#" + loc.fragment
    return rewritten


def rewrite_location(*, strategy: LocationStrategy | str, location: str, base: str, target: str) -> str:
    """Map an upstream `Location` value for the client.

    same      -- unchanged.
    redirect  -- resolved against `target` so the client goes straight upstream.
    rewrite   -- kept under `base` when it points inside `target`'s path,
                 otherwise left pointing at the upstream.
    """
    try:
        strategy = LocationStrategy(strategy)
    except ValueError:
        return location

    if strategy is LocationStrategy.SAME:
        return location

    try:
        if strategy is LocationStrategy.REDIRECT:
            if is_url(location):
                return location
            return urljoin(target, location)
        return _rewrite_into_base(location, base, target)
    except ValueError:
        return location
