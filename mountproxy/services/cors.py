"""CORS decisions for proxied responses.

The policy is computed per request and only ever produces mutations for the
response sent back to the client.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple, Union

CorsSetting = Union[None, bool, str, Iterable[str]]

PREFLIGHT_MAX_AGE = "7200"


@dataclass(frozen=True)
class CorsPolicy:
    """Which origins may read proxied responses.

    `origins` empty while `enabled` means the request's own origin is echoed.
    """
    enabled: bool = False
    origins: Tuple[str, ...] = ()

    @property
    def reflects_origin(self) -> bool:
        return self.enabled and not self.origins

    @classmethod
    def from_setting(cls, value: CorsSetting) -> "CorsPolicy":
        """Normalize `False`, `True`, "a,b" or ["a", "b"] into a policy."""
        if value is None or value is False:
            return cls()
        if value is True:
            return cls(enabled=True)
        if isinstance(value, str):
            items = value.split(",")
        else:
            items = list(value)
        origins = tuple(o.strip() for o in items if o and o.strip())
        if not origins or "*" in origins:
            # a wildcard anywhere means "allow whoever is asking"
            return cls(enabled=True)
        return cls(enabled=True, origins=origins)


def apply_cors(
    *,
    request_origin: Optional[str],
    request_method: str,
    requested_headers: Optional[str],
    requested_method: Optional[str],
    policy: CorsPolicy,
) -> Dict[str, str]:
    """Return the access-control headers to set on the response."""
    if not request_origin or not policy.enabled:
        return {}

    headers: Dict[str, str] = {}
    if policy.reflects_origin:
        headers["access-control-allow-origin"] = request_origin if request_origin != "null" else "*"
    else:
        headers["access-control-allow-origin"] = ",".join(policy.origins)
    headers["access-control-allow-credentials"] = "true"

    if request_method.upper() == "OPTIONS":
        headers["access-control-max-age"] = PREFLIGHT_MAX_AGE
        headers["access-control-allow-headers"] = requested_headers or "*"
        headers["access-control-allow-methods"] = requested_method or "*"
    else:
        headers["access-control-expose-headers"] = "*"
    return headers
