"""Models used by the proxy: its configuration and per-request descriptors."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx
from pydantic import BaseModel, ConfigDict, field_validator

from mountproxy.services.cors import CorsPolicy
from mountproxy.services.location import LocationStrategy

ErrorSink = Callable[[BaseException], None]


class ProxyConfig(BaseModel):
    """Immutable configuration of one proxy middleware instance."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    target: str
    on_error: ErrorSink
    base: str = "/"
    location_strategy: LocationStrategy = LocationStrategy.SAME
    drop_encoding_headers: bool = False
    cors: CorsPolicy = CorsPolicy()
    referer: Optional[str] = None
    forwarded_headers: bool = False

    @field_validator("base")
    @classmethod
    def _base_is_rooted(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("base must start with '/'")
        return v

    @field_validator("target")
    @classmethod
    def _target_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("target must not be empty")
        return v


@dataclass
class RequestDescriptor:
    """The outbound request as it will be dispatched upstream."""

    method: str
    url: str
    headers: httpx.Headers


@dataclass
class ResponseDescriptor:
    """Status line and header sections of an upstream response."""

    status_code: int
    reason_phrase: str
    headers: httpx.Headers
    trailers: httpx.Headers = field(default_factory=httpx.Headers)
