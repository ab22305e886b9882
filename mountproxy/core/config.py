"""Configuration for the mount proxy service.

Provides strongly-typed settings using Pydantic and a loader from environment
variables with defaults suitable for local development.
"""

from __future__ import annotations

import os
from typing import Optional, Union

from pydantic import BaseModel, ValidationError, field_validator

from mountproxy.models.schemas import ErrorSink, ProxyConfig
from mountproxy.services.cors import CorsPolicy
from mountproxy.services.location import LocationStrategy, is_url


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Pydantic settings for the proxy service."""
    # Upstream to forward to, e.g. "https://cdn.example.net/npm"
    target: str = ""
    base: str = "/"
    location: LocationStrategy = LocationStrategy.SAME
    # "false", "true" or a comma separated list of allowed origins
    cors: str = "false"
    referer: Optional[str] = None
    drop_encoding_headers: bool = False
    strip_restriction_headers: bool = False
    forwarded_headers: bool = False
    upstream_timeout_s: Optional[float] = None
    host: str = "127.0.0.1"
    port: int = 8090
    log_level: str = "INFO"

    @field_validator("target")
    @classmethod
    def _target_is_url(cls, v: str) -> str:
        if v and not is_url(v):
            raise ValueError("target must be an absolute http(s) URL")
        return v

    @property
    def cors_setting(self) -> Union[bool, str]:
        value = self.cors.strip()
        if value.lower() in ("", "false", "0", "no", "off"):
            return False
        if value.lower() == "true":
            return True
        return value

    def to_proxy_config(self, on_error: ErrorSink) -> ProxyConfig:
        """Build the immutable per-middleware configuration."""
        if not self.target:
            raise RuntimeError("Invalid configuration: PROXY_TARGET is not set")
        try:
            return ProxyConfig(
                target=self.target,
                base=self.base,
                location_strategy=self.location,
                on_error=on_error,
                drop_encoding_headers=self.drop_encoding_headers,
                cors=CorsPolicy.from_setting(self.cors_setting),
                referer=self.referer,
                forwarded_headers=self.forwarded_headers,
            )
        except ValidationError as e:
            raise RuntimeError(f"Invalid configuration: {e}") from e


def load_settings() -> Settings:
    """Load settings from environment variables and return a Settings object."""
    timeout = os.getenv("UPSTREAM_TIMEOUT_S")
    try:
        return Settings(
            target=os.getenv("PROXY_TARGET", ""),
            base=os.getenv("PROXY_BASE", "/"),
            location=os.getenv("PROXY_LOCATION", "same"),
            cors=os.getenv("PROXY_CORS", "false"),
            referer=os.getenv("PROXY_REFERER") or None,
            drop_encoding_headers=_env_bool("PROXY_DROP_ENCODING_HEADERS"),
            strip_restriction_headers=_env_bool("PROXY_STRIP_RESTRICTION_HEADERS"),
            forwarded_headers=_env_bool("PROXY_FORWARDED_HEADERS"),
            upstream_timeout_s=float(timeout) if timeout else None,
            host=os.getenv("HOST", "127.0.0.1"),
            port=int(os.getenv("PORT", "8090")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
    except (ValidationError, ValueError) as e:
        raise RuntimeError(f"Invalid configuration: {e}") from e
