"""Exporter options and URL resolution.

Options are validated once at construction: intervals and timeouts that are
zero or negative fall back to safe values so the loop never busy-spins and
never waits forever on a call.
"""

from __future__ import annotations

import re
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from healthrelay.config import Settings

DEFAULT_HEALTH_PATH = "/health"
DEFAULT_CHECK_INTERVAL_MINUTES = 5.0
MIN_CHECK_INTERVAL_MINUTES = 1.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30.0


class ExporterConfigError(ValueError):
    """Missing or invalid exporter configuration; the cycle is skipped."""


class ExporterOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    enabled: bool = True
    target_application_url: str = Field("", alias="targetApplicationUrl")
    health_check_endpoint: str = Field(DEFAULT_HEALTH_PATH, alias="healthCheckEndpoint")
    central_endpoint: str = Field("", alias="centralEndpoint")
    api_key: str | None = Field(None, alias="apiKey")
    api_key_header_name: str = Field("Authorization", alias="apiKeyHeaderName")
    api_key_scheme: str = Field("ApiKey", alias="apiKeyScheme")
    check_interval: float = Field(DEFAULT_CHECK_INTERVAL_MINUTES, alias="checkInterval")  # minutes
    http_timeout: float = Field(DEFAULT_HTTP_TIMEOUT_SECONDS, alias="httpTimeout")  # seconds

    @field_validator("check_interval", mode="before")
    @classmethod
    def _floor_interval(cls, value: Any) -> float:
        if value is None:
            return DEFAULT_CHECK_INTERVAL_MINUTES
        return max(float(value), MIN_CHECK_INTERVAL_MINUTES)

    @field_validator("http_timeout", mode="before")
    @classmethod
    def _positive_timeout(cls, value: Any) -> float:
        if value is None or float(value) <= 0:
            return DEFAULT_HTTP_TIMEOUT_SECONDS
        return float(value)

    @field_validator("health_check_endpoint", mode="before")
    @classmethod
    def _default_path(cls, value: Any) -> Any:
        if value is None or not str(value).strip():
            return DEFAULT_HEALTH_PATH
        return str(value).strip()

    @field_validator("api_key_header_name", mode="before")
    @classmethod
    def _default_header(cls, value: Any) -> Any:
        if value is None or not str(value).strip():
            return "Authorization"
        return value

    @property
    def interval_seconds(self) -> float:
        return self.check_interval * 60

    def auth_headers(self) -> dict[str, str]:
        """Credential header for the sink call, empty when no key is set."""
        if not self.api_key or not self.api_key.strip():
            return {}
        scheme = (self.api_key_scheme or "").strip()
        value = f"{scheme} {self.api_key}" if scheme else self.api_key
        return {self.api_key_header_name: value}

    @classmethod
    def from_settings(cls, s: Settings) -> ExporterOptions:
        return cls(
            enabled=s.exporter_enabled,
            target_application_url=s.exporter_target_application_url,
            health_check_endpoint=s.exporter_health_check_endpoint,
            central_endpoint=s.exporter_central_endpoint,
            api_key=s.exporter_api_key or None,
            api_key_header_name=s.exporter_api_key_header_name,
            api_key_scheme=s.exporter_api_key_scheme,
            check_interval=s.exporter_check_interval,
            http_timeout=s.exporter_http_timeout,
        )


# ── URL resolution ───────────────────────────────────────────────────────────


_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")


def parse_absolute_http_url(value: str | None) -> httpx.URL | None:
    """Return the URL if it is absolute http(s), else None."""
    if not value or not value.strip():
        return None
    try:
        url = httpx.URL(value.strip())
    except (httpx.InvalidURL, TypeError):
        return None
    if url.scheme not in ("http", "https") or not url.host:
        return None
    return url


def resolve_source_url(options: ExporterOptions) -> str:
    """Absolute health endpoint → used as-is; a path → appended to the base URL."""
    endpoint = options.health_check_endpoint
    absolute = parse_absolute_http_url(endpoint)
    if absolute is not None:
        return str(absolute)
    if _SCHEME_RE.match(endpoint.strip()):
        raise ExporterConfigError(
            f"Health check endpoint {endpoint!r} must be an absolute HTTP/HTTPS URL or a path."
        )

    if not options.target_application_url or not options.target_application_url.strip():
        raise ExporterConfigError(
            f"Health check endpoint {endpoint!r} is relative and no target application URL is configured."
        )
    base = parse_absolute_http_url(options.target_application_url)
    if base is None:
        raise ExporterConfigError(
            f"Target application URL {options.target_application_url!r} must be a valid absolute URI."
        )
    return f"{str(base).rstrip('/')}/{endpoint.lstrip('/')}"


def resolve_sink_url(options: ExporterOptions) -> str:
    if not options.central_endpoint or not options.central_endpoint.strip():
        raise ExporterConfigError("Central endpoint configuration is required.")
    url = parse_absolute_http_url(options.central_endpoint)
    if url is None:
        raise ExporterConfigError(
            f"Central endpoint {options.central_endpoint!r} must be a valid absolute URI."
        )
    return str(url)
