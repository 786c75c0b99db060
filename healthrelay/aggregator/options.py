"""Remote endpoint configuration for the aggregator."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from healthrelay.config import Settings
from healthrelay.exporter.options import parse_absolute_http_url

DEFAULT_REMOTE_TIMEOUT_SECONDS = 5.0
DEFAULT_REMOTE_ENTRY_NAME = "api"


class RemoteEndpoint(BaseModel):
    """One peer whose health document is merged into ours."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    url: str
    name: str = DEFAULT_REMOTE_ENTRY_NAME
    timeout: float | None = Field(None, alias="httpTimeout")  # seconds

    @field_validator("url")
    @classmethod
    def _absolute_http(cls, value: str) -> str:
        if parse_absolute_http_url(value) is None:
            raise ValueError("Url must be an absolute HTTP/HTTPS URL")
        return value.strip()

    @field_validator("timeout")
    @classmethod
    def _positive_or_unset(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value

    @property
    def prefix(self) -> str:
        """Merge-key prefix: the name, or the URL when the name is blank."""
        return self.name.strip() if self.name and self.name.strip() else self.url


class AggregatorOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    remote_endpoints: list[RemoteEndpoint] = Field(default_factory=list, alias="remoteEndpoints")
    http_timeout: float = Field(DEFAULT_REMOTE_TIMEOUT_SECONDS, alias="httpTimeout")
    include_remote_summary_entry: bool = Field(True, alias="includeRemoteSummaryEntry")
    # Single-endpoint shorthand, folded into remote_endpoints by normalize()
    remote_health_endpoint: str = Field("", alias="remoteHealthEndpoint")
    remote_entry_name: str = Field(DEFAULT_REMOTE_ENTRY_NAME, alias="remoteEntryName")

    @field_validator("http_timeout", mode="before")
    @classmethod
    def _positive_timeout(cls, value: Any) -> float:
        if value is None or float(value) <= 0:
            return DEFAULT_REMOTE_TIMEOUT_SECONDS
        return float(value)

    def add_endpoint(self, url: str, name: str | None = None, timeout: float | None = None) -> AggregatorOptions:
        """Append an endpoint (name defaults to the URL). Raises on a bad URL."""
        if not url or not url.strip():
            raise ValueError("Url must be provided")
        self.remote_endpoints.append(RemoteEndpoint(url=url, name=name or url, timeout=timeout))
        return self

    def normalize(self) -> AggregatorOptions:
        if not self.remote_endpoints and self.remote_health_endpoint.strip():
            self.add_endpoint(self.remote_health_endpoint, self.remote_entry_name)
        return self

    def timeout_for(self, endpoint: RemoteEndpoint) -> float:
        return endpoint.timeout if endpoint.timeout is not None else self.http_timeout

    @classmethod
    def from_settings(
        cls, s: Settings, endpoints: list[RemoteEndpoint] | None = None
    ) -> AggregatorOptions:
        options = cls(
            remote_endpoints=list(endpoints or []),
            http_timeout=s.aggregator_http_timeout,
            include_remote_summary_entry=s.aggregator_include_remote_summary_entry,
            remote_health_endpoint=s.aggregator_remote_health_endpoint,
            remote_entry_name=s.aggregator_remote_entry_name,
        )
        return options.normalize()
