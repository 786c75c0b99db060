"""Health report wire models. One shape for both producing and consuming.

A peer's health document is parsed with the same models this process
serialises, so an aggregator can itself be a peer of another aggregator.
Durations travel in .NET TimeSpan constant format ("00:00:00.0123456")
for compatibility with non-Python peers.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    computed_field,
    field_serializer,
    field_validator,
)

UNKNOWN_ENTRY_TYPE = "Unknown"
SERVICE_ENTRY_TYPE = "Service"

_TIMESPAN_RE = re.compile(
    r"^(?P<sign>-)?(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{2}):(?P<seconds>\d{2})"
    r"(?:\.(?P<fraction>\d{1,7}))?$"
)

# .NET HealthStatus numeric values
_NUMERIC_STATUS = {0: "Unhealthy", 1: "Degraded", 2: "Healthy"}


# ── Status ───────────────────────────────────────────────────────────────────


class HealthStatus(str, Enum):
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    UNHEALTHY = "Unhealthy"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    @classmethod
    def _missing_(cls, value: object) -> HealthStatus | None:
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        return None

    @classmethod
    def coerce(cls, value: Any) -> HealthStatus:
        """Parse a status leniently; anything unrecognised is Unhealthy."""
        if isinstance(value, HealthStatus):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            value = _NUMERIC_STATUS.get(value)
        if value is None:
            return cls.UNHEALTHY
        try:
            return cls(value)
        except ValueError:
            return cls.UNHEALTHY

    @classmethod
    def worst(cls, statuses: Iterable[HealthStatus]) -> HealthStatus:
        """Roll up statuses, worst wins. No statuses at all is Healthy."""
        return max(statuses, key=lambda s: s.severity, default=cls.HEALTHY)


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


# ── Helpers ──────────────────────────────────────────────────────────────────


def infer_entry_type(tags: Iterable[str] | None) -> str:
    """First tag (trimmed) names the entry type; used for client grouping only."""
    for tag in tags or ():
        first = str(tag).strip()
        return first or UNKNOWN_ENTRY_TYPE
    return UNKNOWN_ENTRY_TYPE


def normalize_data(data: dict[str, Any] | None) -> dict[str, Any] | None:
    """Replace exception values with their message so data stays serialisable."""
    if data is None:
        return None
    return {
        key: (str(value) if isinstance(value, BaseException) else value)
        for key, value in data.items()
    }


def error_type_name(exc: BaseException) -> str:
    """Qualified type name of an error, e.g. ``httpx.ConnectError``."""
    cls = type(exc)
    module = cls.__module__
    if module == "builtins":
        return cls.__qualname__
    return f"{module}.{cls.__qualname__}"


def new_trace_id() -> str:
    return uuid.uuid4().hex


def format_timespan(value: timedelta) -> str:
    """Render a timedelta as a .NET TimeSpan constant ("c") string."""
    ticks = round(value.total_seconds() * 10_000_000)
    sign = "-" if ticks < 0 else ""
    ticks = abs(ticks)
    total_seconds, fraction = divmod(ticks, 10_000_000)
    days, rem = divmod(total_seconds, 86_400)
    hours, rem = divmod(rem, 3_600)
    minutes, seconds = divmod(rem, 60)
    text = f"{sign}{days}." if days else sign
    text += f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    if fraction:
        text += f".{fraction:07d}"
    return text


def parse_duration(value: Any) -> Any:
    """Accept TimeSpan strings and plain seconds; leave ISO-8601 to pydantic."""
    if value is None:
        return timedelta(0)
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)
    if isinstance(value, str):
        match = _TIMESPAN_RE.match(value.strip())
        if match:
            fraction = (match["fraction"] or "").ljust(7, "0")
            span = timedelta(
                days=int(match["days"] or 0),
                hours=int(match["hours"]),
                minutes=int(match["minutes"]),
                seconds=int(match["seconds"]),
                microseconds=int(fraction) / 10,
            )
            return -span if match["sign"] else span
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _text_or_none(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return str(value)


# ── Models ───────────────────────────────────────────────────────────────────


class HealthEntry(BaseModel):
    """Result of one probe (or a synthesized summary of one peer).

    Parsing is lenient: a peer's entry is passed through even when some of
    its fields do not match the expected shape.
    """

    status: HealthStatus = HealthStatus.UNHEALTHY
    description: str | None = None
    duration: timedelta = timedelta(0)
    data: dict[str, Any] | None = None
    exception: str | None = None
    tags: list[str] = []
    entryType: str = UNKNOWN_ENTRY_TYPE

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> HealthStatus:
        return HealthStatus.coerce(value)

    @field_validator("duration", mode="wrap")
    @classmethod
    def _parse_duration(cls, value: Any, handler: ValidatorFunctionWrapHandler) -> timedelta:
        try:
            return handler(parse_duration(value))  # type: ignore[no-any-return]
        except ValidationError:
            return timedelta(0)

    @field_validator("description", "exception", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str | None:
        return _text_or_none(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _tags_as_strings(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            return [value]
        if not isinstance(value, (list, tuple)):
            return []
        return [str(tag) for tag in value if tag is not None]

    @field_validator("data", mode="before")
    @classmethod
    def _normalize_data(cls, value: Any) -> dict[str, Any] | None:
        if value is None:
            return None
        if isinstance(value, dict):
            return normalize_data({str(k): v for k, v in value.items()})
        return {"value": value}

    @field_validator("entryType", mode="before")
    @classmethod
    def _entry_type_or_unknown(cls, value: Any) -> str:
        return str(value) if value else UNKNOWN_ENTRY_TYPE

    @field_serializer("duration")
    def _serialize_duration(self, value: timedelta) -> str:
        return format_timespan(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def durationMs(self) -> float:
        return round(self.duration.total_seconds() * 1000, 3)

    @classmethod
    def tagged(cls, tags: Iterable[str] | None = None, **kwargs: Any) -> HealthEntry:
        """Build an entry whose entryType is derived from its tags."""
        tag_list = list(tags or [])
        return cls(tags=tag_list, entryType=infer_entry_type(tag_list), **kwargs)


class HealthReport(BaseModel):
    """Overall status plus the entries that produced it."""

    status: HealthStatus = HealthStatus.UNHEALTHY
    timestamp: datetime = Field(default_factory=_utcnow)
    duration: timedelta = timedelta(0)
    exception: str | None = None
    traceId: str = ""
    entries: dict[str, HealthEntry] = {}

    @field_validator("status", mode="before")
    @classmethod
    def _coerce_status(cls, value: Any) -> HealthStatus:
        return HealthStatus.coerce(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp_or_now(cls, value: Any) -> Any:
        return value or _utcnow()

    @field_validator("duration", mode="before")
    @classmethod
    def _parse_duration(cls, value: Any) -> Any:
        return parse_duration(value)

    @field_validator("entries", mode="before")
    @classmethod
    def _entries_or_empty(cls, value: Any) -> Any:
        # null or non-object entries are dropped; the rest still get through
        if not isinstance(value, dict):
            return {}
        return {
            str(key): entry for key, entry in value.items()
            if isinstance(entry, (dict, HealthEntry))
        }

    @field_validator("traceId", mode="before")
    @classmethod
    def _trace_or_empty(cls, value: Any) -> str:
        return str(value) if value else ""

    @field_validator("exception", mode="before")
    @classmethod
    def _exception_as_text(cls, value: Any) -> str | None:
        return _text_or_none(value)

    @field_serializer("duration")
    def _serialize_duration(self, value: timedelta) -> str:
        return format_timespan(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def durationMs(self) -> float:
        return round(self.duration.total_seconds() * 1000, 3)

    @classmethod
    def unhealthy(
        cls,
        message: str,
        *,
        duration: timedelta = timedelta(0),
        entry_key: str = "exporter",
        data: dict[str, Any] | None = None,
        exception: str | None = None,
    ) -> HealthReport:
        """Synthetic report describing why no real report could be produced."""
        entry = HealthEntry.tagged(
            ["Exporter"],
            status=HealthStatus.UNHEALTHY,
            description=message,
            duration=duration,
            data=data,
            exception=exception,
        )
        return cls(
            status=HealthStatus.UNHEALTHY,
            duration=duration,
            exception=message,
            traceId=new_trace_id(),
            entries={entry_key: entry},
        )

    def to_json_dict(self, *, exclude_none: bool = False) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=exclude_none)
