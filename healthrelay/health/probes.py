"""Local probes, the per-dependency checks that feed the local report.

A probe is anything with an async ``check()`` returning a ProbeResult.
ProbeRunner runs every registered probe concurrently, each under its own
timeout, and folds the results into a HealthReport. A probe that raises or
times out becomes an Unhealthy entry; it never fails the whole report.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

import httpx

from .models import (
    HealthEntry,
    HealthReport,
    HealthStatus,
    error_type_name,
    new_trace_id,
)

logger = logging.getLogger(__name__)


# ── Probe interface ──────────────────────────────────────────────────────────


@dataclass
class ProbeResult:
    """Normalized outcome of one probe."""

    status: HealthStatus
    description: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None

    @classmethod
    def healthy(cls, description: str | None = None, **data: Any) -> ProbeResult:
        return cls(status=HealthStatus.HEALTHY, description=description, data=data)

    @classmethod
    def degraded(cls, description: str, **data: Any) -> ProbeResult:
        return cls(status=HealthStatus.DEGRADED, description=description, data=data)

    @classmethod
    def unhealthy(
        cls, description: str, error: BaseException | None = None, **data: Any
    ) -> ProbeResult:
        return cls(status=HealthStatus.UNHEALTHY, description=description, data=data, error=error)

    @classmethod
    def from_exception(cls, exc: BaseException) -> ProbeResult:
        return cls(status=HealthStatus.UNHEALTHY, description=str(exc) or type(exc).__name__, error=exc)


class Probe(ABC):
    """Base class for local health probes.

    Subclasses set ``name`` (the entry key), optional ``tags`` (the first tag
    becomes the entry type) and ``timeout_seconds``, and implement check().
    """

    name: str = "unnamed"
    tags: tuple[str, ...] = ()
    timeout_seconds: float = 10.0

    @abstractmethod
    async def check(self) -> ProbeResult:
        """Run the probe once."""


# ── Registry ─────────────────────────────────────────────────────────────────


class ProbeRegistry:
    """Named probes in registration order."""

    def __init__(self, probes: Iterable[Probe] = ()) -> None:
        self._probes: dict[str, Probe] = {}
        for probe in probes:
            self.register(probe)

    def register(self, probe: Probe) -> Probe:
        if probe.name in self._probes:
            logger.warning("Overwriting probe: %s", probe.name)
        self._probes[probe.name] = probe
        logger.debug("Registered probe: %s (timeout=%ss)", probe.name, probe.timeout_seconds)
        return probe

    def unregister(self, name: str) -> bool:
        return self._probes.pop(name, None) is not None

    def get(self, name: str) -> Probe | None:
        return self._probes.get(name)

    def all(self) -> list[Probe]:
        return list(self._probes.values())

    def __len__(self) -> int:
        return len(self._probes)


# ── Runner ───────────────────────────────────────────────────────────────────


class ProbeRunner:
    """Runs all registered probes concurrently and builds the local report."""

    def __init__(self, registry: ProbeRegistry) -> None:
        self.registry = registry

    async def run(self, trace_id: str | None = None) -> HealthReport:
        t0 = time.perf_counter()
        probes = self.registry.all()
        entries = await asyncio.gather(*(self._run_probe(p) for p in probes))

        merged = {probe.name: entry for probe, entry in zip(probes, entries)}
        return HealthReport(
            status=HealthStatus.worst(e.status for e in merged.values()),
            duration=timedelta(seconds=time.perf_counter() - t0),
            traceId=trace_id or new_trace_id(),
            entries=merged,
        )

    async def _run_probe(self, probe: Probe) -> HealthEntry:
        t0 = time.perf_counter()
        try:
            result = await asyncio.wait_for(probe.check(), timeout=probe.timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning("Probe %s timed out after %ss", probe.name, probe.timeout_seconds)
            result = ProbeResult.unhealthy(f"Timed out after {probe.timeout_seconds}s", error=e)
        except Exception as e:
            logger.error("Probe %s failed: %s", probe.name, e)
            result = ProbeResult.from_exception(e)

        duration = timedelta(seconds=time.perf_counter() - t0)
        logger.debug("Probe %s: %s (%.1fms)", probe.name, result.status.value, duration.total_seconds() * 1000)

        return HealthEntry.tagged(
            probe.tags,
            status=result.status,
            description=result.description,
            duration=duration,
            data=result.data or None,
            exception=error_type_name(result.error) if result.error is not None else None,
        )


# ── HTTP probe ───────────────────────────────────────────────────────────────


class HttpProbe(Probe):
    """GET/HEAD a URL; expected status → Healthy, slow → Degraded, else Unhealthy."""

    def __init__(
        self,
        name: str,
        url: str,
        *,
        method: str = "GET",
        expected_status: Iterable[int] | None = None,
        slow_threshold_ms: float | None = None,
        timeout_seconds: float = 10.0,
        tags: Iterable[str] = ("Url",),
        client: httpx.AsyncClient | None = None,
    ) -> None:
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL as e:
            raise ValueError(f"Invalid URL: {url!r}") from e
        if parsed.scheme not in ("http", "https") or not parsed.host:
            raise ValueError(f"Url must be an absolute HTTP/HTTPS URL: {url!r}")
        self.name = name
        self.url = url
        self.method = method.upper()
        self.expected_status = set(expected_status) if expected_status else None
        self.slow_threshold_ms = slow_threshold_ms
        self.timeout_seconds = timeout_seconds
        self.tags = tuple(tags)
        self._client = client

    def _is_expected(self, code: int) -> bool:
        if self.expected_status is not None:
            return code in self.expected_status
        return 200 <= code < 300

    async def check(self) -> ProbeResult:
        data: dict[str, Any] = {"Url": self.url, "Method": self.method}
        t0 = time.perf_counter()
        try:
            if self._client is not None:
                resp = await self._client.request(self.method, self.url, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    resp = await client.request(self.method, self.url)
        except httpx.TimeoutException as e:
            data["RequestTimeoutSeconds"] = round(self.timeout_seconds, 2)
            return ProbeResult.unhealthy("Request timed out", error=e, **data)
        except httpx.HTTPError as e:
            return ProbeResult.unhealthy("HTTP request failed", error=e, **data)

        latency_ms = (time.perf_counter() - t0) * 1000
        data["StatusCode"] = resp.status_code
        data["ReasonPhrase"] = resp.reason_phrase

        if not self._is_expected(resp.status_code):
            return ProbeResult.unhealthy(f"Unexpected status code: {resp.status_code}", **data)

        if self.slow_threshold_ms is not None and latency_ms > self.slow_threshold_ms:
            return ProbeResult.degraded(
                f"Response exceeded slow-response threshold of {self.slow_threshold_ms} ms", **data
            )
        return ProbeResult.healthy(None, **data)
