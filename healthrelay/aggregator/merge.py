"""Merge engine: local report + live peer reports → one report.

Peers are fetched concurrently (one task each, joined by a single gather),
then merged single-threaded in configuration order so collision suffixes
are reproducible. The top-level status is the local report's own status:
peer problems show up as member entries, they do not flip the parent.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timezone

import httpx

from healthrelay.aggregator.fetch import RemoteFetchResult, fetch_remote
from healthrelay.aggregator.options import AggregatorOptions, RemoteEndpoint
from healthrelay.health.models import (
    SERVICE_ENTRY_TYPE,
    HealthEntry,
    HealthReport,
    HealthStatus,
    error_type_name,
    infer_entry_type,
)

logger = logging.getLogger(__name__)


class _MergedEntries:
    """Entry mapping with case-insensitive collision suffixing (#1, #2, …)."""

    def __init__(self) -> None:
        self.entries: dict[str, HealthEntry] = {}
        self._taken: set[str] = set()

    def seed(self, key: str, entry: HealthEntry) -> None:
        self.entries[key] = entry
        self._taken.add(key.casefold())

    def add(self, key: str, entry: HealthEntry) -> str:
        final = key
        i = 1
        while final.casefold() in self._taken:
            final = f"{key}#{i}"
            i += 1
        self.seed(final, entry)
        return final


def summarize_remote(result: RemoteFetchResult) -> HealthEntry:
    """One roll-up entry describing a peer's reachability and status."""
    description = None
    if result.report is not None:
        status = result.report.status
    elif result.error is not None:
        status = HealthStatus.UNHEALTHY
        description = result.error_message
    elif result.status_code:
        status = HealthStatus.HEALTHY if 200 <= result.status_code < 300 else HealthStatus.UNHEALTHY
    else:
        status = HealthStatus.UNHEALTHY

    return HealthEntry(
        status=status,
        description=description,
        duration=result.duration,
        data={"StatusCode": result.status_code},
        exception=error_type_name(result.error) if result.error is not None else None,
        tags=[],
        entryType=SERVICE_ENTRY_TYPE,
    )


def merge_reports(
    local: HealthReport,
    endpoints: Sequence[RemoteEndpoint],
    results: Sequence[RemoteFetchResult],
    include_summary: bool = True,
    trace_id: str | None = None,
) -> HealthReport:
    """Fold peer results (aligned with ``endpoints``) into the local report."""
    merged = _MergedEntries()
    for key, entry in local.entries.items():
        merged.seed(key, entry)

    for endpoint, result in zip(endpoints, results):
        prefix = endpoint.prefix

        if result.report is not None:
            for key, remote_entry in result.report.entries.items():
                merged.add(
                    f"{prefix}|{key}",
                    remote_entry.model_copy(update={"entryType": infer_entry_type(remote_entry.tags)}),
                )

        if include_summary:
            merged.add(prefix, summarize_remote(result))

    return HealthReport(
        status=local.status,
        timestamp=datetime.now(timezone.utc),
        duration=local.duration,
        exception=local.exception,
        traceId=trace_id or local.traceId,
        entries=merged.entries,
    )


class HealthAggregator:
    """Pulls every configured peer on each call; nothing is cached."""

    def __init__(self, options: AggregatorOptions, client: httpx.AsyncClient | None = None) -> None:
        self.options = options
        self._client = client

    async def fetch_all(self) -> list[RemoteFetchResult]:
        """Fetch all peers concurrently; waits for every one to finish."""
        return list(
            await asyncio.gather(
                *(
                    fetch_remote(ep.url, self.options.timeout_for(ep), client=self._client)
                    for ep in self.options.remote_endpoints
                )
            )
        )

    async def aggregate(self, local: HealthReport, trace_id: str | None = None) -> HealthReport:
        endpoints = list(self.options.remote_endpoints)
        if not endpoints:
            return local

        results = await self.fetch_all()
        failed = sum(1 for r in results if r.report is None)
        if failed:
            logger.info("Aggregated %d peers, %d without a usable report", len(endpoints), failed)

        return merge_reports(
            local,
            endpoints,
            results,
            include_summary=self.options.include_remote_summary_entry,
            trace_id=trace_id,
        )
