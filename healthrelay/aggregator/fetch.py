"""Fetch one peer's health document without ever raising.

Every outcome (parsed report, unreadable body, refused connection or timeout)
is captured in a RemoteFetchResult, so one bad peer cannot fail the others.
Cancellation is the only thing that propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta

import httpx
from pydantic import ValidationError

from healthrelay.health.models import HealthReport

logger = logging.getLogger(__name__)


class RemoteTimeoutError(Exception):
    """The peer did not answer within its timeout window."""


class InvalidPayloadError(Exception):
    """The peer answered with a body that is not a health report."""


@dataclass(frozen=True)
class RemoteFetchResult:
    report: HealthReport | None
    status_code: int
    duration: timedelta
    error: BaseException | None = None

    @property
    def error_message(self) -> str | None:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__


async def _get(client: httpx.AsyncClient | None, url: str, timeout: float) -> httpx.Response:
    headers = {"Accept": "application/json"}
    if client is not None:
        return await client.get(url, headers=headers, timeout=timeout)
    async with httpx.AsyncClient(timeout=timeout) as own:
        return await own.get(url, headers=headers)


async def fetch_remote(
    url: str,
    timeout: float,
    client: httpx.AsyncClient | None = None,
) -> RemoteFetchResult:
    """GET a peer health endpoint, bounded by ``timeout`` end to end."""
    t0 = time.perf_counter()
    try:
        resp = await asyncio.wait_for(_get(client, url, timeout), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Remote health endpoint %s timed out after %ss", url, timeout)
        return RemoteFetchResult(
            None, 0, timedelta(seconds=time.perf_counter() - t0),
            RemoteTimeoutError(f"Request to {url} timed out after {timeout}s"),
        )
    except Exception as e:
        logger.warning("Could not reach remote health endpoint %s: %s", url, e)
        return RemoteFetchResult(None, 0, timedelta(seconds=time.perf_counter() - t0), e)

    duration = timedelta(seconds=time.perf_counter() - t0)
    status_code = resp.status_code
    body = resp.text
    # empty body: no report, no error, the summary falls back to the status code
    if not body.strip() or body.strip() == "null":
        return RemoteFetchResult(None, status_code, duration)

    try:
        report = HealthReport.model_validate_json(body)
    except ValidationError as e:
        logger.warning("Invalid health payload from %s (HTTP %d)", url, status_code)
        count = e.error_count()
        error = InvalidPayloadError(f"Invalid health payload: {count} error{'' if count == 1 else 's'}")
        error.__cause__ = e
        return RemoteFetchResult(None, status_code, duration, error)

    return RemoteFetchResult(report, status_code, duration)
