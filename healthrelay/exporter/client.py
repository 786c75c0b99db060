"""httpx-based client for the exporter's two calls: fetch local, send central.

fetch_report() never raises for transport or parse problems; it returns a
synthetic Unhealthy report instead, so the sink always receives something.
send_report() returns a SendResult rather than raising. Only cancellation
propagates.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import timedelta

import httpx
from pydantic import ValidationError

from healthrelay.health.models import HealthReport, error_type_name

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    ok: bool
    status_code: int = 0
    error: str | None = None


class ExportClient:
    """Fetches the local health document and posts it to the collector.

    An injected AsyncClient may be shared; timeout and headers are passed on
    every request and never stored on the client.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    async def _request(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        headers: dict[str, str],
        content: bytes | None = None,
    ) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, headers=headers, content=content, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.request(method, url, headers=headers, content=content)

    # ── Fetch ────────────────────────────────────────────────────────────

    async def fetch_report(self, url: str, timeout: float) -> HealthReport:
        """GET the local health document; failures become a synthetic report."""
        t0 = time.perf_counter()

        def _elapsed() -> timedelta:
            return timedelta(seconds=time.perf_counter() - t0)

        try:
            resp = await self._request("GET", url, timeout=timeout, headers={"Accept": "application/json"})
        except httpx.TimeoutException as e:
            logger.error("Health endpoint %s timed out after %ss", url, timeout)
            return HealthReport.unhealthy(
                f"Health endpoint timed out after {timeout}s",
                duration=_elapsed(), data={"Url": url, "StatusCode": 0}, exception=error_type_name(e),
            )
        except httpx.HTTPError as e:
            logger.error("Could not reach health endpoint %s: %s", url, e)
            return HealthReport.unhealthy(
                f"Could not reach health endpoint: {e}",
                duration=_elapsed(), data={"Url": url, "StatusCode": 0}, exception=error_type_name(e),
            )

        data = {"Url": url, "StatusCode": resp.status_code}
        accept_body = resp.is_success or resp.status_code == 503
        if not accept_body:
            logger.warning("Health endpoint %s returned %d", url, resp.status_code)
            return HealthReport.unhealthy(
                f"Health endpoint returned {resp.status_code}", duration=_elapsed(), data=data,
            )

        body = resp.text
        if not body.strip() or body.strip() == "null":
            logger.warning("Health endpoint %s returned an empty payload.", url)
            return HealthReport.unhealthy("Health endpoint returned an empty payload", duration=_elapsed(), data=data)

        try:
            report = HealthReport.model_validate_json(body)
        except ValidationError as e:
            logger.error("Invalid JSON payload received from %s: %s", url, e)
            if not resp.is_success:
                return HealthReport.unhealthy(
                    f"Health endpoint returned {resp.status_code}", duration=_elapsed(), data=data,
                )
            return HealthReport.unhealthy(
                "Invalid JSON payload received from health endpoint",
                duration=_elapsed(), data=data, exception=error_type_name(e),
            )

        logger.debug("Health status %s", report.status.value)
        return report

    # ── Send ─────────────────────────────────────────────────────────────

    async def send_report(
        self,
        url: str,
        report: HealthReport,
        timeout: float,
        headers: dict[str, str] | None = None,
    ) -> SendResult:
        """POST the report as JSON; non-2xx and transport errors are failures."""
        payload = json.dumps(report.to_json_dict(exclude_none=True)).encode("utf-8")
        request_headers = {"Content-Type": "application/json", **(headers or {})}

        try:
            resp = await self._request("POST", url, timeout=timeout, headers=request_headers, content=payload)
        except httpx.HTTPError as e:
            logger.warning("Could not send data to central endpoint %s: %s", url, e)
            return SendResult(ok=False, error=str(e) or type(e).__name__)

        if not resp.is_success:
            return SendResult(ok=False, status_code=resp.status_code, error=f"HTTP {resp.status_code}")
        return SendResult(ok=True, status_code=resp.status_code)
