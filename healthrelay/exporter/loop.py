"""Background exporter. Relays this process's health to a central collector.

Each cycle re-reads the options, resolves the source and sink URLs, fetches
the local health document and posts it. Fetch problems degrade what is sent
(a synthetic Unhealthy report); they never stop the loop.

The loop stops for good in two cases only:
- cancellation (stop() / host shutdown)
- FAILURE_THRESHOLD consecutive rejected sends (revoked key, wrong tenant);
  it stays stopped until the process restarts.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from healthrelay.config import load_settings
from healthrelay.exporter.client import ExportClient
from healthrelay.exporter.options import (
    MIN_CHECK_INTERVAL_MINUTES,
    ExporterConfigError,
    ExporterOptions,
    resolve_sink_url,
    resolve_source_url,
)

logger = logging.getLogger(__name__)

FAILURE_THRESHOLD = 20


class ExporterPhase(str, Enum):
    IDLE = "idle"
    CONFIG_CHECK = "config_check"
    FETCHING = "fetching"
    SENDING = "sending"
    CIRCUIT_OPEN = "circuit_open"
    STOPPED = "stopped"


class CycleOutcome(str, Enum):
    DISABLED = "disabled"
    CONFIG_ERROR = "config_error"
    SENT = "sent"
    SEND_FAILED = "send_failed"
    CIRCUIT_OPEN = "circuit_open"
    ERROR = "error"


class ExporterState:
    """Diagnostics for the exporter; written only by the loop itself."""

    def __init__(self) -> None:
        self.phase: ExporterPhase = ExporterPhase.IDLE
        self.consecutive_failures: int = 0
        self.cycles: int = 0
        self.last_export: str | None = None
        self.last_error: str | None = None
        self.last_status_code: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "consecutive_failures": self.consecutive_failures,
            "cycles": self.cycles,
            "last_export": self.last_export,
            "last_error": self.last_error,
            "last_status_code": self.last_status_code,
        }


def _options_from_env() -> ExporterOptions:
    return ExporterOptions.from_settings(load_settings())


class ExporterLoop:
    """Single background export loop (one per process)."""

    def __init__(
        self,
        options_provider: Callable[[], ExporterOptions] | None = None,
        client: ExportClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        failure_threshold: int = FAILURE_THRESHOLD,
    ) -> None:
        self._options_provider = options_provider or _options_from_env
        self.client = client or ExportClient()
        self._sleep = sleep or asyncio.sleep
        self.failure_threshold = failure_threshold
        self.state = ExporterState()
        self._task: asyncio.Task[None] | None = None

    @property
    def consecutive_failures(self) -> int:
        return self.state.consecutive_failures

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self.running:
            return
        self._task = asyncio.create_task(self.run(), name="health-exporter")

    async def stop(self) -> None:
        """Cancel the loop and wait for it to exit."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run(self) -> None:
        """Loop until cancelled or the failure threshold trips."""
        logger.info("Health exporter started.")
        try:
            while True:
                try:
                    options = self._options_provider()
                except Exception:
                    logger.exception("Could not load exporter options; retrying next cycle.")
                    await self._sleep(MIN_CHECK_INTERVAL_MINUTES * 60)
                    continue

                try:
                    outcome = await self.run_once(options)
                except Exception:
                    logger.exception("Unexpected exporter failure.")
                    outcome = CycleOutcome.ERROR

                if outcome is CycleOutcome.CIRCUIT_OPEN:
                    return

                self.state.phase = ExporterPhase.IDLE
                await self._sleep(options.interval_seconds)
        except asyncio.CancelledError:
            self.state.phase = ExporterPhase.STOPPED
            raise
        finally:
            logger.info("Health exporter stopped.")

    async def run_once(self, options: ExporterOptions) -> CycleOutcome:
        """One export cycle: config check → fetch → send."""
        if self.state.phase is ExporterPhase.CIRCUIT_OPEN:
            return CycleOutcome.CIRCUIT_OPEN

        self.state.cycles += 1
        self.state.phase = ExporterPhase.CONFIG_CHECK

        if not options.enabled:
            logger.debug("Health exporter disabled; skipping cycle.")
            return CycleOutcome.DISABLED

        try:
            source_url = resolve_source_url(options)
            sink_url = resolve_sink_url(options)
        except ExporterConfigError as e:
            logger.warning("Exporter configuration invalid: %s", e)
            self.state.last_error = str(e)
            return CycleOutcome.CONFIG_ERROR

        self.state.phase = ExporterPhase.FETCHING
        report = await self.client.fetch_report(source_url, options.http_timeout)

        self.state.phase = ExporterPhase.SENDING
        result = await self.client.send_report(
            sink_url, report, options.http_timeout, headers=options.auth_headers()
        )
        self.state.last_status_code = result.status_code

        if result.ok:
            if self.state.consecutive_failures:
                logger.info(
                    "Export to %s recovered after %d failed attempts",
                    sink_url, self.state.consecutive_failures,
                )
            self.state.consecutive_failures = 0
            self.state.last_error = None
            self.state.last_export = datetime.now(timezone.utc).isoformat()
            return CycleOutcome.SENT

        self.state.consecutive_failures += 1
        self.state.last_error = result.error
        logger.warning(
            "Exporter received failed response (%s) from %s. Count: %d/%d",
            result.error, sink_url, self.state.consecutive_failures, self.failure_threshold,
        )

        if self.state.consecutive_failures >= self.failure_threshold:
            self.state.phase = ExporterPhase.CIRCUIT_OPEN
            logger.error(
                "Stopping health exporter after %d consecutive failed exports to %s.",
                self.state.consecutive_failures, sink_url,
            )
            return CycleOutcome.CIRCUIT_OPEN

        return CycleOutcome.SEND_FAILED
