"""Health document endpoints.

  GET {health_path}      local probes merged with live peer reports
  GET /exporter/status   exporter loop diagnostics
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from healthrelay.health.models import HealthStatus

logger = logging.getLogger(__name__)

# Degraded still serves traffic; only Unhealthy maps to 503.
_HTTP_STATUS = {
    HealthStatus.HEALTHY: 200,
    HealthStatus.DEGRADED: 200,
    HealthStatus.UNHEALTHY: 503,
}


def create_health_router(path: str = "/health") -> APIRouter:
    router = APIRouter(tags=["health"])

    @router.get(path)
    async def health(request: Request) -> JSONResponse:
        """Run local probes, merge peers, return the unified report."""
        trace_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        runner = request.app.state.probe_runner
        aggregator = request.app.state.aggregator

        local = await runner.run(trace_id=trace_id)
        report = await aggregator.aggregate(local, trace_id=trace_id)

        return JSONResponse(
            status_code=_HTTP_STATUS[report.status],
            content=report.to_json_dict(),
            media_type="application/json",
        )

    @router.get("/exporter/status")
    def exporter_status(request: Request) -> dict[str, Any]:
        """Current exporter phase, failure count and last export."""
        exporter = getattr(request.app.state, "exporter", None)
        if exporter is None:
            raise HTTPException(status_code=404, detail="Exporter is not running in this process")
        return exporter.state.to_dict()  # type: ignore[no-any-return]

    return router
