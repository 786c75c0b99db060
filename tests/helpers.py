"""Fake HTTP peers and report builders shared by the tests."""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import timedelta
from typing import Any, Union

import httpx

from healthrelay.health.models import HealthEntry, HealthReport, HealthStatus

Route = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class FakeHttp:
    """Routes requests by full URL; records every request it sees."""

    def __init__(self, routes: dict[str, Route] | None = None) -> None:
        self.routes: dict[str, Route] = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, httpx.Response):
            # fresh copy per request; a Response instance is bound to one request
            return httpx.Response(route.status_code, headers=route.headers, content=route.content)
        return route(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]


def make_report(
    status: HealthStatus = HealthStatus.HEALTHY,
    entries: dict[str, HealthStatus] | None = None,
    trace_id: str = "trace-local",
) -> HealthReport:
    return HealthReport(
        status=status,
        duration=timedelta(milliseconds=12),
        traceId=trace_id,
        entries={
            key: HealthEntry.tagged(["Database"], status=entry_status, duration=timedelta(milliseconds=3))
            for key, entry_status in (entries or {}).items()
        },
    )


def report_response(report: HealthReport, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, json=report.to_json_dict())


def body_of(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content)  # type: ignore[no-any-return]
