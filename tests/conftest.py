"""Shared test fixtures."""

from __future__ import annotations

import pytest

from healthrelay.health.models import HealthReport, HealthStatus

from helpers import FakeHttp, make_report


@pytest.fixture
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def local_report() -> HealthReport:
    return make_report(HealthStatus.HEALTHY, {"db": HealthStatus.HEALTHY})
