"""Tests for the request-time health aggregator."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from pydantic import ValidationError

from healthrelay.aggregator import (
    AggregatorOptions,
    HealthAggregator,
    RemoteEndpoint,
    fetch_remote,
)
from healthrelay.aggregator.fetch import InvalidPayloadError, RemoteTimeoutError
from healthrelay.config import Settings
from healthrelay.health.models import HealthEntry, HealthReport, HealthStatus

from helpers import FakeHttp, make_report, report_response

SVC_A = "http://svc-a:8080/health"
SVC_B = "http://svc-b:8080/health"
SVC_C = "http://svc-c:8080/health"


def _aggregate(
    fake: FakeHttp,
    options: AggregatorOptions,
    local: HealthReport,
    trace_id: str | None = None,
) -> HealthReport:
    async def go() -> HealthReport:
        async with fake.client() as client:
            return await HealthAggregator(options, client=client).aggregate(local, trace_id=trace_id)

    return asyncio.run(go())


# ── Merge ────────────────────────────────────────────────────────────────────


class TestMerge:
    def test_degraded_peer_is_merged_without_flipping_parent(self, local_report: HealthReport) -> None:
        remote = make_report(HealthStatus.DEGRADED, {"cache": HealthStatus.DEGRADED})
        fake = FakeHttp({SVC_A: report_response(remote)})
        options = AggregatorOptions().add_endpoint(SVC_A, "svcA")

        merged = _aggregate(fake, options, local_report)

        assert set(merged.entries) == {"db", "svcA|cache", "svcA"}
        assert merged.entries["svcA"].status == HealthStatus.DEGRADED
        assert merged.entries["svcA"].entryType == "Service"
        assert merged.entries["svcA"].data == {"StatusCode": 200}
        assert merged.entries["svcA|cache"].status == HealthStatus.DEGRADED
        assert merged.status == HealthStatus.HEALTHY

    def test_unreachable_peer_yields_single_unhealthy_summary(self, local_report: HealthReport) -> None:
        fake = FakeHttp({SVC_A: httpx.ConnectError("Connection refused")})
        options = AggregatorOptions().add_endpoint(SVC_A, "svcA")

        merged = _aggregate(fake, options, local_report)

        assert set(merged.entries) == {"db", "svcA"}
        summary = merged.entries["svcA"]
        assert summary.status == HealthStatus.UNHEALTHY
        assert summary.data == {"StatusCode": 0}
        assert "Connection refused" in (summary.description or "")
        assert summary.exception == "httpx.ConnectError"
        assert merged.status == HealthStatus.HEALTHY

    def test_same_name_peers_get_suffixes_in_config_order(self, local_report: HealthReport) -> None:
        fake = FakeHttp({
            SVC_A: report_response(make_report(HealthStatus.HEALTHY, {"cache": HealthStatus.HEALTHY})),
            SVC_B: report_response(make_report(HealthStatus.UNHEALTHY, {"cache": HealthStatus.UNHEALTHY})),
        })
        options = AggregatorOptions().add_endpoint(SVC_A, "svc").add_endpoint(SVC_B, "svc")

        merged = _aggregate(fake, options, local_report)

        assert set(merged.entries) == {"db", "svc|cache", "svc", "svc|cache#1", "svc#1"}
        assert merged.entries["svc"].status == HealthStatus.HEALTHY
        assert merged.entries["svc#1"].status == HealthStatus.UNHEALTHY
        assert merged.entries["svc|cache#1"].status == HealthStatus.UNHEALTHY

    def test_collision_with_local_key_is_case_insensitive(self) -> None:
        local = make_report(HealthStatus.HEALTHY, {"API": HealthStatus.HEALTHY})
        fake = FakeHttp({SVC_A: report_response(make_report())})
        options = AggregatorOptions().add_endpoint(SVC_A, "api")

        merged = _aggregate(fake, options, local)

        assert set(merged.entries) == {"API", "api#1"}

    def test_one_bad_peer_does_not_affect_the_others(self, local_report: HealthReport) -> None:
        fake = FakeHttp({
            SVC_A: report_response(make_report(HealthStatus.HEALTHY, {"queue": HealthStatus.HEALTHY})),
            SVC_B: httpx.ConnectError("Connection refused"),
            SVC_C: httpx.Response(500),
        })
        options = (
            AggregatorOptions()
            .add_endpoint(SVC_A, "a")
            .add_endpoint(SVC_B, "b")
            .add_endpoint(SVC_C, "c")
        )

        merged = _aggregate(fake, options, local_report)

        assert merged.entries["a"].status == HealthStatus.HEALTHY
        assert merged.entries["a|queue"].status == HealthStatus.HEALTHY
        assert merged.entries["b"].status == HealthStatus.UNHEALTHY
        assert merged.entries["c"].status == HealthStatus.UNHEALTHY
        assert merged.entries["c"].data == {"StatusCode": 500}
        assert len(fake.requests) == 3

    def test_repeated_aggregation_is_stable(self, local_report: HealthReport) -> None:
        fake = FakeHttp({
            SVC_A: report_response(make_report(HealthStatus.DEGRADED, {"cache": HealthStatus.DEGRADED})),
            SVC_B: report_response(make_report(HealthStatus.HEALTHY, {"cache": HealthStatus.HEALTHY})),
        })
        options = AggregatorOptions().add_endpoint(SVC_A, "svc").add_endpoint(SVC_B, "svc")

        async def go() -> tuple[HealthReport, HealthReport]:
            async with fake.client() as client:
                aggregator = HealthAggregator(options, client=client)
                return await aggregator.aggregate(local_report), await aggregator.aggregate(local_report)

        first, second = asyncio.run(go())

        assert list(first.entries) == list(second.entries)
        assert {k: e.status for k, e in first.entries.items()} == {k: e.status for k, e in second.entries.items()}
        assert len(fake.requests) == 4

    def test_no_endpoints_returns_local_untouched(self, local_report: HealthReport) -> None:
        fake = FakeHttp()
        merged = _aggregate(fake, AggregatorOptions(), local_report)
        assert merged is local_report
        assert fake.requests == []

    def test_blank_name_uses_url_as_prefix(self, local_report: HealthReport) -> None:
        fake = FakeHttp({SVC_A: report_response(make_report(HealthStatus.HEALTHY, {"cache": HealthStatus.HEALTHY}))})
        options = AggregatorOptions(remote_endpoints=[RemoteEndpoint(url=SVC_A, name="  ")])

        merged = _aggregate(fake, options, local_report)

        assert f"{SVC_A}|cache" in merged.entries
        assert SVC_A in merged.entries

    def test_add_endpoint_defaults_name_to_url(self) -> None:
        options = AggregatorOptions().add_endpoint(SVC_A)
        assert options.remote_endpoints[0].prefix == SVC_A

    def test_invalid_body_gives_unhealthy_summary_only(self, local_report: HealthReport) -> None:
        fake = FakeHttp({SVC_A: httpx.Response(200, text="<html>oops</html>")})
        options = AggregatorOptions().add_endpoint(SVC_A, "svcA")

        merged = _aggregate(fake, options, local_report)

        assert set(merged.entries) == {"db", "svcA"}
        assert merged.entries["svcA"].status == HealthStatus.UNHEALTHY
        assert merged.entries["svcA"].data == {"StatusCode": 200}

    @pytest.mark.parametrize(
        ("code", "expected"),
        [(200, HealthStatus.HEALTHY), (204, HealthStatus.HEALTHY), (502, HealthStatus.UNHEALTHY)],
    )
    def test_empty_body_summary_follows_status_code(
        self, local_report: HealthReport, code: int, expected: HealthStatus
    ) -> None:
        fake = FakeHttp({SVC_A: httpx.Response(code)})
        options = AggregatorOptions().add_endpoint(SVC_A, "svcA")

        merged = _aggregate(fake, options, local_report)

        assert merged.entries["svcA"].status == expected
        assert merged.entries["svcA"].description is None

    def test_summary_entry_can_be_disabled(self, local_report: HealthReport) -> None:
        fake = FakeHttp({
            SVC_A: report_response(make_report(HealthStatus.HEALTHY, {"cache": HealthStatus.HEALTHY})),
            SVC_B: httpx.ConnectError("Connection refused"),
        })
        options = AggregatorOptions(include_remote_summary_entry=False)
        options.add_endpoint(SVC_A, "a").add_endpoint(SVC_B, "b")

        merged = _aggregate(fake, options, local_report)

        assert set(merged.entries) == {"db", "a|cache"}

    def test_entry_type_rederived_from_tags(self, local_report: HealthReport) -> None:
        remote = HealthReport(
            status=HealthStatus.HEALTHY,
            entries={"cache": HealthEntry(status=HealthStatus.HEALTHY, tags=["Redis"], entryType="Wrong")},
        )
        fake = FakeHttp({SVC_A: report_response(remote)})
        options = AggregatorOptions().add_endpoint(SVC_A, "svcA")

        merged = _aggregate(fake, options, local_report)

        assert merged.entries["svcA|cache"].entryType == "Redis"

    def test_trace_id_and_local_fields_carried(self, local_report: HealthReport) -> None:
        fake = FakeHttp({SVC_A: report_response(make_report())})
        options = AggregatorOptions().add_endpoint(SVC_A, "svcA")

        merged = _aggregate(fake, options, local_report, trace_id="req-42")

        assert merged.traceId == "req-42"
        assert merged.duration == local_report.duration
        assert merged.entries["db"] == local_report.entries["db"]

    def test_local_exception_carried(self) -> None:
        local = make_report(HealthStatus.UNHEALTHY, {"db": HealthStatus.UNHEALTHY})
        local = local.model_copy(update={"exception": "db unreachable"})
        fake = FakeHttp({SVC_A: report_response(make_report())})
        options = AggregatorOptions().add_endpoint(SVC_A, "svcA")

        merged = _aggregate(fake, options, local)

        assert merged.exception == "db unreachable"

    def test_malformed_sibling_does_not_drop_peer_entries(self, local_report: HealthReport) -> None:
        body = {
            "status": "Healthy",
            "entries": {
                "ok": {"status": "Healthy", "tags": [1], "data": [1, 2], "description": 5},
                "x": None,
            },
        }
        fake = FakeHttp({SVC_A: httpx.Response(200, json=body)})
        options = AggregatorOptions().add_endpoint(SVC_A, "a")

        merged = _aggregate(fake, options, local_report)

        assert set(merged.entries) == {"db", "a|ok", "a"}
        assert merged.entries["a"].status == HealthStatus.HEALTHY
        assert merged.entries["a"].description is None
        entry = merged.entries["a|ok"]
        assert entry.tags == ["1"]
        assert entry.entryType == "1"
        assert entry.data == {"value": [1, 2]}
        assert entry.description == "5"

    def test_invalid_body_description_is_short(self, local_report: HealthReport) -> None:
        fake = FakeHttp({SVC_A: httpx.Response(200, json=["not", "a", "report"])})
        options = AggregatorOptions().add_endpoint(SVC_A, "svcA")

        merged = _aggregate(fake, options, local_report)

        summary = merged.entries["svcA"]
        assert summary.status == HealthStatus.UNHEALTHY
        assert (summary.description or "").startswith("Invalid health payload:")
        assert "\n" not in (summary.description or "")
        assert summary.exception == "healthrelay.aggregator.fetch.InvalidPayloadError"

    def test_cancelling_aggregation_cancels_peer_fetches(self, local_report: HealthReport) -> None:
        entered: list[str] = []
        cancelled: list[str] = []

        async def hang(request: httpx.Request) -> httpx.Response:
            entered.append(str(request.url))
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append(str(request.url))
                raise
            return httpx.Response(200)

        fake = FakeHttp({SVC_A: hang, SVC_B: hang})
        options = AggregatorOptions(http_timeout=30).add_endpoint(SVC_A, "a").add_endpoint(SVC_B, "b")

        async def go() -> None:
            async with fake.client() as client:
                task = asyncio.create_task(HealthAggregator(options, client=client).aggregate(local_report))
                while len(entered) < 2:
                    await asyncio.sleep(0.01)
                task.cancel()
                with pytest.raises(asyncio.CancelledError):
                    await task

        asyncio.run(go())

        assert sorted(cancelled) == [SVC_A, SVC_B]


# ── Fetch ────────────────────────────────────────────────────────────────────


class TestFetchRemote:
    def test_slow_peer_times_out(self) -> None:
        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(1)
            return httpx.Response(200)

        fake = FakeHttp({SVC_A: slow})

        async def go():
            async with fake.client() as client:
                return await fetch_remote(SVC_A, 0.05, client=client)

        result = asyncio.run(go())

        assert result.report is None
        assert result.status_code == 0
        assert isinstance(result.error, RemoteTimeoutError)
        assert "timed out" in (result.error_message or "")

    def test_invalid_payload_keeps_validation_error_as_cause(self) -> None:
        fake = FakeHttp({SVC_A: httpx.Response(200, text="{not json")})

        async def go():
            async with fake.client() as client:
                return await fetch_remote(SVC_A, 1.0, client=client)

        result = asyncio.run(go())

        assert result.report is None
        assert result.status_code == 200
        assert isinstance(result.error, InvalidPayloadError)
        assert isinstance(result.error.__cause__, ValidationError)

    def test_accept_header_sent(self) -> None:
        fake = FakeHttp({SVC_A: report_response(make_report())})

        async def go():
            async with fake.client() as client:
                return await fetch_remote(SVC_A, 1.0, client=client)

        result = asyncio.run(go())

        assert result.report is not None
        assert fake.requests[0].headers["Accept"] == "application/json"

    def test_per_endpoint_timeout_overrides_default(self) -> None:
        options = AggregatorOptions(http_timeout=3)
        fast = RemoteEndpoint(url=SVC_A, timeout=0.5)
        plain = RemoteEndpoint(url=SVC_B)
        assert options.timeout_for(fast) == 0.5
        assert options.timeout_for(plain) == 3.0


# ── Options ──────────────────────────────────────────────────────────────────


class TestOptions:
    @pytest.mark.parametrize("url", ["/health", "ftp://svc/health", "not a url", ""])
    def test_endpoint_url_must_be_absolute_http(self, url: str) -> None:
        with pytest.raises(ValidationError):
            RemoteEndpoint(url=url)

    def test_add_endpoint_rejects_blank(self) -> None:
        with pytest.raises(ValueError):
            AggregatorOptions().add_endpoint("   ")

    def test_non_positive_timeouts_fall_back(self) -> None:
        assert AggregatorOptions(http_timeout=0).http_timeout == 5.0
        assert RemoteEndpoint(url=SVC_A, timeout=-1).timeout is None

    def test_legacy_single_endpoint_is_migrated(self) -> None:
        options = AggregatorOptions(remote_health_endpoint=SVC_A, remote_entry_name="legacy").normalize()
        assert [(e.url, e.name) for e in options.remote_endpoints] == [(SVC_A, "legacy")]

    def test_legacy_ignored_when_list_present(self) -> None:
        options = AggregatorOptions(remote_health_endpoint=SVC_B)
        options.add_endpoint(SVC_A, "a").normalize()
        assert [e.url for e in options.remote_endpoints] == [SVC_A]

    def test_from_settings(self) -> None:
        s = Settings(
            aggregator_http_timeout=2,
            aggregator_include_remote_summary_entry=False,
            aggregator_remote_health_endpoint=SVC_C,
        )
        options = AggregatorOptions.from_settings(s)
        assert options.http_timeout == 2.0
        assert options.include_remote_summary_entry is False
        assert [(e.url, e.name) for e in options.remote_endpoints] == [(SVC_C, "api")]

    def test_camel_case_document(self) -> None:
        options = AggregatorOptions.model_validate({
            "remoteEndpoints": [{"url": SVC_A, "name": "a", "httpTimeout": 1.5}],
            "includeRemoteSummaryEntry": False,
        })
        assert options.remote_endpoints[0].timeout == 1.5
        assert options.include_remote_summary_entry is False
