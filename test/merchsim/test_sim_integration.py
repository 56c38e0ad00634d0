"""Integration tests for the Simulator engine.

These tests run the engine as a library against an in-memory transport or
the stub merch API and validate verdicts and result fields.
"""

from __future__ import annotations

import pytest

from conftest import FakeTransport, make_dataset
from merchsim.api.report import build_simulation_report
from merchsim.core.actions import ActionSelector
from merchsim.core.engine import Simulator
from merchsim.core.models import (
    ActionKind,
    ActionWeight,
    MetricKind,
    RampStage,
    Response,
    Threshold,
    Verdict,
)
from merchsim.exceptions import ConfigError, DataError, InvariantError
from merchsim.scenarios.merch import DEFAULT_THRESHOLDS, build_merch_config, run_merch_scenario


class TestScenarios:
    @pytest.mark.asyncio
    async def test_all_info_requests_ok_passes(self, dataset_files):
        """5 users, profile (10s, 5), every info lookup answers 200."""
        users_path, tokens_path = dataset_files
        transport = FakeTransport()
        config = build_merch_config(
            users_file=users_path,
            auth_tokens_file=tokens_path,
            stages=[RampStage(10, 5)],
        )
        sim = Simulator(
            config,
            transport=transport,
            selector=ActionSelector([ActionWeight(1.0, ActionKind.FETCH_INFO)]),
        )

        result = await sim.run()

        assert result.request_count > 0
        assert result.error_count == 0
        assert result.metrics_report["overall"]["failed_rate"] == 0.0
        assert result.verdict.verdict == Verdict.PASS
        assert result.peak_vus == 5
        assert result.duration_seconds >= 9.5
        assert {url for _, url, _, _ in transport.calls} == {"http://127.0.0.1:8080/api/info"}

    @pytest.mark.asyncio
    async def test_insufficient_balance_is_not_a_failure(self):
        def handler(method, url, body, headers):
            return Response(status=400, headers={}, body=b'{"errors":"not enough coins"}')

        result = await run_merch_scenario(
            stages=[RampStage(0, 2), RampStage(0.3, 2)],
            dataset=make_dataset(5),
            transport=FakeTransport(handler),
            thresholds=[Threshold(MetricKind.REQUEST_FAILED, "rate<0.0001")],
        )

        # Only info lookups fail on a 400.
        info = result.metrics_report["by_action"].get("fetch_info", {"error_count": 0, "count": 0})
        assert result.error_count == info["error_count"] == info["count"]
        for name in ("buy_item", "send_coin"):
            if name in result.metrics_report["by_action"]:
                assert result.metrics_report["by_action"][name]["error_count"] == 0

    @pytest.mark.asyncio
    async def test_server_errors_fail_the_run(self):
        def handler(method, url, body, headers):
            return Response(status=500, headers={}, body=b"")

        result = await run_merch_scenario(
            stages=[RampStage(0, 2), RampStage(0.3, 2)],
            dataset=make_dataset(5),
            transport=FakeTransport(handler),
        )

        assert result.verdict.verdict == Verdict.FAIL
        assert result.verdict.violations[0].threshold == DEFAULT_THRESHOLDS[0]
        assert result.error_count == result.request_count > 0

    @pytest.mark.asyncio
    async def test_slow_responses_breach_latency_threshold(self):
        result = await run_merch_scenario(
            stages=[RampStage(0, 2), RampStage(0.5, 2)],
            dataset=make_dataset(5),
            transport=FakeTransport(delay_seconds=0.06),
        )

        assert not result.verdict.passed
        assert [str(r.threshold) for r in result.verdict.violations] == ["http_req_duration: p(90)<50"]

    @pytest.mark.asyncio
    async def test_against_stub_server(self, merch_stub_server, dataset_files):
        users_path, tokens_path = dataset_files
        result = await run_merch_scenario(
            base_url=merch_stub_server.base_url,
            users_file=users_path,
            auth_tokens_file=tokens_path,
            stages=[RampStage(0.2, 3), RampStage(0.3, 3)],
            thresholds=[Threshold(MetricKind.REQUEST_FAILED, "rate<0.0001")],
            seed=7,
        )

        assert result.request_count > 0
        assert result.error_count == 0
        assert result.verdict.passed

    @pytest.mark.asyncio
    async def test_zero_traffic_is_vacuously_passing(self):
        result = await run_merch_scenario(
            stages=[RampStage(0.2, 0)],
            dataset=make_dataset(2),
            transport=FakeTransport(),
        )
        assert result.request_count == 0
        assert result.verdict.passed
        assert all(r.insufficient_data for r in result.verdict.results)


class TestFatalErrors:
    @pytest.mark.asyncio
    async def test_relative_path_aborts_before_traffic(self):
        transport = FakeTransport()
        config = build_merch_config(users_file="users.json", auth_tokens_file="/tmp/tokens.json")
        with pytest.raises(ConfigError):
            await Simulator(config, transport=transport).run()
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_mismatched_dataset_aborts_before_traffic(self, tmp_path):
        users = tmp_path / "users.json"
        tokens = tmp_path / "tokens.json"
        users.write_text('[{"username": "a"}, {"username": "b"}]', encoding="utf-8")
        tokens.write_text('["ta"]', encoding="utf-8")
        transport = FakeTransport()
        config = build_merch_config(users_file=str(users), auth_tokens_file=str(tokens))
        with pytest.raises(DataError):
            await Simulator(config, transport=transport).run()
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_single_user_with_transfers_is_invariant_error(self):
        transport = FakeTransport()
        config = build_merch_config(stages=[RampStage(1, 1)])
        with pytest.raises(InvariantError):
            await Simulator(config, dataset=make_dataset(1), transport=transport).run()
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_bad_threshold_is_config_error(self):
        config = build_merch_config(
            stages=[RampStage(1, 1)],
            thresholds=[Threshold(MetricKind.REQUEST_FAILED, "p(90)<5")],
        )
        with pytest.raises(ConfigError):
            await Simulator(config, dataset=make_dataset(2), transport=FakeTransport()).run()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "base_url",
        ["127.0.0.1:8080", "localhost:8080", "ftp://merch/", "http://", "http://bad host\x00"],
    )
    async def test_invalid_base_url_is_config_error(self, base_url):
        transport = FakeTransport()
        config = build_merch_config(base_url=base_url, stages=[RampStage(1, 1)])
        with pytest.raises(ConfigError) as exc_info:
            await Simulator(config, dataset=make_dataset(3), transport=transport).run()
        assert exc_info.value.code == "INVALID_URL"
        assert transport.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides, code",
        [
            ({"think_time_seconds": -0.1}, "INVALID_THINK_TIME"),
            ({"timeout_seconds": 0}, "INVALID_TIMEOUT"),
            ({"evaluation_interval_seconds": -1.0}, "INVALID_EVAL_INTERVAL"),
        ],
    )
    async def test_invalid_timing_settings_are_config_errors(self, overrides, code):
        config = build_merch_config(stages=[RampStage(1, 1)], **overrides)
        with pytest.raises(ConfigError) as exc_info:
            await Simulator(config, dataset=make_dataset(3), transport=FakeTransport()).run()
        assert exc_info.value.code == code


class TestPeriodicEvaluation:
    @pytest.mark.asyncio
    async def test_interim_verdicts_are_logged(self):
        from structlog.testing import capture_logs

        config = build_merch_config(
            stages=[RampStage(0, 2), RampStage(0.35, 2)],
            evaluation_interval_seconds=0.1,
        )
        with capture_logs() as logs:
            await Simulator(config, dataset=make_dataset(3), transport=FakeTransport()).run()

        interim = [e for e in logs if e["event"] == "sim.thresholds_interim"]
        assert len(interim) >= 2
        assert interim[-1]["verdict"] == "pass"
        assert any(e["event"] == "sim.end" for e in logs)


class TestReport:
    @pytest.mark.asyncio
    async def test_report_shape(self):
        config = build_merch_config(stages=[RampStage(0, 1), RampStage(0.2, 1)], seed=3)
        result = await Simulator(config, dataset=make_dataset(3), transport=FakeTransport()).run()

        report = build_simulation_report(config, result)

        assert report["config"]["stages"] == [
            {"duration_seconds": 0, "target": 1},
            {"duration_seconds": 0.2, "target": 1},
        ]
        assert report["config"]["seed"] == 3
        assert report["result"]["verdict"] == "pass"
        assert report["result"]["request_count"] == result.request_count
        assert [t["predicate"] for t in report["thresholds"]] == ["rate<0.0001", "p(90)<50"]
        assert report["metrics"]["overall"]["count"] == result.request_count
