"""Tests for outcome aggregation and report files."""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from deploy_orchestrator.errors import DuplicateOutcomeError
from deploy_orchestrator.execution import ActionOutcome, OutcomeStatus
from deploy_orchestrator.health import HealthCheckResult, HealthStatus
from deploy_orchestrator.orchestrator import (
    EXIT_FAILURE,
    EXIT_SUCCESS,
    ReportAggregator,
    RunState,
    ServerCheck,
    aggregate,
    exit_status,
    generate_deployment_id,
    load_report,
    write_report,
)

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def outcome(name="api-a", server="srv1", status=OutcomeStatus.SUCCESS, start=0.0, duration=1.0, **kwargs):
    return ActionOutcome(
        component_name=name,
        category="apis",
        phase="deploy",
        status=status,
        started_at=T0 + timedelta(seconds=start),
        duration_seconds=duration,
        server=server,
        **kwargs,
    )


def build(outcomes, **kwargs):
    return aggregate(
        outcomes,
        deployment_id="20240501120000-abcdef12",
        phase="deploy",
        strategy="by-component",
        environment="tst",
        **kwargs,
    )


class TestAggregate:
    def test_counts_add_up(self):
        outcomes = [
            outcome("a", status=OutcomeStatus.SUCCESS),
            outcome("b", status=OutcomeStatus.FAILED),
            outcome("c", status=OutcomeStatus.SKIPPED),
            outcome("d", status=OutcomeStatus.TIMED_OUT),
            outcome("e", status=OutcomeStatus.DRY_RUN),
        ]
        summary = build(outcomes).summary
        assert summary.total == 5
        assert summary.success == 2
        assert summary.dry_run == 1
        assert summary.failed == 1
        assert summary.skipped == 1
        assert summary.timed_out == 1
        assert summary.success + summary.failed + summary.skipped + summary.timed_out == summary.total

    def test_duration_is_wall_clock(self):
        outcomes = [
            outcome("a", start=0.0, duration=10.0),
            outcome("b", start=2.0, duration=10.0),
            outcome("c", start=5.0, duration=2.0),
        ]
        report = build(outcomes)
        assert report.duration_seconds == pytest.approx(12.0)

    def test_empty_run(self):
        report = build([], started_at=T0, finished_at=T0 + timedelta(seconds=3))
        assert report.summary.total == 0
        assert report.duration_seconds == pytest.approx(3.0)
        assert exit_status(report) == EXIT_SUCCESS

    def test_health_failures_are_counted(self):
        failed = HealthCheckResult(status=HealthStatus.FAILED, error="503")
        report = build(
            [outcome("a", health_check=failed)],
            server_checks=[ServerCheck("srv2", failed)],
        )
        assert report.summary.health_checks_failed == 2
        assert report.summary.success == 1

    def test_exit_status(self):
        assert exit_status(build([outcome()])) == EXIT_SUCCESS
        assert exit_status(build([outcome(status=OutcomeStatus.FAILED)])) == EXIT_FAILURE
        assert exit_status(build([outcome(status=OutcomeStatus.TIMED_OUT)])) == EXIT_FAILURE
        assert exit_status(build([outcome()], status=RunState.FAILED)) == EXIT_FAILURE

    def test_to_dict(self):
        data = build([outcome(exit_code=0, stdout="ok")], cancelled=True, halt_reason="cancelled").to_dict()
        assert data["deploymentId"] == "20240501120000-abcdef12"
        assert data["summary"]["total"] == 1
        assert data["cancelled"] is True
        assert data["haltReason"] == "cancelled"
        assert data["outcomes"][0]["componentName"] == "api-a"
        assert data["outcomes"][0]["status"] == "success"
        assert data["outcomes"][0]["healthCheck"] is None


class TestReportAggregator:
    def test_rejects_duplicate_units(self):
        aggregator = ReportAggregator()
        aggregator.append(outcome("a", "srv1"))
        aggregator.append(outcome("a", "srv2"))
        with pytest.raises(DuplicateOutcomeError):
            aggregator.append(outcome("a", "srv1", status=OutcomeStatus.FAILED))
        assert len(aggregator) == 2

    def test_concurrent_appends_are_not_lost(self):
        aggregator = ReportAggregator()

        def worker(index):
            for server in range(50):
                aggregator.append(outcome(f"c{index}", f"s{server}"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(aggregator) == 400
        assert len({o.unit_key for o in aggregator.outcomes}) == 400

    def test_failure_count(self):
        aggregator = ReportAggregator()
        aggregator.append(outcome("a", status=OutcomeStatus.FAILED))
        aggregator.append(outcome("b", status=OutcomeStatus.TIMED_OUT))
        aggregator.append(outcome("c", status=OutcomeStatus.SKIPPED))
        assert aggregator.failure_count() == 2


class TestReportFiles:
    def test_write_report_and_latest_copy(self, tmp_path):
        report = build([outcome()], started_at=T0, finished_at=T0 + timedelta(seconds=1))
        path = write_report(report, str(tmp_path / "reports"))
        assert path.name == "deploy_tst_deploy_20240501_120000_abcdef12.json"
        latest = tmp_path / "reports" / "latest.json"
        assert latest.exists()
        assert json.loads(latest.read_text(encoding="utf-8")) == load_report(path)
        assert load_report(path)["summary"]["success"] == 1

    def test_deployment_ids_are_unique(self):
        first = generate_deployment_id("tst")
        second = generate_deployment_id("tst")
        assert first != second
        assert len(first.split("-")[1]) == 8
