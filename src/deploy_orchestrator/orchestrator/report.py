"""Outcome aggregation and deployment report persistence."""

from __future__ import annotations

import hashlib
import json
import logging
import shutil
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..errors import DuplicateOutcomeError
from ..execution.models import ActionOutcome, OutcomeStatus
from ..health.models import HealthStatus
from ..paths import LATEST_REPORT_NAME, get_reports_dir
from .models import DeploymentReport, ReportSummary, RunState, ServerCheck

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


class ReportAggregator:
    """Append-only, thread-safe collection of outcomes for one run.

    Each logical unit of work (phase, category, component, server) may be
    recorded once; a second outcome for the same unit is rejected.
    """

    def __init__(self) -> None:
        self._outcomes: List[ActionOutcome] = []
        self._keys: Set[Tuple[str, str, str, Optional[str]]] = set()
        self._lock = threading.Lock()

    def append(self, outcome: ActionOutcome) -> None:
        with self._lock:
            if outcome.unit_key in self._keys:
                raise DuplicateOutcomeError(
                    f"Outcome already recorded for {outcome.unit_key}"
                )
            self._keys.add(outcome.unit_key)
            self._outcomes.append(outcome)

    @property
    def outcomes(self) -> Tuple[ActionOutcome, ...]:
        with self._lock:
            return tuple(self._outcomes)

    def failure_count(self) -> int:
        with self._lock:
            return sum(
                1
                for o in self._outcomes
                if o.status in (OutcomeStatus.FAILED, OutcomeStatus.TIMED_OUT)
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._outcomes)


def summarize(
    outcomes: Iterable[ActionOutcome],
    server_checks: Iterable[ServerCheck] = (),
) -> ReportSummary:
    total = success = failed = skipped = timed_out = dry_run = health_failed = 0
    for outcome in outcomes:
        total += 1
        if outcome.status is OutcomeStatus.SUCCESS:
            success += 1
        elif outcome.status is OutcomeStatus.DRY_RUN:
            # 演练结果计入成功，并单独统计
            success += 1
            dry_run += 1
        elif outcome.status is OutcomeStatus.SKIPPED:
            skipped += 1
        elif outcome.status is OutcomeStatus.TIMED_OUT:
            timed_out += 1
        else:
            failed += 1
        if outcome.health_check and outcome.health_check.status is HealthStatus.FAILED:
            health_failed += 1
    for check in server_checks:
        if check.health_check.status is HealthStatus.FAILED:
            health_failed += 1
    return ReportSummary(
        total=total,
        success=success,
        failed=failed,
        skipped=skipped,
        timed_out=timed_out,
        dry_run=dry_run,
        health_checks_failed=health_failed,
    )


def aggregate(
    outcomes: Iterable[ActionOutcome],
    *,
    deployment_id: str,
    phase: str,
    strategy: str,
    environment: str,
    project: str = "unknown",
    status: RunState = RunState.COMPLETED,
    server_checks: Iterable[ServerCheck] = (),
    halt_reason: Optional[str] = None,
    cancelled: bool = False,
    dry_run: bool = False,
    started_at: Optional[datetime] = None,
    finished_at: Optional[datetime] = None,
) -> DeploymentReport:
    """Fold outcomes into a report.

    The duration is wall clock from the first started outcome to the last
    completed one, so parallel runs report less than the sum of actions.
    """
    ordered = tuple(outcomes)
    checks = tuple(server_checks)
    now = datetime.now(timezone.utc)

    if ordered:
        first = min(o.started_at for o in ordered)
        last = max(o.finished_at for o in ordered)
        duration = (last - first).total_seconds()
    else:
        first = started_at or now
        last = finished_at or first
        duration = (last - first).total_seconds()

    return DeploymentReport(
        deployment_id=deployment_id,
        phase=phase,
        strategy=strategy,
        environment=environment,
        project=project,
        status=status,
        started_at=started_at or first,
        finished_at=finished_at or last,
        duration_seconds=max(duration, 0.0),
        summary=summarize(ordered, checks),
        outcomes=ordered,
        server_checks=checks,
        halt_reason=halt_reason,
        cancelled=cancelled,
        dry_run=dry_run,
    )


def exit_status(report: DeploymentReport) -> int:
    """0 when nothing failed and the run completed; 1 for partial or total failure."""
    return EXIT_SUCCESS if report.succeeded else EXIT_FAILURE


def generate_deployment_id(environment: str) -> str:
    token = f"{environment}-{time.time_ns()}".encode("utf-8")
    digest = hashlib.sha1(token).hexdigest()[:8]
    return f"{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}-{digest}"


def write_report(
    report: DeploymentReport,
    reports_dir: Optional[str] = None,
    latest_name: str = LATEST_REPORT_NAME,
) -> Path:
    """Write the report file and refresh the fixed "latest" copy."""
    target_dir = get_reports_dir(reports_dir)
    timestamp = report.started_at.strftime("%Y%m%d_%H%M%S")
    filename = (
        f"deploy_{report.environment}_{report.phase}_{timestamp}_"
        f"{report.deployment_id[-8:]}.json"
    )
    report_file = target_dir / filename
    with open(report_file, "w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2, ensure_ascii=False)
    shutil.copyfile(report_file, target_dir / latest_name)
    logger.info("📄 Report saved to: %s", report_file)
    return report_file


def load_report(path: Path) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
