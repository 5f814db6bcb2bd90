"""Data models for the orchestrator module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..config import HealthCheckConfig
from ..execution.models import ActionOutcome
from ..health.models import HealthCheckResult


class Strategy(Enum):
    """部署策略：组件 × 服务器的遍历顺序"""
    BY_COMPONENT = "by-component"
    BY_SERVER = "by-server"
    ROLLING = "rolling"

    @classmethod
    def parse(cls, value: str) -> "Strategy":
        for member in cls:
            if member.value == value:
                return member
        choices = ", ".join(m.value for m in cls)
        raise ValueError(f"Unknown strategy '{value}' (choose from {choices})")


class RunState(Enum):
    """一次运行的生命周期状态"""
    INITIALIZED = "initialized"
    RESOLVING = "resolving"
    SCHEDULING = "scheduling"
    RUNNING = "running"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SchedulerOptions:
    """Per-run switches for the scheduler."""

    strategy: Strategy = Strategy.BY_COMPONENT
    dry_run: bool = False
    skip_health_check: bool = False
    stop_on_first_failure: bool = False
    max_parallel: int = 1
    action_timeout: Optional[float] = 1800.0
    # 已合并环境级配置的健康检查设置
    health_check: HealthCheckConfig = field(default_factory=HealthCheckConfig)


@dataclass(frozen=True)
class ServerCheck:
    """Server-level health check recorded after a server's component set."""

    server: str
    health_check: HealthCheckResult

    def to_dict(self) -> Dict[str, Any]:
        return {"server": self.server, **self.health_check.to_dict()}


@dataclass(frozen=True)
class ReportSummary:
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0
    timed_out: int = 0
    dry_run: int = 0
    health_checks_failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "timedOut": self.timed_out,
            "dryRun": self.dry_run,
            "healthChecksFailed": self.health_checks_failed,
        }


@dataclass(frozen=True)
class DeploymentReport:
    """Aggregate of one scheduling run. Never mutated once built."""

    deployment_id: str
    phase: str
    strategy: str
    environment: str
    project: str
    status: RunState
    started_at: datetime
    finished_at: datetime
    duration_seconds: float
    summary: ReportSummary
    outcomes: Tuple[ActionOutcome, ...] = ()
    server_checks: Tuple[ServerCheck, ...] = ()
    halt_reason: Optional[str] = None
    cancelled: bool = False
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return (
            self.status is RunState.COMPLETED
            and self.summary.failed == 0
            and self.summary.timed_out == 0
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": "1.0",
            "deploymentId": self.deployment_id,
            "project": self.project,
            "phase": self.phase,
            "strategy": self.strategy,
            "environment": self.environment,
            "status": self.status.value,
            "cancelled": self.cancelled,
            "haltReason": self.halt_reason,
            "dryRun": self.dry_run,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat(),
            "duration": round(self.duration_seconds, 3),
            "summary": self.summary.to_dict(),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "serverChecks": [check.to_dict() for check in self.server_checks],
        }
