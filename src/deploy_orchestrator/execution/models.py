"""Data models for action execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from ..health.models import HealthCheckResult


class OutcomeStatus(Enum):
    """动作执行结果状态"""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"
    DRY_RUN = "dry_run"


@dataclass(frozen=True)
class ActionOutcome:
    """Immutable record of one build or deploy action."""

    component_name: str
    category: str
    phase: str
    status: OutcomeStatus
    started_at: datetime
    duration_seconds: float = 0.0
    server: Optional[str] = None
    script: str = ""
    command_line: str = ""
    resolved_parameters: Dict[str, Any] = field(default_factory=dict)
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None
    pid: Optional[int] = None
    health_check: Optional[HealthCheckResult] = None

    @property
    def finished_at(self) -> datetime:
        return self.started_at + timedelta(seconds=self.duration_seconds)

    @property
    def unit_key(self) -> Tuple[str, str, str, Optional[str]]:
        """Identity of the logical unit of work this outcome belongs to."""
        return (self.phase, self.category, self.component_name, self.server)

    @property
    def cancelled(self) -> bool:
        return self.status is OutcomeStatus.FAILED and self.error == "cancelled"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "componentName": self.component_name,
            "category": self.category,
            "phase": self.phase,
            "server": self.server,
            "script": self.script,
            "commandLine": self.command_line,
            "resolvedParameters": self.resolved_parameters,
            "status": self.status.value,
            "exitCode": self.exit_code,
            "startedAt": self.started_at.isoformat(),
            "duration": round(self.duration_seconds, 3),
            "stdout": self.stdout,
            "stderr": self.stderr,
            "error": self.error,
            "pid": self.pid,
            "healthCheck": self.health_check.to_dict() if self.health_check else None,
        }
