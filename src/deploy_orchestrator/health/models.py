"""Data models for health probing."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class HealthStatus(Enum):
    """健康检查结果状态"""
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ProbeResult:
    """Raw result of one polling loop against an endpoint."""

    success: bool
    response_time_ms: Optional[float]
    attempts: int
    last_error: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def cancelled(self) -> bool:
        return self.last_error == "cancelled"


@dataclass(frozen=True)
class HealthCheckResult:
    """Health check outcome attached to an action or a server."""

    status: HealthStatus
    url: str = ""
    response_time_ms: Optional[float] = None
    attempts: int = 0
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.status is HealthStatus.PASSED

    @classmethod
    def from_probe(cls, url: str, result: ProbeResult) -> "HealthCheckResult":
        if result.success:
            status = HealthStatus.PASSED
        elif result.cancelled:
            status = HealthStatus.CANCELLED
        else:
            status = HealthStatus.FAILED
        return cls(
            status=status,
            url=url,
            response_time_ms=result.response_time_ms,
            attempts=result.attempts,
            error=result.last_error,
        )

    @classmethod
    def skipped(cls, reason: str, url: str = "") -> "HealthCheckResult":
        return cls(status=HealthStatus.SKIPPED, url=url, error=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "url": self.url,
            "responseTimeMs": self.response_time_ms,
            "attempts": self.attempts,
            "error": self.error,
        }
