"""Health probing module."""

from .models import HealthCheckResult, HealthStatus, ProbeResult
from .prober import HealthProber, build_health_url

__all__ = [
    "HealthCheckResult",
    "HealthStatus",
    "ProbeResult",
    "HealthProber",
    "build_health_url",
]
