"""Strategy scheduling and deployment reports."""

from .models import (
    DeploymentReport,
    ReportSummary,
    RunState,
    SchedulerOptions,
    ServerCheck,
    Strategy,
)
from .report import (
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    EXIT_SUCCESS,
    ReportAggregator,
    aggregate,
    exit_status,
    generate_deployment_id,
    load_report,
    summarize,
    write_report,
)
from .scheduler import StrategyScheduler

__all__ = [
    "DeploymentReport",
    "ReportSummary",
    "RunState",
    "SchedulerOptions",
    "ServerCheck",
    "Strategy",
    "EXIT_CONFIG_ERROR",
    "EXIT_FAILURE",
    "EXIT_SUCCESS",
    "ReportAggregator",
    "aggregate",
    "exit_status",
    "generate_deployment_id",
    "load_report",
    "summarize",
    "write_report",
    "StrategyScheduler",
]
