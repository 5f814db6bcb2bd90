"""Action execution module: runs build/deploy scripts as child processes."""

from .models import ActionOutcome, OutcomeStatus
from .arguments import build_arguments, build_command, interpreter_for, render_command
from .executor import ActionExecutor

__all__ = [
    "ActionOutcome",
    "OutcomeStatus",
    "build_arguments",
    "build_command",
    "interpreter_for",
    "render_command",
    "ActionExecutor",
]
