"""Exception types raised by the orchestration engine."""

from __future__ import annotations


class OrchestratorError(RuntimeError):
    """Base class for orchestrator errors."""

    pass


class ConfigurationError(OrchestratorError):
    """Raised when the configuration document cannot drive a run.

    Fatal and non-retryable: nothing has been executed when this is raised.
    """

    pass


class DuplicateOutcomeError(OrchestratorError):
    """Raised when a second outcome is appended for the same unit of work."""

    pass
