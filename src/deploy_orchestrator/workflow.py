"""High-level workflow: one orchestrator run from document to written report."""

from __future__ import annotations

import json
import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, List, Optional

from .catalog import ComponentCatalog, ConfigDocument
from .catalog.models import Component, Environment
from .config import AppConfig
from .errors import ConfigurationError
from .execution import ActionExecutor
from .health import HealthProber
from .orchestrator import (
    DeploymentReport,
    RunState,
    SchedulerOptions,
    Strategy,
    StrategyScheduler,
    generate_deployment_id,
    write_report,
)
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RunRequest:
    """User-provided run request captured from the CLI."""

    config_path: str
    environment: str
    strategy: Optional[str] = None
    component_filter: Optional[str] = None
    category_filter: Optional[str] = None
    server_filter: Optional[str] = None
    dry_run: bool = False
    skip_health_check: bool = False
    stop_on_failure: bool = False
    max_parallel: Optional[int] = None
    timeout: Optional[float] = None
    reports_dir: Optional[str] = None


class PipelineWorkflow:
    """Coordinates catalog resolution, scheduling and report persistence."""

    def __init__(
        self,
        config: AppConfig,
        *,
        executor: Optional[ActionExecutor] = None,
        prober: Optional[HealthProber] = None,
    ) -> None:
        self.config = config
        self.executor = executor
        self.prober = prober
        self.state = RunState.INITIALIZED
        self.scheduler: Optional[StrategyScheduler] = None
        self.last_report_path: Optional[Path] = None

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------

    def run_deploy(self, request: RunRequest) -> DeploymentReport:
        """Resolve the catalog and deploy it with the requested strategy."""
        self.state = RunState.RESOLVING
        try:
            document = ConfigDocument.load(request.config_path)
            environment = document.environment(request.environment)
            servers = document.servers(environment.name, request.server_filter)
            catalog = self._load_catalog(document, environment.name)
            options = self._build_options(request, document, environment)
            # 组件级 healthCheck 在运行前校验
            for component in catalog:
                options.health_check.merged(component.health_check)
        except ConfigurationError:
            self.state = RunState.FAILED
            raise

        components = self._select(catalog, request)
        logger.info("📦 %d component(s) × %d server(s)", len(components), len(servers))

        scheduler = self._create_scheduler(options, catalog)
        try:
            with self._interrupts_cancel(scheduler):
                report = scheduler.run_deploy(components, servers)
        finally:
            self.state = scheduler.state
        self._persist(report, request)
        return report

    def run_build(self, request: RunRequest) -> DeploymentReport:
        """Run the build action of every selected component."""
        self.state = RunState.RESOLVING
        try:
            document = ConfigDocument.load(request.config_path)
            catalog = self._load_catalog(document, request.environment)
            options = self._build_options(request, document, None)
        except ConfigurationError:
            self.state = RunState.FAILED
            raise

        components = self._select(catalog, request)
        scheduler = self._create_scheduler(options, catalog)
        try:
            with self._interrupts_cancel(scheduler):
                report = scheduler.run_build(components)
        finally:
            self.state = scheduler.state
        self._persist(report, request)
        return report

    def resolve(self, request: RunRequest, output: Optional[str] = None) -> ComponentCatalog:
        """Resolve the catalog and optionally export it as JSON."""
        self.state = RunState.RESOLVING
        try:
            document = ConfigDocument.load(request.config_path)
            catalog = self._load_catalog(document, request.environment)
        except ConfigurationError:
            self.state = RunState.FAILED
            raise
        if output:
            output_path = Path(output)
            output_path.parent.mkdir(parents=True, exist_ok=True)
            with open(output_path, "w", encoding="utf-8") as f:
                json.dump(catalog.to_dict(), f, indent=2, ensure_ascii=False)
            logger.info("Components written to: %s", output_path)
        self.state = RunState.COMPLETED
        return catalog

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _load_catalog(self, document: ConfigDocument, environment: str) -> ComponentCatalog:
        return ComponentCatalog.load(
            document,
            environment=environment,
            workspace=self.config.workspace,
            proxy_server=self.config.proxy.server,
            proxy_port=self.config.proxy.port,
        )

    @staticmethod
    def _select(catalog: ComponentCatalog, request: RunRequest) -> List[Component]:
        components = catalog.filter(request.component_filter, request.category_filter)
        if request.component_filter or request.category_filter:
            logger.info(
                "Filter selected %d of %d component(s)", len(components), len(catalog)
            )
        return components

    def _build_options(
        self,
        request: RunRequest,
        document: ConfigDocument,
        environment: Optional[Environment],
    ) -> SchedulerOptions:
        """Merge settings: defaults <- settings file/env <- document deploy section <- CLI."""
        execution = self.config.execution
        deploy = document.deploy_section

        strategy_name = request.strategy or deploy.get("strategy") or execution.default_strategy
        try:
            strategy = Strategy.parse(str(strategy_name))
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        health_payload = deploy.get("healthCheck")
        if health_payload is not None and not isinstance(health_payload, dict):
            raise ConfigurationError("deploy.healthCheck must be an object")
        health = self.config.health_check.merged(health_payload)
        if environment is not None:
            health = health.merged(environment.health_check)

        return SchedulerOptions(
            strategy=strategy,
            dry_run=request.dry_run,
            skip_health_check=request.skip_health_check,
            stop_on_first_failure=request.stop_on_failure
            or bool(deploy.get("stopOnFirstFailure", execution.stop_on_first_failure)),
            max_parallel=_positive_int(
                request.max_parallel or deploy.get("maxParallel") or execution.max_parallel,
                "maxParallel",
            ),
            action_timeout=_positive_float(
                request.timeout or deploy.get("timeout") or execution.action_timeout,
                "timeout",
            ),
            health_check=health,
        )

    def _create_scheduler(
        self,
        options: SchedulerOptions,
        catalog: ComponentCatalog,
    ) -> StrategyScheduler:
        executor = self.executor or ActionExecutor(
            param_prefix=self.config.execution.param_prefix,
            working_dir=self.config.workspace,
            extra_env={"DEPLOY_ORCHESTRATOR_ENVIRONMENT": catalog.environment},
        )
        prober = self.prober or HealthProber(verify_tls=options.health_check.verify_tls)
        self.scheduler = StrategyScheduler(
            executor,
            prober,
            options=options,
            deployment_id=generate_deployment_id(catalog.environment),
            environment=catalog.environment,
            environment_display=catalog.environment_display,
            workspace=self.config.workspace,
            project=catalog.document.project,
            proxy_server=self.config.proxy.server,
            proxy_port=self.config.proxy.port,
        )
        return self.scheduler

    def _persist(self, report: DeploymentReport, request: RunRequest) -> None:
        reports_dir = request.reports_dir or self.config.report.reports_dir
        self.last_report_path = write_report(report, reports_dir, self.config.report.latest_name)

    @contextmanager
    def _interrupts_cancel(self, scheduler: StrategyScheduler) -> Iterator[None]:
        """Route Ctrl+C to scheduler cancellation while a run is in progress."""
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        def _handler(signum: int, frame: Any) -> None:
            scheduler.cancel()

        previous = signal.signal(signal.SIGINT, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, previous)


def _positive_int(value: Any, name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc
    if number < 1:
        raise ConfigurationError(f"{name} must be at least 1, got {number}")
    return number


def _positive_float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from exc
    if number <= 0:
        raise ConfigurationError(f"{name} must be positive, got {number}")
    return number
