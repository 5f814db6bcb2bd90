"""Strategy scheduler: drives actions over components × servers."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from ..catalog.models import ActionSpec, Component, ProjectInfo
from ..config import HealthCheckConfig
from ..errors import ConfigurationError
from ..execution.executor import ActionExecutor
from ..execution.models import ActionOutcome, OutcomeStatus
from ..health.models import HealthCheckResult, HealthStatus
from ..health.prober import HealthProber, build_health_url
from ..variables import build_context, resolve, resolve_structure
from .models import DeploymentReport, RunState, SchedulerOptions, ServerCheck, Strategy
from .report import ReportAggregator, aggregate

logger = logging.getLogger(__name__)

Unit = Tuple[Component, Optional[str]]


class StrategyScheduler:
    """
    部署调度器

    Applies the action executor to every (component, server) unit in the
    order of the selected strategy, gates progress with health probes where
    the strategy asks for it, and folds the outcomes into a report.

    Failures below the configuration tier never escape: they become outcome
    data and the report decides the exit status.
    """

    def __init__(
        self,
        executor: ActionExecutor,
        prober: Optional[HealthProber],
        *,
        options: SchedulerOptions,
        deployment_id: str,
        environment: str,
        environment_display: str,
        workspace: str,
        project: Optional[ProjectInfo] = None,
        proxy_server: Optional[str] = None,
        proxy_port: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.executor = executor
        self.prober = prober
        self.options = options
        self.deployment_id = deployment_id
        self.environment = environment
        self.environment_display = environment_display
        self.workspace = workspace
        self.project = project or ProjectInfo()
        self.proxy_server = proxy_server
        self.proxy_port = proxy_port
        self.cancel_event = cancel_event or threading.Event()

        self.state = RunState.INITIALIZED
        self._aggregator = ReportAggregator()
        self._server_checks: List[ServerCheck] = []
        self._checks_lock = threading.Lock()
        self._halt = threading.Event()
        self._halt_reason: Optional[str] = None

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Ask in-flight actions and probes to unwind; nothing new starts."""
        logger.warning("⛔ Cancellation requested")
        self.cancel_event.set()

    @property
    def health_checks_enabled(self) -> bool:
        return (
            self.options.health_check.enabled
            and not self.options.skip_health_check
            and self.prober is not None
        )

    def run_deploy(self, components: Sequence[Component], servers: Sequence[str]) -> DeploymentReport:
        """Deploy `components` to `servers` with the configured strategy."""
        strategy = self.options.strategy
        self._set_state(RunState.SCHEDULING)
        if not servers:
            self._set_state(RunState.FAILED)
            raise ConfigurationError(f"No servers resolved for environment '{self.environment}'")
        if strategy is Strategy.ROLLING and not self.options.health_check.enabled:
            if not self.options.skip_health_check:
                self._set_state(RunState.FAILED)
                raise ConfigurationError(
                    "Rolling strategy requires a health check: configure "
                    "deploy.healthCheck or environments.<env>.healthCheck, "
                    "or pass --skip-health-check explicitly"
                )
        if strategy is Strategy.ROLLING and self.options.skip_health_check:
            logger.warning("⚠️ Rolling deployment without health checks: only action results gate servers")

        started_at = datetime.now(timezone.utc)
        logger.info("")
        logger.info("=" * 60)
        logger.info("🚀 DEPLOYMENT ORCHESTRATION")
        logger.info("=" * 60)
        logger.info(f"Strategy: {strategy.value}")
        logger.info(f"Environment: {self.environment_display}")
        logger.info(f"Components: {len(components)}")
        logger.info(f"Servers: {', '.join(servers)}")
        if self.options.dry_run:
            logger.info("Mode: dry-run (no process is spawned)")
        logger.info("=" * 60)

        self._set_state(RunState.RUNNING)
        if not components:
            logger.warning("[WARN] No components to deploy")
        elif strategy is Strategy.BY_COMPONENT:
            self._run_by_component(components, servers)
        elif strategy is Strategy.BY_SERVER:
            self._run_by_server(components, servers)
        else:
            self._run_rolling(components, servers)

        return self._finish("deploy", strategy.value, started_at)

    def run_build(self, components: Sequence[Component]) -> DeploymentReport:
        """Run every component's build action once, no server bound."""
        self._set_state(RunState.SCHEDULING)
        started_at = datetime.now(timezone.utc)
        logger.info("=" * 60)
        logger.info("BUILDING %d COMPONENT(S)", len(components))
        logger.info("=" * 60)

        self._set_state(RunState.RUNNING)
        if not components:
            logger.warning("[WARN] No components to build")
        else:
            self._run_batch([(component, None) for component in components], "build", probe=False)

        report = self._finish("build", "build", started_at)
        logger.info("=" * 60)
        logger.info(
            "BUILD: %d OK | %d FAIL | %d SKIP",
            report.summary.success,
            report.summary.failed + report.summary.timed_out,
            report.summary.skipped,
        )
        logger.info("=" * 60)
        return report

    # ------------------------------------------------------------------
    # strategies
    # ------------------------------------------------------------------

    def _run_by_component(self, components: Sequence[Component], servers: Sequence[str]) -> None:
        for index, component in enumerate(components, 1):
            if self._should_stop():
                break
            logger.info(f"📍 [{index}/{len(components)}] {component.key}")
            units = [(component, server) for server in servers]
            self._run_batch(units, "deploy", probe=True)

    def _run_by_server(self, components: Sequence[Component], servers: Sequence[str]) -> None:
        for index, server in enumerate(servers, 1):
            if self._should_stop():
                break
            logger.info(f"🖥️  [{index}/{len(servers)}] {server}")
            self._run_batch([(component, server) for component in components], "deploy", probe=False)
            if self._should_stop():
                break
            # 服务器级健康检查：仅记录，不中断
            self._check_server(server)

    def _run_rolling(self, components: Sequence[Component], servers: Sequence[str]) -> None:
        total = len(servers)
        for index, server in enumerate(servers):
            if self._should_stop():
                break
            position = index + 1
            logger.info(f"🖥️  [{position}/{total}] {server} (rolling)")
            outcomes = self._run_batch(
                [(component, server) for component in components], "deploy", probe=False
            )
            if self.cancel_event.is_set():
                break

            failed = [
                o for o in outcomes
                if o.status in (OutcomeStatus.FAILED, OutcomeStatus.TIMED_OUT)
            ]
            if failed:
                self._halt_rolling(servers, index, f"deployment failed on {server}")
                break

            check = self._check_server(server)
            if self.cancel_event.is_set():
                break
            if check is not None and check.health_check.status is HealthStatus.FAILED:
                self._halt_rolling(servers, index, f"health check failed on {server}")
                break

    def _halt_rolling(self, servers: Sequence[str], index: int, cause: str) -> None:
        # 滚动部署：当前服务器失败后，后续服务器保持原样
        if index + 1 < len(servers):
            reason = (
                f"halted before server {servers[index + 1]} "
                f"({index + 2}/{len(servers)}): {cause}"
            )
        else:
            reason = f"{cause} ({index + 1}/{len(servers)})"
        self._request_halt(reason)

    # ------------------------------------------------------------------
    # per-unit primitive
    # ------------------------------------------------------------------

    def _run_batch(self, units: List[Unit], phase: str, *, probe: bool) -> List[ActionOutcome]:
        """Run units that have no ordering constraint between them."""
        workers = min(max(self.options.max_parallel, 1), len(units)) if units else 1
        if workers <= 1:
            results = []
            for component, server in units:
                outcome = self._guarded_unit(component, server, phase, probe)
                if outcome is not None:
                    results.append(outcome)
            return results

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="unit") as pool:
            futures = [
                pool.submit(self._guarded_unit, component, server, phase, probe)
                for component, server in units
            ]
            results = [future.result() for future in futures]
        return [outcome for outcome in results if outcome is not None]

    def _guarded_unit(
        self,
        component: Component,
        server: Optional[str],
        phase: str,
        probe: bool,
    ) -> Optional[ActionOutcome]:
        # 已请求停止的单元不再启动，也不产生结果
        if self._should_stop():
            return None
        outcome = self._run_unit(component, server, phase, probe)
        if (
            self.options.stop_on_first_failure
            and outcome.status in (OutcomeStatus.FAILED, OutcomeStatus.TIMED_OUT)
            and not outcome.cancelled
        ):
            where = f"{component.key}" + (f" on {server}" if server else "")
            self._request_halt(f"stopped after first failure: {where}")
        return outcome

    def _run_unit(
        self,
        component: Component,
        server: Optional[str],
        phase: str,
        probe: bool,
    ) -> ActionOutcome:
        """resolve context -> build spec -> execute -> optional probe -> append."""
        context = build_context(
            workspace=self.workspace,
            environment=self.environment_display,
            environment_name=self.environment,
            project_name=self.project.name,
            project_version=self.project.version,
            component_name=component.name,
            component_category=component.category,
            server=server,
            proxy_server=self.proxy_server,
            proxy_port=self.proxy_port,
        )
        template = component.build if phase == "build" else component.deploy
        spec = ActionSpec(
            script_path=resolve(template.script_path, context),
            parameters=resolve_structure(template.parameters, context),
        )
        outcome = self.executor.run(
            spec,
            timeout=self.options.action_timeout,
            dry_run=self.options.dry_run,
            component_name=component.name,
            category=component.category,
            phase=phase,
            server=server,
            cancel_event=self.cancel_event,
        )

        if probe and server and self.health_checks_enabled:
            settings = self.options.health_check.merged(component.health_check)
            if outcome.status is OutcomeStatus.SUCCESS:
                health = self._probe(server, settings)
                outcome = replace(outcome, health_check=health)
            elif outcome.status is OutcomeStatus.DRY_RUN:
                outcome = replace(
                    outcome,
                    health_check=HealthCheckResult.skipped("dry run", build_health_url(server, settings)),
                )

        self._aggregator.append(outcome)
        return outcome

    def _check_server(self, server: str) -> Optional[ServerCheck]:
        if not self.health_checks_enabled:
            return None
        settings = self.options.health_check
        if self.options.dry_run:
            health = HealthCheckResult.skipped("dry run", build_health_url(server, settings))
        else:
            health = self._probe(server, settings)
        check = ServerCheck(server=server, health_check=health)
        with self._checks_lock:
            self._server_checks.append(check)
        return check

    def _probe(self, server: str, settings: HealthCheckConfig) -> HealthCheckResult:
        url = build_health_url(server, settings)
        logger.info(f"   🩺 Health check: {url}")
        result = self.prober.probe_with_settings(url, settings, cancel_event=self.cancel_event)
        health = HealthCheckResult.from_probe(url, result)
        if health.passed:
            logger.info(f"   ✅ Healthy after {result.attempts} attempt(s)")
        else:
            logger.warning(f"   ❌ Unhealthy: {result.last_error}")
        return health

    # ------------------------------------------------------------------
    # run state
    # ------------------------------------------------------------------

    def _should_stop(self) -> bool:
        return self.cancel_event.is_set() or self._halt.is_set()

    def _request_halt(self, reason: str) -> None:
        if not self._halt.is_set():
            self._halt_reason = reason
            self._halt.set()
            logger.error(f"   ⛔ {reason}")

    def _set_state(self, state: RunState) -> None:
        logger.debug("Run state: %s -> %s", self.state.value, state.value)
        self.state = state

    def _finish(self, phase: str, strategy: str, started_at: datetime) -> DeploymentReport:
        self._set_state(RunState.AGGREGATING)
        cancelled = self.cancel_event.is_set()
        halt_reason = self._halt_reason
        if cancelled and halt_reason is None:
            halt_reason = "cancelled"
        terminal = RunState.FAILED if (cancelled or self._halt.is_set()) else RunState.COMPLETED

        with self._checks_lock:
            checks = list(self._server_checks)
        report = aggregate(
            self._aggregator.outcomes,
            deployment_id=self.deployment_id,
            phase=phase,
            strategy=strategy,
            environment=self.environment,
            project=self.project.name,
            status=terminal,
            server_checks=checks,
            halt_reason=halt_reason,
            cancelled=cancelled,
            dry_run=self.options.dry_run,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        failures = self._aggregator.failure_count()
        if failures:
            logger.warning(f"   {failures} action(s) failed or timed out")
        self._set_state(terminal)
        return report
