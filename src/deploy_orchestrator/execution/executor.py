"""Action executor: runs one build/deploy script as a child process."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import psutil

from ..catalog.models import ActionSpec
from ..variables import has_placeholders
from .arguments import build_command, render_command
from .models import ActionOutcome, OutcomeStatus

logger = logging.getLogger(__name__)

# 等待子进程时的轮询间隔（秒），决定取消/超时的响应速度
_POLL_INTERVAL = 0.2
# 强制终止后收集剩余输出的等待时间
_DRAIN_TIMEOUT = 5.0


class ActionExecutor:
    """
    Runs an :class:`ActionSpec` and reports an :class:`ActionOutcome`.

    The executor never raises and never retries: spawn errors, non-zero exit
    codes, timeouts and cancellation all come back as outcome data. Retry
    policy belongs to the caller.
    """

    def __init__(
        self,
        *,
        param_prefix: str = "-",
        working_dir: Optional[str] = None,
        extra_env: Optional[Dict[str, str]] = None,
    ) -> None:
        self.param_prefix = param_prefix
        self.working_dir = working_dir
        self.extra_env = dict(extra_env or {})

    def run(
        self,
        spec: ActionSpec,
        *,
        timeout: Optional[float] = None,
        dry_run: bool = False,
        component_name: str = "",
        category: str = "",
        phase: str = "deploy",
        server: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ActionOutcome:
        """
        Execute one action.

        Args:
            spec: Script path plus resolved parameters
            timeout: Seconds before the process tree is killed (None = no limit)
            dry_run: Record the command line without spawning anything
            component_name/category/phase/server: Unit identity for the outcome
            cancel_event: Set by the caller to abort a running action

        Returns:
            ActionOutcome describing what happened
        """
        started_at = datetime.now(timezone.utc)
        clock = time.monotonic()
        argv = build_command(spec.script_path, spec.parameters, self.param_prefix)
        command_line = "" if spec.is_empty else render_command(argv)

        def outcome(status: OutcomeStatus, **values) -> ActionOutcome:
            return ActionOutcome(
                component_name=component_name,
                category=category,
                phase=phase,
                server=server,
                status=status,
                started_at=started_at,
                duration_seconds=time.monotonic() - clock,
                script=spec.script_path,
                command_line=command_line,
                resolved_parameters=dict(spec.parameters),
                **values,
            )

        label = f"{category}/{component_name}" + (f"@{server}" if server else "")

        if dry_run:
            logger.info("  [dry-run] %s: %s", label, command_line or f"(no {phase} script)")
            return outcome(OutcomeStatus.DRY_RUN, exit_code=0)

        if spec.is_empty:
            logger.info("  [SKIP] %s: no %s script", label, phase)
            return outcome(OutcomeStatus.SKIPPED, error=f"No {phase} script configured")

        if cancel_event is not None and cancel_event.is_set():
            return outcome(OutcomeStatus.FAILED, error="cancelled", stderr="cancelled")

        if has_placeholders(spec.script_path):
            message = f"Unresolved placeholder in script path: {spec.script_path}"
            logger.error("  [FAIL] %s: %s", label, message)
            return outcome(OutcomeStatus.FAILED, error=message, stderr=message)

        # 脚本不存在属于配置错误：不启动进程
        script = Path(spec.script_path)
        if not script.is_absolute() and self.working_dir:
            script = Path(self.working_dir) / script
        if not script.is_file():
            message = f"Script not found: {spec.script_path}"
            logger.error("  [FAIL] %s: %s", label, message)
            return outcome(OutcomeStatus.FAILED, error=message, stderr=message)

        logger.debug("  $ %s", command_line)
        process: Optional[subprocess.Popen] = None
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                cwd=self.working_dir,
                env=self._get_env(component_name, phase, server),
                start_new_session=os.name == "posix",
            )
            stdout, stderr, reason = self._wait(process, timeout, cancel_event)
        except Exception as exc:
            if process is not None:
                self._terminate_tree(process)
            logger.error("  [FAIL] %s: %s", label, exc)
            return outcome(
                OutcomeStatus.FAILED,
                error=str(exc),
                stderr=str(exc),
                pid=process.pid if process is not None else None,
            )

        if reason == "timeout":
            logger.error("  [TIMEOUT] %s: exceeded %ss", label, timeout)
            return outcome(
                OutcomeStatus.TIMED_OUT,
                exit_code=process.returncode,
                stdout=stdout,
                stderr=stderr,
                error=f"Action exceeded {timeout} seconds and was terminated",
                pid=process.pid,
            )
        if reason == "cancelled":
            logger.warning("  [CANCELLED] %s", label)
            return outcome(
                OutcomeStatus.FAILED,
                exit_code=process.returncode,
                stdout=stdout,
                stderr=stderr or "cancelled",
                error="cancelled",
                pid=process.pid,
            )

        if process.returncode == 0:
            logger.info("  [OK] %s", label)
            return outcome(
                OutcomeStatus.SUCCESS,
                exit_code=0,
                stdout=stdout,
                stderr=stderr,
                pid=process.pid,
            )

        logger.error("  [FAIL] %s: exit code %s", label, process.returncode)
        return outcome(
            OutcomeStatus.FAILED,
            exit_code=process.returncode,
            stdout=stdout,
            stderr=stderr,
            error=f"Exit code {process.returncode}",
            pid=process.pid,
        )

    def _wait(
        self,
        process: subprocess.Popen,
        timeout: Optional[float],
        cancel_event: Optional[threading.Event],
    ) -> Tuple[str, str, Optional[str]]:
        """Wait in short slices so cancellation and the deadline are noticed promptly.

        `communicate` may be retried after ``TimeoutExpired`` without losing
        output, which keeps stdout/stderr complete.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            if cancel_event is not None and cancel_event.is_set():
                stdout, stderr = self._terminate_tree(process)
                return stdout, stderr, "cancelled"

            slice_timeout = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    stdout, stderr = self._terminate_tree(process)
                    return stdout, stderr, "timeout"
                slice_timeout = min(slice_timeout, remaining)

            try:
                stdout, stderr = process.communicate(timeout=slice_timeout)
                return stdout or "", stderr or "", None
            except subprocess.TimeoutExpired:
                continue

    def _terminate_tree(self, process: subprocess.Popen) -> Tuple[str, str]:
        """Kill the process and all of its descendants, then drain the pipes."""
        children: List[psutil.Process] = []
        try:
            children = psutil.Process(process.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            pass
        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass
        try:
            process.kill()
        except ProcessLookupError:
            pass
        psutil.wait_procs(children, timeout=_DRAIN_TIMEOUT)
        try:
            stdout, stderr = process.communicate(timeout=_DRAIN_TIMEOUT)
        except subprocess.TimeoutExpired:
            # 孙进程仍持有管道时放弃剩余输出
            process.wait(timeout=_DRAIN_TIMEOUT)
            return "", ""
        return stdout or "", stderr or ""

    def _get_env(self, component_name: str, phase: str, server: Optional[str]) -> Dict[str, str]:
        """Get environment variables for the child process."""
        env = os.environ.copy()
        env.update(self.extra_env)
        env["DEPLOY_ORCHESTRATOR_COMPONENT"] = component_name
        env["DEPLOY_ORCHESTRATOR_PHASE"] = phase
        if server:
            env["DEPLOY_ORCHESTRATOR_SERVER"] = server
        return env
