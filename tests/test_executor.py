"""Tests for argument construction and the action executor."""

import sys
import textwrap
import threading
import time
from unittest import mock

import psutil
import pytest

from deploy_orchestrator.catalog import ActionSpec
from deploy_orchestrator.execution import (
    ActionExecutor,
    OutcomeStatus,
    build_arguments,
    build_command,
    interpreter_for,
    render_command,
)


class TestArguments:
    def test_flags_follow_mapping_order(self):
        args = build_arguments({"Component": "api-a", "Port": 8080, "Server": "srv1"})
        assert args == ["-Component", "api-a", "-Port", "8080", "-Server", "srv1"]

    def test_booleans_and_none(self):
        args = build_arguments({"Force": True, "Verbose": False, "Tag": None})
        assert args == ["-Force"]

    def test_lists_are_comma_joined(self):
        assert build_arguments({"Targets": ["a", "b"]}) == ["-Targets", "a,b"]

    def test_custom_prefix(self):
        assert build_arguments({"env": "tst"}, prefix="--") == ["--env", "tst"]

    def test_values_with_spaces_stay_one_argument(self):
        argv = build_command("/opt/deploy", {"Message": "hello world; rm -rf /"})
        assert argv == ["/opt/deploy", "-Message", "hello world; rm -rf /"]

    def test_render_quotes_for_display(self):
        line = render_command(["/opt/deploy", "-Message", "hello world"])
        assert line == "/opt/deploy -Message 'hello world'"

    def test_interpreters(self):
        assert interpreter_for("x.py") == [sys.executable]
        assert interpreter_for("x.sh") == ["bash"]
        assert interpreter_for("x.ps1")[1:] == ["-ExecutionPolicy", "Bypass", "-File"]
        assert interpreter_for("x.BAT") == ["cmd", "/c"]
        assert interpreter_for("/usr/local/bin/deploy") == []


def write_script(tmp_path, name: str, body: str) -> str:
    path = tmp_path / name
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return str(path)


class TestActionExecutor:
    def test_success_captures_output(self, tmp_path):
        script = write_script(
            tmp_path,
            "ok.py",
            """
            import os, sys
            print("args", *sys.argv[1:])
            print("phase", os.environ["DEPLOY_ORCHESTRATOR_PHASE"])
            print("server", os.environ.get("DEPLOY_ORCHESTRATOR_SERVER"))
            print("env", os.environ.get("DEPLOY_ORCHESTRATOR_ENVIRONMENT"))
            """,
        )
        executor = ActionExecutor(extra_env={"DEPLOY_ORCHESTRATOR_ENVIRONMENT": "tst"})
        outcome = executor.run(
            ActionSpec(script, {"Name": "two words"}),
            component_name="api-a",
            category="apis",
            server="srv1",
            timeout=30,
        )
        assert outcome.status is OutcomeStatus.SUCCESS
        assert outcome.exit_code == 0
        assert "args -Name two words" in outcome.stdout
        assert "phase deploy" in outcome.stdout
        assert "server srv1" in outcome.stdout
        assert "env tst" in outcome.stdout
        assert outcome.resolved_parameters == {"Name": "two words"}
        assert outcome.unit_key == ("deploy", "apis", "api-a", "srv1")

    def test_nonzero_exit_is_a_failure(self, tmp_path):
        script = write_script(
            tmp_path,
            "fail.py",
            """
            import sys
            print("broken", file=sys.stderr)
            sys.exit(3)
            """,
        )
        outcome = ActionExecutor().run(ActionSpec(script), component_name="api-a", timeout=30)
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.exit_code == 3
        assert "broken" in outcome.stderr
        assert outcome.error == "Exit code 3"

    def test_missing_script_does_not_spawn(self, tmp_path):
        with mock.patch("deploy_orchestrator.execution.executor.subprocess.Popen") as popen:
            outcome = ActionExecutor().run(ActionSpec(str(tmp_path / "missing.py")))
        popen.assert_not_called()
        assert outcome.status is OutcomeStatus.FAILED
        assert "Script not found" in outcome.error

    def test_relative_script_resolves_against_working_dir(self, tmp_path):
        write_script(tmp_path, "rel.py", "print('relative ok')\n")
        outcome = ActionExecutor(working_dir=str(tmp_path)).run(ActionSpec("rel.py"), timeout=30)
        assert outcome.status is OutcomeStatus.SUCCESS
        assert "relative ok" in outcome.stdout

    def test_empty_script_is_skipped(self):
        outcome = ActionExecutor().run(ActionSpec(""), phase="build")
        assert outcome.status is OutcomeStatus.SKIPPED
        assert outcome.exit_code is None

    def test_dry_run_never_spawns(self, tmp_path):
        script = write_script(tmp_path, "ok.py", "print('hi')\n")
        with mock.patch("deploy_orchestrator.execution.executor.subprocess.Popen") as popen:
            outcome = ActionExecutor().run(
                ActionSpec(script, {"Server": "srv1"}), dry_run=True, server="srv1"
            )
        popen.assert_not_called()
        assert outcome.status is OutcomeStatus.DRY_RUN
        assert outcome.exit_code == 0
        assert outcome.command_line.endswith("-Server srv1")

    def test_dry_run_with_empty_script(self):
        outcome = ActionExecutor().run(ActionSpec(""), dry_run=True, phase="build")
        assert outcome.status is OutcomeStatus.DRY_RUN
        assert outcome.exit_code == 0
        assert outcome.command_line == ""

    def test_unresolved_placeholder_in_script_path(self):
        with mock.patch("deploy_orchestrator.execution.executor.subprocess.Popen") as popen:
            outcome = ActionExecutor().run(ActionSpec("${tools}/deploy.py"), timeout=30)
        popen.assert_not_called()
        assert outcome.status is OutcomeStatus.FAILED
        assert "Unresolved placeholder" in outcome.error

    def test_spawn_error_becomes_outcome(self, tmp_path):
        script = write_script(tmp_path, "ok.py", "print('hi')\n")
        with mock.patch(
            "deploy_orchestrator.execution.executor.subprocess.Popen",
            side_effect=OSError("exec format error"),
        ):
            outcome = ActionExecutor().run(ActionSpec(script))
        assert outcome.status is OutcomeStatus.FAILED
        assert "exec format error" in outcome.stderr

    def test_timeout_kills_process_tree(self, tmp_path):
        pid_file = tmp_path / "child.pid"
        script = write_script(
            tmp_path,
            "hang.py",
            f"""
            import subprocess, sys, time
            child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
            with open({str(pid_file)!r}, "w") as handle:
                handle.write(str(child.pid))
            time.sleep(60)
            """,
        )
        started = time.monotonic()
        outcome = ActionExecutor().run(ActionSpec(script), timeout=2.0)
        assert outcome.status is OutcomeStatus.TIMED_OUT
        assert time.monotonic() - started < 30
        assert "exceeded" in outcome.error

        assert not _running(outcome.pid)
        if pid_file.exists():
            assert not _running(int(pid_file.read_text()))

    def test_cancellation_unblocks_wait(self, tmp_path):
        script = write_script(tmp_path, "slow.py", "import time\ntime.sleep(60)\n")
        cancel = threading.Event()
        timer = threading.Timer(0.5, cancel.set)
        timer.start()
        try:
            started = time.monotonic()
            outcome = ActionExecutor().run(ActionSpec(script), timeout=120, cancel_event=cancel)
        finally:
            timer.cancel()
        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.cancelled
        assert time.monotonic() - started < 30

    def test_already_cancelled(self, tmp_path):
        script = write_script(tmp_path, "ok.py", "print('hi')\n")
        cancel = threading.Event()
        cancel.set()
        with mock.patch("deploy_orchestrator.execution.executor.subprocess.Popen") as popen:
            outcome = ActionExecutor().run(ActionSpec(script), cancel_event=cancel)
        popen.assert_not_called()
        assert outcome.cancelled


def _running(pid) -> bool:
    # 容器内孤儿进程可能以僵尸状态残留
    if pid is None:
        return False
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False


@pytest.mark.parametrize("value,expected", [(0, ["-N", "0"]), (1.5, ["-N", "1.5"])])
def test_numeric_parameters(value, expected):
    assert build_arguments({"N": value}) == expected
