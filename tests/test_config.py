import os
import tempfile
import unittest
from pathlib import Path

from deploy_orchestrator.config import AppConfig, HealthCheckConfig, load_config
from deploy_orchestrator.errors import ConfigurationError


class ConfigTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self._cwd = os.getcwd()
        # 默认配置文件按当前目录查找
        os.chdir(self.tmp)
        self._saved_env = {
            key: os.environ.pop(key)
            for key in list(os.environ)
            if key.startswith("DEPLOY_ORCHESTRATOR_") or key in ("WORKSPACE", "PROXY_SERVER", "PROXY_PORT")
        }

    def tearDown(self) -> None:
        os.chdir(self._cwd)
        self._tmp.cleanup()
        for key in list(os.environ):
            if key.startswith("DEPLOY_ORCHESTRATOR_") or key in ("WORKSPACE", "PROXY_SERVER", "PROXY_PORT"):
                os.environ.pop(key)
        os.environ.update(self._saved_env)

    def test_loads_default_config(self) -> None:
        config = load_config()
        self.assertIsInstance(config, AppConfig)
        self.assertEqual(config.execution.max_parallel, 1)
        self.assertEqual(config.execution.param_prefix, "-")
        self.assertEqual(config.execution.default_strategy, "by-component")
        self.assertFalse(config.health_check.enabled)
        self.assertEqual(config.report.latest_name, "latest.json")

    def test_loads_custom_config(self) -> None:
        temp_file = self.tmp / "settings.json"
        temp_file.write_text(
            """
{
  "_comment": "ignored",
  "execution": {"max_parallel": 4, "action_timeout": 90, "_note": "x"},
  "health_check": {"port": 8080, "endpoint": "/ready"},
  "report": {"reports_dir": "out/reports"},
  "workspace": "/srv/ws"
}
""".strip()
        )
        config = load_config(str(temp_file))
        self.assertEqual(config.execution.max_parallel, 4)
        self.assertEqual(config.execution.action_timeout, 90)
        self.assertEqual(config.health_check.port, 8080)
        self.assertEqual(config.health_check.endpoint, "/ready")
        self.assertEqual(config.report.reports_dir, "out/reports")
        self.assertEqual(config.workspace, "/srv/ws")

    def test_default_settings_location(self) -> None:
        settings = self.tmp / "config" / "orchestrator.json"
        settings.parent.mkdir()
        settings.write_text('{"execution": {"param_prefix": "--"}}')
        self.assertEqual(load_config().execution.param_prefix, "--")

    def test_missing_explicit_settings_file(self) -> None:
        with self.assertRaises(FileNotFoundError):
            load_config(str(self.tmp / "nope.json"))

    def test_env_overrides(self) -> None:
        os.environ["DEPLOY_ORCHESTRATOR_MAX_PARALLEL"] = "3"
        os.environ["DEPLOY_ORCHESTRATOR_ACTION_TIMEOUT"] = "12.5"
        os.environ["DEPLOY_ORCHESTRATOR_REPORTS_DIR"] = "/tmp/reports"
        os.environ["WORKSPACE"] = "/jenkins/ws"
        os.environ["PROXY_SERVER"] = "proxy.local"
        config = load_config()
        self.assertEqual(config.execution.max_parallel, 3)
        self.assertEqual(config.execution.action_timeout, 12.5)
        self.assertEqual(config.report.reports_dir, "/tmp/reports")
        self.assertEqual(config.workspace, "/jenkins/ws")
        self.assertEqual(config.proxy.server, "proxy.local")

    def test_orchestrator_workspace_wins_over_ci_workspace(self) -> None:
        os.environ["WORKSPACE"] = "/jenkins/ws"
        os.environ["DEPLOY_ORCHESTRATOR_WORKSPACE"] = "/own/ws"
        self.assertEqual(load_config().workspace, "/own/ws")


class HealthCheckMergeTests(unittest.TestCase):
    def test_document_object_enables_check(self) -> None:
        merged = HealthCheckConfig().merged({"port": 9000, "expectedStatus": 204, "retryInterval": 1})
        self.assertTrue(merged.enabled)
        self.assertEqual(merged.port, 9000)
        self.assertEqual(merged.expected_status, 204)
        self.assertEqual(merged.retry_interval, 1)

    def test_explicit_disable(self) -> None:
        merged = HealthCheckConfig(enabled=True).merged({"enabled": False})
        self.assertFalse(merged.enabled)

    def test_empty_payload_keeps_settings(self) -> None:
        base = HealthCheckConfig(port=81)
        self.assertIs(base.merged(None), base)
        self.assertIs(base.merged({}), base)

    def test_layers_apply_in_order(self) -> None:
        merged = (
            HealthCheckConfig()
            .merged({"endpoint": "/health", "timeout": 30})
            .merged({"endpoint": "/status", "expectedBodyPattern": "UP"})
        )
        self.assertEqual(merged.endpoint, "/status")
        self.assertEqual(merged.timeout, 30)
        self.assertEqual(merged.expected_body, "UP")
        self.assertTrue(merged.verify_tls)

    def test_string_values_are_converted(self) -> None:
        merged = HealthCheckConfig().merged(
            {"port": "8080", "timeout": "30", "expectedStatus": "204", "enabled": "false", "verifyTls": "False"}
        )
        self.assertEqual(merged.port, 8080)
        self.assertEqual(merged.timeout, 30.0)
        self.assertEqual(merged.expected_status, 204)
        self.assertFalse(merged.enabled)
        self.assertFalse(merged.verify_tls)

    def test_invalid_values_are_configuration_errors(self) -> None:
        for payload in (
            {"timeout": "soon"},
            {"expectedStatus": True},
            {"enabled": "off"},
            {"retryInterval": -1},
            {"requestTimeout": 0},
            {"endpoint": 5},
        ):
            with self.subTest(payload=payload):
                with self.assertRaises(ConfigurationError):
                    HealthCheckConfig().merged(payload)


if __name__ == "__main__":
    unittest.main()
