"""Configuration loading utilities for deploy-orchestrator.

These are the orchestrator's own settings (timeouts, report location, health
check defaults). The pipeline configuration document that lists components and
environments is handled by :mod:`deploy_orchestrator.catalog`.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .paths import DEFAULT_SETTINGS_PATH, LATEST_REPORT_NAME, REPORTS_DIR

# Load .env file if it exists
load_dotenv()

STRATEGIES = ("by-component", "by-server", "rolling")

# 配置文档中的 camelCase 键 -> HealthCheckConfig 字段
_HEALTH_KEY_ALIASES = {
    "expectedStatus": "expected_status",
    "expectedBody": "expected_body",
    "expectedBodyPattern": "expected_body",
    "retryInterval": "retry_interval",
    "requestTimeout": "request_timeout",
    "verifyTls": "verify_tls",
}


_BOOL_FIELDS = ("enabled", "verify_tls")
_INT_FIELDS = ("port", "expected_status")
_FLOAT_FIELDS = ("timeout", "retry_interval", "request_timeout")


def _coerce_health_value(name: str, key: str, value: Any) -> Any:
    """Convert a ``healthCheck`` value to the type of field `name`."""
    if name in _BOOL_FIELDS:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ConfigurationError(f"healthCheck.{key} must be true or false, got {value!r}")
    if name in _INT_FIELDS or name in _FLOAT_FIELDS:
        if name == "port" and value is None:
            return None
        cast = int if name in _INT_FIELDS else float
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ConfigurationError(f"healthCheck.{key} must be a number, got {value!r}")
        try:
            number = cast(value)
        except ValueError as exc:
            raise ConfigurationError(f"healthCheck.{key} must be a number, got {value!r}") from exc
        # retryInterval 允许为 0
        minimum_ok = number >= 0 if name == "retry_interval" else number > 0
        if not minimum_ok:
            raise ConfigurationError(f"healthCheck.{key} must be positive, got {number}")
        return number
    if name == "expected_body":
        return None if value is None else str(value)
    if not isinstance(value, str):
        raise ConfigurationError(f"healthCheck.{key} must be a string, got {value!r}")
    return value


@dataclass
class ExecutionConfig:
    """Settings related to action execution."""

    action_timeout: float = 1800.0       # 单个动作超时（秒）
    max_parallel: int = 1                # 1 = 顺序执行
    param_prefix: str = "-"              # PowerShell 风格参数前缀
    default_strategy: str = "by-component"
    stop_on_first_failure: bool = False


@dataclass
class HealthCheckConfig:
    """Health probe settings, merged from defaults, settings and document."""

    enabled: bool = False
    scheme: str = "http"
    port: Optional[int] = 80
    endpoint: str = "/health"
    expected_status: int = 200
    expected_body: Optional[str] = None
    timeout: float = 120.0               # 整体探测超时（秒）
    retry_interval: float = 5.0
    request_timeout: float = 10.0        # 单次请求超时，须小于整体超时
    verify_tls: bool = True

    def merged(self, payload: Optional[Dict[str, Any]]) -> "HealthCheckConfig":
        """Return a copy overridden by a document ``healthCheck`` object.

        A present object switches the check on unless it says ``enabled: false``.
        Values are converted to the field types; anything that does not
        convert raises :class:`ConfigurationError`.
        """
        if not payload:
            return self
        known = {f.name for f in fields(self)}
        updates: Dict[str, Any] = {"enabled": True}
        for key, value in payload.items():
            if key.startswith("_"):
                continue
            name = _HEALTH_KEY_ALIASES.get(key, key)
            if name in known:
                updates[name] = _coerce_health_value(name, key, value)
        return replace(self, **updates)


@dataclass
class ReportConfig:
    """Where deployment reports are written."""

    reports_dir: str = str(REPORTS_DIR)
    latest_name: str = LATEST_REPORT_NAME


@dataclass
class ProxyConfig:
    """Proxy values exposed to action templates as ``${proxy.server}``/``${proxy.port}``."""

    server: Optional[str] = None
    port: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level configuration."""

    workspace: str = field(default_factory=lambda: os.getcwd())
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    health_check: HealthCheckConfig = field(default_factory=HealthCheckConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        execution_payload = payload.get("execution", {}) or {}
        health_payload = payload.get("health_check", {}) or {}
        report_payload = payload.get("report", {}) or {}
        proxy_payload = payload.get("proxy", {}) or {}

        # 过滤掉以下划线开头的注释字段
        def _clean(section: Dict[str, Any]) -> Dict[str, Any]:
            return {k: v for k, v in section.items() if not k.startswith("_")}

        config = cls(
            execution=ExecutionConfig(
                **{**ExecutionConfig().__dict__, **_clean(execution_payload)}
            ),
            health_check=HealthCheckConfig(
                **{**HealthCheckConfig().__dict__, **_clean(health_payload)}
            ),
            report=ReportConfig(**{**ReportConfig().__dict__, **_clean(report_payload)}),
            proxy=ProxyConfig(**{**ProxyConfig().__dict__, **_clean(proxy_payload)}),
        )
        if payload.get("workspace"):
            config.workspace = str(payload["workspace"])
        return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load settings from `path`, the default location, or built-in defaults.

    Unlike the pipeline document, a settings file is optional. An explicit
    `path` that does not exist is still an error.

    Environment variables (higher priority than the settings file):
    - DEPLOY_ORCHESTRATOR_WORKSPACE or WORKSPACE: workspace root for ``${WORKSPACE}``
    - DEPLOY_ORCHESTRATOR_REPORTS_DIR: report output directory
    - DEPLOY_ORCHESTRATOR_ACTION_TIMEOUT: per-action timeout in seconds
    - DEPLOY_ORCHESTRATOR_MAX_PARALLEL: worker pool size
    - PROXY_SERVER / PROXY_PORT: proxy values for action templates
    """
    if path and not Path(path).is_file():
        raise FileNotFoundError(f"Settings file not found: {path}")

    config = AppConfig()
    candidate = Path(path) if path else DEFAULT_SETTINGS_PATH
    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)

    env_workspace = os.getenv("DEPLOY_ORCHESTRATOR_WORKSPACE") or os.getenv("WORKSPACE")
    if env_workspace:
        config.workspace = env_workspace

    env_reports = os.getenv("DEPLOY_ORCHESTRATOR_REPORTS_DIR")
    if env_reports:
        config.report.reports_dir = env_reports

    env_timeout = os.getenv("DEPLOY_ORCHESTRATOR_ACTION_TIMEOUT")
    if env_timeout:
        config.execution.action_timeout = float(env_timeout)

    env_parallel = os.getenv("DEPLOY_ORCHESTRATOR_MAX_PARALLEL")
    if env_parallel:
        config.execution.max_parallel = int(env_parallel)

    env_proxy_server = os.getenv("PROXY_SERVER")
    if env_proxy_server:
        config.proxy.server = env_proxy_server

    env_proxy_port = os.getenv("PROXY_PORT")
    if env_proxy_port:
        config.proxy.port = env_proxy_port

    return config
