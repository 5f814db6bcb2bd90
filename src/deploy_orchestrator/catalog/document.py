"""Pipeline configuration document loading and dialect detection."""

from __future__ import annotations

import fnmatch
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..errors import ConfigurationError
from .models import Dialect, Environment, ProjectInfo

logger = logging.getLogger(__name__)


def display_name_for(environment: str) -> str:
    """首字母大写：``tst`` -> ``Tst``"""
    return environment[:1].upper() + environment[1:]


def detect_dialect(raw: Dict[str, Any]) -> Dialect:
    """A ``components`` object keyed by category means V2; anything else is V1."""
    components = raw.get("components")
    if isinstance(components, dict):
        return Dialect.V2
    return Dialect.V1


class ConfigDocument:
    """Read-only view over a parsed configuration document."""

    def __init__(self, raw: Dict[str, Any], path: Optional[Path] = None) -> None:
        if not isinstance(raw, dict):
            raise ConfigurationError("Configuration root must be a JSON object")
        self.raw = raw
        self.path = path
        self.dialect = detect_dialect(raw)
        for section in ("project", "build", "deploy", "environments", "security", "notifications"):
            value = raw.get(section)
            if value is not None and not isinstance(value, (dict, list)):
                raise ConfigurationError(
                    f"Section '{section}' must be an object, got {type(value).__name__}"
                )

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ConfigDocument":
        config_path = Path(path)
        if not config_path.is_file():
            raise ConfigurationError(f"Config not found: {config_path}")
        try:
            with config_path.open("r", encoding="utf-8") as handle:
                raw = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(
                f"Config is not valid JSON ({config_path}): {exc}"
            ) from exc
        except OSError as exc:
            raise ConfigurationError(f"Cannot read config {config_path}: {exc}") from exc
        document = cls(raw, path=config_path)
        logger.debug("Loaded %s (dialect %s)", config_path, document.dialect.value)
        return document

    @property
    def project(self) -> ProjectInfo:
        project = self.raw.get("project") or {}
        return ProjectInfo(
            name=str(project.get("name") or "unknown"),
            version=str(project.get("version") or "1.0.0"),
        )

    @property
    def build_section(self) -> Dict[str, Any]:
        return self._section("build")

    @property
    def deploy_section(self) -> Dict[str, Any]:
        return self._section("deploy")

    @property
    def components_section(self) -> Dict[str, Any]:
        return self._section("components")

    @property
    def security(self) -> Dict[str, Any]:
        return self._section("security")

    @property
    def notifications(self) -> Dict[str, Any]:
        return self._section("notifications")

    def _section(self, name: str) -> Dict[str, Any]:
        value = self.raw.get(name)
        return value if isinstance(value, dict) else {}

    def environment_names(self) -> List[str]:
        return [env["name"] for env in self._environment_entries()]

    def has_environment(self, name: str) -> bool:
        return self._find_environment(name) is not None

    def environment(self, name: str) -> Environment:
        """Resolve an environment by exact name, then case-insensitively."""
        entry = self._find_environment(name)
        if entry is None:
            available = ", ".join(self.environment_names()) or "none"
            raise ConfigurationError(
                f"Environment '{name}' is not defined (available: {available})"
            )
        servers = entry.get("servers") or []
        if not isinstance(servers, list) or not all(isinstance(s, str) for s in servers):
            raise ConfigurationError(
                f"environments.{entry['name']}.servers must be a list of strings"
            )
        servers = [s.strip() for s in servers if s.strip()]
        duplicates = sorted({s for s in servers if servers.count(s) > 1})
        if duplicates:
            raise ConfigurationError(
                f"environments.{entry['name']}.servers lists {', '.join(duplicates)} more than once"
            )
        health_check = entry.get("healthCheck")
        if health_check is not None and not isinstance(health_check, dict):
            raise ConfigurationError(
                f"environments.{entry['name']}.healthCheck must be an object"
            )
        return Environment(
            name=entry["name"],
            display_name=str(entry.get("displayName") or display_name_for(entry["name"])),
            servers=servers,
            health_check=health_check,
        )

    def servers(self, environment: str, pattern: Optional[str] = None) -> List[str]:
        """Ordered target servers for `environment`, optionally glob-filtered.

        An empty result is a configuration error: deploy scheduling needs at
        least one server.
        """
        env = self.environment(environment)
        servers = env.servers
        if pattern:
            servers = [s for s in servers if fnmatch.fnmatchcase(s, pattern)]
        if not servers:
            suffix = f" matching '{pattern}'" if pattern else ""
            raise ConfigurationError(
                f"No servers resolved for environment '{env.name}'{suffix}"
            )
        return servers

    def _environment_entries(self) -> List[Dict[str, Any]]:
        environments = self.raw.get("environments") or {}
        entries: List[Dict[str, Any]] = []
        if isinstance(environments, dict):
            for name, body in environments.items():
                if name.startswith("_"):
                    continue
                if not isinstance(body, dict):
                    raise ConfigurationError(f"environments.{name} must be an object")
                entries.append({**body, "name": name})
        else:
            # 兼容列表形式: [{"name": "tst", "servers": [...]}]
            for body in environments:
                if not isinstance(body, dict) or not body.get("name"):
                    raise ConfigurationError("Each environment entry needs a 'name'")
                entries.append(dict(body))
        return entries

    def _find_environment(self, name: str) -> Optional[Dict[str, Any]]:
        entries = self._environment_entries()
        for entry in entries:
            if entry["name"] == name:
                return entry
        lowered = name.lower()
        for entry in entries:
            if str(entry["name"]).lower() == lowered:
                return entry
        return None
