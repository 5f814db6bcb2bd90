"""Component catalog: normalizes both document dialects into one component list."""

from __future__ import annotations

import fnmatch
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from ..errors import ConfigurationError
from ..variables import build_context, resolve, resolve_structure
from .document import ConfigDocument, display_name_for
from .models import CATEGORIES, ActionSpec, Component, Dialect, ParameterValue

logger = logging.getLogger(__name__)

# 导出变量名中使用的类别简称（与原流水线脚本一致）
_EXPORT_NAMES = {
    "apis": "APIS",
    "webApps": "WEBAPPS",
    "consoleServices": "CONSOLE",
    "batches": "BATCHES",
    "angular": "ANGULAR",
    "dbScripts": "DBSCRIPTS",
}


def _validate_parameters(owner: str, params: Any) -> Dict[str, ParameterValue]:
    if params is None:
        return {}
    if not isinstance(params, dict):
        raise ConfigurationError(f"{owner}: parameters must be an object")
    for key, value in params.items():
        if isinstance(value, dict):
            raise ConfigurationError(
                f"{owner}: parameter '{key}' must be a scalar, boolean or list"
            )
        if isinstance(value, list) and any(isinstance(item, (dict, list)) for item in value):
            raise ConfigurationError(
                f"{owner}: list parameter '{key}' may only contain scalars"
            )
    return dict(params)


class ComponentCatalog:
    """Enabled components of one configuration document, resolved for one environment.

    The catalog is derived once per run and is read-only afterwards. Script
    paths and parameters are resolved against a per-component context; the
    server is not bound yet, so ``${server}`` placeholders survive until the
    scheduler builds the context of a concrete (component, server) unit.
    """

    def __init__(
        self,
        components: List[Component],
        *,
        document: ConfigDocument,
        environment: str,
        environment_display: str,
        workspace: str,
    ) -> None:
        self._components = tuple(components)
        self.document = document
        self.environment = environment
        self.environment_display = environment_display
        self.workspace = workspace

    @classmethod
    def load(
        cls,
        source: Union[str, Path, ConfigDocument],
        *,
        environment: str,
        workspace: str,
        proxy_server: Optional[str] = None,
        proxy_port: Optional[str] = None,
    ) -> "ComponentCatalog":
        document = source if isinstance(source, ConfigDocument) else ConfigDocument.load(source)

        if document.has_environment(environment):
            env = document.environment(environment)
            env_name, env_display = env.name, env.display_name
        else:
            env_name, env_display = environment, display_name_for(environment)

        project = document.project
        logger.info("Resolving components...")
        logger.info("  Config: %s", document.path or "<memory>")
        logger.info("  Environment: %s", env_display)
        logger.info("  Workspace: %s", workspace)
        logger.info("  Dialect: %s", document.dialect.value.upper())

        if document.dialect is Dialect.V2:
            raw_entries = cls._entries_v2(document)
        else:
            raw_entries = cls._entries_v1(document)

        components: List[Component] = []
        for category in CATEGORIES:
            seen: set = set()
            for entry in raw_entries.get(category, []):
                name = entry["name"]
                if name in seen:
                    raise ConfigurationError(
                        f"Duplicate component name '{name}' in category '{category}'"
                    )
                seen.add(name)
                if entry.get("enabled") is False:
                    logger.debug("  %s/%s disabled, excluded", category, name)
                    continue

                context = build_context(
                    workspace=workspace,
                    environment=env_display,
                    environment_name=env_name,
                    project_name=project.name,
                    project_version=project.version,
                    component_name=name,
                    component_category=category,
                    proxy_server=proxy_server,
                    proxy_port=proxy_port,
                )
                components.append(
                    Component(
                        name=name,
                        category=category,
                        enabled=True,
                        build=cls._resolve_spec(entry["build"], context),
                        deploy=cls._resolve_spec(entry["deploy"], context),
                        health_check=entry.get("healthCheck"),
                    )
                )
            count = sum(1 for c in components if c.category == category)
            logger.info("  %s: %d component(s)", category, count)

        logger.info("Component resolution completed: %d component(s)", len(components))
        return cls(
            components,
            document=document,
            environment=env_name,
            environment_display=env_display,
            workspace=workspace,
        )

    @staticmethod
    def _resolve_spec(spec: ActionSpec, context: Mapping[str, str]) -> ActionSpec:
        return ActionSpec(
            script_path=resolve(spec.script_path, context),
            parameters=resolve_structure(spec.parameters, context),
        )

    @staticmethod
    def _entries_v2(document: ConfigDocument) -> Dict[str, List[Dict[str, Any]]]:
        section = document.components_section
        for key in section:
            if key not in CATEGORIES and not key.startswith("_"):
                logger.debug("Ignoring unknown component category '%s'", key)

        entries: Dict[str, List[Dict[str, Any]]] = {}
        for category in CATEGORIES:
            items = section.get(category) or []
            if not isinstance(items, list):
                raise ConfigurationError(f"components.{category} must be a list")
            normalized = []
            for index, item in enumerate(items):
                owner = f"components.{category}[{index}]"
                if not isinstance(item, dict):
                    raise ConfigurationError(f"{owner} must be an object")
                name = item.get("name")
                if not isinstance(name, str) or not name.strip():
                    raise ConfigurationError(f"{owner} has no name")
                build = item.get("build") if isinstance(item.get("build"), dict) else {}
                deploy = item.get("deploy") if isinstance(item.get("deploy"), dict) else {}
                health_check = item.get("healthCheck")
                if health_check is not None and not isinstance(health_check, dict):
                    raise ConfigurationError(f"{owner}.healthCheck must be an object")
                normalized.append(
                    {
                        "name": name.strip(),
                        "enabled": item.get("enabled", True),
                        "build": ActionSpec(
                            script_path=str(item.get("script") or build.get("script") or ""),
                            parameters=_validate_parameters(
                                owner, item.get("params", build.get("params"))
                            ),
                        ),
                        "deploy": ActionSpec(
                            script_path=str(item.get("deployScript") or deploy.get("script") or ""),
                            parameters=_validate_parameters(
                                owner, item.get("deployParams", deploy.get("params"))
                            ),
                        ),
                        "healthCheck": health_check,
                    }
                )
            entries[category] = normalized
        return entries

    @staticmethod
    def _entries_v1(document: ConfigDocument) -> Dict[str, List[Dict[str, Any]]]:
        build = document.build_section
        deploy = document.deploy_section
        shared_build = ActionSpec(
            script_path=str(build.get("script") or ""),
            parameters=_validate_parameters("build", build.get("params")),
        )
        shared_deploy = ActionSpec(
            script_path=str(deploy.get("script") or ""),
            parameters=_validate_parameters("deploy", deploy.get("params")),
        )

        entries: Dict[str, List[Dict[str, Any]]] = {}
        for category in CATEGORIES:
            names = build.get(category) or []
            if not isinstance(names, list):
                raise ConfigurationError(f"build.{category} must be a list")
            normalized = []
            for index, item in enumerate(names):
                # V1 条目可以是字符串，也可以是 {name, enabled}
                if isinstance(item, str):
                    name, enabled = item, True
                elif isinstance(item, dict):
                    name, enabled = item.get("name"), item.get("enabled", True)
                else:
                    raise ConfigurationError(f"build.{category}[{index}] must be a name")
                if not isinstance(name, str) or not name.strip():
                    raise ConfigurationError(f"build.{category}[{index}] has no name")
                normalized.append(
                    {
                        "name": name.strip(),
                        "enabled": enabled,
                        "build": shared_build,
                        "deploy": shared_deploy,
                        "healthCheck": None,
                    }
                )
            entries[category] = normalized
        return entries

    def __iter__(self) -> Iterator[Component]:
        return iter(self._components)

    def __len__(self) -> int:
        return len(self._components)

    def all_enabled(self) -> List[Component]:
        return list(self._components)

    def components_by_category(self) -> Dict[str, List[Component]]:
        grouped: Dict[str, List[Component]] = {category: [] for category in CATEGORIES}
        for component in self._components:
            grouped[component.category].append(component)
        return grouped

    def filter(
        self,
        name_pattern: Optional[str] = None,
        category_pattern: Optional[str] = None,
    ) -> List[Component]:
        """Glob-filtered subset, in catalog order."""
        selected = []
        for component in self._components:
            if name_pattern and not fnmatch.fnmatchcase(component.name, name_pattern):
                continue
            if category_pattern and not fnmatch.fnmatchcase(component.category, category_pattern):
                continue
            selected.append(component)
        return selected

    def counts(self) -> Dict[str, int]:
        grouped = self.components_by_category()
        counts = {"total": len(self._components)}
        counts.update({category: len(items) for category, items in grouped.items()})
        return counts

    def to_dict(self) -> Dict[str, Any]:
        """Resolved component export, same layout as the pipeline's components file."""
        return {
            "project": self.document.project.name,
            "environment": self.environment_display,
            "workspace": self.workspace,
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "counts": self.counts(),
            "components": [component.to_dict() for component in self._components],
        }

    def export_variables(self) -> List[str]:
        """``KEY=value`` lines describing the catalog, for shell consumption."""
        grouped = self.components_by_category()
        lines = [f"COMPONENTS_TOTAL={len(self._components)}"]
        for category in CATEGORIES:
            lines.append(f"COMPONENTS_{_EXPORT_NAMES[category]}={len(grouped[category])}")
        for category in CATEGORIES:
            names = ",".join(c.name for c in grouped[category])
            lines.append(f"COMPONENTS_{_EXPORT_NAMES[category]}_LIST={names}")
        return lines
