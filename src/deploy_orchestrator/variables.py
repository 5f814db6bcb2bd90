"""Placeholder substitution for configuration templates.

Templates use ``${name}`` tokens. Dotted names such as ``${component.name}``
are plain keys of the context mapping; they are never looked up through
nested objects.

Substitution is a single pass. A replacement value that itself contains
``${...}`` is inserted as-is and is not expanded again, so running
:func:`resolve` a second time over such output may change it. Fully resolved
strings whose values carry no placeholder syntax are left unchanged by a
second pass.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional

PLACEHOLDER_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_.\-]*)\}")


def resolve(template: str, context: Mapping[str, str]) -> str:
    """Replace every known ``${key}`` in `template`; unknown keys stay verbatim."""

    def _replace(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key in context:
            return str(context[key])
        return match.group(0)

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def resolve_structure(value: Any, context: Mapping[str, str]) -> Any:
    """Apply :func:`resolve` to every string leaf of a nested value.

    Lists stay lists, tuples stay tuples and mappings keep their keys and
    order. Non-string scalars are returned unchanged.
    """
    if isinstance(value, str):
        return resolve(value, context)
    if isinstance(value, Mapping):
        return {key: resolve_structure(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_structure(item, context) for item in value]
    if isinstance(value, tuple):
        return tuple(resolve_structure(item, context) for item in value)
    return value


def has_placeholders(value: Any) -> bool:
    """True when any string leaf of `value` still contains a ``${...}`` token."""
    if isinstance(value, str):
        return PLACEHOLDER_PATTERN.search(value) is not None
    if isinstance(value, Mapping):
        return any(has_placeholders(item) for item in value.values())
    if isinstance(value, (list, tuple)):
        return any(has_placeholders(item) for item in value)
    return False


def build_context(
    *,
    workspace: str,
    environment: str,
    environment_name: Optional[str] = None,
    project_name: Optional[str] = None,
    project_version: Optional[str] = None,
    component_name: Optional[str] = None,
    component_category: Optional[str] = None,
    server: Optional[str] = None,
    proxy_server: Optional[str] = None,
    proxy_port: Optional[str] = None,
) -> Dict[str, str]:
    """Build a fresh variable context for one unit of work.

    Keys whose value is unknown are omitted so the matching placeholders
    survive for a later, more specific pass (``${server}`` during catalog
    loading, for instance).
    """
    context: Dict[str, str] = {
        "WORKSPACE": workspace,
        "workspace": workspace,
        "environment": environment,
        "environment.name": environment_name or environment,
    }
    optional = {
        "project.name": project_name,
        "project.version": project_version,
        "component.name": component_name,
        "component.category": component_category,
        "server": server,
        "proxy.server": proxy_server,
        "proxy.port": proxy_port,
    }
    for key, value in optional.items():
        if value is not None and value != "":
            context[key] = str(value)
    return context
