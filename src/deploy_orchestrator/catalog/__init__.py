"""Component catalog module: configuration document parsing and normalization."""

from .models import (
    CATEGORIES,
    ActionSpec,
    Component,
    Dialect,
    Environment,
    ParameterValue,
    ProjectInfo,
)
from .document import ConfigDocument, detect_dialect, display_name_for
from .catalog import ComponentCatalog

__all__ = [
    "CATEGORIES",
    "ActionSpec",
    "Component",
    "Dialect",
    "Environment",
    "ParameterValue",
    "ProjectInfo",
    "ConfigDocument",
    "detect_dialect",
    "display_name_for",
    "ComponentCatalog",
]
