"""Data models for the component catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

# 参数值：字符串、数字、布尔或字符串列表
ParameterValue = Union[str, int, float, bool, List[str], None]

# 固定顺序，决定目录与调度的插入顺序
CATEGORIES = ("apis", "webApps", "consoleServices", "batches", "angular", "dbScripts")


class Dialect(Enum):
    """配置文档的两种结构"""
    V1 = "v1"   # build.<category> 名称列表 + 共享脚本
    V2 = "v2"   # components.<category> 对象列表，每个组件自带脚本


@dataclass(frozen=True)
class ActionSpec:
    """One external program invocation: a script path plus its parameters."""

    script_path: str = ""
    parameters: Dict[str, ParameterValue] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.script_path.strip()

    def to_dict(self) -> Dict[str, Any]:
        return {"script": self.script_path, "params": dict(self.parameters)}


@dataclass(frozen=True)
class Component:
    """A deployable unit with its build and deploy actions."""

    name: str
    category: str
    build: ActionSpec
    deploy: ActionSpec
    enabled: bool = True
    # 组件级健康检查覆盖（可选）
    health_check: Optional[Dict[str, Any]] = None

    @property
    def key(self) -> str:
        return f"{self.category}/{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "category": self.category,
            "enabled": self.enabled,
            "build": self.build.to_dict(),
            "deploy": self.deploy.to_dict(),
        }
        if self.health_check:
            payload["healthCheck"] = dict(self.health_check)
        return payload


@dataclass(frozen=True)
class Environment:
    """A named target environment from the ``environments`` section."""

    name: str
    display_name: str
    servers: List[str] = field(default_factory=list)
    health_check: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ProjectInfo:
    name: str = "unknown"
    version: str = "1.0.0"
