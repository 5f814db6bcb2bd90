"""Shared fixtures: pipeline documents and small action scripts on disk."""

import json
import textwrap
from pathlib import Path

import pytest

# 部署脚本：-fail 列表中包含 "<component>@<server>" 时返回 1
DEPLOY_SCRIPT = textwrap.dedent(
    """
    import sys

    args = sys.argv[1:]
    values = {}
    index = 0
    while index < len(args):
        key = args[index].lstrip("-")
        if index + 1 < len(args) and not args[index + 1].startswith("-"):
            values[key] = args[index + 1]
            index += 2
        else:
            values[key] = True
            index += 1

    unit = f"{values.get('component')}@{values.get('server')}"
    print(f"deploying {unit}")
    failures = str(values.get("fail", "")).split(",")
    if unit in failures:
        print(f"cannot deploy {unit}", file=sys.stderr)
        sys.exit(1)
    """
)

BUILD_SCRIPT = textwrap.dedent(
    """
    import sys

    print("building " + " ".join(sys.argv[1:]))
    """
)


@pytest.fixture
def scripts_dir(tmp_path: Path) -> Path:
    target = tmp_path / "scripts"
    target.mkdir()
    (target / "deploy.py").write_text(DEPLOY_SCRIPT, encoding="utf-8")
    (target / "build.py").write_text(BUILD_SCRIPT, encoding="utf-8")
    return target


@pytest.fixture
def write_config(tmp_path: Path):
    """Write a pipeline document and return its path."""

    def _write(payload: dict, name: str = "pipeline.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def v2_document(scripts_dir: Path):
    """Two APIs on two servers, per-component scripts (V2 dialect)."""

    def _document(fail: str = "", **deploy: object) -> dict:
        def api(name: str) -> dict:
            return {
                "name": name,
                "script": str(scripts_dir / "build.py"),
                "params": {"component": "${component.name}", "env": "${environment}"},
                "deployScript": str(scripts_dir / "deploy.py"),
                "deployParams": {
                    "component": "${component.name}",
                    "server": "${server}",
                    "fail": fail,
                },
            }

        return {
            "project": {"name": "shop", "version": "2.3.0"},
            "components": {"apis": [api("api-a"), api("api-b")]},
            "environments": {"tst": {"servers": ["srv1", "srv2"]}},
            "deploy": dict(deploy),
        }

    return _document
