"""Structured argument-list construction for external actions."""

from __future__ import annotations

import shlex
import shutil
import sys
from pathlib import Path
from typing import List, Mapping, Sequence

from ..catalog.models import ParameterValue


def interpreter_for(script_path: str) -> List[str]:
    """Return the launcher prefix for a script, chosen by its extension.

    PowerShell scripts run the way the pipeline always ran them
    (``-ExecutionPolicy Bypass -File``); anything without a known extension
    is executed directly.
    """
    suffix = Path(script_path).suffix.lower()
    if suffix == ".ps1":
        shell = "powershell" if shutil.which("powershell") else "pwsh"
        return [shell, "-ExecutionPolicy", "Bypass", "-File"]
    if suffix == ".sh":
        return ["bash"]
    if suffix == ".py":
        return [sys.executable]
    if suffix in (".cmd", ".bat"):
        return ["cmd", "/c"]
    return []


def build_arguments(parameters: Mapping[str, ParameterValue], prefix: str = "-") -> List[str]:
    """Turn a parameter mapping into argv entries, preserving mapping order.

    - ``True`` becomes a bare ``-key`` flag
    - ``False`` and ``None`` are omitted
    - lists become ``-key a,b``
    - everything else becomes ``-key value``
    """
    args: List[str] = []
    for key, value in parameters.items():
        flag = f"{prefix}{key}"
        if value is True:
            args.append(flag)
        elif value is False or value is None:
            continue
        elif isinstance(value, (list, tuple)):
            args.extend([flag, ",".join(str(item) for item in value)])
        else:
            args.extend([flag, str(value)])
    return args


def build_command(
    script_path: str,
    parameters: Mapping[str, ParameterValue],
    prefix: str = "-",
) -> List[str]:
    return [*interpreter_for(script_path), script_path, *build_arguments(parameters, prefix)]


def render_command(argv: Sequence[str]) -> str:
    """Printable command line; entries with whitespace or shell syntax are quoted.

    Only used for logs and reports. The process itself receives `argv`
    unchanged, without a shell.
    """
    return " ".join(shlex.quote(str(token)) for token in argv)
