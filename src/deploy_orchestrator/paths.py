"""Unified path constants for deploy-orchestrator.

Run artifacts live under the current working directory:
- config/orchestrator.json        # optional settings file
- reports/deployments/            # JSON deployment reports
- reports/deployments/latest.json # copy of the most recent report
"""

from pathlib import Path

DEFAULT_SETTINGS_PATH = Path("config/orchestrator.json")
REPORTS_DIR = Path("reports/deployments")
LATEST_REPORT_NAME = "latest.json"


def get_reports_dir(reports_dir=None) -> Path:
    """获取报告目录路径（按需创建）."""
    target = Path(reports_dir) if reports_dir else REPORTS_DIR
    target.mkdir(parents=True, exist_ok=True)
    return target


def get_latest_report_path(reports_dir=None, latest_name: str = LATEST_REPORT_NAME) -> Path:
    """Return the fixed "latest" report location inside `reports_dir`."""
    target = Path(reports_dir) if reports_dir else REPORTS_DIR
    return target / latest_name
