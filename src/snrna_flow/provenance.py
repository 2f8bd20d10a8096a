"""Module for capturing and recording data provenance for a pipeline run."""

import json
import logging
import platform
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from snrna_flow.config import AppConfig

logger = logging.getLogger(__name__)


def _run_command(command: list[str]) -> Optional[str]:
    """Helper to run a shell command and return its output."""
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=True,
            encoding='utf-8'
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, FileNotFoundError, OSError) as e:
        logger.debug(f"Command {command} failed: {e}")
        return None


def get_git_info(template_dir: Path) -> Dict[str, Any]:
    """Git commit of the directory holding the stage templates, if it is a repository."""
    commit = _run_command(["git", "-C", str(template_dir), "rev-parse", "HEAD"])
    if commit is None:
        return {"status": "Git information unavailable."}
    status = _run_command(["git", "-C", str(template_dir), "status", "--porcelain"])
    return {"commit": commit, "is_dirty": bool(status)}


def get_platform_info() -> Dict[str, str]:
    """Gets information about the execution platform."""
    return {
        "python_version": sys.version,
        "platform": platform.platform(),
        "architecture": platform.machine(),
    }


def _read_text(path: Optional[Path]) -> Dict[str, Any]:
    if path is None:
        return {"error": "not configured"}
    try:
        return {"filename": Path(path).name, "content": Path(path).read_text(encoding="utf-8")}
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to read {path} for provenance: {e}")
        return {"filename": Path(path).name, "error": str(e)}


def generate_provenance_report(config: AppConfig, output_dir: Path) -> Dict[str, Any]:
    """
    Generates a provenance report for a pipeline run and saves it as
    ``provenance.json`` in ``output_dir``.

    Failures are logged as warnings; this never interrupts the run.
    """
    report: Dict[str, Any] = {
        "run_timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "provenance_version": "1.0",
        "platform": get_platform_info(),
        "templates_git": get_git_info(Path(config.stages.loading.template).parent),
        "inputs": {
            "manifest": _read_text(config.input.manifest_file),
            "configuration": config.model_dump(mode="json"),
        },
    }

    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        provenance_file = output_dir / "provenance.json"
        with open(provenance_file, "w", encoding="utf-8") as f:
            json.dump(report, f, indent=2, default=str)
        logger.info(f"Provenance report saved to {provenance_file}")
    except (OSError, TypeError) as e:
        logger.error(f"Failed to save provenance report: {e}")

    return report
