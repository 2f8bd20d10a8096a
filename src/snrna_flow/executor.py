"""Command execution for external stage templates."""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)


class ExecutorError(RuntimeError):
    """Raised when executor fails to launch a command."""


@dataclass
class ExecResult:
    command: List[str]
    returncode: int
    stdout: str
    stderr: str
    elapsed_seconds: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class BaseExecutor:
    """Abstract executor interface."""

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> ExecResult:
        raise NotImplementedError


class LocalExecutor(BaseExecutor):
    """Runs commands on the current machine, optionally inside a conda env."""

    def __init__(self, conda_env: Optional[str] = None, conda_executable: str = "conda") -> None:
        self.conda_env = conda_env
        self.conda_exec = conda_executable

    def _build_command(self, args: Sequence[str]) -> List[str]:
        if self.conda_env:
            return [self.conda_exec, "run", "-n", self.conda_env, *args]
        return [str(a) for a in args]

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        extra_env: Optional[Mapping[str, str]] = None,
    ) -> ExecResult:
        full_cmd = self._build_command(args)
        process_env = os.environ.copy()
        if extra_env:
            process_env.update(extra_env)

        logger.debug(f"Running: {' '.join(shlex.quote(x) for x in full_cmd)}")
        start = time.monotonic()
        try:
            completed = subprocess.run(
                full_cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=process_env,
            )
        except FileNotFoundError as exc:
            missing = full_cmd[0] if full_cmd else "<unknown>"
            raise ExecutorError(f"Executable not found: {missing}") from exc
        elapsed = time.monotonic() - start

        return ExecResult(
            command=list(full_cmd),
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            elapsed_seconds=elapsed,
        )


def create_executor(exec_type: str = "local", conda_env: Optional[str] = None) -> BaseExecutor:
    exec_type = exec_type.lower()
    if exec_type == "local":
        return LocalExecutor(conda_env=conda_env)
    raise ValueError(f"Unsupported executor type: {exec_type}")
