"""Class-based stage architecture for snrna-flow.

Every stage, per-sample or grouped, is invoked the same way: a key, the input
paths for that key and the run configuration go in; an ``Artifact`` (or a
``SkipSignal``) comes out. The result always lands at::

    {output.dir}/{group_label}/{group_id}/{stage_name}/{result_file}
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Sequence, Tuple, Union

from snrna_flow.config import AppConfig, StageConfig
from snrna_flow.exceptions import StageExecutionError
from snrna_flow.executor import BaseExecutor, ExecutorError, LocalExecutor, create_executor
from snrna_flow.model import Artifact, GroupLabel, SkipSignal, StageName
from snrna_flow.utils import _write_json, ensure_dir, tail

logger = logging.getLogger(__name__)

SKIP_FLAG = "SKIPPED"
PARAMS_FILE = "params.json"

Key = Tuple[str, GroupLabel]
StageInput = Union[Artifact, Path]


def params_path(config: AppConfig) -> Path:
    return Path(config.output.dir) / PARAMS_FILE


def write_params_snapshot(config: AppConfig) -> Path:
    """Persist the frozen configuration handed to every external stage."""
    path = params_path(config)
    _write_json(path, config.model_dump(mode="json"))
    return path


class PipelineStage(ABC):
    """Abstract base class for a pipeline stage."""

    result_file: str = "result.rds"

    @property
    @abstractmethod
    def stage_name(self) -> StageName:
        raise NotImplementedError

    def stage_dir(self, output_root: Path, group_label: GroupLabel, group_id: str) -> Path:
        return Path(output_root) / group_label.value / group_id / self.stage_name.value

    def output_path(self, output_root: Path, group_label: GroupLabel, group_id: str) -> Path:
        return self.stage_dir(output_root, group_label, group_id) / self.result_file

    def clear_outputs(
        self, output_root: Path, group_label: GroupLabel, group_id: str, keep_flag: bool = False
    ) -> None:
        """Remove an earlier run's result (and skip flag) for this key."""
        stage_dir = self.stage_dir(output_root, group_label, group_id)
        names = [self.result_file] if keep_flag else [self.result_file, SKIP_FLAG]
        for name in names:
            (stage_dir / name).unlink(missing_ok=True)

    @abstractmethod
    def invoke(
        self,
        key: Key,
        inputs: Sequence[StageInput],
        config: AppConfig,
        extra_args: Sequence[str] = (),
    ) -> Union[Artifact, SkipSignal]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.stage_name.value})"


class ExternalStage(PipelineStage):
    """Runs a template script once per key through an executor.

    The template is called as::

        <interpreter> <template> --id ID --label LABEL --output RESULT
            --params params.json [extra args] --inputs PATH [PATH ...]

    It must exit 0 and either write RESULT, or write a ``SKIPPED`` file
    (optionally holding a reason) next to it to decline the key.
    """

    def __init__(
        self,
        stage_name: StageName,
        stage_config: StageConfig,
        executor: BaseExecutor | None = None,
    ) -> None:
        self._stage_name = stage_name
        self.template = Path(stage_config.template)
        self.interpreter = stage_config.interpreter
        self.result_file = stage_config.result_file
        self.executor = executor or LocalExecutor()

    @property
    def stage_name(self) -> StageName:
        return self._stage_name

    def build_command(
        self,
        key: Key,
        inputs: Sequence[StageInput],
        config: AppConfig,
        extra_args: Sequence[str] = (),
    ) -> list[str]:
        group_id, group_label = key
        input_paths = [str(i.path if isinstance(i, Artifact) else i) for i in inputs]
        return [
            self.interpreter,
            str(self.template),
            "--id", group_id,
            "--label", group_label.value,
            "--output", str(self.output_path(config.output.dir, group_label, group_id)),
            "--params", str(params_path(config)),
            *extra_args,
            "--inputs", *input_paths,
        ]

    def invoke(
        self,
        key: Key,
        inputs: Sequence[StageInput],
        config: AppConfig,
        extra_args: Sequence[str] = (),
    ) -> Union[Artifact, SkipSignal]:
        group_id, group_label = key
        if not inputs:
            raise StageExecutionError(self.stage_name.value, group_label.value, group_id, "no input artifacts")

        stage_dir = ensure_dir(self.stage_dir(config.output.dir, group_label, group_id))
        result = stage_dir / self.result_file
        flag = stage_dir / SKIP_FLAG
        # Leftovers from an earlier run must not be mistaken for this run's output.
        self.clear_outputs(config.output.dir, group_label, group_id)

        command = self.build_command(key, inputs, config, extra_args)
        logger.info(f"Starting {self.stage_name.value} for {group_label.value}/{group_id}")
        try:
            outcome = self.executor.run(command)
        except ExecutorError as e:
            raise StageExecutionError(self.stage_name.value, group_label.value, group_id, str(e)) from e

        if not outcome.ok:
            raise StageExecutionError(
                self.stage_name.value,
                group_label.value,
                group_id,
                f"exited with code {outcome.returncode}\n{tail(outcome.stderr)}",
                returncode=outcome.returncode,
            )
        if result.exists():
            logger.info(
                f"Finished {self.stage_name.value} for {group_label.value}/{group_id} "
                f"in {outcome.elapsed_seconds:.1f}s"
            )
            return Artifact(
                producing_stage=self.stage_name,
                group_id=group_id,
                group_label=group_label,
                path=result,
            )
        if flag.exists():
            reason = flag.read_text(encoding="utf-8").strip()
            logger.warning(f"{self.stage_name.value} skipped {group_label.value}/{group_id}: {reason or 'no reason given'}")
            return SkipSignal(stage=self.stage_name, group_id=group_id, group_label=group_label, reason=reason)
        raise StageExecutionError(
            self.stage_name.value,
            group_label.value,
            group_id,
            f"exited cleanly but wrote neither {result.name} nor {SKIP_FLAG}",
            returncode=outcome.returncode,
        )


def build_stages(config: AppConfig, executor: BaseExecutor | None = None) -> Dict[StageName, PipelineStage]:
    """Stage catalogue for ``config``; every stage shares one executor."""
    executor = executor or create_executor(config.executor.type, conda_env=config.executor.conda_env)
    return {
        stage: ExternalStage(stage, config.stages.for_stage(stage), executor)
        for stage in StageName
    }
