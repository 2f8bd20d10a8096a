"""Builds the stage graph for a run and executes it.

Per sample::

    loading -> filtering

Per group of every active grouped mode (waits for all member samples)::

    filtering x N -> merging -> integrating

Per run result, whichever mode produced it (``by_sample`` results come
straight from filtering)::

    clustering -> annotating [-> infercnv]
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Hashable, List, Mapping, Optional, Sequence, Tuple, Union

from snrna_flow.config import AppConfig
from snrna_flow.executor import BaseExecutor
from snrna_flow.grouping import aggregate_runs, partition
from snrna_flow.io import check_sample_metadata, load_manifest
from snrna_flow.model import (
    Artifact,
    GroupLabel,
    InvocationOutcome,
    InvocationStatus,
    RunMode,
    RunReport,
    RunTuple,
    SampleRecord,
    SkipSignal,
    StageName,
)
from snrna_flow.pipeline import PipelineStage, build_stages, write_params_snapshot
from snrna_flow.preload import discover_run_results
from snrna_flow.scheduler import Scheduler, TaskGraph, TaskResult, TaskState
from snrna_flow.utils import _write_json, ensure_dir

logger = logging.getLogger(__name__)

TaskKey = Tuple[str, GroupLabel, str]
StageValue = Union[Artifact, SkipSignal]
GROUPING_STAGE = "grouping"
REPORT_FILE = "run_report.json"
PRELOADED_STAGE = "preloaded"


def task_key(stage: StageName, label: GroupLabel, group_id: str) -> TaskKey:
    return stage.value, label, group_id


@dataclass
class Plan:
    """A task graph plus the keys whose values are run results."""
    graph: TaskGraph = field(default_factory=TaskGraph)
    run_keys: Dict[GroupLabel, List[TaskKey]] = field(default_factory=dict)
    failures: List[InvocationOutcome] = field(default_factory=list)


class Orchestrator:
    def __init__(
        self,
        config: AppConfig,
        stages: Optional[Mapping[StageName, PipelineStage]] = None,
        executor: Optional[BaseExecutor] = None,
    ) -> None:
        self.config = config
        self.stages = dict(stages) if stages is not None else build_stages(config, executor)
        self.scheduler = Scheduler(config.workers)

    @property
    def output_dir(self) -> Path:
        return Path(self.config.output.dir)

    @property
    def downstream_stages(self) -> List[StageName]:
        stages = [StageName.CLUSTERING, StageName.ANNOTATING]
        if self.config.infercnv.run:
            stages.append(StageName.INFERCNV)
        return stages

    # -- task bodies -------------------------------------------------------

    def _single_input(
        self, stage: StageName, label: GroupLabel, group_id: str
    ) -> Callable[[StageValue], StageValue]:
        def run(upstream: StageValue) -> StageValue:
            if isinstance(upstream, SkipSignal):
                return SkipSignal(
                    stage=stage,
                    group_id=group_id,
                    group_label=label,
                    reason=f"upstream {upstream.stage.value} skipped",
                )
            return self.stages[stage].invoke((group_id, label), [upstream], self.config)

        return run

    def _load(self, sample: SampleRecord) -> Callable[[], StageValue]:
        def run() -> StageValue:
            return self.stages[StageName.LOADING].invoke(
                (sample.id, GroupLabel.BY_SAMPLE),
                [sample.source_dir],
                self.config,
                ["--id-col", sample.id_column],
            )

        return run

    def _merge(self, label: GroupLabel, group_id: str) -> Callable[..., StageValue]:
        def run(*filtered: StageValue) -> StageValue:
            group = RunTuple(
                group_id=group_id,
                group_label=label,
                artifacts=tuple(f for f in filtered if isinstance(f, Artifact)),
            )
            if not group.artifacts:
                return SkipSignal(
                    stage=StageName.MERGING,
                    group_id=group_id,
                    group_label=label,
                    reason="every member sample was skipped",
                )
            dropped = len(filtered) - len(group.artifacts)
            if dropped:
                logger.info(f"{label.value}/{group_id}: merging without {dropped} skipped sample(s)")
            return self.stages[StageName.MERGING].invoke(group.key, group.artifacts, self.config)

        return run

    def _preloaded(self, artifact: Artifact) -> Callable[[], Artifact]:
        return lambda: artifact

    # -- planning ----------------------------------------------------------

    def _plan_samples(self, plan: Plan, samples: Sequence[SampleRecord]) -> None:
        for sample in samples:
            load_key = plan.graph.add(
                task_key(StageName.LOADING, GroupLabel.BY_SAMPLE, sample.id), self._load(sample)
            )
            plan.graph.add(
                task_key(StageName.FILTERING, GroupLabel.BY_SAMPLE, sample.id),
                self._single_input(StageName.FILTERING, GroupLabel.BY_SAMPLE, sample.id),
                deps=[load_key],
            )

    def _plan_mode(self, plan: Plan, mode: RunMode, sample_ids: Sequence[str]) -> List[TaskKey]:
        parts = partition(mode, sample_ids)
        label = mode.label
        for error in parts.errors:
            logger.error(f"[{GROUPING_STAGE}] {label.value}: {error}")
            plan.failures.append(
                InvocationOutcome(
                    stage=GROUPING_STAGE,
                    group_id=error.sample_id,
                    group_label=label,
                    status=InvocationStatus.FAILED,
                    message=str(error),
                )
            )
        if not parts.groups:
            logger.info(f"{mode.value}: no eligible samples, nothing to run for {label.value}")
            return []

        if not mode.is_grouped:
            return [task_key(StageName.FILTERING, GroupLabel.BY_SAMPLE, sid) for sid in parts.groups]

        run_keys = []
        for group_id, members in parts.groups.items():
            merge_key = plan.graph.add(
                task_key(StageName.MERGING, label, group_id),
                self._merge(label, group_id),
                deps=[task_key(StageName.FILTERING, GroupLabel.BY_SAMPLE, sid) for sid in members],
            )
            run_keys.append(
                plan.graph.add(
                    task_key(StageName.INTEGRATING, label, group_id),
                    self._single_input(StageName.INTEGRATING, label, group_id),
                    deps=[merge_key],
                )
            )
        logger.info(f"{mode.value}: {len(run_keys)} group(s) for {label.value}")
        return run_keys

    def _plan_downstream(self, plan: Plan, run_key: Hashable, label: GroupLabel, group_id: str) -> None:
        previous = run_key
        for stage in self.downstream_stages:
            previous = plan.graph.add(
                task_key(stage, label, group_id),
                self._single_input(stage, label, group_id),
                deps=[previous],
            )

    def plan(self, samples: Sequence[SampleRecord]) -> Plan:
        """Task graph for a full run over ``samples``."""
        plan = Plan()
        self._plan_samples(plan, samples)
        sample_ids = [s.id for s in samples]
        for mode in self.config.active_modes:
            plan.run_keys[mode.label] = self._plan_mode(plan, mode, sample_ids)

        for stage_name, label, group_id in aggregate_runs(*plan.run_keys.values()):
            self._plan_downstream(plan, (stage_name, label, group_id), label, group_id)
        return plan

    def plan_preloaded(self, runs: Sequence[RunTuple]) -> Plan:
        """Task graph for the downstream pipeline over already computed run results."""
        plan = Plan()
        for run in runs:
            artifact = run.artifacts[0]
            key = (PRELOADED_STAGE, run.group_label, run.group_id)
            plan.graph.add(key, self._preloaded(artifact))
            plan.run_keys.setdefault(run.group_label, []).append(key)
            self._plan_downstream(plan, key, run.group_label, run.group_id)
        return plan

    # -- execution ---------------------------------------------------------

    @staticmethod
    def _outcome(key: TaskKey, result: TaskResult) -> InvocationOutcome:
        stage, label, group_id = key
        status, artifact, message = InvocationStatus.SUCCEEDED, None, None
        if result.state is TaskState.FAILED:
            status, message = InvocationStatus.FAILED, str(result.error)
            logger.error(f"Stage {stage} failed for {label.value}/{group_id}: {result.error}")
        elif result.state is TaskState.BLOCKED:
            blocker_stage, blocker_label, blocker_id = result.blocked_by
            status = InvocationStatus.BLOCKED
            message = f"upstream {blocker_stage} failed for {blocker_label.value}/{blocker_id}"
            logger.warning(f"Stage {stage} not run for {label.value}/{group_id}: {message}")
        elif isinstance(result.value, SkipSignal):
            status, message = InvocationStatus.SKIPPED, result.value.reason
        else:
            artifact = result.value
        return InvocationOutcome(
            stage=stage,
            group_id=group_id,
            group_label=label,
            status=status,
            artifact=artifact,
            message=message,
            elapsed_seconds=result.elapsed_seconds,
        )

    def _discard_stale_results(self, results: Mapping[Hashable, TaskResult]) -> None:
        """Keys that produced no artifact in this run must not leave one on disk."""
        for key, result in results.items():
            stage, label, group_id = key
            if stage == PRELOADED_STAGE or (result.ok and isinstance(result.value, Artifact)):
                continue
            self.stages[StageName(stage)].clear_outputs(self.output_dir, label, group_id, keep_flag=True)

    @staticmethod
    def collect_run_results(plan: Plan, results: Mapping[Hashable, TaskResult]) -> List[RunTuple]:
        """Run results per label, unioned across labels."""
        partitions = []
        for label, keys in plan.run_keys.items():
            part = []
            for key in keys:
                result = results[key]
                if result.ok and isinstance(result.value, Artifact):
                    part.append(RunTuple(group_id=key[2], group_label=label, artifacts=(result.value,)))
            partitions.append(part)
        return aggregate_runs(*partitions)

    def run(self) -> RunReport:
        """Execute one pipeline run and write ``run_report.json`` to the output dir."""
        self.config.require_inputs()
        report = RunReport(started=datetime.now(timezone.utc), preloaded=self.config.preloaded)
        output_dir = ensure_dir(self.output_dir)
        write_params_snapshot(self.config)

        if self.config.preloaded:
            labels = self.config.active_labels
            logger.info(f"Preloaded mode: discovering run results for {[label.value for label in labels]}")
            plan = self.plan_preloaded(discover_run_results(output_dir, labels, self.stages))
        else:
            samples = load_manifest(Path(self.config.input.manifest_file))
            check_sample_metadata(Path(self.config.input.sample_metadata_file))
            plan = self.plan(samples)

        logger.info(f"Scheduling {len(plan.graph)} task(s) on {self.scheduler.workers} worker(s)")
        results = self.scheduler.run(plan.graph)
        self._discard_stale_results(results)

        report.outcomes = list(plan.failures)
        report.outcomes.extend(
            self._outcome(key, result) for key, result in results.items() if key[0] != PRELOADED_STAGE
        )
        report.run_results = self.collect_run_results(plan, results)
        report.finished = datetime.now(timezone.utc)

        counts = report.summary()
        logger.info(f"Run finished: {counts}")
        if report.partially_failed:
            logger.error(f"{len(report.failed)} invocation(s) failed; run is partially complete")
        _write_json(output_dir / REPORT_FILE, report.model_dump(mode="json"))
        return report
