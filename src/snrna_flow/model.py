"""Pydantic models for pipeline data artifacts."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field


class GroupLabel(str, Enum):
    """Partition a run result belongs to; also the top-level output directory."""
    BY_SAMPLE = "by_sample"
    BY_PATIENT = "by_patient"
    BY_PATIENT_WO_ORGANOIDS = "by_patient_wo_organoids"
    INTEGRATED = "integrated"


class RunMode(str, Enum):
    """Independent partitioning strategies, named after their ``input`` switches."""
    RUN_EACH = "run_each"
    RUN_BY_PATIENT = "run_by_patient"
    RUN_BY_PATIENT_WO_ORGANOIDS = "run_by_patient_wo_organoids"
    RUN_ALL = "run_all"

    @property
    def label(self) -> GroupLabel:
        return _MODE_LABELS[self]

    @property
    def is_grouped(self) -> bool:
        return self is not RunMode.RUN_EACH


_MODE_LABELS = {
    RunMode.RUN_EACH: GroupLabel.BY_SAMPLE,
    RunMode.RUN_BY_PATIENT: GroupLabel.BY_PATIENT,
    RunMode.RUN_BY_PATIENT_WO_ORGANOIDS: GroupLabel.BY_PATIENT_WO_ORGANOIDS,
    RunMode.RUN_ALL: GroupLabel.INTEGRATED,
}


class StageName(str, Enum):
    LOADING = "loading"
    FILTERING = "filtering"
    MERGING = "merging"
    INTEGRATING = "integrating"
    CLUSTERING = "clustering"
    ANNOTATING = "annotating"
    INFERCNV = "infercnv"


PER_SAMPLE_STAGES = (StageName.LOADING, StageName.FILTERING)
GROUPED_STAGES = (StageName.MERGING, StageName.INTEGRATING)
DOWNSTREAM_STAGES = (StageName.CLUSTERING, StageName.ANNOTATING, StageName.INFERCNV)


def run_result_stage(label: GroupLabel) -> StageName:
    """Stage whose output is the run result handed to the downstream pipeline."""
    if label is GroupLabel.BY_SAMPLE:
        return StageName.FILTERING
    return StageName.INTEGRATING


class SampleRecord(BaseModel):
    """One manifest row."""
    model_config = ConfigDict(frozen=True)

    id: str
    id_column: str
    source_dir: Path


class Artifact(BaseModel):
    """A result file written by exactly one stage invocation."""
    model_config = ConfigDict(frozen=True)

    producing_stage: StageName
    group_id: str
    group_label: GroupLabel
    path: Path

    @property
    def key(self) -> Tuple[str, GroupLabel]:
        return self.group_id, self.group_label


class SkipSignal(BaseModel):
    """Returned by a stage that completed but declined to produce a result."""
    model_config = ConfigDict(frozen=True)

    stage: StageName
    group_id: str
    group_label: GroupLabel
    reason: str = ""


class RunTuple(BaseModel):
    """Grouped unit of work: a key within a partition plus its artifacts."""
    model_config = ConfigDict(frozen=True)

    group_id: str
    group_label: GroupLabel
    artifacts: Tuple[Artifact, ...] = ()

    @property
    def key(self) -> Tuple[str, GroupLabel]:
        return self.group_id, self.group_label

    @property
    def artifact_paths(self) -> frozenset[Path]:
        return frozenset(a.path for a in self.artifacts)


class InvocationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    BLOCKED = "blocked"


class InvocationOutcome(BaseModel):
    """What happened to one ``(stage, group_label, group_id)`` invocation."""
    model_config = ConfigDict(frozen=True)

    stage: str
    group_id: str
    group_label: GroupLabel
    status: InvocationStatus
    artifact: Optional[Artifact] = None
    message: Optional[str] = None
    elapsed_seconds: float = 0.0


class RunReport(BaseModel):
    """Represents the outcome of one pipeline execution."""
    started: datetime
    finished: Optional[datetime] = None
    preloaded: bool = False
    outcomes: List[InvocationOutcome] = Field(default_factory=list)
    run_results: List[RunTuple] = Field(default_factory=list)

    @property
    def failed(self) -> List[InvocationOutcome]:
        return [o for o in self.outcomes if o.status is InvocationStatus.FAILED]

    @property
    def partially_failed(self) -> bool:
        return bool(self.failed)

    def summary(self) -> Dict[str, int]:
        """Count of outcomes per status."""
        counts = {status.value: 0 for status in InvocationStatus}
        for outcome in self.outcomes:
            counts[outcome.status.value] += 1
        return counts

    def get_outcome(
        self, stage: str, group_label: GroupLabel, group_id: str
    ) -> Optional[InvocationOutcome]:
        for outcome in self.outcomes:
            if (outcome.stage, outcome.group_label, outcome.group_id) == (stage, group_label, group_id):
                return outcome
        return None

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "stage": o.stage,
                "group_label": o.group_label.value,
                "group_id": o.group_id,
                "status": o.status.value,
                "artifact": str(o.artifact.path) if o.artifact else None,
                "message": o.message,
                "elapsed_seconds": o.elapsed_seconds,
            }
            for o in self.outcomes
        ]
        columns = ["stage", "group_label", "group_id", "status", "artifact", "message", "elapsed_seconds"]
        return pd.DataFrame(rows, columns=columns)
