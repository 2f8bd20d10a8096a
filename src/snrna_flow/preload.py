"""Rebuild run results from a previous run's output directory."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Mapping, Sequence

from snrna_flow.model import Artifact, GroupLabel, RunTuple, StageName, run_result_stage
from snrna_flow.pipeline import PipelineStage

logger = logging.getLogger(__name__)


def discover_run_results(
    output_dir: Path,
    labels: Sequence[GroupLabel],
    stages: Mapping[StageName, PipelineStage],
) -> List[RunTuple]:
    """Scan ``{output_dir}/{label}/*/{stage}/{result_file}`` for every label.

    The returned RunTuples carry the same group ids, labels and artifact paths
    a fresh run would have produced for those labels.
    """
    output_dir = Path(output_dir)
    runs: List[RunTuple] = []
    for label in labels:
        stage = stages[run_result_stage(label)]
        pattern = f"{label.value}/*/{stage.stage_name.value}/{stage.result_file}"
        found = sorted(p for p in output_dir.glob(pattern) if p.is_file())
        if not found:
            logger.warning(f"No preloaded {stage.stage_name.value} results found for {label.value} in {output_dir}")
        for path in found:
            group_label, group_id, stage_name, _ = path.relative_to(output_dir).parts
            artifact = Artifact(
                producing_stage=StageName(stage_name),
                group_id=group_id,
                group_label=GroupLabel(group_label),
                path=path,
            )
            runs.append(RunTuple(group_id=group_id, group_label=artifact.group_label, artifacts=(artifact,)))
        logger.info(f"Preloaded {len(found)} {label.value} run results")
    return runs
