"""Re-keying of per-sample artifacts into run-mode partitions.

Each ``RunMode`` is an independent partition of the same upstream samples:

* ``run_each`` keeps every sample on its own (``by_sample``).
* ``run_by_patient`` groups samples sharing the patient prefix of their id
  (``P1_a`` and ``P1_b`` both belong to ``P1``).
* ``run_by_patient_wo_organoids`` does the same after dropping organoid
  samples.
* ``run_all`` collapses everything into the single ``integrated`` group.

Sample ids used by the patient modes must look like ``<patient>_<suffix>``;
anything else raises ``MalformedKeyError`` rather than being coerced.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence, Tuple, TypeVar

from snrna_flow.exceptions import MalformedKeyError
from snrna_flow.model import Artifact, GroupLabel, RunMode, RunTuple

INTEGRATED_GROUP_ID = "integrated"
ORGANOID_PATTERN = re.compile("organoid", re.IGNORECASE)
_PATIENT_ID = re.compile(r"^([^_]+)_(.+)$")

T = TypeVar("T")


def parse_patient_id(sample_id: str) -> str:
    """Return the patient part of ``<patient>_<suffix>``.

    >>> parse_patient_id("P1_tissue1")
    'P1'
    """
    match = _PATIENT_ID.match(sample_id)
    if match is None:
        raise MalformedKeyError(sample_id)
    return match.group(1)


def is_organoid(sample_id: str) -> bool:
    return ORGANOID_PATTERN.search(sample_id) is not None


@dataclass
class PartitionResult:
    """Group membership for one run mode."""
    mode: RunMode
    groups: Dict[str, List[str]] = field(default_factory=dict)
    errors: List[MalformedKeyError] = field(default_factory=list)

    @property
    def label(self) -> GroupLabel:
        return self.mode.label

    def __len__(self) -> int:
        return len(self.groups)


def partition(mode: RunMode, sample_ids: Iterable[str]) -> PartitionResult:
    """Assign sample ids to group ids for ``mode``.

    Samples whose id cannot be keyed are collected in ``errors`` and left out
    of every group; the other samples are unaffected.
    """
    result = PartitionResult(mode=mode)
    for sample_id in sample_ids:
        if mode is RunMode.RUN_EACH:
            group_id = sample_id
        elif mode is RunMode.RUN_ALL:
            group_id = INTEGRATED_GROUP_ID
        else:
            if mode is RunMode.RUN_BY_PATIENT_WO_ORGANOIDS and is_organoid(sample_id):
                continue
            try:
                group_id = parse_patient_id(sample_id)
            except MalformedKeyError as e:
                result.errors.append(e)
                continue
        result.groups.setdefault(group_id, []).append(sample_id)
    return result


def group_artifacts(mode: RunMode, pairs: Iterable[Tuple[str, Artifact]]) -> List[RunTuple]:
    """Group ``(sample_id, artifact)`` pairs into RunTuples for ``mode``.

    Raises:
        MalformedKeyError: for the first sample id that cannot be keyed.
    """
    pairs = list(pairs)
    parts = partition(mode, (sample_id for sample_id, _ in pairs))
    if parts.errors:
        raise parts.errors[0]

    by_sample = {sample_id: artifact for sample_id, artifact in pairs}
    return [
        RunTuple(
            group_id=group_id,
            group_label=mode.label,
            artifacts=tuple(by_sample[s] for s in members),
        )
        for group_id, members in parts.groups.items()
    ]


def group_all(
    modes: Sequence[RunMode], pairs: Iterable[Tuple[str, Artifact]]
) -> Dict[GroupLabel, List[RunTuple]]:
    """Build one independent partition per active mode."""
    pairs = list(pairs)
    return {mode.label: group_artifacts(mode, pairs) for mode in modes}


def aggregate_runs(*partitions: Iterable[T]) -> List[T]:
    """Union of partitions; no deduplication across or within them."""
    runs: List[T] = []
    for part in partitions:
        runs.extend(part)
    return runs
