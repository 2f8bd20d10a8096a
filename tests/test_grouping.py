"""Tests for re-keying per-sample artifacts into run-mode partitions."""
from __future__ import annotations

from pathlib import Path

import pytest

from snrna_flow.exceptions import MalformedKeyError
from snrna_flow.grouping import (
    INTEGRATED_GROUP_ID,
    aggregate_runs,
    group_all,
    group_artifacts,
    is_organoid,
    parse_patient_id,
    partition,
)
from snrna_flow.model import Artifact, GroupLabel, RunMode, StageName


def _artifact(sample_id: str) -> Artifact:
    return Artifact(
        producing_stage=StageName.FILTERING,
        group_id=sample_id,
        group_label=GroupLabel.BY_SAMPLE,
        path=Path("output") / "by_sample" / sample_id / "filtering" / "result.rds",
    )


def _pairs(*sample_ids: str) -> list[tuple[str, Artifact]]:
    return [(sid, _artifact(sid)) for sid in sample_ids]


@pytest.mark.parametrize(
    "sample_id, patient",
    [("P1_a", "P1"), ("P1_tissue_2", "P1"), ("HB17_organoid1", "HB17"), ("P1__x", "P1")],
)
def test_parse_patient_id(sample_id: str, patient: str) -> None:
    assert parse_patient_id(sample_id) == patient


@pytest.mark.parametrize("sample_id", ["P1", "_a", "P1_", ""])
def test_parse_patient_id_rejects_malformed(sample_id: str) -> None:
    with pytest.raises(MalformedKeyError) as excinfo:
        parse_patient_id(sample_id)
    assert excinfo.value.sample_id == sample_id


def test_is_organoid_is_case_insensitive() -> None:
    assert is_organoid("P1_organoid1")
    assert is_organoid("P1_Organoid")
    assert not is_organoid("P1_tissue1")


def test_run_each_yields_one_tuple_per_sample() -> None:
    runs = group_artifacts(RunMode.RUN_EACH, _pairs("P1_a", "P1_b", "P2_a"))

    assert len(runs) == 3
    for run in runs:
        assert run.group_label is GroupLabel.BY_SAMPLE
        assert len(run.artifacts) == 1
        assert run.artifacts[0].group_id == run.group_id


def test_run_by_patient_groups_on_patient_prefix() -> None:
    pairs = _pairs("P1_a", "P1_b", "P2_a")
    runs = {run.group_id: run for run in group_artifacts(RunMode.RUN_BY_PATIENT, pairs)}

    assert set(runs) == {"P1", "P2"}
    assert runs["P1"].group_label is GroupLabel.BY_PATIENT
    assert runs["P1"].artifact_paths == {pairs[0][1].path, pairs[1][1].path}
    assert runs["P2"].artifact_paths == {pairs[2][1].path}


def test_run_by_patient_is_order_independent() -> None:
    forward = group_artifacts(RunMode.RUN_BY_PATIENT, _pairs("P1_a", "P2_a", "P1_b"))
    backward = group_artifacts(RunMode.RUN_BY_PATIENT, _pairs("P1_b", "P2_a", "P1_a"))

    assert {(r.group_id, r.artifact_paths) for r in forward} == {(r.group_id, r.artifact_paths) for r in backward}


def test_run_by_patient_wo_organoids_excludes_organoid_samples() -> None:
    pairs = _pairs("P1_organoid1", "P1_tissue1", "P2_tissue1")
    runs = {run.group_id: run for run in group_artifacts(RunMode.RUN_BY_PATIENT_WO_ORGANOIDS, pairs)}

    assert set(runs) == {"P1", "P2"}
    assert [a.group_id for a in runs["P1"].artifacts] == ["P1_tissue1"]
    assert [a.group_id for a in runs["P2"].artifacts] == ["P2_tissue1"]
    excluded = pairs[0][1].path
    assert all(excluded not in run.artifact_paths for run in runs.values())
    assert all(run.group_label is GroupLabel.BY_PATIENT_WO_ORGANOIDS for run in runs.values())


def test_run_by_patient_wo_organoids_all_excluded_is_empty() -> None:
    assert group_artifacts(RunMode.RUN_BY_PATIENT_WO_ORGANOIDS, _pairs("P1_organoid1", "P2_organoid")) == []


def test_run_all_collapses_to_single_integrated_tuple() -> None:
    pairs = _pairs("P1_a", "P1_b", "P2_a", "P3_organoid")
    runs = group_artifacts(RunMode.RUN_ALL, pairs)

    assert len(runs) == 1
    (run,) = runs
    assert run.group_id == INTEGRATED_GROUP_ID
    assert run.group_label is GroupLabel.INTEGRATED
    assert sorted(a.group_id for a in run.artifacts) == sorted(sid for sid, _ in pairs)


@pytest.mark.parametrize("mode", list(RunMode))
def test_empty_input_yields_no_tuples(mode: RunMode) -> None:
    assert group_artifacts(mode, []) == []


def test_malformed_id_raises_for_patient_modes() -> None:
    with pytest.raises(MalformedKeyError, match="P3"):
        group_artifacts(RunMode.RUN_BY_PATIENT, _pairs("P1_a", "P3"))


def test_malformed_id_is_fine_for_identity_and_integrated_modes() -> None:
    assert len(group_artifacts(RunMode.RUN_EACH, _pairs("P1_a", "P3"))) == 2
    assert len(group_artifacts(RunMode.RUN_ALL, _pairs("P1_a", "P3"))[0].artifacts) == 2


def test_partition_collects_malformed_ids_and_keeps_the_rest() -> None:
    parts = partition(RunMode.RUN_BY_PATIENT, ["P1_a", "bad", "P1_b", "alsobad"])

    assert parts.groups == {"P1": ["P1_a", "P1_b"]}
    assert [e.sample_id for e in parts.errors] == ["bad", "alsobad"]
    assert parts.label is GroupLabel.BY_PATIENT


def test_excluded_organoid_with_malformed_id_is_not_an_error() -> None:
    parts = partition(RunMode.RUN_BY_PATIENT_WO_ORGANOIDS, ["organoid", "P1_a"])

    assert parts.errors == []
    assert parts.groups == {"P1": ["P1_a"]}


def test_group_ids_may_collide_across_partitions() -> None:
    partitions = group_all([RunMode.RUN_EACH, RunMode.RUN_ALL], _pairs("integrated", "P1_a"))

    per_sample = {r.group_id: r for r in partitions[GroupLabel.BY_SAMPLE]}
    (integrated,) = partitions[GroupLabel.INTEGRATED]
    assert per_sample["integrated"].key != integrated.key
    assert len(per_sample["integrated"].artifacts) == 1
    assert len(integrated.artifacts) == 2


def test_aggregate_runs_keeps_every_tuple() -> None:
    pairs = _pairs("P1_a", "P1_b")
    partitions = group_all([RunMode.RUN_EACH, RunMode.RUN_BY_PATIENT, RunMode.RUN_ALL], pairs)

    runs = aggregate_runs(*partitions.values())

    assert len(runs) == 2 + 1 + 1
    # Each sample reaches three run results, one per partition.
    assert sum(pairs[0][1] in r.artifacts for r in runs) == 3


def test_aggregate_runs_does_not_deduplicate() -> None:
    runs = group_artifacts(RunMode.RUN_EACH, _pairs("P1_a"))
    assert len(aggregate_runs(runs, runs)) == 2
