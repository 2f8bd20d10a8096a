"""Pydantic models for configuration validation."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from snrna_flow.exceptions import ConfigurationError
from snrna_flow.model import GroupLabel, RunMode, StageName


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class _PassThrough(BaseModel):
    """Parameter section handed to external stages without interpretation."""
    model_config = ConfigDict(frozen=True, extra="allow")


class InputConfig(_Frozen):
    manifest_file: Path | None = None
    sample_metadata_file: Path | None = None
    run_each: bool = True
    run_all: bool = False
    run_by_patient: bool = False
    run_by_patient_wo_organoids: bool = False


class OutputConfig(_Frozen):
    dir: Path = Path("./output/")


class FilterConfig(_PassThrough):
    min_features: int = 200
    max_features: int = 6000
    max_percent_mt: float = 5.0
    min_cells: int = 3


class ClusteringConfig(_PassThrough):
    dims: int = 30
    resolution: float = 0.8


class AnnotationConfig(_PassThrough):
    markers_file: Path | None = None


class InferCNVConfig(_PassThrough):
    run: bool = False
    reference_cell_types: list[str] = []


class ExecutorConfig(_Frozen):
    type: str = "local"
    conda_env: str | None = None


class StageConfig(_Frozen):
    template: Path
    interpreter: str = "Rscript"
    result_file: str = "result.rds"


def _stage_default(stage: StageName):
    return lambda: StageConfig(template=Path("templates") / f"{stage.value}.R")


class StagesConfig(_Frozen):
    loading: StageConfig = Field(default_factory=_stage_default(StageName.LOADING))
    filtering: StageConfig = Field(default_factory=_stage_default(StageName.FILTERING))
    merging: StageConfig = Field(default_factory=_stage_default(StageName.MERGING))
    integrating: StageConfig = Field(default_factory=_stage_default(StageName.INTEGRATING))
    clustering: StageConfig = Field(default_factory=_stage_default(StageName.CLUSTERING))
    annotating: StageConfig = Field(default_factory=_stage_default(StageName.ANNOTATING))
    infercnv: StageConfig = Field(default_factory=_stage_default(StageName.INFERCNV))

    def for_stage(self, stage: StageName) -> StageConfig:
        return getattr(self, stage.value)


class AppConfig(_Frozen):
    input: InputConfig = Field(default_factory=InputConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    preloaded: bool = False
    workers: int = Field(default_factory=lambda: os.cpu_count() or 1, ge=1)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    filter: FilterConfig = Field(default_factory=FilterConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    annotation: AnnotationConfig = Field(default_factory=AnnotationConfig)
    infercnv: InferCNVConfig = Field(default_factory=InferCNVConfig)
    stages: StagesConfig = Field(default_factory=StagesConfig)

    @property
    def active_modes(self) -> list[RunMode]:
        """Run modes switched on in the ``input`` section, in declaration order."""
        return [mode for mode in RunMode if getattr(self.input, mode.value)]

    @property
    def active_labels(self) -> list[GroupLabel]:
        return [mode.label for mode in self.active_modes]

    def require_inputs(self) -> None:
        """Raise ``ConfigurationError`` when a required input is not set."""
        missing = [
            f"input.{name}"
            for name in ("manifest_file", "sample_metadata_file")
            if getattr(self.input, name) is None
        ]
        if missing:
            raise ConfigurationError(f"Missing required parameters: {', '.join(missing)}")


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_overrides(config: AppConfig, overrides: dict[str, Any]) -> AppConfig:
    """Return a new config with nested ``overrides`` applied and re-validated."""
    data = _deep_merge(config.model_dump(), overrides)
    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration override:\n{e}") from e


def load_and_validate_config(config_path: Path | None = None) -> AppConfig:
    """Loads and validates the YAML configuration file.

    When ``config_path`` is None the defaults are returned.
    """
    if config_path is None:
        return AppConfig()
    try:
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}
        return AppConfig.model_validate(config_data)
    except FileNotFoundError:
        raise
    except (yaml.YAMLError, ValidationError) as e:
        raise ConfigurationError(f"Error parsing or validating config file {config_path}:\n{e}") from e
