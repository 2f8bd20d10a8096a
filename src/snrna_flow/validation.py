"""Pre-flight validation checks for the snrna-flow pipeline."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from snrna_flow.config import AppConfig
from snrna_flow.exceptions import SnrnaFlowError, ValidationError
from snrna_flow.grouping import partition
from snrna_flow.io import check_sample_metadata, load_manifest
from snrna_flow.model import DOWNSTREAM_STAGES, GROUPED_STAGES, PER_SAMPLE_STAGES, StageName

logger = logging.getLogger(__name__)


def stages_to_run(config: AppConfig) -> List[StageName]:
    """Stages the configured run will invoke at least once (given samples exist)."""
    stages: List[StageName] = []
    if not config.preloaded:
        stages.extend(PER_SAMPLE_STAGES)
        if any(mode.is_grouped for mode in config.active_modes):
            stages.extend(GROUPED_STAGES)
    stages.extend(s for s in DOWNSTREAM_STAGES if s is not StageName.INFERCNV or config.infercnv.run)
    return stages


def validate_inputs(config: AppConfig) -> AppConfig:
    """
    Perform a comprehensive set of pre-flight checks on all pipeline inputs.

    Raises:
        ValidationError: if any check fails. The message lists every problem found.

    Returns:
        The same ``AppConfig`` instance, for chaining.
    """
    errors: list[str] = []

    # 1. Required inputs
    try:
        config.require_inputs()
    except SnrnaFlowError as e:
        logger.error(f"❌ {e}")
        raise ValidationError(str(e)) from e

    if not config.active_modes:
        errors.append("No run mode is enabled (input.run_each/run_all/run_by_patient/run_by_patient_wo_organoids)")

    # 2. Sample metadata
    try:
        check_sample_metadata(Path(config.input.sample_metadata_file))
        logger.info("✅ Sample metadata file found.")
    except SnrnaFlowError as e:
        errors.append(str(e))

    # 3. Manifest, sample directories and sample id conventions
    samples = []
    if not config.preloaded:
        try:
            logger.info(f"Validating manifest: {config.input.manifest_file}")
            samples = load_manifest(Path(config.input.manifest_file))
        except SnrnaFlowError as e:
            errors.append(f"Manifest validation failed: {e}")

    missing_dirs = [s for s in samples if not Path(s.source_dir).is_dir()]
    for sample in missing_dirs:
        errors.append(f"Sample '{sample.id}': input directory {sample.source_dir} does not exist")
    if samples and not missing_dirs:
        logger.info("✅ All sample directories listed in the manifest exist.")

    sample_ids = [s.id for s in samples]
    for mode in config.active_modes:
        for error in partition(mode, sample_ids).errors:
            errors.append(f"{mode.value}: {error}")

    # 4. Stage templates
    for stage in stages_to_run(config):
        template = config.stages.for_stage(stage).template
        if not Path(template).is_file():
            errors.append(f"Template for stage '{stage.value}' not found: {template}")

    if errors:
        for message in errors:
            logger.error(f"❌ {message}")
        logger.error("Input validation failed. Please fix the errors above before running the pipeline.")
        raise ValidationError("; ".join(errors))

    logger.info("🎉 All input validation checks passed successfully!")
    return config
