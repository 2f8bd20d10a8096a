"""Typer-powered CLI for the snrna-flow pipeline.

Commands:
- `run`: Executes the pipeline: per-sample loading and filtering, grouping by
  the enabled run modes, merging and integration per group, then clustering
  and annotation (and optionally inferCNV) for every run result.
- `validate`: Runs the pre-flight checks only.
- `plan`: Prints the stage invocations a run would dispatch, without running them.
- `configure`: Interactive generator for a `config.yaml` file.

Every option of `run` can also be set in the YAML file given with `--config`;
options on the command line win. `input.manifest_file` and
`input.sample_metadata_file` are required.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import typer

from snrna_flow import __version__
from snrna_flow.config import AppConfig, apply_overrides, load_and_validate_config
from snrna_flow.configure import generate_config_interactive
from snrna_flow.exceptions import ConfigurationError, SnrnaFlowError, ValidationError
from snrna_flow.io import load_manifest
from snrna_flow.log_config import setup_logging
from snrna_flow.orchestrator import Orchestrator
from snrna_flow.provenance import generate_provenance_report
from snrna_flow.validation import validate_inputs

logger = logging.getLogger(__name__)

app = typer.Typer(add_completion=False, help="Orchestrator for snRNA-seq loading, QC, integration, clustering and annotation")

CONFIG_OPTION = typer.Option(None, "--config", "-c", exists=True, dir_okay=False, help="YAML configuration file.")
MANIFEST_OPTION = typer.Option(None, "--manifest-file", help="Tab-separated manifest with columns id, id_col, dir.")
METADATA_OPTION = typer.Option(None, "--sample-metadata-file", help="Sample metadata table passed to the stages.")
OUTPUT_OPTION = typer.Option(None, "--output-dir", "-o", help="Output root directory [default: ./output/].")
RUN_EACH_OPTION = typer.Option(None, "--run-each/--no-run-each", help="Analyse every sample on its own.")
RUN_ALL_OPTION = typer.Option(None, "--run-all/--no-run-all", help="Integrate all samples into one run.")
BY_PATIENT_OPTION = typer.Option(None, "--run-by-patient/--no-run-by-patient", help="Group samples by patient.")
WO_ORGANOIDS_OPTION = typer.Option(
    None,
    "--run-by-patient-wo-organoids/--no-run-by-patient-wo-organoids",
    help="Group samples by patient, leaving organoid samples out.",
)
PRELOADED_OPTION = typer.Option(None, "--preloaded/--no-preloaded", help="Resume from run results already in the output directory.")
WORKERS_OPTION = typer.Option(None, "--workers", "-w", min=1, help="Number of concurrent stage invocations.")
LOG_LEVEL_OPTION = typer.Option("INFO", "--log-level", help="Logging level.")


def _print_help(ctx: typer.Context, value: bool) -> None:
    if value and not ctx.resilient_parsing:
        typer.echo(ctx.get_help())
        raise typer.Exit(1)


HELP_OPTION = typer.Option(
    False, "--help", "-h", callback=_print_help, is_eager=True, help="Show this message and exit with status 1."
)


def _print_version(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback(add_help_option=False)
def _main(
    show_help: bool = HELP_OPTION,
    version: bool = typer.Option(
        False, "--version", callback=_print_version, is_eager=True, help="Show version and exit"
    ),
) -> None:
    pass


def _collect_overrides(**options: Any) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    inputs = {
        key: options[key]
        for key in ("manifest_file", "sample_metadata_file", "run_each", "run_all", "run_by_patient", "run_by_patient_wo_organoids")
        if options.get(key) is not None
    }
    if inputs:
        overrides["input"] = inputs
    if options.get("output_dir") is not None:
        overrides["output"] = {"dir": options["output_dir"]}
    for key in ("preloaded", "workers"):
        if options.get(key) is not None:
            overrides[key] = options[key]
    return overrides


def _resolve_config(ctx: typer.Context, config: Optional[Path], **options: Any) -> AppConfig:
    """Load the YAML config, apply CLI overrides and require the mandatory inputs.

    Prints the command usage and exits with status 1 when something is missing.
    """
    try:
        cfg = apply_overrides(load_and_validate_config(config), _collect_overrides(**options))
        cfg.require_inputs()
    except ConfigurationError as e:
        typer.echo(ctx.get_help())
        typer.echo(f"\nError: {e}", err=True)
        raise typer.Exit(1)
    return cfg


@app.command(add_help_option=False)
def run(
    ctx: typer.Context,
    show_help: bool = HELP_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    manifest_file: Optional[Path] = MANIFEST_OPTION,
    sample_metadata_file: Optional[Path] = METADATA_OPTION,
    output_dir: Optional[Path] = OUTPUT_OPTION,
    run_each: Optional[bool] = RUN_EACH_OPTION,
    run_all: Optional[bool] = RUN_ALL_OPTION,
    run_by_patient: Optional[bool] = BY_PATIENT_OPTION,
    run_by_patient_wo_organoids: Optional[bool] = WO_ORGANOIDS_OPTION,
    preloaded: Optional[bool] = PRELOADED_OPTION,
    workers: Optional[int] = WORKERS_OPTION,
    log_level: str = LOG_LEVEL_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", help="Validate inputs and exit without running the pipeline."),
) -> None:
    """Run the pipeline."""
    cfg = _resolve_config(
        ctx,
        config,
        manifest_file=manifest_file,
        sample_metadata_file=sample_metadata_file,
        output_dir=output_dir,
        run_each=run_each,
        run_all=run_all,
        run_by_patient=run_by_patient,
        run_by_patient_wo_organoids=run_by_patient_wo_organoids,
        preloaded=preloaded,
        workers=workers,
    )
    setup_logging(Path(cfg.output.dir), log_level)
    logger.info(
        f"snrna-flow {__version__}: modes {[m.value for m in cfg.active_modes]}, "
        f"{cfg.workers} worker(s), preloaded={cfg.preloaded}, output {cfg.output.dir}"
    )

    try:
        validate_inputs(cfg)
    except ValidationError as e:
        logger.error(f"Validation failed: {e}")
        raise typer.Exit(1)

    if dry_run:
        logger.info("Dry run successful. Exiting without running the pipeline.")
        return

    generate_provenance_report(cfg, Path(cfg.output.dir))
    try:
        report = Orchestrator(cfg).run()
    except SnrnaFlowError as e:
        logger.error(f"A pipeline error occurred: {e}", exc_info=True)
        raise typer.Exit(code=1)

    frame = report.to_frame()
    if not frame.empty:
        typer.echo(frame[["stage", "group_label", "group_id", "status"]].to_string(index=False))
    typer.echo(f"\n{len(report.run_results)} run result(s); " + ", ".join(f"{k}: {v}" for k, v in report.summary().items()))
    if report.partially_failed:
        raise typer.Exit(code=1)


@app.command(add_help_option=False)
def validate(
    ctx: typer.Context,
    show_help: bool = HELP_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    manifest_file: Optional[Path] = MANIFEST_OPTION,
    sample_metadata_file: Optional[Path] = METADATA_OPTION,
    run_each: Optional[bool] = RUN_EACH_OPTION,
    run_all: Optional[bool] = RUN_ALL_OPTION,
    run_by_patient: Optional[bool] = BY_PATIENT_OPTION,
    run_by_patient_wo_organoids: Optional[bool] = WO_ORGANOIDS_OPTION,
    preloaded: Optional[bool] = PRELOADED_OPTION,
) -> None:
    """Check the configuration, manifest, sample directories and templates."""
    cfg = _resolve_config(
        ctx,
        config,
        manifest_file=manifest_file,
        sample_metadata_file=sample_metadata_file,
        run_each=run_each,
        run_all=run_all,
        run_by_patient=run_by_patient,
        run_by_patient_wo_organoids=run_by_patient_wo_organoids,
        preloaded=preloaded,
    )
    logging.basicConfig(level=logging.INFO, format="%(levelname)s - %(message)s")
    try:
        validate_inputs(cfg)
    except ValidationError as e:
        typer.echo(f"Validation failed: {e}", err=True)
        raise typer.Exit(1)
    typer.echo("All input validation checks passed.")


@app.command(add_help_option=False)
def plan(
    ctx: typer.Context,
    show_help: bool = HELP_OPTION,
    config: Optional[Path] = CONFIG_OPTION,
    manifest_file: Optional[Path] = MANIFEST_OPTION,
    sample_metadata_file: Optional[Path] = METADATA_OPTION,
    run_each: Optional[bool] = RUN_EACH_OPTION,
    run_all: Optional[bool] = RUN_ALL_OPTION,
    run_by_patient: Optional[bool] = BY_PATIENT_OPTION,
    run_by_patient_wo_organoids: Optional[bool] = WO_ORGANOIDS_OPTION,
) -> None:
    """Print the stage invocations a run would dispatch, in dependency order."""
    cfg = _resolve_config(
        ctx,
        config,
        manifest_file=manifest_file,
        sample_metadata_file=sample_metadata_file,
        run_each=run_each,
        run_all=run_all,
        run_by_patient=run_by_patient,
        run_by_patient_wo_organoids=run_by_patient_wo_organoids,
    )
    try:
        samples = load_manifest(Path(cfg.input.manifest_file))
    except SnrnaFlowError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    pipeline_plan = Orchestrator(cfg).plan(samples)
    for failure in pipeline_plan.failures:
        typer.echo(f"! {failure.group_label.value}\t{failure.group_id}\t{failure.message}")
    for stage, label, group_id in pipeline_plan.graph.tasks:
        typer.echo(f"{stage}\t{label.value}\t{group_id}")
    if pipeline_plan.failures:
        raise typer.Exit(1)


@app.command(add_help_option=False)
def configure(show_help: bool = HELP_OPTION) -> None:
    """Interactively create a configuration file."""
    try:
        generate_config_interactive()
    except Exception as e:
        logger.error(f"Failed to generate configuration: {e}", exc_info=True)
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
