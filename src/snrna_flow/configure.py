"""Interactive configuration generator for snrna-flow."""
from pathlib import Path

import questionary
import yaml

from snrna_flow.config import AppConfig


def generate_config_interactive() -> None:
    """Launch an interactive questionnaire to generate a config.yaml file."""
    print("Welcome to the snrna-flow interactive configuration generator!")
    print("Press Enter to accept the default value in brackets.")

    defaults = AppConfig().model_dump(mode="json")
    config = {}

    # --- Inputs ---
    questionary.print("\n--- Inputs ---", style="bold underline")
    inputs = {}
    inputs['manifest_file'] = questionary.text("Sample manifest (TSV with id, id_col, dir):", default="manifest.tsv").ask()
    inputs['sample_metadata_file'] = questionary.text("Sample metadata file:", default="sample_metadata.tsv").ask()
    inputs['run_each'] = questionary.confirm("Analyse every sample on its own?", default=defaults['input']['run_each']).ask()
    inputs['run_by_patient'] = questionary.confirm("Analyse samples grouped by patient?", default=defaults['input']['run_by_patient']).ask()
    inputs['run_by_patient_wo_organoids'] = questionary.confirm(
        "Analyse samples grouped by patient, without organoids?",
        default=defaults['input']['run_by_patient_wo_organoids'],
    ).ask()
    inputs['run_all'] = questionary.confirm("Integrate all samples together?", default=defaults['input']['run_all']).ask()
    config['input'] = inputs

    # --- Output ---
    questionary.print("\n--- Output ---", style="bold underline")
    config['output'] = {'dir': questionary.text("Output directory:", default=defaults['output']['dir']).ask()}

    # --- Stage parameters ---
    questionary.print("\n--- Filtering ---", style="bold underline")
    config['filter'] = {
        'min_features': int(questionary.text("Minimum features per nucleus:", default=str(defaults['filter']['min_features'])).ask()),
        'max_percent_mt': float(questionary.text("Maximum mitochondrial percentage:", default=str(defaults['filter']['max_percent_mt'])).ask()),
    }
    questionary.print("\n--- Clustering ---", style="bold underline")
    config['clustering'] = {
        'resolution': float(questionary.text("Clustering resolution:", default=str(defaults['clustering']['resolution'])).ask()),
    }
    config['infercnv'] = {'run': questionary.confirm("Run copy-number inference?", default=defaults['infercnv']['run']).ask()}

    # --- Save File ---
    questionary.print("\n--- Saving Configuration ---", style="bold underline")
    save_path = Path(questionary.text("Path to save config file:", default="config.yaml").ask())

    try:
        with open(save_path, 'w') as f:
            yaml.dump(config, f, sort_keys=False, default_flow_style=False)
        print(f"\n✅ Configuration saved successfully to {save_path}")
    except IOError as e:
        print(f"\n❌ Error saving configuration file: {e}")


if __name__ == '__main__':
    generate_config_interactive()
