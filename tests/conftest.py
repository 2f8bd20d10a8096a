from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Callable, Iterable

import pytest

from snrna_flow.config import AppConfig
from snrna_flow.model import StageName

PROJECT_ROOT = Path(__file__).resolve().parents[1]

# Stand-in for the R templates: records what it was called with, and fails or
# declines keys listed in rules.json next to it.
STAGE_SCRIPT = '''\
import argparse
import json
import sys
from pathlib import Path

parser = argparse.ArgumentParser()
parser.add_argument("--id", required=True)
parser.add_argument("--label", required=True)
parser.add_argument("--output", required=True)
parser.add_argument("--params", required=True)
parser.add_argument("--id-col")
parser.add_argument("--inputs", nargs="+", required=True)
args = parser.parse_args()

stage = Path(__file__).stem
rules_file = Path(__file__).with_name("rules.json")
rules = json.loads(rules_file.read_text()) if rules_file.exists() else {}

if args.id in rules.get("fail", {}).get(stage, []):
    print(f"{stage} failed for {args.id}", file=sys.stderr)
    sys.exit(3)

output = Path(args.output)
output.parent.mkdir(parents=True, exist_ok=True)
if args.id in rules.get("skip", {}).get(stage, []):
    (output.parent / "SKIPPED").write_text("too few nuclei after QC")
    sys.exit(0)
if args.id in rules.get("silent", {}).get(stage, []):
    sys.exit(0)

output.write_text(json.dumps({
    "stage": stage,
    "id": args.id,
    "label": args.label,
    "id_col": args.id_col,
    "params": args.params,
    "inputs": args.inputs,
}))
'''


@pytest.fixture(scope="session")
def project_root() -> Path:
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    return project_root / "configs" / "example_config.yaml"


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    """One copy of the stand-in script per stage."""
    directory = tmp_path / "templates"
    directory.mkdir()
    for stage in StageName:
        (directory / f"{stage.value}.py").write_text(STAGE_SCRIPT)
    return directory


@pytest.fixture
def set_rules(templates_dir: Path) -> Callable[..., None]:
    """Make given stages fail (``fail``), decline (``skip``) or exit without output (``silent``) for given ids."""

    def _set(fail: dict | None = None, skip: dict | None = None, silent: dict | None = None) -> None:
        rules = {"fail": fail or {}, "skip": skip or {}, "silent": silent or {}}
        (templates_dir / "rules.json").write_text(json.dumps(rules))

    return _set


@pytest.fixture
def write_manifest(tmp_path: Path) -> Callable[[Iterable[str]], Path]:
    """Write a manifest for the given sample ids, creating each sample's directory."""

    def _write(sample_ids: Iterable[str], name: str = "manifest.tsv") -> Path:
        lines = ["id\tid_col\tdir"]
        for sample_id in sample_ids:
            sample_dir = tmp_path / "raw" / sample_id
            sample_dir.mkdir(parents=True, exist_ok=True)
            lines.append(f"{sample_id}\tsample\t{sample_dir}")
        path = tmp_path / name
        path.write_text("\n".join(lines) + "\n")
        return path

    return _write


@pytest.fixture
def sample_metadata(tmp_path: Path) -> Path:
    path = tmp_path / "sample_metadata.tsv"
    path.write_text("id\tpatient\ttissue\n")
    return path


@pytest.fixture
def make_config(
    tmp_path: Path,
    templates_dir: Path,
    write_manifest: Callable[..., Path],
    sample_metadata: Path,
) -> Callable[..., AppConfig]:
    """Build a config whose stages run the stand-in script with this interpreter."""

    def _make(sample_ids: Iterable[str] = ("P1_a", "P1_b", "P2_a"), **overrides) -> AppConfig:
        inputs = {
            "manifest_file": str(write_manifest(sample_ids)),
            "sample_metadata_file": str(sample_metadata),
            "run_each": True,
            "run_all": False,
            "run_by_patient": False,
            "run_by_patient_wo_organoids": False,
        }
        inputs.update(overrides.pop("input", {}))
        data = {
            "input": inputs,
            "output": {"dir": str(tmp_path / "output")},
            "workers": 4,
            "stages": {
                stage.value: {
                    "template": str(templates_dir / f"{stage.value}.py"),
                    "interpreter": sys.executable,
                    "result_file": "result.json",
                }
                for stage in StageName
            },
        }
        data.update(overrides)
        return AppConfig.model_validate(data)

    return _make


@pytest.fixture
def read_result() -> Callable[[Path], dict]:
    """Parse the JSON the stand-in script writes as its result."""
    return lambda path: json.loads(Path(path).read_text())
