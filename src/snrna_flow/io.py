"""Manifest and sample metadata loading."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List

import pandas as pd

from snrna_flow.exceptions import ConfigurationError, FileOperationError
from snrna_flow.model import SampleRecord

logger = logging.getLogger(__name__)

MANIFEST_COLUMNS = ("id", "id_col", "dir")


def read_manifest_table(path: Path) -> pd.DataFrame:
    """Read the tab-separated manifest, validating its header."""
    try:
        sheet = pd.read_csv(path, sep="\t", dtype=str, keep_default_na=False)
    except FileNotFoundError as e:
        raise FileOperationError(f"Manifest not found at {path}") from e
    except pd.errors.EmptyDataError as e:
        raise ConfigurationError(f"Manifest {path} is empty") from e

    sheet.columns = [c.strip() for c in sheet.columns]
    missing = [c for c in MANIFEST_COLUMNS if c not in sheet.columns]
    if missing:
        raise ConfigurationError(f"Manifest {path} missing required columns: {missing}")
    for col in MANIFEST_COLUMNS:
        sheet[col] = sheet[col].str.strip()
    return sheet


def find_duplicate_ids(sheet: pd.DataFrame) -> List[str]:
    duplicated = sheet.loc[sheet["id"].duplicated(keep=False), "id"]
    return sorted(set(duplicated))


def load_manifest(path: Path) -> List[SampleRecord]:
    """Load the manifest into ``SampleRecord`` objects, one per row.

    Raises:
        FileOperationError: the file does not exist.
        ConfigurationError: missing columns, no rows, blank or duplicate ids.
    """
    sheet = read_manifest_table(path)
    if sheet.empty:
        raise ConfigurationError(f"Manifest {path} has no samples")

    blank = sheet.index[sheet["id"] == ""].tolist()
    if blank:
        raise ConfigurationError(f"Manifest {path} has rows with an empty id (rows {blank})")

    duplicates = find_duplicate_ids(sheet)
    if duplicates:
        raise ConfigurationError(f"Manifest {path} has duplicate sample ids: {duplicates}")

    samples = [
        SampleRecord(id=row["id"], id_column=row["id_col"], source_dir=Path(row["dir"]))
        for row in sheet.to_dict(orient="records")
    ]
    logger.info(f"Loaded {len(samples)} samples from {path}")
    return samples


def check_sample_metadata(path: Path) -> None:
    """The sample metadata table is opaque here; it only has to exist."""
    if not Path(path).is_file():
        raise FileOperationError(f"Sample metadata file not found at {path}")
