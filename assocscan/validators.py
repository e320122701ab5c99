# File: assocscan/validators.py
# Location: assocscan/assocscan/validators.py

"""
Validation module for assocscan.

This module provides functions to validate:
- Input files (existence, non-empty)
- Required columns of the genotype table
- Genotype dosages (numeric, within 0..2)
- One row per individual per variant

These validations ensure that all critical inputs are well formed before
any regression is dispatched.
"""

import logging
import os
from typing import Iterable, List, Optional, Sequence, Union

import pandas as pd

from .error_handling import DataValidationError, MissingColumnError

logger = logging.getLogger("assocscan")


def validate_input_file(path: Optional[str], label: str = "Input") -> None:
    """
    Validate that an input file exists and is non-empty.

    Parameters
    ----------
    path : str or None
        Path to the file to validate.
    label : str
        Human-readable file description used in messages.

    Raises
    ------
    FileNotFoundError
        If the file is missing.
    DataValidationError
        If the file is empty.
    """
    if not path or not os.path.exists(path):
        raise FileNotFoundError(f"{label} file not found: {path}")
    if os.path.getsize(path) == 0:
        raise DataValidationError(f"{label} file {path} is empty.", field=label)
    logger.debug("%s file validated: %s", label, path)


def check_required_columns(table: pd.DataFrame, columns: Iterable[str]) -> None:
    """
    Raise MissingColumnError listing every required column absent from ``table``.
    """
    missing = [c for c in dict.fromkeys(columns) if c not in table.columns]
    if missing:
        raise MissingColumnError(missing)


def check_genotype_dosages(table: pd.DataFrame, column: str = "genotype") -> None:
    """
    Check that dosages are numeric and within [0, 2].

    Missing values are allowed; they are dropped per fit.

    Raises
    ------
    DataValidationError
        If any non-missing value is non-numeric or out of range.
    """
    check_required_columns(table, [column])
    raw = table[column]
    dosage = pd.to_numeric(raw, errors="coerce")
    non_numeric = dosage.isna() & raw.notna()
    if non_numeric.any():
        examples = raw[non_numeric].unique()[:5].tolist()
        raise DataValidationError(
            f"Genotype column '{column}' has {int(non_numeric.sum())} non-numeric value(s): "
            f"{examples}",
            field=column,
        )
    out_of_range = (dosage < 0) | (dosage > 2)
    if out_of_range.any():
        examples = dosage[out_of_range].unique()[:5].tolist()
        raise DataValidationError(
            f"Genotype column '{column}' has {int(out_of_range.sum())} dosage(s) outside "
            f"[0, 2]: {examples}",
            field=column,
        )


def check_unique_individuals(
    table: pd.DataFrame,
    variant_key: Union[str, Sequence[str]],
    sample_column: str,
) -> None:
    """
    Check that each individual appears at most once per variant.

    Raises
    ------
    DataValidationError
        If any (variant, individual) pair is duplicated.
    """
    key_columns: List[str] = [variant_key] if isinstance(variant_key, str) else list(variant_key)
    check_required_columns(table, [*key_columns, sample_column])
    duplicated = table.duplicated(subset=[*key_columns, sample_column], keep=False)
    if duplicated.any():
        preview = (
            table.loc[duplicated, [*key_columns, sample_column]]
            .drop_duplicates()
            .head(5)
            .to_dict("records")
        )
        raise DataValidationError(
            f"{int(duplicated.sum())} row(s) repeat an individual within a variant: {preview}",
            field=sample_column,
        )
