# File: assocscan/io.py
# Location: assocscan/assocscan/io.py
"""
Delimited-text readers and the summary-statistics writer.

The genotype table and the optional variant metadata table are read with
pandas. The delimiter is taken from the file extension (.tsv/.tab/.txt ->
tab, .csv -> comma, gzip suffix ignored) with a csv.Sniffer fallback.
Summary statistics are written as one tab-separated file per phenotype.
"""

from __future__ import annotations

import csv
import gzip
import logging
import os
import re
from collections.abc import Sequence

import pandas as pd

logger = logging.getLogger("assocscan")


def detect_delimiter(filepath: str) -> str:
    """Delimiter for ``filepath`` from its extension, sniffing the content otherwise."""
    name = filepath[:-3] if filepath.endswith(".gz") else filepath
    ext = os.path.splitext(name)[1].lower()
    if ext in (".tsv", ".tab", ".txt"):
        return "\t"
    if ext == ".csv":
        return ","

    opener = gzip.open if filepath.endswith(".gz") else open
    try:
        with opener(filepath, "rt") as fh:
            sample_text = fh.read(2048)
        return csv.Sniffer().sniff(sample_text, delimiters="\t,; ").delimiter
    except (OSError, csv.Error):
        return "\t"  # bioinformatics default


def read_genotype_table(filepath: str, sep: str | None = None) -> pd.DataFrame:
    """
    Read a long-format genotype/phenotype table (header row required).

    Parameters
    ----------
    filepath : str
        Delimited text file, optionally gzip-compressed.
    sep : str, optional
        Delimiter. Auto-detected when None.

    Returns
    -------
    pd.DataFrame
    """
    sep = sep or detect_delimiter(filepath)
    df = pd.read_csv(filepath, sep=sep)
    logger.info(f"Loaded {len(df)} rows x {len(df.columns)} columns from {filepath}")
    return df


def read_variant_info(filepath: str, sep: str | None = None) -> pd.DataFrame:
    """
    Read the optional per-variant metadata table.

    Expected columns include the variant key, reference/alternate alleles, a
    genotyped/imputed flag, the imputation info score and a reference panel
    allele frequency; only the key, info and genotyped columns are used.
    """
    sep = sep or detect_delimiter(filepath)
    df = pd.read_csv(filepath, sep=sep)
    logger.info(f"Loaded metadata for {len(df)} variants from {filepath}")
    return df


def _safe_filename(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("_") or "phenotype"


def write_summary_statistics(
    results: pd.DataFrame,
    output_dir: str,
    suffix: str = ".sumstats.tsv",
    variant_key: Sequence[str] | None = None,
) -> list[str]:
    """
    Write one tab-separated summary-statistics file per phenotype.

    Parameters
    ----------
    results : pd.DataFrame
        Scan output (RESULT_COLUMNS).
    output_dir : str
        Directory to write into; created if missing.
    suffix : str
        Appended to the phenotype name to form the file name.
    variant_key : sequence of str, optional
        When given with more than one column, tuple variant ids are expanded
        back into these columns ahead of the statistics.

    Returns
    -------
    list of str
        Paths written, in phenotype order.
    """
    os.makedirs(output_dir, exist_ok=True)
    key_columns = list(variant_key) if variant_key is not None else []

    paths: list[str] = []
    for phenotype in dict.fromkeys(results["phenotype_name"]):
        subset = results[results["phenotype_name"] == phenotype].drop(columns="phenotype_name")
        if len(key_columns) > 1:
            expanded = pd.DataFrame(
                subset["variant_id"].tolist(), columns=key_columns, index=subset.index
            )
            subset = pd.concat([expanded, subset.drop(columns="variant_id")], axis=1)
        elif len(key_columns) == 1:
            subset = subset.rename(columns={"variant_id": key_columns[0]})

        path = os.path.join(output_dir, f"{_safe_filename(str(phenotype))}{suffix}")
        subset.to_csv(path, sep="\t", index=False, na_rep="NA")
        logger.info(f"Wrote {len(subset)} rows for phenotype '{phenotype}' to {path}")
        paths.append(path)
    return paths
