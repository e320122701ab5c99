# File: assocscan/association/filters.py
# Location: assocscan/assocscan/association/filters.py
"""
Post-hoc variant filters for association results.

Provides:
- compute_mac(): per-variant minor allele count from the genotype table
- filter_by_mac(): drop result rows for variants with MAC below a threshold
- filter_by_info(): drop result rows for imputed variants with a low
  imputation info score, using the optional variant metadata table

Both filters accept either the result DataFrame returned by
AssociationScanner.scan() or a list of AssociationResult, return the same
kind, preserve the order of kept rows and never mutate their inputs.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Hashable, TypeVar, Union

import numpy as np
import pandas as pd

from assocscan.association.base import AssociationResult
from assocscan.error_handling import MissingColumnError

logger = logging.getLogger("assocscan")

Results = TypeVar("Results", pd.DataFrame, list)
ResultsLike = Union[pd.DataFrame, Sequence[AssociationResult]]


def _key_list(variant_key: str | Sequence[str]) -> list[str]:
    return [variant_key] if isinstance(variant_key, str) else list(variant_key)


def _variant_index(frame: pd.DataFrame, key_columns: list[str]) -> pd.Index:
    """Index of variant ids matching the ids the scanner emits."""
    if len(key_columns) == 1:
        return pd.Index(frame[key_columns[0]])
    ids = list(frame[key_columns].itertuples(index=False, name=None))
    return pd.Index(ids, tupleize_cols=False)


def _split_results(
    results: ResultsLike, excluded: set[Hashable]
) -> pd.DataFrame | list[AssociationResult]:
    if isinstance(results, pd.DataFrame):
        if results.empty:
            return results.copy()
        mask = ~results["variant_id"].map(lambda v: v in excluded).astype(bool)
        return results.loc[mask].copy()
    return [r for r in results if r.variant_id not in excluded]


def _result_variants(results: ResultsLike) -> list[Hashable]:
    if isinstance(results, pd.DataFrame):
        return list(dict.fromkeys(results["variant_id"])) if not results.empty else []
    return list(dict.fromkeys(r.variant_id for r in results))


def compute_mac(
    genotype_table: pd.DataFrame,
    variant_key: str | Sequence[str],
    genotype_column: str = "genotype",
) -> pd.Series:
    """
    Minor allele count per variant.

    ``mac = min(S, 2n - S)`` where S is the summed alternate allele dosage
    and n the number of individuals with a non-missing dosage.

    Returns
    -------
    pd.Series
        Integer-valued MAC indexed by variant id (a MultiIndex for composite
        keys), sorted by id.
    """
    key_columns = _key_list(variant_key)
    missing = [c for c in [*key_columns, genotype_column] if c not in genotype_table.columns]
    if missing:
        raise MissingColumnError(missing)

    frame = genotype_table[key_columns].copy()
    frame["_dosage"] = pd.to_numeric(genotype_table[genotype_column], errors="coerce")
    group_key = key_columns[0] if len(key_columns) == 1 else key_columns
    per_variant = frame.groupby(group_key, sort=True)["_dosage"]
    alt_count = per_variant.sum()
    n = per_variant.count()
    mac = np.minimum(alt_count, 2 * n - alt_count)
    mac.name = "mac"
    return mac


def filter_by_mac(
    results: Results,
    genotype_table: pd.DataFrame,
    variant_key: str | Sequence[str],
    threshold: int,
    genotype_column: str = "genotype",
) -> tuple[Results, set[Hashable]]:
    """
    Remove results for variants whose minor allele count is below ``threshold``.

    Parameters
    ----------
    results : pd.DataFrame or list of AssociationResult
        Scan output. All rows of an excluded variant are removed, whatever
        their phenotype.
    genotype_table : pd.DataFrame
        The long-format table the scan was run on.
    variant_key : str or sequence of str
        Variant key column(s), as passed to the scan.
    threshold : int
        Minimum MAC (>= 0). A variant is excluded when ``mac < threshold``.
    genotype_column : str
        Dosage column in ``genotype_table``.

    Returns
    -------
    kept : same type as ``results``
        Rows of retained variants, in their original order.
    excluded : set
        Variant ids removed by the filter.

    Raises
    ------
    ValueError
        If ``threshold`` is not a non-negative integer.
    """
    is_int = isinstance(threshold, (int, np.integer)) and not isinstance(threshold, bool)
    if not is_int or threshold < 0:
        raise ValueError(f"MAC threshold must be an integer >= 0, got {threshold!r}")

    mac = compute_mac(genotype_table, variant_key, genotype_column)
    excluded = set(mac.index[mac < threshold].tolist())
    kept = _split_results(results, excluded)

    n_variants = len(mac)
    if n_variants:
        logger.info(
            f"MAC filter (threshold {threshold}): excluded {len(excluded)}/{n_variants} "
            f"variants ({len(excluded) / n_variants:.1%})"
        )
    return kept, excluded  # type: ignore[return-value]


def filter_by_info(
    results: Results,
    variant_info: pd.DataFrame,
    variant_key: str | Sequence[str],
    info_threshold: float,
    info_column: str = "info",
    genotyped_column: str = "genotyped",
) -> tuple[Results, set[Hashable]]:
    """
    Remove results for imputed variants with an info score below ``info_threshold``.

    Directly genotyped variants are always kept. An imputed variant with a
    missing info score is excluded. Variants absent from ``variant_info`` are
    kept and reported in a warning.

    Parameters
    ----------
    results : pd.DataFrame or list of AssociationResult
        Scan output.
    variant_info : pd.DataFrame
        Per-variant metadata with the variant key column(s), ``info_column``
        and optionally ``genotyped_column`` (truthy = directly genotyped).
        Without a genotyped column every variant is treated as imputed.
    info_threshold : float
        Minimum acceptable info score.

    Returns
    -------
    kept, excluded
        As for filter_by_mac().
    """
    key_columns = _key_list(variant_key)
    missing = [c for c in [*key_columns, info_column] if c not in variant_info.columns]
    if missing:
        raise MissingColumnError(missing)

    info = pd.to_numeric(variant_info[info_column], errors="coerce").to_numpy()
    if genotyped_column in variant_info.columns:
        genotyped = variant_info[genotyped_column].map(_as_flag).to_numpy(dtype=bool)
    else:
        genotyped = np.zeros(len(variant_info), dtype=bool)

    ids = _variant_index(variant_info, key_columns)
    low_quality = ~genotyped & ~(info >= info_threshold)
    excluded = set(ids[low_quality].tolist())

    known = set(ids.tolist())
    unknown = [v for v in _result_variants(results) if v not in known]
    if unknown:
        logger.warning(
            "%d variant(s) have no metadata and were kept unfiltered: %s%s",
            len(unknown),
            unknown[:5],
            " ..." if len(unknown) > 5 else "",
        )

    kept = _split_results(results, excluded)
    logger.info(
        f"Info filter (threshold {info_threshold}): excluded {len(excluded)}/{len(known)} "
        "annotated variants"
    )
    return kept, excluded  # type: ignore[return-value]


def _as_flag(value: object) -> bool:
    """Interpret a genotyped flag column value (1/0, true/false, yes/no)."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y", "t")
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return False
    return bool(value)
