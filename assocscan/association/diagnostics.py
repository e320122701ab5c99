# File: assocscan/association/diagnostics.py
# Location: assocscan/assocscan/association/diagnostics.py
"""
Diagnostics module for association scan QC.

Provides:
- strongest_association(): the variant with the smallest p-value
- compute_lambda_gc(): Genomic inflation factor from p-value distribution
- compute_qq_data(): Observed vs expected -log10(p) for QQ plots
- summarize_scan(): Per-phenotype summary of a result table

Plotting is left to the caller; these functions only produce the numbers.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
from scipy.stats import chi2 as chi2_dist

logger = logging.getLogger("assocscan")

# Hardcoded median of chi2(df=1) distribution.
# Equivalent to: from scipy.stats import chi2; chi2.ppf(0.5, df=1)
_EXPECTED_CHI2_MEDIAN: float = 0.45493642311957174


def _valid_p_values(p_values) -> np.ndarray:
    return np.array(
        [p for p in p_values if p is not None and not np.isnan(p)],
        dtype=float,
    )


def strongest_association(
    results: pd.DataFrame, phenotype: str | None = None
) -> pd.Series | None:
    """
    Result row with the smallest p-value.

    Ties are broken by ascending variant id: the first variant in id order
    wins. NaN p-values are ignored.

    Parameters
    ----------
    results : pd.DataFrame
        Scan output with at least ``variant_id``, ``phenotype_name`` and
        ``p_value`` columns.
    phenotype : str, optional
        Restrict the search to one phenotype.

    Returns
    -------
    pd.Series | None
        The selected row, or None if no row has a valid p-value.
    """
    if results.empty:
        return None
    subset = results
    if phenotype is not None:
        subset = subset[subset["phenotype_name"] == phenotype]
    subset = subset[subset["p_value"].notna()]
    if subset.empty:
        return None
    # Stable sort keeps the earliest variant id first among equal p-values.
    ordered = subset.sort_values("variant_id", kind="mergesort").sort_values(
        "p_value", kind="mergesort"
    )
    return ordered.iloc[0]


def compute_lambda_gc(p_values: list[float | None]) -> float | None:
    """
    Compute genomic inflation factor (lambda_GC) from a list of p-values.

    Lambda_GC is the ratio of the observed median chi2(1) statistic to the
    expected median under the null. A well-calibrated scan has lambda_GC
    near 1.0. Values > 1.05 suggest inflation (population stratification,
    cryptic relatedness) or polygenic signal.

    Parameters
    ----------
    p_values : list[float | None]
        Raw p-values. None and NaN values are filtered out.

    Returns
    -------
    float | None
        lambda_GC, or None if fewer than 2 valid p-values are available.
    """
    valid = _valid_p_values(p_values)

    if len(valid) < 2:
        return None

    # Clip to avoid -inf in log / chi2 conversion
    valid = np.clip(valid, 1e-300, 1.0 - 1e-15)

    n_valid = len(valid)
    if n_valid < 100:
        logger.warning(f"lambda_GC computed on {n_valid} tests, unreliable for n < 100")

    chi2_obs = chi2_dist.isf(valid, df=1)

    return float(np.median(chi2_obs) / _EXPECTED_CHI2_MEDIAN)


def compute_qq_data(p_values: list[float | None], phenotype: str) -> pd.DataFrame:
    """
    Compute observed vs expected -log10(p) data for QQ plots.

    Uses i/(n+1) for the expected quantile of rank i in 1..n. Rows are sorted
    ascending by expected_neg_log10_p (non-significant end first).

    Returns
    -------
    pd.DataFrame
        Columns: "phenotype_name", "expected_neg_log10_p",
        "observed_neg_log10_p". Empty if no valid p-values.
    """
    columns = ["phenotype_name", "expected_neg_log10_p", "observed_neg_log10_p"]
    valid = _valid_p_values(p_values)
    if len(valid) == 0:
        return pd.DataFrame(columns=columns)

    n = len(valid)
    # Largest p first so both columns ascend together
    observed_sorted = np.sort(valid)[::-1]
    expected_p = np.arange(n, 0, -1, dtype=float) / (n + 1)

    return pd.DataFrame(
        {
            "phenotype_name": phenotype,
            "expected_neg_log10_p": -np.log10(expected_p),
            "observed_neg_log10_p": -np.log10(np.clip(observed_sorted, 1e-300, 1.0)),
        },
        columns=columns,
    )


def summarize_scan(results: pd.DataFrame) -> pd.DataFrame:
    """
    One summary row per phenotype, in order of first appearance.

    Columns: phenotype_name, n_variants, n_degenerate, lambda_gc, min_p_value,
    top_variant_id.
    """
    rows = []
    for phenotype in dict.fromkeys(results["phenotype_name"]):
        subset = results[results["phenotype_name"] == phenotype]
        top = strongest_association(subset)
        rows.append(
            {
                "phenotype_name": phenotype,
                "n_variants": len(subset),
                "n_degenerate": int(subset["beta"].isna().sum()),
                "lambda_gc": compute_lambda_gc(subset["p_value"].tolist()),
                "min_p_value": float(top["p_value"]) if top is not None else float("nan"),
                "top_variant_id": top["variant_id"] if top is not None else None,
            }
        )
    return pd.DataFrame(
        rows,
        columns=[
            "phenotype_name",
            "n_variants",
            "n_degenerate",
            "lambda_gc",
            "min_p_value",
            "top_variant_id",
        ],
    )
