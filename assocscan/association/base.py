# File: assocscan/association/base.py
# Location: assocscan/assocscan/association/base.py
"""
Core data types for the association scan.

Defines the AssociationResult dataclass (one per variant and phenotype), the
ScanConfig dataclass holding runtime options, and the fixed column layout of
the result table.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field, fields
from typing import Any, Hashable

logger = logging.getLogger("assocscan")

RESULT_COLUMNS: list[str] = ["variant_id", "phenotype_name", "beta", "se", "p_value", "n"]


@dataclass
class AssociationResult:
    """
    Result of one linear regression of a phenotype on genotype dosage.

    Fields
    ------
    variant_id : hashable
        Variant key value. A tuple when the scan used a composite key
        (e.g. chromosome and position).
    phenotype_name : str
        Outcome column the fit was run for.
    beta : float
        Genotype coefficient. NaN when the model was degenerate.
    se : float
        Standard error of beta. 0.0 for a zero-residual fit, NaN when
        degenerate.
    p_value : float
        Two-sided p-value of the genotype t-statistic. NaN when degenerate or
        when the residual variance is zero.
    n : int
        Number of complete rows that entered the fit.
    warnings : list of str
        Warning codes: RANK_DEFICIENT, NO_RESIDUAL_DF, NO_COMPLETE_ROWS,
        ZERO_RESIDUAL, FIT_TIMEOUT.
    """

    variant_id: Hashable
    phenotype_name: str
    beta: float
    se: float
    p_value: float
    n: int
    warnings: list[str] = field(default_factory=list)

    @property
    def is_degenerate(self) -> bool:
        """True when no effect estimate could be produced."""
        return math.isnan(self.beta)

    def to_row(self) -> dict[str, Any]:
        """Output-table row (the RESULT_COLUMNS fields only)."""
        return {col: getattr(self, col) for col in RESULT_COLUMNS}


def degenerate_result(
    variant_id: Hashable, phenotype: str, n: int, code: str
) -> AssociationResult:
    """Build the NaN-valued row that stands in for a fit that could not run."""
    nan = float("nan")
    return AssociationResult(
        variant_id=variant_id,
        phenotype_name=phenotype,
        beta=nan,
        se=nan,
        p_value=nan,
        n=int(n),
        warnings=[code],
    )


def resolve_worker_count(requested: int | None) -> int:
    """
    Turn a requested worker count into the number of processes to start.

    ``None`` and ``-1`` mean "all logical cores but one", leaving a core for
    the coordinating process. Any other value is clamped to at least 1.
    """
    if requested is None or requested == -1:
        return max(1, (os.cpu_count() or 1) - 1)
    return max(1, int(requested))


@dataclass
class ScanConfig:
    """
    Runtime options for AssociationScanner.

    Defaults mirror the packaged config.json so that a scanner built from an
    empty dict behaves like the command-line tool.
    """

    genotype_column: str = "genotype"
    """Column holding the 0/1/2 alternate allele dosage."""

    workers: int | None = None
    """Worker processes. None or -1 = os.cpu_count() - 1. Values < 1 are clamped to 1."""

    unit_timeout: float | None = None
    """Seconds a fit may run on a worker before it is recorded as FIT_TIMEOUT. None = no limit.

    Only applies with more than one worker; queued time does not count."""

    skip_degenerate: bool = False
    """Omit degenerate fits from the output instead of emitting NaN rows."""

    worker_retries: int = 0
    """Times a unit lost to a crashed worker is resubmitted on a fresh pool."""

    @classmethod
    def from_dict(cls, cfg: dict[str, Any]) -> ScanConfig:
        """Build a ScanConfig from a config dict, ignoring keys it does not know."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in cfg.items() if k in known})
