# File: assocscan/association/ols.py
# Location: assocscan/assocscan/association/ols.py
"""
Ordinary least squares fit of one phenotype on genotype dosage at one variant.

Each unit of work is a self-contained ``FitTask``: the variant's rows, already
restricted to the outcome, dosage and covariate columns, plus the formula to
fit. Tasks are picklable so the scanner can ship them to worker processes
without any module-level state.

Inside a task slice the outcome column is always named ``outcome`` and the
dosage column ``dosage``; phenotype and genotype column names therefore never
need to be valid formula identifiers. Covariate terms are written into the
formula verbatim, so interactions (``sex:age``, ``sex*age``) and transforms
(``C(batch)``, ``I(age ** 2)``) are the caller's to specify.

Warning codes
-------------
``NO_COMPLETE_ROWS``
    Every row had a missing outcome, dosage or covariate value.
``RANK_DEFICIENT``
    Design matrix rank is below its column count (monomorphic variant,
    collinear covariates).
``NO_RESIDUAL_DF``
    As many parameters as complete rows; no standard error is defined.
``ZERO_RESIDUAL``
    The model fits exactly. beta is reported with se = 0.0 and p = NaN.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Hashable

import numpy as np
import pandas as pd

from assocscan.association.base import AssociationResult, degenerate_result
from assocscan.error_handling import DegenerateModelError

logger = logging.getLogger("assocscan")

OUTCOME_COLUMN = "outcome"
DOSAGE_COLUMN = "dosage"

# Residual sum of squares at or below this fraction of the centered total sum
# of squares is treated as an exact fit.
_ZERO_SSR_RTOL = 1e-12

# Bare identifiers inside a formula term that are not function names
# (``np.log(`` / ``C(``) and not attribute parts (``np.log``).
_IDENTIFIER = re.compile(r"(?<![\w.])([A-Za-z_]\w*)(?![\w.]*\s*\()(?!\.)")
# Quoted literals (``Treatment('b2')``) and keyword names (``reference=``)
# never name a column.
_STRING_LITERAL = re.compile(r"'[^']*'|\"[^\"]*\"")
_KEYWORD_NAME = re.compile(r"(?<![\w.])[A-Za-z_]\w*\s*=(?!=)")


@dataclass
class FitTask:
    """One regression: a variant's rows and the formula to fit them with."""

    variant_id: Hashable
    phenotype: str
    formula: str
    data: pd.DataFrame


def covariate_columns(covariates: Iterable[str]) -> list[str]:
    """
    Column names referenced by a set of covariate formula terms.

    Examples
    --------
    >>> covariate_columns(["age", "sex:age", "C(batch, Treatment(reference='b2'))"])
    ['age', 'sex', 'batch']
    """
    columns: list[str] = []
    for term in covariates:
        term = _KEYWORD_NAME.sub(" ", _STRING_LITERAL.sub(" ", term))
        for name in _IDENTIFIER.findall(term):
            if name not in columns:
                columns.append(name)
    return columns


def build_formula(covariates: Sequence[str] = ()) -> str:
    """
    Regression formula with the dosage as first predictor.

    >>> build_formula(["age", "sex"])
    'outcome ~ dosage + age + sex'
    """
    terms = [DOSAGE_COLUMN, *[c.strip() for c in covariates if c.strip()]]
    return f"{OUTCOME_COLUMN} ~ " + " + ".join(terms)


def fit_variant(task: FitTask) -> AssociationResult:
    """
    Fit ``task.formula`` on the task's rows and extract the dosage coefficient.

    Rows with any missing value are dropped first; ``n`` is the number of rows
    that remain.

    Raises
    ------
    DegenerateModelError
        When the complete rows cannot support the fit (see module warning codes).
    """
    import statsmodels.formula.api as smf

    data = task.data.dropna()
    n = len(data)
    if n == 0:
        raise DegenerateModelError("NO_COMPLETE_ROWS", task.variant_id, task.phenotype, 0)

    model = smf.ols(task.formula, data=data)
    exog = np.asarray(model.exog, dtype=float)
    n_params = exog.shape[1]

    if np.linalg.matrix_rank(exog) < n_params:
        raise DegenerateModelError("RANK_DEFICIENT", task.variant_id, task.phenotype, n)
    if n - n_params <= 0:
        raise DegenerateModelError("NO_RESIDUAL_DF", task.variant_id, task.phenotype, n)

    fit = model.fit()
    beta = float(fit.params[DOSAGE_COLUMN])

    if fit.ssr <= _ZERO_SSR_RTOL * fit.centered_tss:
        logger.debug(
            f"Variant {task.variant_id!r} | {task.phenotype}: exact fit, "
            "standard error is zero and no p-value is defined"
        )
        return AssociationResult(
            variant_id=task.variant_id,
            phenotype_name=task.phenotype,
            beta=beta,
            se=0.0,
            p_value=float("nan"),
            n=n,
            warnings=["ZERO_RESIDUAL"],
        )

    return AssociationResult(
        variant_id=task.variant_id,
        phenotype_name=task.phenotype,
        beta=beta,
        se=float(fit.bse[DOSAGE_COLUMN]),
        p_value=float(fit.pvalues[DOSAGE_COLUMN]),
        n=n,
    )


def run_fit_task(task: FitTask) -> AssociationResult:
    """
    Worker entry point: fit one task, recovering degenerate models locally.

    A DegenerateModelError becomes a NaN-valued result row carrying the error
    code; every other exception propagates to the scanner.
    """
    try:
        return fit_variant(task)
    except DegenerateModelError as exc:
        logger.debug(f"Variant {task.variant_id!r} | {task.phenotype}: {exc.code}")
        return degenerate_result(task.variant_id, task.phenotype, exc.n, exc.code)
