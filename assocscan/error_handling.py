"""
Error types for association scans.

This module provides the exception hierarchy used across the package:
- ScanError as the common base, carrying phenotype/variant context
- Fatal errors that abort a whole scan (missing columns, lost workers,
  failed fits, empty partitions)
- DegenerateModelError, which is raised for a single variant fit and
  recovered locally into a NaN result row
"""

import logging
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

logger = logging.getLogger("assocscan")


class ScanError(Exception):
    """Base exception for all scan errors."""

    def __init__(
        self,
        message: str,
        phenotype: Optional[str] = None,
        variant_id: Optional[Hashable] = None,
        details: Optional[Dict] = None,
    ):
        """Initialize scan error.

        Parameters
        ----------
        message : str
            Error message
        phenotype : str, optional
            Phenotype being tested when the error occurred
        variant_id : hashable, optional
            Variant being tested when the error occurred
        details : dict, optional
            Additional error details
        """
        super().__init__(message)
        self.phenotype = phenotype
        self.variant_id = variant_id
        self.details = details or {}


class MissingColumnError(ScanError):
    """Raised when required columns are absent from the input table."""

    def __init__(self, columns: Iterable[str]):
        """Initialize missing column error."""
        self.columns = sorted(set(columns))
        message = f"Required column(s) missing from input table: {', '.join(self.columns)}"
        super().__init__(message, details={"columns": self.columns})

    def __reduce__(self):
        return (self.__class__, (self.columns,))


class DataValidationError(ScanError):
    """Raised when input data validation fails."""

    def __init__(self, message: str, field: str):
        """Initialize data validation error."""
        super().__init__(message, details={"field": field})
        self.field = field

    def __reduce__(self):
        return (self.__class__, (str(self), self.field))


class DegenerateModelError(ScanError):
    """Raised when one variant's design matrix cannot support an OLS fit.

    ``code`` is one of RANK_DEFICIENT, NO_RESIDUAL_DF, NO_COMPLETE_ROWS and is
    copied into the warnings of the NaN result row that replaces the fit.
    """

    def __init__(
        self,
        code: str,
        variant_id: Optional[Hashable] = None,
        phenotype: Optional[str] = None,
        n: int = 0,
    ):
        """Initialize degenerate model error."""
        message = f"Degenerate model ({code}) for variant {variant_id!r}, phenotype {phenotype!r}"
        super().__init__(message, phenotype, variant_id, {"code": code, "n": n})
        self.code = code
        self.n = n

    def __reduce__(self):
        return (self.__class__, (self.code, self.variant_id, self.phenotype, self.n))


class EmptyPartitionError(ScanError):
    """Raised when an enumerated variant has no rows in the partitioned table."""

    def __init__(self, variant_id: Hashable):
        """Initialize empty partition error."""
        message = f"Variant {variant_id!r} was enumerated but has no rows"
        super().__init__(message, variant_id=variant_id)

    def __reduce__(self):
        return (self.__class__, (self.variant_id,))


class WorkerFailureError(ScanError):
    """Raised when a worker process dies before returning its fits."""

    def __init__(self, units: List[Tuple[str, Any]], original_error: Optional[Exception] = None):
        """Initialize worker failure error.

        Parameters
        ----------
        units : list of (phenotype, variant_id)
            Units of work whose results were lost
        original_error : Exception, optional
            The executor error that reported the failure
        """
        preview = units[:10]
        suffix = f" ... and {len(units) - 10} more" if len(units) > 10 else ""
        message = f"Worker failure lost {len(units)} fit(s): {preview}{suffix}"
        if original_error is not None:
            message += f" ({type(original_error).__name__}: {original_error})"
        first_phenotype, first_variant = units[0] if units else (None, None)
        super().__init__(
            message,
            first_phenotype,
            first_variant,
            {"units": list(units), "error_type": type(original_error).__name__},
        )
        self.units = list(units)
        self.original_error = original_error

    def __reduce__(self):
        """Custom pickling to handle multiprocessing correctly."""
        return (self.__class__, (self.units, self.original_error))


class FitError(ScanError):
    """Raised when a single fit fails for a reason other than a degenerate design.

    Typical causes are covariate terms that cannot be evaluated on a
    variant's rows, e.g. an unknown reference level in ``Treatment(...)``.
    """

    def __init__(
        self,
        variant_id: Hashable,
        phenotype: str,
        original_error: Optional[Exception] = None,
    ):
        """Initialize fit error."""
        message = f"Fit failed for variant {variant_id!r}, phenotype {phenotype!r}"
        if original_error is not None:
            message += f" ({type(original_error).__name__}: {original_error})"
        super().__init__(
            message,
            phenotype,
            variant_id,
            {"error_type": type(original_error).__name__},
        )
        self.original_error = original_error

    def __reduce__(self):
        return (self.__class__, (self.variant_id, self.phenotype, self.original_error))
