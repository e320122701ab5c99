# File: assocscan/association/__init__.py
# Location: assocscan/assocscan/association/__init__.py
"""
assocscan.association: Per-variant linear association scanning.

Public API
----------
AssociationScanner : Orchestrator: partitions by variant, dispatches OLS fits, returns DataFrame
AssociationResult  : Dataclass holding one (variant, phenotype) fit
ScanConfig         : Runtime options (workers, timeout, degenerate handling)
scan               : One-call convenience wrapper around AssociationScanner
compute_mac        : Per-variant minor allele count
filter_by_mac      : Drop results for variants below a MAC threshold
filter_by_info     : Drop results for poorly imputed variants
strongest_association : Smallest p-value row, ties broken by variant id
"""

from assocscan.association.base import (
    RESULT_COLUMNS,
    AssociationResult,
    ScanConfig,
    resolve_worker_count,
)
from assocscan.association.diagnostics import (
    compute_lambda_gc,
    compute_qq_data,
    strongest_association,
    summarize_scan,
)
from assocscan.association.engine import AssociationScanner, results_to_frame, scan
from assocscan.association.filters import compute_mac, filter_by_info, filter_by_mac

__all__ = [
    "RESULT_COLUMNS",
    "AssociationResult",
    "AssociationScanner",
    "ScanConfig",
    "compute_lambda_gc",
    "compute_mac",
    "compute_qq_data",
    "filter_by_info",
    "filter_by_mac",
    "resolve_worker_count",
    "results_to_frame",
    "scan",
    "strongest_association",
    "summarize_scan",
]
