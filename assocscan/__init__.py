# File: assocscan/__init__.py
# Location: assocscan/assocscan/__init__.py

"""
assocscan Package.

This package runs per-variant linear association scans over long-format
genotype/phenotype tables, with minor allele count and imputation-quality
filtering of the resulting summary statistics.
"""

from .version import __version__
