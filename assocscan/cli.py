"""Command-line interface for assocscan."""

import argparse
import datetime
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from .association import (
    AssociationScanner,
    ScanConfig,
    filter_by_info,
    filter_by_mac,
    summarize_scan,
)
from .config import load_config
from .error_handling import ScanError
from .io import read_genotype_table, read_variant_info, write_summary_statistics
from .validators import (
    check_genotype_dosages,
    check_unique_individuals,
    validate_input_file,
)
from .version import __version__

logger = logging.getLogger("assocscan")

LOG_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}


def create_parser() -> argparse.ArgumentParser:
    """Create and return the argument parser for the assocscan CLI."""
    parser = argparse.ArgumentParser(
        description="assocscan: per-variant linear association scan of genotype/phenotype tables."
    )

    # General Options
    general_group = parser.add_argument_group("General Options")
    general_group.add_argument(
        "--version",
        action="version",
        version=f"assocscan {__version__}",
        help="Show the current version and exit",
    )
    general_group.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN", "ERROR"],
        default="INFO",
        help="Set the logging level",
    )
    general_group.add_argument(
        "--log-file", help="Path to a file to write logs to (in addition to stderr)."
    )
    general_group.add_argument(
        "-c",
        "--config",
        help="Path to a JSON configuration file overriding the packaged defaults",
        default=None,
    )

    # Core Input/Output
    io_group = parser.add_argument_group("Core Input/Output")
    io_group.add_argument(
        "-g",
        "--genotype-file",
        required=True,
        help="Long-format delimited table: one row per variant and individual, "
        "with key, genotype, phenotype and covariate columns",
    )
    io_group.add_argument(
        "--variant-info-file",
        help="Optional per-variant metadata table (genotyped flag, info score) "
        "used for imputation-quality filtering",
    )
    io_group.add_argument(
        "-o",
        "--output-dir",
        default="output",
        help="Directory for the per-phenotype summary-statistics files",
    )

    # Model
    model_group = parser.add_argument_group("Model")
    model_group.add_argument(
        "-p",
        "--phenotype",
        action="append",
        required=True,
        help="Phenotype column to test. Specify multiple times for multiple phenotypes.",
    )
    model_group.add_argument(
        "--covariate",
        action="append",
        default=[],
        help="Covariate formula term, passed through verbatim (e.g. 'age', 'sex:age', "
        "'C(batch)'). Specify multiple times.",
    )
    model_group.add_argument(
        "--variant-key",
        action="append",
        help="Column(s) identifying a variant. Specify multiple times for a composite "
        "key. Default from config: chromosome + position.",
    )
    model_group.add_argument("--genotype-column", help="Alternate allele dosage column")
    model_group.add_argument(
        "--sample-column",
        help="Individual ID column, used to check for duplicate individuals per variant",
    )

    # Quality Control
    qc_group = parser.add_argument_group("Quality Control")
    qc_group.add_argument(
        "--mac-threshold",
        type=int,
        help="Exclude variants with minor allele count below this value",
    )
    qc_group.add_argument(
        "--info-threshold",
        type=float,
        help="Exclude imputed variants with an info score below this value "
        "(requires --variant-info-file)",
    )
    qc_group.add_argument(
        "--skip-degenerate",
        action="store_true",
        default=None,
        help="Omit degenerate fits (e.g. monomorphic variants) instead of writing NA rows",
    )

    # Performance
    perf_group = parser.add_argument_group("Performance")
    perf_group.add_argument(
        "-w",
        "--workers",
        type=int,
        help="Worker processes for the per-variant fits. Default: CPU count - 1. "
        "1 runs sequentially.",
    )
    perf_group.add_argument(
        "--unit-timeout",
        type=float,
        help="Seconds a fit may run on a worker before it is recorded as FIT_TIMEOUT",
    )
    perf_group.add_argument(
        "--worker-retries",
        type=int,
        help="Times to resubmit fits lost to a crashed worker before failing",
    )

    return parser


def parse_args(args_list=None):
    """Parse command line arguments.

    Parameters
    ----------
    args_list : list, optional
        List of arguments to parse. If None, uses sys.argv

    Returns
    -------
    argparse.Namespace
        Parsed arguments
    """
    parser = create_parser()
    return parser.parse_args(args_list)


def merge_cli_into_config(args: argparse.Namespace, cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay explicitly given CLI options on the loaded configuration."""
    overrides = {
        "variant_key": args.variant_key,
        "genotype_column": args.genotype_column,
        "sample_column": args.sample_column,
        "workers": args.workers,
        "unit_timeout": args.unit_timeout,
        "worker_retries": args.worker_retries,
        "skip_degenerate": args.skip_degenerate,
        "mac_threshold": args.mac_threshold,
        "info_threshold": args.info_threshold,
    }
    merged = dict(cfg)
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return merged


def run_scan(args: argparse.Namespace, cfg: Dict[str, Any]) -> List[str]:
    """
    Run the full scan workflow for parsed arguments and a merged config.

    Steps:
        1. Read and validate the genotype table.
        2. Scan every phenotype.
        3. Apply the MAC filter and, if configured, the info filter.
        4. Log per-phenotype diagnostics.
        5. Write one summary-statistics file per phenotype.

    Returns
    -------
    list of str
        Paths of the written summary-statistics files.
    """
    variant_key = cfg["variant_key"]
    if isinstance(variant_key, str):
        variant_key = [variant_key]
    genotype_column = cfg.get("genotype_column", "genotype")

    validate_input_file(args.genotype_file, "Genotype")
    table = read_genotype_table(args.genotype_file)
    check_genotype_dosages(table, genotype_column)
    sample_column = cfg.get("sample_column")
    if sample_column and sample_column in table.columns:
        check_unique_individuals(table, variant_key, sample_column)
    elif sample_column:
        logger.debug(f"Sample column '{sample_column}' not present; duplicate check skipped")

    scanner = AssociationScanner(ScanConfig.from_dict(cfg))
    results = scanner.scan(table, variant_key, args.phenotype, args.covariate)

    mac_threshold = int(cfg.get("mac_threshold") or 0)
    if mac_threshold > 0:
        results, _ = filter_by_mac(
            results, table, variant_key, mac_threshold, genotype_column
        )

    info_threshold = cfg.get("info_threshold")
    if info_threshold is not None:
        if not args.variant_info_file:
            raise ValueError("--info-threshold requires --variant-info-file")
        validate_input_file(args.variant_info_file, "Variant info")
        variant_info = read_variant_info(args.variant_info_file)
        results, _ = filter_by_info(
            results,
            variant_info,
            variant_key,
            float(info_threshold),
            info_column=cfg.get("info_column", "info"),
            genotyped_column=cfg.get("genotyped_column", "genotyped"),
        )

    if not results.empty:
        for row in summarize_scan(results).itertuples(index=False):
            lambda_gc = f"{row.lambda_gc:.3f}" if pd.notna(row.lambda_gc) else "NA"
            logger.info(
                f"Phenotype '{row.phenotype_name}': {row.n_variants} variants, "
                f"{row.n_degenerate} degenerate, lambda_GC={lambda_gc}, "
                f"top variant {row.top_variant_id} (p={row.min_p_value:.3g})"
            )
    else:
        logger.warning("No association results left to write.")

    return write_summary_statistics(
        results,
        args.output_dir,
        suffix=cfg.get("output_suffix", ".sumstats.tsv"),
        variant_key=variant_key,
    )


def main(args_list: Optional[List[str]] = None) -> int:
    """Run main entry point for the assocscan CLI.

    Steps:
        1. Parse arguments.
        2. Configure logging and load config.
        3. Overlay CLI options on the config.
        4. Run the scan and write summary statistics.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    args = parse_args(args_list)

    logger.setLevel(LOG_LEVEL_MAP[args.log_level])

    # If a log file is specified, add a file handler
    if args.log_file:
        log_file_path = Path(args.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        fh = logging.FileHandler(args.log_file)
        fh.setLevel(LOG_LEVEL_MAP[args.log_level])
        fh.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
        )
        logger.addHandler(fh)
        logger.debug(f"Logging to file enabled: {args.log_file}")

    start_time = datetime.datetime.now()
    logger.info(f"Run started at {start_time.isoformat()}")
    logger.debug(f"CLI arguments: {args}")

    try:
        cfg = merge_cli_into_config(args, load_config(args.config))
        logger.debug(f"Configuration loaded: {cfg}")
        paths = run_scan(args, cfg)
    except (ScanError, FileNotFoundError, ValueError) as e:
        logger.error(f"Scan failed: {e}")
        return 1

    elapsed = datetime.datetime.now() - start_time
    logger.info(f"Wrote {len(paths)} summary-statistics file(s) in {elapsed}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
