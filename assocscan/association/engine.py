# File: assocscan/association/engine.py
# Location: assocscan/assocscan/association/engine.py
"""
AssociationScanner: orchestrator for per-variant linear association scans.

The scanner partitions a long-format genotype/phenotype table by variant,
builds one self-contained FitTask per (phenotype, variant), dispatches the
tasks to a process pool (or runs them in process for a single worker), and
returns one result row per task.

Ordering
--------
Output is phenotype-major in the order the phenotypes were given, then
variant id ascending. Tasks are dispatched across the full phenotype x
variant cross product and re-sorted after collection, so the worker count
never changes the output.

Failure model
-------------
- Missing columns and empty partitions abort the scan before dispatch.
- Degenerate fits are recovered inside the worker into NaN rows.
- Any other exception from a fit aborts the scan as a FitError naming the
  variant and phenotype.
- A fit that runs longer than ``unit_timeout`` on a worker becomes a
  FIT_TIMEOUT NaN row. The clock starts when a worker picks the fit up, so
  fits queued behind slow ones are never timed out. Once every worker of a
  pool is stuck on a timed-out fit, the pool's processes are terminated and
  the fits that never started are resubmitted on a fresh pool. The timeout
  only applies to pooled execution.
- A crashed worker breaks the pool; its unfinished tasks are resubmitted on a
  fresh pool up to ``worker_retries`` times, then WorkerFailureError is raised.
"""

from __future__ import annotations

import concurrent.futures
import logging
import multiprocessing
import os
import queue
import time
from collections.abc import Sequence
from concurrent.futures.process import BrokenProcessPool
from typing import Any, Hashable

import numpy as np
import pandas as pd

from assocscan.association.base import (
    RESULT_COLUMNS,
    AssociationResult,
    ScanConfig,
    degenerate_result,
    resolve_worker_count,
)
from assocscan.association.ols import (
    DOSAGE_COLUMN,
    OUTCOME_COLUMN,
    FitTask,
    build_formula,
    covariate_columns,
    run_fit_task,
)
from assocscan.error_handling import (
    DataValidationError,
    EmptyPartitionError,
    FitError,
    MissingColumnError,
    WorkerFailureError,
)

logger = logging.getLogger("assocscan")

TaskKey = tuple[str, Hashable]

# Seconds between checks for start notices and expired fits while a timeout is set.
_POLL_INTERVAL = 0.05

# Set in each worker by _worker_initializer when a unit timeout is active.
_started_queue: Any = None


def _worker_initializer(started_queue: Any = None) -> None:
    """Set BLAS thread counts to 1 in worker processes to prevent oversubscription."""
    global _started_queue
    os.environ["OPENBLAS_NUM_THREADS"] = "1"
    os.environ["MKL_NUM_THREADS"] = "1"
    os.environ["OMP_NUM_THREADS"] = "1"
    _started_queue = started_queue


def _run_pooled_task(task: FitTask) -> AssociationResult:
    """Worker entry point: announce the start of a fit, then run it."""
    if _started_queue is not None:
        _started_queue.put((task.phenotype, task.variant_id))
    return run_fit_task(task)


def _terminate_workers(executor: concurrent.futures.ProcessPoolExecutor) -> None:
    """Stop every worker process of ``executor``, including ones stuck in a fit."""
    terminate = getattr(executor, "terminate_workers", None)
    if terminate is not None:  # Python >= 3.14
        terminate()
        return
    processes = getattr(executor, "_processes", None) or {}
    for process in list(processes.values()):
        process.terminate()


def _complete_rows(task: FitTask) -> int:
    return int(task.data.notna().all(axis=1).sum())


def _as_key_list(variant_key: str | Sequence[str]) -> list[str]:
    if isinstance(variant_key, str):
        return [variant_key]
    return list(variant_key)


class AssociationScanner:
    """
    Runs one OLS fit per variant and phenotype across a pool of workers.

    Usage
    -----
    >>> scanner = AssociationScanner(ScanConfig(workers=4))
    >>> results = scanner.scan(table, "position", ["height", "weight"], ["age", "sex"])

    Parameters
    ----------
    config : ScanConfig, optional
        Runtime options. Defaults to ScanConfig().
    """

    def __init__(self, config: ScanConfig | None = None) -> None:
        self._config = config or ScanConfig()

    @property
    def config(self) -> ScanConfig:
        return self._config

    def _required_columns(
        self, key_columns: list[str], phenotypes: Sequence[str], covariates: Sequence[str]
    ) -> list[str]:
        required = [*key_columns, self._config.genotype_column, *phenotypes]
        required.extend(covariate_columns(covariates))
        return list(dict.fromkeys(required))

    def _build_tasks(
        self,
        table: pd.DataFrame,
        key_columns: list[str],
        phenotypes: Sequence[str],
        covariates: Sequence[str],
    ) -> list[FitTask]:
        """Partition the table by variant and build tasks phenotype-major."""
        cov_cols = covariate_columns(covariates)
        reserved = {OUTCOME_COLUMN, DOSAGE_COLUMN} & set(cov_cols)
        if reserved:
            raise ValueError(
                f"Covariate column name(s) {sorted(reserved)} clash with reserved "
                f"formula names '{OUTCOME_COLUMN}' and '{DOSAGE_COLUMN}'"
            )

        formula = build_formula(covariates)
        group_key: str | list[str] = key_columns[0] if len(key_columns) == 1 else key_columns
        unique_keys = table[key_columns].drop_duplicates()
        variant_ids = sorted(unique_keys.itertuples(index=False, name=None))
        if len(key_columns) == 1:
            variant_ids = [v[0] for v in variant_ids]

        grouped = table.groupby(group_key, sort=True)
        groups: dict[Hashable, pd.DataFrame] = {}
        for variant_id in variant_ids:
            try:
                group = grouped.get_group(variant_id)
            except KeyError:
                raise EmptyPartitionError(variant_id) from None
            if group.empty:
                raise EmptyPartitionError(variant_id)
            groups[variant_id] = group

        tasks: list[FitTask] = []
        for phenotype in phenotypes:
            for variant_id in variant_ids:
                group = groups[variant_id]
                data = pd.DataFrame(
                    {
                        OUTCOME_COLUMN: pd.to_numeric(group[phenotype], errors="coerce"),
                        DOSAGE_COLUMN: pd.to_numeric(
                            group[self._config.genotype_column], errors="coerce"
                        ),
                    },
                    index=group.index,
                )
                for col in cov_cols:
                    data[col] = group[col]
                tasks.append(FitTask(variant_id, phenotype, formula, data.reset_index(drop=True)))
        return tasks
    def _run_sequential(self, tasks: list[FitTask]) -> dict[TaskKey, AssociationResult]:
        results: dict[TaskKey, AssociationResult] = {}
        for task in tasks:
            try:
                result = run_fit_task(task)
            except Exception as exc:
                raise FitError(task.variant_id, task.phenotype, exc) from exc
            results[(task.phenotype, task.variant_id)] = result
            logger.debug(
                f"Variant {task.variant_id!r} | {task.phenotype}: "
                f"beta={result.beta}, p={result.p_value}"
            )
        return results

    def _run_pool(
        self, tasks: list[FitTask], n_workers: int
    ) -> tuple[
        dict[TaskKey, AssociationResult], list[FitTask], list[FitTask], BaseException | None
    ]:
        """
        Run tasks on one pool.

        Returns
        -------
        results : dict
            Collected results, FIT_TIMEOUT rows included.
        lost : list of FitTask
            Tasks lost to a broken pool.
        unstarted : list of FitTask
            Tasks that never started because every worker was stuck on a
            timed-out fit.
        pool_error : BaseException or None
            The error that broke the pool.
        """
        timeout = self._config.unit_timeout
        results: dict[TaskKey, AssociationResult] = {}
        lost: list[FitTask] = []
        broken: set[concurrent.futures.Future] = set()
        unstarted: list[FitTask] = []
        pool_error: BaseException | None = None
        n_stalled = 0

        mp_context = multiprocessing.get_context()
        started = mp_context.Queue() if timeout is not None else None
        executor = concurrent.futures.ProcessPoolExecutor(
            max_workers=n_workers,
            mp_context=mp_context,
            initializer=_worker_initializer,
            initargs=(started,),
        )
        try:
            futures = [(task, executor.submit(_run_pooled_task, task)) for task in tasks]
            by_key = {(task.phenotype, task.variant_id): f for task, f in futures}
            waiting = {f for _, f in futures}
            deadlines: dict[concurrent.futures.Future, float] = {}

            while waiting:
                if started is not None:
                    self._record_starts(started, by_key, waiting, deadlines, timeout)
                done, _ = concurrent.futures.wait(
                    waiting,
                    timeout=_POLL_INTERVAL if timeout is not None else None,
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for task, future in futures:
                    if future not in done:
                        continue
                    waiting.discard(future)
                    key = (task.phenotype, task.variant_id)
                    try:
                        results[key] = future.result()
                    except BrokenProcessPool as exc:
                        pool_error = exc
                        broken.add(future)
                    except Exception as exc:
                        raise FitError(task.variant_id, task.phenotype, exc) from exc

                if pool_error is not None:
                    # Fits that finished before the pool broke are kept.
                    for task, future in futures:
                        if future in waiting and future.done() and not future.cancelled():
                            if future.exception() is None:
                                results[(task.phenotype, task.variant_id)] = future.result()
                                continue
                        if future in waiting or future in broken:
                            lost.append(task)
                    break

                now = time.monotonic()
                for task, future in futures:
                    deadline = deadlines.get(future)
                    if future in waiting and deadline is not None and deadline <= now:
                        waiting.discard(future)
                        n_stalled += 1
                        logger.warning(
                            f"Variant {task.variant_id!r} | {task.phenotype}: fit exceeded "
                            f"{timeout}s, recorded as FIT_TIMEOUT"
                        )
                        results[(task.phenotype, task.variant_id)] = degenerate_result(
                            task.variant_id, task.phenotype, _complete_rows(task), "FIT_TIMEOUT"
                        )

                if waiting and n_stalled >= n_workers:
                    unstarted = [task for task, future in futures if future in waiting]
                    logger.warning(
                        f"All {n_workers} workers are stuck on timed-out fits; moving "
                        f"{len(unstarted)} queued fit(s) to a fresh pool"
                    )
                    break
        finally:
            if n_stalled:
                _terminate_workers(executor)
            # A stalled worker would block a waiting shutdown indefinitely.
            executor.shutdown(wait=not n_stalled, cancel_futures=True)
            if started is not None:
                started.close()

        return results, lost, unstarted, pool_error

    @staticmethod
    def _record_starts(
        started: Any,
        by_key: dict[TaskKey, concurrent.futures.Future],
        waiting: set[concurrent.futures.Future],
        deadlines: dict[concurrent.futures.Future, float],
        timeout: float,
    ) -> None:
        """Give every fit a worker has announced a deadline of now + timeout."""
        while True:
            try:
                key = started.get_nowait()
            except queue.Empty:
                return
            future = by_key.get(key)
            if future is not None and future in waiting and future not in deadlines:
                deadlines[future] = time.monotonic() + timeout

    def _run_parallel(
        self, tasks: list[FitTask], n_workers: int
    ) -> dict[TaskKey, AssociationResult]:
        results: dict[TaskKey, AssociationResult] = {}
        pending = tasks
        attempt = 0
        while pending:
            logger.info(
                f"Parallel association: {min(n_workers, len(pending))} workers for "
                f"{len(pending)} fits"
            )
            collected, lost, unstarted, pool_error = self._run_pool(
                pending, min(n_workers, len(pending))
            )
            results.update(collected)
            if lost:
                units = [(t.phenotype, t.variant_id) for t in lost]
                if attempt >= self._config.worker_retries:
                    raise WorkerFailureError(units, pool_error)  # type: ignore[arg-type]
                attempt += 1
                logger.warning(
                    f"Worker failure lost {len(lost)} fit(s); resubmitting on a fresh pool "
                    f"(retry {attempt}/{self._config.worker_retries})"
                )
            pending = lost + unstarted
        return results

    def scan_records(
        self,
        table: pd.DataFrame,
        variant_key: str | Sequence[str],
        phenotypes: Sequence[str],
        covariates: Sequence[str] = (),
    ) -> list[AssociationResult]:
        """
        Run the scan and return AssociationResult objects in output order.

        Parameters
        ----------
        table : pd.DataFrame
            Long-format table, one row per (variant, individual).
        variant_key : str or sequence of str
            Column(s) identifying a variant. A composite key yields tuple ids.
        phenotypes : sequence of str
            Outcome columns, processed in the given order.
        covariates : sequence of str
            Formula terms added after the dosage, passed through verbatim.

        Returns
        -------
        list of AssociationResult
            Phenotype-major, then variant id ascending.

        Raises
        ------
        MissingColumnError
            If any key, genotype, phenotype or covariate column is absent.
        EmptyPartitionError
            If an enumerated variant has no rows.
        WorkerFailureError
            If worker processes die and retries are exhausted.
        FitError
            If a fit fails for a reason other than a degenerate design.
        """
        phenotypes = list(phenotypes)
        covariates = list(covariates)
        if not phenotypes:
            raise ValueError("At least one phenotype column is required.")
        if len(set(phenotypes)) != len(phenotypes):
            raise ValueError(f"Duplicate phenotype names: {phenotypes}")

        key_columns = _as_key_list(variant_key)
        missing = [
            c
            for c in self._required_columns(key_columns, phenotypes, covariates)
            if c not in table.columns
        ]
        if missing:
            raise MissingColumnError(missing)

        if table[key_columns].isnull().any().any():
            raise DataValidationError(
                f"Variant key column(s) {key_columns} contain missing values",
                field=",".join(key_columns),
            )

        if table.empty:
            logger.warning("Empty genotype table provided to AssociationScanner.")
            return []

        tasks = self._build_tasks(table, key_columns, phenotypes, covariates)
        n_variants = len(tasks) // len(phenotypes)
        logger.info(
            f"Association scan: {len(phenotypes)} phenotype(s) x {n_variants} variant(s), "
            f"formula '{tasks[0].formula}'"
        )

        n_workers = resolve_worker_count(self._config.workers)
        if n_workers == 1 or len(tasks) == 1:
            results = self._run_sequential(tasks)
        else:
            results = self._run_parallel(tasks, n_workers)

        ordered = [results[(t.phenotype, t.variant_id)] for t in tasks]
        n_degenerate = sum(r.is_degenerate for r in ordered)
        if n_degenerate:
            logger.info(f"Association scan: {n_degenerate} degenerate fit(s)")
        if self._config.skip_degenerate:
            ordered = [r for r in ordered if not r.is_degenerate]

        p_values = [r.p_value for r in ordered if not np.isnan(r.p_value)]
        logger.info(
            f"Association scan complete: {len(ordered)} result rows, "
            f"min p = {min(p_values) if p_values else float('nan'):.3g}"
        )
        return ordered

    def scan(
        self,
        table: pd.DataFrame,
        variant_key: str | Sequence[str],
        phenotypes: Sequence[str],
        covariates: Sequence[str] = (),
    ) -> pd.DataFrame:
        """
        Run the scan and return the result table.

        Same arguments and errors as scan_records(). Columns are RESULT_COLUMNS.
        """
        records = self.scan_records(table, variant_key, phenotypes, covariates)
        return results_to_frame(records)


def results_to_frame(records: Sequence[AssociationResult]) -> pd.DataFrame:
    """Result table (RESULT_COLUMNS) for a sequence of AssociationResult."""
    if not records:
        return pd.DataFrame(columns=RESULT_COLUMNS)
    df = pd.DataFrame([r.to_row() for r in records], columns=RESULT_COLUMNS)
    df["n"] = df["n"].astype(int)
    return df


def scan(
    table: pd.DataFrame,
    variant_key: str | Sequence[str],
    phenotypes: Sequence[str],
    covariates: Sequence[str] = (),
    workers: int | None = None,
    **config: Any,
) -> pd.DataFrame:
    """Scan with a one-off AssociationScanner. Extra keywords go to ScanConfig."""
    scanner = AssociationScanner(ScanConfig(workers=workers, **config))
    return scanner.scan(table, variant_key, phenotypes, covariates)
