"""Scatter/gather of compaction units across workers."""

from __future__ import annotations

import logging
import pickle
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from bucketkeeper.errors import BucketkeeperError, UnsupportedConfigurationError, WorkerExecutionError

if TYPE_CHECKING:
    from pyspark.sql import SparkSession

    from bucketkeeper.config import BucketkeeperConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Worker = Callable[[Iterable[T]], Iterable[R]]


def partition_units(units: Sequence[T], num_workers: int) -> list[list[T]]:
    """Split units round-robin into at most ``num_workers`` non-empty slices.

    Every unit lands in exactly one slice.
    """
    num_workers = max(1, min(num_workers, len(units)))
    return [list(units[i::num_workers]) for i in range(num_workers) if units[i::num_workers]]


def _run_slice(worker: Worker, chunk: list[T]) -> list[R]:
    return list(worker(chunk))


class WorkExecutor(ABC):
    """Runs a worker function over disjoint slices of a unit list."""

    @abstractmethod
    def map_partitions(self, units: Sequence[T], worker: Worker) -> list[R]:
        """Run ``worker`` once per slice and return the concatenated results.

        Blocks until every slice is done. If any worker fails, no results are
        returned and the failure is raised.

        Raises:
            WorkerExecutionError: If a worker raised a non-library error.
        """


class LocalExecutor(WorkExecutor):
    """Thread-pool executor: one slice per thread, joined before returning."""

    def __init__(self, parallelism: int = 4) -> None:
        self._parallelism = max(1, parallelism)

    @property
    def parallelism(self) -> int:
        return self._parallelism

    def map_partitions(self, units: Sequence[T], worker: Worker) -> list[R]:
        slices = partition_units(units, self._parallelism)
        if not slices:
            return []

        logger.info("Distributing %d unit(s) over %d local worker(s)", len(units), len(slices))
        with ThreadPoolExecutor(max_workers=len(slices), thread_name_prefix="bucketkeeper-worker") as pool:
            futures = [pool.submit(_run_slice, worker, chunk) for chunk in slices]
            _, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()

        # Leaving the pool waits for running workers, so their resources are released here.
        for index, future in enumerate(futures):
            if future.cancelled():
                continue
            error = future.exception()
            if error is None:
                continue
            logger.error("Worker %d failed: %s", index, error)
            if isinstance(error, BucketkeeperError):
                raise error
            msg = f"Compaction worker {index} failed: {error}"
            raise WorkerExecutionError(msg) from error

        results: list[R] = []
        for future in futures:
            results.extend(future.result())
        return results


@dataclass(frozen=True)
class _SliceFailure:
    error: BucketkeeperError


class _LibraryErrorsAsResults:
    """Runs a worker on one Spark partition and returns library errors as values.

    Spark only reports a failed task as a stringified traceback, so a
    ``BucketkeeperError`` raised on an executor is sent back to the driver as a
    ``_SliceFailure`` and re-raised there.
    """

    def __init__(self, worker: Worker) -> None:
        self._worker = worker

    def __call__(self, chunk: Iterable[T]) -> list:
        try:
            return list(self._worker(chunk))
        except BucketkeeperError as e:
            return [_SliceFailure(e)]


class SparkExecutor(WorkExecutor):
    """Runs slices as partitions of a Spark RDD.

    The worker is pickled to the Spark executors, so it (and the table it
    holds) must be picklable.
    """

    def __init__(self, spark: SparkSession, parallelism: int | None = None) -> None:
        self._spark = spark
        self._parallelism = parallelism

    @property
    def spark(self) -> SparkSession:
        return self._spark

    def map_partitions(self, units: Sequence[T], worker: Worker) -> list[R]:
        """Run the worker over an RDD of the units.

        Raises:
            UnsupportedConfigurationError: If the worker cannot be shipped to Spark executors.
            WorkerExecutionError: If the Spark stage fails.
        """
        if not units:
            return []

        task = _LibraryErrorsAsResults(worker)
        _check_shippable(task)

        sc = self._spark.sparkContext
        num_slices = min(len(units), self._parallelism or sc.defaultParallelism)
        logger.info("Distributing %d unit(s) over %d Spark partition(s)", len(units), num_slices)
        try:
            results = sc.parallelize(list(units), num_slices).mapPartitions(task).collect()
        except Exception as e:
            msg = f"Spark compaction stage failed: {e}"
            raise WorkerExecutionError(msg) from e

        for result in results:
            if isinstance(result, _SliceFailure):
                logger.error("Spark worker failed: %s", result.error)
                raise result.error
        return results


def _check_shippable(task: _LibraryErrorsAsResults) -> None:
    from pyspark import cloudpickle

    try:
        cloudpickle.dumps(task)
    except (pickle.PicklingError, TypeError, AttributeError) as e:
        msg = f"Compaction worker cannot be shipped to Spark executors ({e}); use the local executor"
        raise UnsupportedConfigurationError(msg) from e


def create_executor(config: BucketkeeperConfig) -> WorkExecutor:
    """Build the executor selected by the configuration."""
    if config.executor == "spark":
        from bucketkeeper.utils.spark import get_or_create_spark_session

        spark = get_or_create_spark_session(app_name=config.app_name, master=config.spark_master)
        return SparkExecutor(spark, config.parallelism)
    return LocalExecutor(config.parallelism)
