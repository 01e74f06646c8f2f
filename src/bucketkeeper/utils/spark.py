"""SparkSession helper utilities."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pyspark.sql import SparkSession

logger = logging.getLogger(__name__)


def get_or_create_spark_session(
    app_name: str = "bucketkeeper",
    master: str | None = None,
) -> SparkSession:
    """Get or create a SparkSession for distributing compaction work.

    Args:
        app_name: Spark application name.
        master: Spark master URL. If None, uses existing config.

    Returns:
        Configured SparkSession.
    """
    from pyspark.sql import SparkSession

    builder = SparkSession.builder.appName(app_name)

    if master:
        builder = builder.master(master)

    spark = builder.getOrCreate()
    logger.info("SparkSession initialized: %s", spark.sparkContext.applicationId)
    return spark


def stop_spark_session(spark: SparkSession) -> None:
    """Stop a SparkSession gracefully.

    Args:
        spark: SparkSession to stop.
    """
    try:
        spark.stop()
        logger.info("SparkSession stopped.")
    except Exception:
        logger.exception("Error stopping SparkSession")
