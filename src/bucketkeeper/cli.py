"""Click CLI for Bucketkeeper."""

from __future__ import annotations

import sys
from functools import wraps
from typing import TYPE_CHECKING, Any

import click

from bucketkeeper import __version__
from bucketkeeper.config import EXECUTORS, BucketkeeperConfig
from bucketkeeper.core.compactor import Compactor, CompactRequest
from bucketkeeper.core.executor import SparkExecutor, create_executor
from bucketkeeper.core.reporter import print_compaction_report, print_plan_report
from bucketkeeper.errors import BucketkeeperError
from bucketkeeper.models import OrderType

if TYPE_CHECKING:
    from collections.abc import Callable

    from bucketkeeper.core.executor import WorkExecutor


def _build_config(ctx: click.Context) -> BucketkeeperConfig:
    """Build config from YAML file and CLI overrides."""
    params = ctx.params
    config_file = params.get("config_file")

    if config_file:
        config = BucketkeeperConfig.from_yaml(config_file)
    else:
        config = BucketkeeperConfig()

    return config.merge_cli_overrides(**params)


def _get_catalog(config: BucketkeeperConfig):  # noqa: ANN202
    """Load the catalog named in the configuration."""
    from bucketkeeper.catalog import load_catalog

    if not config.catalog:
        click.echo("Error: must specify --catalog (or 'catalog' in the config file)", err=True)
        sys.exit(1)
    return load_catalog(config.catalog, config)


def _get_table(config: BucketkeeperConfig):  # noqa: ANN202
    if not config.table:
        click.echo("Error: must specify --table", err=True)
        sys.exit(1)
    return _get_catalog(config).get_table(config.table)


def _release(executor: WorkExecutor) -> None:
    from bucketkeeper.utils.spark import stop_spark_session

    if isinstance(executor, SparkExecutor):
        stop_spark_session(executor.spark)


def _compact_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by the compact and plan commands."""
    options = [
        click.option("--table", "-t", help="Table identifier (format: db.table)."),
        click.option("--partitions", "-p", help="Partition filter, e.g. 'dt=2024-01-01,hh=00;dt=2024-01-02'."),
        click.option("--order-strategy", help="none, order, zorder or hilbert."),
        click.option("--order-by", help="Comma-separated sort columns."),
        click.option("--executor", type=click.Choice(EXECUTORS), help="Where workers run."),
        click.option("--parallelism", type=int, help="Number of parallel workers."),
        click.option("--catalog", help="Catalog factory (format: package.module:factory)."),
        click.option("--config-file", "-c", help="YAML configuration file."),
        click.option("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _fail_on_library_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (BucketkeeperError, ValueError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    return wrapper


@click.group()
@click.version_option(version=__version__, prog_name="bucketkeeper")
def main() -> None:
    """Bucketkeeper - Distributed compaction for partitioned, bucketed tables."""


@main.command()
@_compact_options
@click.pass_context
@_fail_on_library_errors
def compact(ctx: click.Context, **kwargs: str | None) -> None:
    """Compact a table in one atomic commit."""
    config = _build_config(ctx)
    config.setup_logging()

    request = CompactRequest.parse(config.partitions, config.order_strategy, config.order_by)
    table = _get_table(config)

    executor = create_executor(config)
    try:
        click.echo(f"Compacting {table.name}...\n")
        report = Compactor(executor).run(table, request)
    finally:
        _release(executor)

    click.echo(print_compaction_report(report))


@main.command()
@_compact_options
@click.pass_context
@_fail_on_library_errors
def plan(ctx: click.Context, **kwargs: str | None) -> None:
    """Show the units a compaction would run, without running it."""
    config = _build_config(ctx)
    config.setup_logging()

    request = CompactRequest.parse(config.partitions, config.order_strategy, config.order_by)
    table = _get_table(config)

    if request.order_type is not OrderType.NONE:
        click.echo(f"  Sort compaction ({request.order_type.value}) rewrites {table.name} without planning units.\n")
        return

    units = Compactor().plan(table, request)
    click.echo(print_plan_report(table, units))
