"""Main entry point for the tablemover CLI."""

import asyncio
import logging as std_logging
import sys
from pathlib import Path
from typing import Optional

import click

from tablemover.config import apply_overrides, load_config
from tablemover.exceptions import ConfigError, MoverError
from utils.logging import configure_logging


@click.command()
@click.option(
    "--config",
    "-c",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option("--where", help="WHERE clause selecting the rows to move (overrides source.where)")
@click.option(
    "--limit",
    type=click.IntRange(min=0),
    help="Rows per batch (overrides source.batch_size)",
)
@click.option(
    "--sleep",
    type=click.FloatRange(min=0),
    help="Seconds to pause between batches, 0 or at least 0.1",
)
@click.option(
    "--progress",
    type=click.FloatRange(min=0),
    help="Seconds between progress reports, 0 disables",
)
@click.option(
    "--memory",
    type=click.IntRange(min=0),
    help="Maximum memory growth in bytes, 0 means unlimited",
)
@click.option(
    "--run-time",
    type=click.FloatRange(min=0),
    help="Stop between batches after this many seconds, 0 means unlimited",
)
@click.option(
    "--statistics",
    is_flag=True,
    default=False,
    help="Print statistics after the run",
)
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Resolve the key and show the statements without moving rows",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"]),
    help="Log level",
)
@click.option(
    "--log-format",
    default="console",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Log format: 'console' for human-readable output, 'json' for structured logs (default: console)",
)
def main(
    config: Path,
    where: Optional[str],
    limit: Optional[int],
    sleep: Optional[float],
    progress: Optional[float],
    memory: Optional[int],
    run_time: Optional[float],
    statistics: bool,
    dry_run: bool,
    verbose: bool,
    log_level: str,
    log_format: str,
) -> None:
    """Move rows from a live PostgreSQL table into another table in batches.

    Each batch is committed in the target before it is deleted from the
    source, so an interrupted run can simply be started again.
    """
    effective_log_level = "DEBUG" if verbose else log_level
    logger = configure_logging(log_level=effective_log_level, log_format=log_format)
    if verbose:
        std_logging.getLogger("asyncio").setLevel(std_logging.WARNING)
    logger = logger.bind(component="main")

    try:
        if verbose:
            logger.info("Loading configuration", config_path=str(config))
        mover_config = load_config(config)
        mover_config = apply_overrides(
            mover_config,
            where=where,
            batch_size=limit,
            sleep_seconds=sleep,
            progress_interval=progress,
            memory_limit_bytes=memory,
            run_time_seconds=run_time,
            statistics=True if statistics else None,
        )

        if dry_run:
            logger.info("DRY RUN MODE - No changes will be made")

        from tablemover.mover import TableMover

        mover = TableMover(mover_config, dry_run=dry_run, logger=logger)
        try:
            summary = asyncio.run(mover.run())
        except MoverError as e:
            logger.error("Move failed", error=str(e), correlation_id=e.correlation_id)
            sys.exit(1)

        if verbose:
            logger.info("Move finished", **summary["counts"])

    except ConfigError as e:
        logger.error("Configuration error", error=str(e), correlation_id=e.correlation_id)
        sys.exit(1)
    except Exception as e:
        logger.exception("Unexpected error", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
