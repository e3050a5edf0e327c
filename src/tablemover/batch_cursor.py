"""Batch selection of live rows from the source table."""

from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from tablemover.database import DatabaseManager
from tablemover.key_resolver import KeyDescriptor, KeyKind
from utils.logging import get_logger

Row = tuple[Any, ...]


@dataclass
class Batch:
    """Rows fetched in one round, with the key values captured from them.

    ``row_ids`` holds the ``ctid`` of each row as text and is only filled
    for secondary keys.
    """

    rows: list[Row] = field(default_factory=list)
    key_values: list[Row] = field(default_factory=list)
    row_ids: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        """Number of fetched rows."""
        return len(self.rows)

    def is_final(self, limit: int) -> bool:
        """A short batch means the source held no more matching rows."""
        return self.row_count < limit


class BatchCursor:
    """Fetches one bounded batch of live rows per call.

    There is no cursor position to carry between calls: rows that were
    moved have been deleted from the source, so re-running the same
    SELECT from the top only returns rows not yet processed.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        select_statement: str,
        key: KeyDescriptor,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize batch cursor.

        Args:
            db_manager: Source database manager
            select_statement: SELECT built by the StatementFactory
            key: Key whose column values are captured per row
            logger: Optional logger instance
        """
        self.db_manager = db_manager
        self.select_statement = select_statement
        self.key = key
        self.logger = logger or get_logger("batch_cursor")
        self.batches_fetched = 0

    async def fetch(self, limit: int) -> Batch:
        """Fetch the next batch.

        Args:
            limit: Maximum number of rows to fetch

        Returns:
            Batch of at most ``limit`` rows

        Raises:
            QueryError: On malformed SQL or lost connectivity
        """
        records = await self.db_manager.fetch(self.select_statement, limit)
        rows = [tuple(record.values()) for record in records]
        row_ids: list[str] = []
        if self.key.kind is KeyKind.SECONDARY:
            # the select appends the row id as its last column
            row_ids = [row[-1] for row in rows]
            rows = [row[:-1] for row in rows]
        positions = self.key.positions
        key_values = [tuple(row[p] for p in positions) for row in rows] if positions else []

        self.batches_fetched += 1
        self.logger.debug(
            "Batch selected",
            batch=self.batches_fetched,
            count=len(rows),
            limit=limit,
        )
        return Batch(rows=rows, key_values=key_values, row_ids=row_ids)
