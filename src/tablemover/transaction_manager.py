"""Explicit transaction lifecycle for one side of a batch move."""

import time
from typing import Any, Optional

import asyncpg
import structlog

from tablemover.exceptions import QueryError
from utils.logging import get_logger


class TransactionManager:
    """Begins, commits and rolls back a transaction on a dedicated connection.

    The move coordinator decides *when* to commit, after the handshake, so
    the transaction cannot be scoped to a single ``async with`` block.
    """

    def __init__(
        self,
        connection: asyncpg.Connection,
        role: str,
        timeout_seconds: int = 1800,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize transaction manager.

        Args:
            connection: Dedicated database connection
            role: "source" or "target"
            timeout_seconds: statement_timeout applied inside the transaction
            logger: Optional logger instance
        """
        self.connection = connection
        self.role = role
        self.timeout_seconds = timeout_seconds
        self.logger = logger or get_logger("transaction_manager")
        self._transaction: Optional[Any] = None
        self._started_at: Optional[float] = None
        self.committed = False

    @property
    def active(self) -> bool:
        """True between begin() and commit()/rollback()."""
        return self._transaction is not None

    async def begin(self) -> None:
        """Start the transaction and apply the statement timeout.

        Raises:
            QueryError: If the transaction cannot be started
        """
        transaction = self.connection.transaction()
        try:
            await transaction.start()
        except Exception as e:
            raise QueryError(
                f"Failed to begin {self.role} transaction: {e}",
                context={"role": self.role},
            ) from e
        self._transaction = transaction
        self._started_at = time.monotonic()
        self.committed = False
        await self.execute(f"SET LOCAL statement_timeout = {self.timeout_seconds * 1000}")
        self.logger.debug("Transaction started", role=self.role)

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement inside the transaction.

        Returns:
            Command status string

        Raises:
            QueryError: If the statement fails
        """
        try:
            return await self.connection.execute(query, *args)
        except Exception as e:
            raise QueryError(
                f"{self.role.capitalize()} statement failed: {e}",
                context={
                    "role": self.role,
                    "query": query[:100],
                    "error_code": getattr(e, "sqlstate", None),
                },
            ) from e

    async def commit(self) -> None:
        """Commit the transaction.

        Raises:
            QueryError: If there is no active transaction or the commit fails
        """
        if self._transaction is None:
            raise QueryError(f"No active {self.role} transaction to commit")
        transaction, self._transaction = self._transaction, None
        try:
            await transaction.commit()
        except Exception as e:
            raise QueryError(
                f"Failed to commit {self.role} transaction: {e}",
                context={"role": self.role, "error_code": getattr(e, "sqlstate", None)},
            ) from e
        self.committed = True
        self.logger.debug("Transaction committed", role=self.role, age_seconds=self.age)

    async def rollback(self) -> None:
        """Roll back the transaction if it is still open.

        Rollback failures are logged only: the connection is released to the
        pool afterwards, which resets any transaction left behind.
        """
        if self._transaction is None:
            return
        transaction, self._transaction = self._transaction, None
        try:
            await transaction.rollback()
            self.logger.debug("Transaction rolled back", role=self.role)
        except Exception as e:
            self.logger.error(
                "Failed to roll back transaction",
                role=self.role,
                error=str(e),
            )

    @property
    def age(self) -> Optional[float]:
        """Seconds since begin(), or None if never started."""
        if self._started_at is None:
            return None
        return time.monotonic() - self._started_at
