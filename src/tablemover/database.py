"""Database connection and query management using asyncpg."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Optional, Union
from urllib.parse import quote

import asyncpg
from structlog import BoundLogger

from tablemover.config import SourceConfig, TargetConfig
from tablemover.exceptions import ConnectError, QueryError
from utils.logging import get_logger

EndpointConfig = Union[SourceConfig, TargetConfig]


def affected_rows(status: str) -> int:
    """Extract the affected-row count from an asyncpg command tag.

    ``INSERT 0 4`` and ``DELETE 4`` both end with the number of rows the
    statement touched.

    Raises:
        QueryError: If the tag carries no count
    """
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        raise QueryError(
            f"Unexpected command status: {status!r}",
            context={"status": status},
        ) from None


class DatabaseManager:
    """Manages the connection pool of one side (source or target) of a move."""

    def __init__(
        self,
        config: EndpointConfig,
        role: str = "source",
        logger: Optional[BoundLogger] = None,
    ) -> None:
        """Initialize database manager.

        Args:
            config: Connection settings of this side
            role: "source" or "target", used in logs and error context
            logger: Optional logger instance
        """
        self.config = config
        self.role = role
        self.pool_size = config.pool_size or 2
        self.logger = logger or get_logger("database")
        self.pool: Optional[asyncpg.Pool] = None
        self._dsn: Optional[str] = None

    @property
    def name(self) -> str:
        """Database name."""
        return self.config.database or ""

    @property
    def dsn(self) -> str:
        """Get database connection DSN."""
        if self._dsn is None:
            try:
                password = self.config.get_password()
            except ValueError as e:
                raise ConnectError(
                    str(e),
                    context={"role": self.role, "database": self.name},
                ) from e

            credentials = quote(self.config.user or "", safe="")
            if password:
                credentials += ":" + quote(password, safe="")
            self._dsn = (
                f"postgresql://{credentials}@"
                f"{self.config.host}:{self.config.port}/{quote(self.name, safe='')}"
            )
        return self._dsn

    async def connect(self) -> None:
        """Create the fixed-size connection pool.

        Raises:
            ConnectError: If the database cannot be reached
        """
        try:
            self.logger.debug(
                "Creating connection pool",
                role=self.role,
                database=self.name,
                host=self.config.host,
                pool_size=self.pool_size,
            )

            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.pool_size,
                max_size=self.pool_size,
                command_timeout=None,
                server_settings={
                    "application_name": "tablemover",
                },
            )

            async with self.pool.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
                self.logger.info(
                    "Database connection established",
                    role=self.role,
                    database=self.name,
                    address=self.config.address,
                    version=version.split(",")[0] if version else "unknown",
                )

        except ConnectError:
            raise
        except Exception as e:
            raise ConnectError(
                f"Failed to connect to {self.role} database: {e}",
                context={"role": self.role, "database": self.name, "host": self.config.host},
            ) from e

    async def disconnect(self) -> None:
        """Close connection pool."""
        if self.pool:
            self.logger.debug("Closing connection pool", role=self.role, database=self.name)
            await self.pool.close()
            self.pool = None

    @asynccontextmanager
    async def acquire_connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Acquire a dedicated connection from the pool.

        Yields:
            Database connection

        Raises:
            ConnectError: If pool is not initialized
            QueryError: If no connection can be acquired
        """
        if not self.pool:
            raise ConnectError(
                "Connection pool not initialized. Call connect() first.",
                context={"role": self.role, "database": self.name},
            )

        try:
            conn = await self.pool.acquire()
        except Exception as e:
            raise QueryError(
                f"Failed to acquire {self.role} connection: {e}",
                context={"role": self.role, "database": self.name},
            ) from e
        try:
            yield conn
        finally:
            await self.pool.release(conn)

    def _query_error(self, e: Exception, query: str) -> QueryError:
        return QueryError(
            f"Query execution failed: {e}",
            context={"role": self.role, "database": self.name, "query": query[:100]},
        )

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """Execute a query and return all rows.

        Raises:
            QueryError: If execution fails
        """
        try:
            async with self.acquire_connection() as conn:
                return await conn.fetch(query, *args)
        except (ConnectError, QueryError):
            raise
        except Exception as e:
            raise self._query_error(e, query) from e

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Execute a query and return a single value.

        Raises:
            QueryError: If execution fails
        """
        try:
            async with self.acquire_connection() as conn:
                return await conn.fetchval(query, *args)
        except (ConnectError, QueryError):
            raise
        except Exception as e:
            raise self._query_error(e, query) from e
