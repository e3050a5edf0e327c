"""SELECT/INSERT/DELETE statement synthesis for a chosen key strategy."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from tablemover.exceptions import ConfigError, MoverError
from tablemover.key_resolver import KeyDescriptor, KeyKind
from utils import quote_identifier
from utils.logging import get_logger

# Hard limit of the PostgreSQL wire protocol (Bind message uses int16 counts).
MAX_PARAMETERS = 32767

Row = tuple[Any, ...]


def _placeholder_tuples(rows: int, width: int, start: int = 1) -> str:
    """``($1, $2), ($3, $4), ...`` for ``rows`` tuples of ``width`` placeholders."""
    tuples = []
    n = start
    for _ in range(rows):
        tuples.append("(" + ", ".join(f"${i}" for i in range(n, n + width)) + ")")
        n += width
    return ", ".join(tuples)


@dataclass(frozen=True)
class Statements:
    """Templates valid for batches of exactly ``row_count`` rows."""

    row_count: int
    insert: str
    delete: Optional[str]


class StatementFactory:
    """Builds the statements that move one batch.

    Select is fixed for the whole job. Insert and key-based deletes depend
    only on the number of fetched rows and are cached until that number
    changes. Keyless deletes, and secondary-key deletes of batches holding
    NULL key values, depend on which values are NULL and are built per batch.
    """

    def __init__(
        self,
        source_table: str,
        target_table: str,
        columns: Sequence[str],
        key: KeyDescriptor,
        batch_size: int,
        where: Optional[str] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize statement factory.

        Args:
            source_table: Quoted, schema-qualified source table
            target_table: Quoted, schema-qualified target table
            columns: Column set of the source table
            key: Key chosen by the KeyResolver
            batch_size: Maximum rows per batch
            where: Optional WHERE clause of the job
            logger: Optional logger instance

        Raises:
            ConfigError: If a full batch would exceed the parameter limit
        """
        needed = batch_size * len(columns)
        if key.kind is KeyKind.SECONDARY:
            # key values plus the array of captured row ids
            needed = max(needed, batch_size * len(key.columns) + 1)
        if needed > MAX_PARAMETERS:
            raise ConfigError(
                f"batch size {batch_size} with {len(columns)} columns exceeds "
                f"{MAX_PARAMETERS} statement parameters; reduce the batch size",
                context={"batch_size": batch_size, "columns": len(columns)},
            )
        self.source_table = source_table
        self.target_table = target_table
        self.columns = list(columns)
        self.key = key
        self.batch_size = batch_size
        self.where = where
        self.logger = logger or get_logger("statements")
        self._column_list = ", ".join(quote_identifier(c) for c in self.columns)
        self._key_list = ", ".join(quote_identifier(c) for c in key.columns)
        self._order_by = self._key_list
        if key.kind is KeyKind.SECONDARY:
            # ties on a non-unique key are broken by physical row id
            self._order_by += ", ctid"
        self._current: Optional[Statements] = None

        self.select = self._build_select()

    def _build_select(self) -> str:
        columns = self._column_list
        if self.key.kind is KeyKind.SECONDARY:
            # row ids travel with the batch so the delete can pin the fetched rows
            columns += ", ctid::text"
        query = f"SELECT {columns} FROM {self.source_table}"
        if self.where:
            query += f" WHERE {self.where}"
        if self.key.kind is not KeyKind.NONE:
            query += f" ORDER BY {self._order_by}"
        return query + " LIMIT $1"

    def for_row_count(self, row_count: int) -> Statements:
        """Return templates for ``row_count`` rows, regenerating on a change."""
        if self._current is None or self._current.row_count != row_count:
            self._current = Statements(
                row_count=row_count,
                insert=self.build_insert(row_count),
                delete=self.build_key_delete(row_count),
            )
            self.logger.debug("Statements regenerated", row_count=row_count)
        return self._current

    def build_insert(self, row_count: int) -> str:
        """``INSERT INTO target (cols) OVERRIDING SYSTEM VALUE VALUES (...), ...``.

        Identity columns declared ``GENERATED ALWAYS`` in the target take the
        source values; the clause has no effect on other columns.
        """
        values = _placeholder_tuples(row_count, len(self.columns))
        return (
            f"INSERT INTO {self.target_table} ({self._column_list}) "
            f"OVERRIDING SYSTEM VALUE VALUES {values}"
        )

    def build_key_delete(self, row_count: int) -> Optional[str]:
        """Delete template for unique and secondary keys; None for keyless tables."""
        if self.key.kind is KeyKind.NONE:
            return None
        width = len(self.key.columns)
        in_list = f"({self._key_list}) IN ({_placeholder_tuples(row_count, width)})"
        if self.key.kind is KeyKind.UNIQUE:
            return f"DELETE FROM {self.source_table} WHERE {in_list}"
        return self._bounded_delete(in_list, row_count, row_ids_param=row_count * width + 1)

    def _bounded_delete(self, predicate: str, limit: int, row_ids_param: Optional[int] = None) -> str:
        # PostgreSQL has no DELETE ... ORDER BY ... LIMIT, so the bound is
        # applied to the row ids picked by a sub-select.
        conditions = [predicate]
        if row_ids_param is not None:
            conditions.append(f"ctid = ANY(${row_ids_param}::text[]::tid[])")
            if self.where:
                conditions.append(self.where)
        where = conditions[0] if len(conditions) == 1 else " AND ".join(f"({c})" for c in conditions)
        inner = f"SELECT ctid FROM {self.source_table} WHERE {where}"
        if row_ids_param is not None:
            inner += f" ORDER BY {self._order_by}"
        inner += f" LIMIT {limit}"
        return f"DELETE FROM {self.source_table} WHERE ctid = ANY(ARRAY({inner}))"

    def _equality_match(self, names: Sequence[str], rows: Sequence[Row]) -> tuple[str, list[Any]]:
        """``(a = $1 AND b IS NULL) OR (...)`` matching each row exactly."""
        clauses = []
        params: list[Any] = []
        for row in rows:
            terms = []
            for name, value in zip(names, row):
                if value is None:
                    terms.append(f"{quote_identifier(name)} IS NULL")
                else:
                    params.append(value)
                    terms.append(f"{quote_identifier(name)} = ${len(params)}")
            clauses.append("(" + " AND ".join(terms) + ")")
        return " OR ".join(clauses), params

    def insert_statement(self, rows: Sequence[Row]) -> tuple[str, list[Any]]:
        """Insert statement and flattened parameters for ``rows``."""
        statements = self.for_row_count(len(rows))
        return statements.insert, [value for row in rows for value in row]

    def delete_statement(
        self,
        rows: Sequence[Row],
        key_values: Sequence[Row],
        row_ids: Sequence[str] = (),
    ) -> tuple[str, list[Any]]:
        """Delete statement and parameters built from the values of the fetched rows.

        Secondary-key deletes only consider the fetched row versions: a row
        updated since the fetch has a new row id and stays in the source, so
        fewer rows are deleted than inserted and it is moved again later.

        Args:
            rows: Fetched rows, in column-set order
            key_values: Key column values of each row
            row_ids: Row ids (``ctid`` as text) of each row, secondary keys only

        Returns:
            Tuple of (statement, parameters)

        Raises:
            MoverError: If a secondary-key batch carries no row id per row
        """
        row_count = len(rows)
        if self.key.kind is KeyKind.NONE:
            predicate, params = self._equality_match(self.columns, rows)
            return self._bounded_delete(predicate, row_count), params

        key_params = [value for values in key_values for value in values]
        if self.key.kind is KeyKind.UNIQUE:
            return self._key_delete(row_count), key_params

        if len(row_ids) != row_count:
            raise MoverError(
                "secondary-key batch must carry one row id per row",
                context={"rows": row_count, "row_ids": len(row_ids)},
            )
        if any(value is None for values in key_values for value in values):
            # NULL never matches an IN-list
            predicate, params = self._equality_match(self.key.columns, key_values)
            sql = self._bounded_delete(predicate, row_count, row_ids_param=len(params) + 1)
            return sql, params + [list(row_ids)]

        return self._key_delete(row_count), key_params + [list(row_ids)]

    def _key_delete(self, row_count: int) -> str:
        delete = self.for_row_count(row_count).delete
        if delete is None:
            raise MoverError("no key delete template for a keyless table")
        return delete
