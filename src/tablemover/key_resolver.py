"""Column and key discovery for deterministic batch pagination and deletion."""

import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import structlog

from tablemover.database import DatabaseManager
from tablemover.exceptions import SchemaError
from utils import qualified_table
from utils.logging import get_logger


class KeyKind(Enum):
    """How rows of a batch are identified when they are deleted."""

    NONE = "none"
    UNIQUE = "unique"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class KeyDescriptor:
    """The index chosen to order and delete batches."""

    name: Optional[str]
    kind: KeyKind
    columns: tuple[str, ...] = ()
    positions: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if bool(self.columns) != (self.kind is not KeyKind.NONE):
            raise ValueError("key columns must be non-empty exactly when the key kind is not NONE")
        if len(self.columns) != len(self.positions):
            raise ValueError("every key column needs a position in the row projection")

    @classmethod
    def none(cls) -> "KeyDescriptor":
        """Descriptor for a table without a usable index."""
        return cls(name=None, kind=KeyKind.NONE)


@dataclass
class IndexInfo:
    """One btree index as read from the catalog."""

    name: str
    columns: list[str]
    is_primary: bool = False
    is_unique: bool = False
    not_null: bool = False
    cardinality: int = 0
    positions: list[int] = field(default_factory=list)


_COLUMNS_QUERY = """
    SELECT a.attname
    FROM pg_attribute a
    JOIN pg_class c ON c.oid = a.attrelid
    JOIN pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = $1
      AND c.relname = $2
      AND c.relkind IN ('r', 'p')
      AND a.attnum > 0
      AND NOT a.attisdropped
      AND a.attgenerated = ''
    ORDER BY a.attnum
"""

_INDEXES_QUERY = """
    SELECT
        i.relname AS index_name,
        ix.indisprimary AS is_primary,
        ix.indisunique AND ix.indpred IS NULL AS is_unique,
        cols.columns,
        cols.not_null,
        CASE
            WHEN ix.indisunique THEN greatest(t.reltuples, 0)::bigint
            ELSE cols.distinct_values
        END AS cardinality
    FROM pg_index ix
    JOIN pg_class t ON t.oid = ix.indrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_class i ON i.oid = ix.indexrelid
    JOIN pg_am am ON am.oid = i.relam
    CROSS JOIN LATERAL (
        SELECT
            array_agg(a.attname ORDER BY k.ord) AS columns,
            bool_and(a.attnotnull) AS not_null,
            coalesce(max(
                CASE
                    WHEN s.n_distinct >= 0 THEN s.n_distinct
                    ELSE -s.n_distinct * greatest(t.reltuples, 0)
                END
            ), 0)::bigint AS distinct_values
        FROM unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
        JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
        LEFT JOIN pg_stats s
            ON s.schemaname = n.nspname AND s.tablename = t.relname AND s.attname = a.attname
        WHERE k.ord <= ix.indnkeyatts
    ) cols
    WHERE n.nspname = $1
      AND t.relname = $2
      AND am.amname = 'btree'
      AND NOT (0 = ANY(ix.indkey::int2[]))
    ORDER BY i.oid
"""


def _walk_plan(node: dict[str, Any]) -> Iterator[dict[str, Any]]:
    yield node
    for child in node.get("Plans", []):
        yield from _walk_plan(child)


def parse_plan(plan_json: Any, table: str) -> tuple[Optional[str], int]:
    """Extract the planner's chosen index and row estimate for ``table``.

    Args:
        plan_json: Output of ``EXPLAIN (FORMAT JSON)``, as text or decoded
        table: Unquoted table name

    Returns:
        Tuple of (index name or None, estimated rows)
    """
    if isinstance(plan_json, (str, bytes)):
        plan_json = json.loads(plan_json)
    root = plan_json[0]["Plan"]

    rows: Optional[int] = None
    index_name: Optional[str] = None
    for node in _walk_plan(root):
        if node.get("Relation Name") != table:
            continue
        if rows is None:
            rows = int(node.get("Plan Rows", 0))
        if index_name is None:
            index_name = node.get("Index Name")
            # Bitmap heap scans keep the index on their child node
            for child in node.get("Plans", []):
                if index_name is None and child.get("Node Type") == "Bitmap Index Scan":
                    index_name = child.get("Index Name")
    if rows is None:
        rows = int(root.get("Plan Rows", 0))
    return index_name, rows


def choose_key(indexes: list[IndexInfo], planner_index: Optional[str]) -> KeyDescriptor:
    """Pick the index used to order and delete batches.

    Precedence: a non-null unique index (the primary key first, then the
    highest cardinality), then the planner's index, then the highest
    cardinality index of any kind. Equal cardinalities keep catalog order.
    """
    candidates = [i for i in indexes if i.is_unique and i.not_null]
    if candidates:
        chosen = next((i for i in candidates if i.is_primary), None)
        if chosen is None:
            chosen = max(candidates, key=lambda i: i.cardinality)
        return _descriptor(chosen, KeyKind.UNIQUE)

    if planner_index:
        for index in indexes:
            if index.name == planner_index:
                return _descriptor(index, KeyKind.SECONDARY)

    if indexes:
        return _descriptor(max(indexes, key=lambda i: i.cardinality), KeyKind.SECONDARY)

    return KeyDescriptor.none()


def _descriptor(index: IndexInfo, kind: KeyKind) -> KeyDescriptor:
    return KeyDescriptor(
        name=index.name,
        kind=kind,
        columns=tuple(index.columns),
        positions=tuple(index.positions),
    )


class KeyResolver:
    """Reads the column set and chooses the pagination key of a table."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        schema_name: str,
        table_name: str,
        where: Optional[str] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize key resolver.

        Args:
            db_manager: Database manager of the table's side
            schema_name: Schema name
            table_name: Table name
            where: Optional WHERE clause of the job
            logger: Optional logger instance
        """
        self.db_manager = db_manager
        self.schema_name = schema_name
        self.table_name = table_name
        self.where = where
        self.logger = logger or get_logger("key_resolver")

    async def load_columns(self) -> list[str]:
        """Return the ordered, non-generated columns of the table.

        Raises:
            SchemaError: If the table is absent or has no columns
        """
        rows = await self.db_manager.fetch(_COLUMNS_QUERY, self.schema_name, self.table_name)
        columns = [row["attname"] for row in rows]
        if not columns:
            raise SchemaError(
                f"{self.db_manager.role} table not found",
                context={
                    "database": self.db_manager.name,
                    "schema": self.schema_name,
                    "table": self.table_name,
                },
            )
        return columns

    async def explain(self) -> tuple[Optional[str], int]:
        """Ask the planner which index it would use and how many rows match."""
        query = f"EXPLAIN (FORMAT JSON) SELECT 1 FROM {qualified_table(self.schema_name, self.table_name)}"
        if self.where:
            query += f" WHERE {self.where}"
        plan = await self.db_manager.fetchval(query)
        return parse_plan(plan, self.table_name)

    async def load_indexes(self, columns: list[str]) -> list[IndexInfo]:
        """Read the btree indexes whose columns are all part of ``columns``."""
        rows = await self.db_manager.fetch(_INDEXES_QUERY, self.schema_name, self.table_name)
        offsets = {name: pos for pos, name in enumerate(columns)}
        indexes = []
        for row in rows:
            index_columns = list(row["columns"])
            if any(col not in offsets for col in index_columns):
                # keyed on a generated column, which is not part of the projection
                continue
            indexes.append(
                IndexInfo(
                    name=row["index_name"],
                    columns=index_columns,
                    is_primary=row["is_primary"],
                    is_unique=row["is_unique"],
                    not_null=row["not_null"],
                    cardinality=int(row["cardinality"] or 0),
                    positions=[offsets[col] for col in index_columns],
                )
            )
        return indexes

    async def resolve(self, columns: list[str]) -> tuple[KeyDescriptor, int]:
        """Choose the pagination key and capture the planner's row estimate.

        Args:
            columns: Column set returned by load_columns()

        Returns:
            Tuple of (key descriptor, estimated row count)

        Raises:
            SchemaError: If the column set is empty
            QueryError: If the planner or catalog query fails
        """
        if not columns:
            raise SchemaError(
                "source table has no columns",
                context={"schema": self.schema_name, "table": self.table_name},
            )

        planner_index, estimated_rows = await self.explain()
        indexes = await self.load_indexes(columns)
        key = choose_key(indexes, planner_index)

        self.logger.info(
            "Key resolved",
            table=self.table_name,
            key=key.name,
            kind=key.kind.value,
            columns=list(key.columns),
            planner_index=planner_index,
            estimated_rows=estimated_rows,
        )
        return key, estimated_rows
