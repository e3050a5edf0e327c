"""Table mover - Shared utilities."""

import re

_IDENTIFIER = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_$]*$")


def safe_identifier(name: str) -> str:
    """Validate and quote a configured PostgreSQL identifier.

    Configured names (schema and table names) are restricted to letters,
    digits, underscores and dollar signs, then double-quoted.

    Args:
        name: SQL identifier (table name or schema name)

    Returns:
        Safely quoted identifier (e.g., '"public"."my_table"')

    Raises:
        ValueError: If the identifier contains invalid characters
    """
    if "." in name:
        parts = name.split(".", 1)
        return f"{safe_identifier(parts[0])}.{safe_identifier(parts[1])}"

    if not _IDENTIFIER.match(name):
        raise ValueError(
            f"Invalid SQL identifier: {name!r}. "
            "Only letters, digits, underscores and '$' are allowed."
        )

    return f'"{name}"'


def quote_identifier(name: str) -> str:
    """Quote an identifier read back from the catalog.

    Column names come from the database itself and may contain any
    character, so embedded double quotes are doubled instead of rejected.
    """
    return '"' + name.replace('"', '""') + '"'


def qualified_table(schema: str, table: str) -> str:
    """Return the quoted ``schema.table`` name of a configured table."""
    return f"{safe_identifier(schema)}.{safe_identifier(table)}"
