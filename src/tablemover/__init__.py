"""Table Mover - Batch moves of rows from a live PostgreSQL table into another table."""

__version__ = "0.1.0"

__all__ = [
    "TableMover",
    "DatabaseManager",
    "KeyResolver",
    "StatementFactory",
    "BatchCursor",
    "MoveCoordinator",
    "TransactionManager",
]
