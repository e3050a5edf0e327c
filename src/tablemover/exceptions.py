"""Custom exception hierarchy for the table mover."""

from typing import Any, Optional


class MoverError(Exception):
    """Base exception for all table mover errors."""

    def __init__(
        self,
        message: str,
        *,
        correlation_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize mover error.

        Args:
            message: Error message
            correlation_id: Optional correlation ID for tracing
            context: Optional context dictionary with additional details
        """
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [self.message]
        if self.correlation_id:
            parts.append(f"[correlation_id={self.correlation_id}]")
        if self.context:
            parts.append(f"[context={self.context}]")
        return " ".join(parts)


class ConfigError(MoverError):
    """Invalid settings, raised before the job starts."""

    pass


class ConnectError(MoverError):
    """A source or target database could not be reached."""

    pass


class SchemaError(MoverError):
    """Missing table or columns."""

    pass


class QueryError(MoverError):
    """A statement failed while a batch was in flight."""

    pass


class ConsistencyError(MoverError):
    """More rows were deleted from the source than were inserted into the target.

    The source transaction is never committed when this is raised, so the
    would-be data loss has been prevented.
    """

    pass


class ResourceLimitError(MoverError):
    """The process memory ceiling was breached."""

    pass
