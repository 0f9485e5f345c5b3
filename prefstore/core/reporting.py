"""Error reporting hooks."""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ErrorReporter(Protocol):
    """Protocol for collaborators that record normalized errors."""

    def report(self, error: BaseException, context: dict[str, Any]) -> None:
        """Record an error together with its context."""
        ...


class LoggingErrorReporter:
    """Reporter that writes errors to the standard logging system."""

    def __init__(self, logger_name: str = "prefstore.errors"):
        self.logger = logging.getLogger(logger_name)

    def report(self, error: BaseException, context: dict[str, Any]) -> None:
        operation = context.get("operation", "unknown")
        self.logger.error(
            f"{type(error).__name__} during {operation}: {error}",
            exc_info=error if error.__traceback__ else None,
            extra={"prefstore_context": context},
        )


def report_error(
    reporter: ErrorReporter | None, error: BaseException, **context: Any
) -> None:
    """Hand ``error`` to ``reporter``; reporter failures are only logged."""
    if reporter is None:
        return
    try:
        reporter.report(error, context)
    except Exception as e:
        logger.warning(f"Error reporter failed: {e}")
