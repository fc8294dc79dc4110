"""
Error kinds and recovery classification for analysis processing.

Provides:
- ErrorKind enum describing what went wrong with an analysis
- RecoveryAction enum describing what the consumer does about it
- AnalysisError, a single exception type carrying an explicit kind
- classify() to map any exception onto a ClassifiedError
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Error codes reported by the analysis service and the analysis store
MODULE_NOT_FOUND = "MODULE_NOT_FOUND"
ANALYSIS_NOT_FOUND = "ANALYSIS_NOT_FOUND"

NOT_FOUND_CODES = frozenset({MODULE_NOT_FOUND, ANALYSIS_NOT_FOUND})


class ErrorKind(Enum):
    """
    Classification of analysis failures.

    Kinds:
        NOT_FOUND: The module (or its stored analysis) no longer exists
        UNRECOVERABLE: Flagged as non-retryable by the analysis service
        OTHER: Anything else, including transient failures
    """

    NOT_FOUND = "not_found"
    UNRECOVERABLE = "unrecoverable"
    OTHER = "other"


class RecoveryAction(Enum):
    """What the processor does with a classified analysis failure."""

    SKIP = "skip"  # Swallow, delivery is acknowledged
    COMPENSATE_THEN_PROPAGATE = "compensate_then_propagate"
    PROPAGATE = "propagate"  # Surface, delivery is redelivered


_ACTIONS = {
    ErrorKind.NOT_FOUND: RecoveryAction.COMPENSATE_THEN_PROPAGATE,
    ErrorKind.UNRECOVERABLE: RecoveryAction.SKIP,
    ErrorKind.OTHER: RecoveryAction.PROPAGATE,
}


class AnalysisError(Exception):
    """
    Error raised by the analysis service, the store or the index clients.

    Attributes:
        message: Human-readable error description
        kind: Explicit classification of the failure
        code: Optional machine-readable code (e.g. MODULE_NOT_FOUND)
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.OTHER,
        code: Optional[str] = None,
        cause: Optional[BaseException] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.kind = kind
        self.code = code
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def unrecoverable(self) -> bool:
        return self.kind == ErrorKind.UNRECOVERABLE

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


@dataclass(frozen=True)
class ClassifiedError:
    """An error paired with its kind."""

    kind: ErrorKind
    error: BaseException

    @property
    def action(self) -> RecoveryAction:
        return recovery_action_for(self.kind)


def classify_kind(exc: BaseException) -> ErrorKind:
    """
    Classify an exception into an ErrorKind.

    Checked in order: an AnalysisError's own kind, a not-found ``code``
    attribute, an ``unrecoverable`` flag set to True. Anything else is
    OTHER so that unknown failures stay visible.

    Args:
        exc: Exception to classify

    Returns:
        Appropriate ErrorKind
    """
    # Already classified
    if isinstance(exc, AnalysisError):
        return exc.kind

    if getattr(exc, "code", None) in NOT_FOUND_CODES:
        return ErrorKind.NOT_FOUND

    if getattr(exc, "unrecoverable", False) is True:
        return ErrorKind.UNRECOVERABLE

    return ErrorKind.OTHER


def classify(exc: BaseException) -> ClassifiedError:
    """Classify an exception, keeping the original for logging and re-raise."""
    return ClassifiedError(kind=classify_kind(exc), error=exc)


def recovery_action_for(kind: ErrorKind) -> RecoveryAction:
    """Map an ErrorKind onto the action the processor takes."""
    return _ACTIONS[kind]


def module_not_found(name: str, cause: Optional[BaseException] = None) -> AnalysisError:
    """Build the error the analysis service raises for a vanished module."""
    return AnalysisError(
        f"Module {name} does not exist",
        kind=ErrorKind.NOT_FOUND,
        code=MODULE_NOT_FOUND,
        cause=cause,
        context={"module": name},
    )


def analysis_not_found(name: str) -> AnalysisError:
    """Build the error the store raises when no analysis is recorded."""
    return AnalysisError(
        f"Analysis for {name} not found",
        kind=ErrorKind.NOT_FOUND,
        code=ANALYSIS_NOT_FOUND,
        context={"module": name},
    )
