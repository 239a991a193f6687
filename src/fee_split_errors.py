"""
Fee Splitter - Exception Hierarchy

Every failure raised by the splitter carries a machine-readable kind, a
category that tells the caller whether retrying makes sense, and the
offending value in ``details``.

Categories:
- validation: bad input shape, retry with corrected input
- authorization: wrong caller or too early, retry as the right principal
- consistency: an invariant is broken, needs administrative intervention
- not_found: missing record, re-query
"""

from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """Broad classes of splitter failures."""
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    CONSISTENCY = "consistency"
    NOT_FOUND = "not_found"


class FeeSplitError(Exception):
    """
    Base exception for all splitter errors.

    Keyword arguments passed after the message end up in ``details`` so the
    offending input travels with the error into logs and API responses.
    """

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def kind(self) -> str:
        """Error kind, e.g. ``DuplicateName``."""
        return type(self).__name__

    @property
    def retryable(self) -> bool:
        """Consistency failures need an operator, everything else can be retried."""
        return self.category is not ErrorCategory.CONSISTENCY

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error": self.kind,
            "category": self.category.value,
            "message": self.message,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return str(value)


# =============================================================================
# Category bases
# =============================================================================

class ValidationError(FeeSplitError):
    """Input was malformed; nothing was mutated."""
    category = ErrorCategory.VALIDATION


class AuthorizationError(FeeSplitError):
    """Caller may not perform this operation (yet)."""
    category = ErrorCategory.AUTHORIZATION


class ConsistencyError(FeeSplitError):
    """A state invariant does not hold."""
    category = ErrorCategory.CONSISTENCY


class NotFoundError(FeeSplitError):
    """The requested record does not exist."""
    category = ErrorCategory.NOT_FOUND


# =============================================================================
# Validation
# =============================================================================

class InvalidName(ValidationError):
    pass


class DuplicateName(ValidationError):
    pass


class InvalidWeight(ValidationError):
    pass


class InvalidThresholdDenomination(ValidationError):
    pass


class InvalidRecipientKind(ValidationError):
    pass


class InvalidAddress(ValidationError):
    pass


class InvalidDenomination(ValidationError):
    pass


class EmptyDeposit(ValidationError):
    pass


class ZeroAmount(ValidationError):
    pass


class InvalidDelay(ValidationError):
    pass


class NoAllocations(ValidationError):
    """Raised when setup or removal would leave the registry empty."""


# =============================================================================
# Authorization
# =============================================================================

class Unauthorized(AuthorizationError):
    pass


class NotYetActive(AuthorizationError):
    pass


class NoPendingTransfer(AuthorizationError):
    pass


# =============================================================================
# Consistency
# =============================================================================

class EmptyRegistry(ConsistencyError):
    pass


class ReconciliationDeficit(ConsistencyError):
    pass


class MigrationError(ConsistencyError):
    pass


# =============================================================================
# Not found
# =============================================================================

class NotFound(NotFoundError):
    pass
