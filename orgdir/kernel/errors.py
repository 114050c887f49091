"""
Typed errors for the directory kernel.

Every failure carries a stable ErrorCode so callers can render precise
messages. None of these are retryable: they describe caller input or policy
problems. Backing-store faults surface as SQLAlchemy errors and roll back the
whole request transaction.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Error taxonomy shared by the tree store and the authorization engine."""

    # Tree store
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    INVALID_OPERATION = "INVALID_OPERATION"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"

    # Authorization
    AUTH_REQUIRED = "AUTH_REQUIRED"
    ROLE_INSUFFICIENT = "ROLE_INSUFFICIENT"
    SCOPE_VIOLATION = "SCOPE_VIOLATION"
    ANCESTOR_EDIT_FORBIDDEN = "ANCESTOR_EDIT_FORBIDDEN"
    ESCALATION_DENIED = "ESCALATION_DENIED"


AUTHORIZATION_CODES = frozenset({
    ErrorCode.AUTH_REQUIRED,
    ErrorCode.ROLE_INSUFFICIENT,
    ErrorCode.SCOPE_VIOLATION,
    ErrorCode.ANCESTOR_EDIT_FORBIDDEN,
    ErrorCode.ESCALATION_DENIED,
})


class DirectoryError(Exception):
    """Base exception for directory operations."""

    code: ErrorCode = ErrorCode.INVALID_OPERATION

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class NotFoundError(DirectoryError):
    """Referenced node or parent does not exist."""

    code = ErrorCode.NOT_FOUND


class ConflictError(DirectoryError):
    """A sibling with the same name already exists."""

    code = ErrorCode.CONFLICT


class InvalidOperationError(DirectoryError):
    """Structural violation of the tree (principal with children, cycles)."""

    code = ErrorCode.INVALID_OPERATION


class NotImplementedOperationError(DirectoryError):
    """Operation is part of the surface but has no behavior yet."""

    code = ErrorCode.NOT_IMPLEMENTED


class AuthorizationError(DirectoryError):
    """Request denied by the authorization engine."""

    code = ErrorCode.AUTH_REQUIRED

    def __init__(self, code: ErrorCode, message: str, stage: Optional[str] = None):
        if code not in AUTHORIZATION_CODES and code != ErrorCode.NOT_FOUND:
            raise ValueError(f"{code} is not an authorization outcome")
        self.stage = stage
        super().__init__(message, code)
