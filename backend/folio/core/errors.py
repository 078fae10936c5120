"""Domain error hierarchy.

Every error raised by the accounting core carries a coarse ``kind`` that the
HTTP layer maps to a status code, plus a stable machine ``code`` naming the
exact failure (``INSUFFICIENT_SHARES``, ``DUPLICATE_NAME`` ...).
"""

from __future__ import annotations

import enum
from typing import Any, Mapping


class ErrorKind(str, enum.Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    INSUFFICIENT_SHARES = "INSUFFICIENT_SHARES"
    INSUFFICIENT_LOTS = "INSUFFICIENT_LOTS"
    INVALID_ALLOCATION = "INVALID_ALLOCATION"
    NO_CONVERGENCE = "NO_CONVERGENCE"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"
    CANCELLED = "CANCELLED"
    INTERNAL = "INTERNAL"


class FolioError(Exception):
    """Base class for errors surfaced by the accounting core."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_code: str = "INTERNAL"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details: dict[str, Any] = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.code, "kind": self.kind.value}
        if self.details:
            payload["details"] = self.details
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class ValidationFailed(FolioError, ValueError):
    kind = ErrorKind.VALIDATION_ERROR
    default_code = "VALIDATION_ERROR"


class NotFound(FolioError):
    kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


class Unauthorized(FolioError):
    kind = ErrorKind.UNAUTHORIZED
    default_code = "UNAUTHORIZED"


class Forbidden(FolioError):
    kind = ErrorKind.FORBIDDEN
    default_code = "UNAUTHORIZED_ACCESS"


class Conflict(FolioError):
    kind = ErrorKind.CONFLICT
    default_code = "CONFLICT"


class InsufficientShares(FolioError):
    kind = ErrorKind.INSUFFICIENT_SHARES
    default_code = "INSUFFICIENT_SHARES"


class InsufficientLots(FolioError):
    kind = ErrorKind.INSUFFICIENT_LOTS
    default_code = "INSUFFICIENT_LOTS"


class InvalidAllocation(FolioError):
    kind = ErrorKind.INVALID_ALLOCATION
    default_code = "INVALID_ALLOCATION"


class NoConvergence(FolioError):
    kind = ErrorKind.NO_CONVERGENCE
    default_code = "NO_CONVERGENCE"


class UpstreamUnavailable(FolioError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    default_code = "UPSTREAM_UNAVAILABLE"


class RateLimited(FolioError):
    kind = ErrorKind.RATE_LIMITED
    default_code = "RATE_LIMITED"


class OperationCancelled(FolioError):
    kind = ErrorKind.CANCELLED
    default_code = "CANCELLED"


# Accounting violations roll back the triggering write and surface as CONFLICT-class.
ACCOUNTING_KINDS = frozenset(
    {
        ErrorKind.CONFLICT,
        ErrorKind.INSUFFICIENT_SHARES,
        ErrorKind.INSUFFICIENT_LOTS,
        ErrorKind.INVALID_ALLOCATION,
    }
)


__all__ = [
    "ACCOUNTING_KINDS",
    "Conflict",
    "ErrorKind",
    "FolioError",
    "Forbidden",
    "InsufficientLots",
    "InsufficientShares",
    "InvalidAllocation",
    "NoConvergence",
    "NotFound",
    "OperationCancelled",
    "RateLimited",
    "Unauthorized",
    "UpstreamUnavailable",
    "ValidationFailed",
]
