"""Error taxonomy for the transfer access-control engine.

Every failure the engine reports carries one ``ErrorKind``. Domain kinds are
terminal business decisions (a revoked link stays revoked); infrastructure
kinds are transient and safe to retry.

Failures are a tagged value, not a class hierarchy: ``TransferError`` is the
only exception type, and callers branch on ``error.kind``.

This module provides:
  1. ``ErrorKind``: stable, machine-readable kinds.
  2. ``HTTP_STATUS``: suggested transport status for each kind.
  3. ``TransferError``: the single raised failure type.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class ErrorKind(str, Enum):
    """Outcome kinds shared by access results and raised errors."""

    OK = 'OK'

    # Access decisions (read-only denials).
    TRANSFER_NOT_FOUND = 'TRANSFER_NOT_FOUND'
    TRANSFER_REVOKED = 'TRANSFER_REVOKED'
    TRANSFER_EXPIRED = 'TRANSFER_EXPIRED'
    DOWNLOAD_LIMIT_REACHED = 'DOWNLOAD_LIMIT_REACHED'
    PASSWORD_REQUIRED = 'PASSWORD_REQUIRED'
    PASSWORD_INCORRECT = 'PASSWORD_INCORRECT'
    APPROVAL_REQUIRED = 'APPROVAL_REQUIRED'
    APPROVAL_PENDING = 'APPROVAL_PENDING'
    APPROVAL_DENIED = 'APPROVAL_DENIED'
    FILE_NOT_FOUND = 'FILE_NOT_FOUND'

    # Owner and creation operations.
    INVALID_REQUEST = 'INVALID_REQUEST'
    FORBIDDEN = 'FORBIDDEN'
    APPROVAL_NOT_FOUND = 'APPROVAL_NOT_FOUND'

    # Operational.
    TOKEN_SPACE_EXHAUSTED = 'TOKEN_SPACE_EXHAUSTED'
    STORAGE_UNAVAILABLE = 'STORAGE_UNAVAILABLE'


HTTP_STATUS: Mapping[ErrorKind, int] = MappingProxyType(
    {
        ErrorKind.OK: 200,
        ErrorKind.TRANSFER_NOT_FOUND: 404,
        ErrorKind.TRANSFER_REVOKED: 410,
        ErrorKind.TRANSFER_EXPIRED: 410,
        ErrorKind.DOWNLOAD_LIMIT_REACHED: 410,
        ErrorKind.PASSWORD_REQUIRED: 401,
        ErrorKind.PASSWORD_INCORRECT: 401,
        ErrorKind.APPROVAL_REQUIRED: 403,
        ErrorKind.APPROVAL_PENDING: 409,
        ErrorKind.APPROVAL_DENIED: 403,
        ErrorKind.FILE_NOT_FOUND: 404,
        ErrorKind.INVALID_REQUEST: 400,
        ErrorKind.FORBIDDEN: 403,
        ErrorKind.APPROVAL_NOT_FOUND: 404,
        ErrorKind.TOKEN_SPACE_EXHAUSTED: 500,
        ErrorKind.STORAGE_UNAVAILABLE: 503,
    }
)

RETRYABLE_KINDS = frozenset({ErrorKind.STORAGE_UNAVAILABLE})


class TransferError(Exception):
    """A failed engine operation.

    Attributes:
        kind: What went wrong.
        operation: Engine operation that failed (``create``, ``revoke``,
            ``decide``, ``record_download``...).
        message: Human-readable detail. Never contains passwords or full
            share tokens.
        cause: Underlying exception for infrastructure failures.
    """

    def __init__(
        self,
        kind: ErrorKind,
        operation: str,
        message: str = '',
        cause: BaseException | None = None,
    ) -> None:
        self.kind = kind
        self.operation = operation
        self.message = message or kind.value.replace('_', ' ').lower()
        self.cause = cause
        super().__init__(f'{operation}: {kind.value}: {self.message}')

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.kind]

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            'error': self.kind.value,
            'operation': self.operation,
            'message': self.message,
            'retryable': self.retryable,
        }
