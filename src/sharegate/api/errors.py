"""Transport mapping for engine errors and access denials.

Every failure leaves the API in one shape::

    {"error": "<KIND>", "operation": "...", "message": "...", "retryable": bool}

with the kind's suggested status. Retryable failures also carry
``Retry-After``.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..access.evaluator import AccessResult
from ..errors import HTTP_STATUS, RETRYABLE_KINDS, ErrorKind, TransferError

RETRY_AFTER_SECONDS = '1'

_DENIAL_MESSAGES = {
    ErrorKind.TRANSFER_NOT_FOUND: 'Transfer not found.',
    ErrorKind.TRANSFER_REVOKED: 'This transfer has been revoked.',
    ErrorKind.TRANSFER_EXPIRED: 'This transfer has expired.',
    ErrorKind.DOWNLOAD_LIMIT_REACHED: 'The download limit for this transfer has been reached.',
    ErrorKind.PASSWORD_REQUIRED: 'A password is required.',
    ErrorKind.PASSWORD_INCORRECT: 'The password is incorrect.',
    ErrorKind.APPROVAL_REQUIRED: 'Access must be requested from the owner first.',
    ErrorKind.APPROVAL_PENDING: 'The access request is awaiting the owner.',
    ErrorKind.APPROVAL_DENIED: 'The owner denied the access request.',
    ErrorKind.FILE_NOT_FOUND: 'File not found in this transfer.',
}


def error_response(
    kind: ErrorKind,
    operation: str,
    message: str | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {
        'error': kind.value,
        'operation': operation,
        'message': message or _DENIAL_MESSAGES.get(kind, kind.value),
        'retryable': kind in RETRYABLE_KINDS,
    }
    headers = {'Retry-After': RETRY_AFTER_SECONDS} if kind in RETRYABLE_KINDS else None
    return JSONResponse(status_code=HTTP_STATUS[kind], content=content, headers=headers)


def denial_response(result: AccessResult, operation: str) -> JSONResponse:
    return error_response(result.kind, operation)


async def handle_transfer_error(request: Request, exc: TransferError) -> JSONResponse:
    return error_response(exc.kind, exc.operation, exc.message)


async def handle_validation_error(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    # Only locations and messages; echoed input could contain a password.
    problems = [
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    ]
    return error_response(
        ErrorKind.INVALID_REQUEST, 'validate_request', '; '.join(problems),
    )
