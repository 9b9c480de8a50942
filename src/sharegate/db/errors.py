"""PostgREST conflict error.

Every other storage failure surfaces as
``TransferError(STORAGE_UNAVAILABLE)``. Conflicts stay separate because
repositories turn them into domain outcomes (token taken, request exists).
"""

from __future__ import annotations


class PostgrestConflict(Exception):
    """409 from PostgREST, typically a unique-constraint violation."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: str | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details
        super().__init__(f'PostgrestConflict(code={code}) {message}')
