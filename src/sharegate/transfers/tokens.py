"""Share token issuance.

Tokens are drawn from ``secrets`` and encoded URL-safe. The default of
6 random bytes yields 8 characters (48 bits). Uniqueness is checked against
the transfer store before a token is handed out; a bounded number of
collisions ends in TOKEN_SPACE_EXHAUSTED, which is an operational alert
rather than an expected outcome.

A client may propose its own token. The proposal is validated for shape,
then treated exactly like a generated candidate: if it is taken, the issuer
falls back to generated tokens under the same attempt budget.
"""

from __future__ import annotations

import math
import re
import secrets
from typing import Awaitable, Callable

from ..errors import ErrorKind, TransferError
from ..observability.logging import get_logger, redact_token

logger = get_logger(__name__)

# ── Constants ─────────────────────────────────────────────────────────

MIN_TOKEN_BYTES = 6
DEFAULT_TOKEN_BYTES = 6
DEFAULT_MAX_ATTEMPTS = 5

_PROPOSED_TOKEN_RE = re.compile(r'^[A-Za-z0-9_-]{8,128}$')


# ── Token operations ──────────────────────────────────────────────────


def generate_share_token(nbytes: int = DEFAULT_TOKEN_BYTES) -> str:
    """Generate a cryptographically random URL-safe share token."""
    if nbytes < MIN_TOKEN_BYTES:
        raise ValueError(f'share tokens need at least {MIN_TOKEN_BYTES} bytes')
    return secrets.token_urlsafe(nbytes)


def validate_proposed_token(token: str) -> str:
    """Return ``token`` if it is an acceptable client-proposed share token."""
    if not _PROPOSED_TOKEN_RE.match(token):
        raise TransferError(
            ErrorKind.INVALID_REQUEST,
            'issue_token',
            'share_link must be 8-128 URL-safe characters',
        )
    return token


def collision_probability(existing: int, nbytes: int = DEFAULT_TOKEN_BYTES) -> float:
    """Probability that one fresh token collides with ``existing`` stored tokens.

    Computed as ``1 - (1 - 1/space) ** existing`` in a numerically stable form.
    """
    if existing <= 0:
        return 0.0
    space = 2 ** (8 * nbytes)
    return -math.expm1(existing * math.log1p(-1.0 / space))


# ── Issuer ────────────────────────────────────────────────────────────


class TokenIssuer:
    """Issue share tokens that are unique in the transfer store.

    Args:
        exists: Async predicate answering "is this token already stored?".
        token_bytes: Random bytes per generated token.
        max_attempts: Candidates tried before giving up.
        generate: Token generator, replaceable in tests.
    """

    def __init__(
        self,
        exists: Callable[[str], Awaitable[bool]],
        *,
        token_bytes: int = DEFAULT_TOKEN_BYTES,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        generate: Callable[[int], str] = generate_share_token,
    ) -> None:
        if token_bytes < MIN_TOKEN_BYTES:
            raise ValueError(f'token_bytes must be >= {MIN_TOKEN_BYTES}')
        if max_attempts < 1:
            raise ValueError('max_attempts must be >= 1')
        self._exists = exists
        self._token_bytes = token_bytes
        self._max_attempts = max_attempts
        self._generate = generate

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def candidates(self, proposed: str | None = None):
        """Yield up to ``max_attempts`` candidate tokens, proposal first."""
        for attempt in range(self._max_attempts):
            if attempt == 0 and proposed:
                yield validate_proposed_token(proposed)
            else:
                yield self._generate(self._token_bytes)

    async def issue(self, proposed: str | None = None) -> str:
        """Return a token not currently present in the store.

        Raises:
            TransferError: INVALID_REQUEST for a malformed proposal,
                TOKEN_SPACE_EXHAUSTED once every candidate collided.
        """
        for attempt, candidate in enumerate(self.candidates(proposed), start=1):
            if not await self._exists(candidate):
                return candidate
            logger.warning(
                'share_token_collision',
                attempt=attempt,
                proposed=bool(proposed) and attempt == 1,
                token=redact_token(candidate),
            )
        raise self.exhausted()

    def exhausted(self) -> TransferError:
        logger.error('share_token_space_exhausted', attempts=self._max_attempts)
        return TransferError(
            ErrorKind.TOKEN_SPACE_EXHAUSTED,
            'issue_token',
            f'no unique share token after {self._max_attempts} attempts',
        )
