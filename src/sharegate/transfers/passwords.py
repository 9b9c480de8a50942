"""bcrypt helpers for transfer passwords.

The clear password is hashed once at creation and only the hash is
persisted. bcrypt only looks at the first 72 bytes of input; longer
passwords are rejected at creation instead of being silently truncated.
Strings that cannot be encoded as UTF-8 (lone surrogates) are rejected at
creation and never match at access time.
"""

from __future__ import annotations

import bcrypt

DEFAULT_ROUNDS = 12
MAX_PASSWORD_BYTES = 72


def _encode(password: str) -> bytes | None:
    try:
        return password.encode('utf-8')
    except UnicodeEncodeError:
        return None


def password_problem(password: str) -> str | None:
    """Return why ``password`` cannot be hashed, or None when it can."""
    raw = _encode(password)
    if raw is None:
        return 'password must be valid UTF-8'
    if len(raw) > MAX_PASSWORD_BYTES:
        return 'password is too long'
    return None


def hash_password(password: str, *, rounds: int = DEFAULT_ROUNDS) -> str:
    problem = password_problem(password)
    if problem is not None:
        raise ValueError(problem)
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('ascii')


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check of ``password`` against a stored bcrypt hash."""
    if password_problem(password) is not None:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('ascii'))
    except ValueError:
        # Malformed stored hash.
        return False
