"""Owner identity and authorization predicates.

Authentication happens upstream: the session layer hands the engine an
already-validated ``Identity``. The engine only answers "may this identity
act as the owner of this transfer?" with pure predicates over a finite role
set.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import ErrorKind, TransferError


class Role(str, Enum):
    """Roles issued by the identity provider."""

    SUPER_ADMIN = 'super_admin'
    ADMIN = 'admin'
    MANAGER = 'manager'
    USER = 'user'
    GUEST = 'guest'

    @classmethod
    def parse(cls, raw: str | None) -> 'Role':
        """Parse a role name, treating unknown or missing values as GUEST."""
        if not raw:
            return cls.GUEST
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return cls.GUEST


OWNER_CAPABLE_ROLES = frozenset(
    {Role.SUPER_ADMIN, Role.ADMIN, Role.MANAGER, Role.USER},
)


@dataclass(frozen=True, slots=True)
class Identity:
    """Validated caller identity.

    Attributes:
        user_id: Stable user identifier from the identity provider.
        email: Normalized email address (may be empty).
        role: One of ``Role``.
    """

    user_id: str
    email: str = ''
    role: Role = Role.USER


def can_own_transfers(identity: Identity) -> bool:
    return identity.role in OWNER_CAPABLE_ROLES


def is_transfer_owner(identity: Identity | None, owner_id: str | None) -> bool:
    """True when ``identity`` owns a transfer created by ``owner_id``.

    Transfers created anonymously (``owner_id is None``) have no owner.
    """
    if identity is None or owner_id is None:
        return False
    if not can_own_transfers(identity):
        return False
    return identity.user_id == owner_id


def require_owner(
    identity: Identity | None,
    owner_id: str | None,
    operation: str,
) -> None:
    """Raise FORBIDDEN unless ``identity`` owns the transfer."""
    if not is_transfer_owner(identity, owner_id):
        raise TransferError(
            ErrorKind.FORBIDDEN,
            operation,
            'only the transfer owner may perform this operation',
        )
