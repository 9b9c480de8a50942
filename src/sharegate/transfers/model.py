"""Transfer domain model.

A transfer is one share of one or more files, reachable through a unique
share token and governed by expiry, password and download-limit policy.

  - ``share_token`` is unique across every transfer ever stored, including
    revoked and expired ones. Records are never deleted by this package.
  - ``expiration_at`` is fixed at creation.
  - ``download_count`` only grows, and never exceeds ``download_limit``.
  - REVOKED is terminal.

Only ACTIVE and REVOKED are authoritative persisted states. The expiry
sweep may cache EXPIRED at rest for listing views, but
``effective_status`` always recomputes from the record and the clock and is
the one status consulted by access decisions.

This module provides:
  1. ``Transfer`` / ``TransferFile`` domain objects.
  2. ``CreateTransferRequest`` with its validation rules.
  3. ``effective_status`` pure status derivation.
  4. ``TransferRepository`` storage protocol and ``ShareTokenTaken``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, Sequence, runtime_checkable

from ..errors import ErrorKind, TransferError


class TransferStatus(str, Enum):
    ACTIVE = 'ACTIVE'
    EXPIRED = 'EXPIRED'
    EXHAUSTED = 'EXHAUSTED'
    REVOKED = 'REVOKED'


class ShareTokenTaken(Exception):
    """The share token is already stored by another transfer."""


def require_aware(now: datetime) -> datetime:
    if now.tzinfo is None or now.utcoffset() is None:
        raise ValueError('now must be timezone-aware')
    return now


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Domain model ──────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class FileSpec:
    """A file attached to a creation request; ``storage_key`` points into the blob store."""

    file_name: str
    file_size: int
    mime_type: str
    storage_key: str


@dataclass(frozen=True, slots=True)
class TransferFile:
    id: str
    file_name: str
    file_size: int
    mime_type: str
    storage_key: str

    def to_public_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'file_name': self.file_name,
            'file_size': self.file_size,
            'mime_type': self.mime_type,
        }


@dataclass(frozen=True, slots=True)
class Transfer:
    """Snapshot of one transfer record.

    Attributes:
        id: Opaque identifier.
        share_token: Public token embedded in the download link.
        owner_id: Creating user, or None for anonymous transfers.
        password_hash: bcrypt hash; None when the transfer is open.
        expiration_at: created_at + expiration days, never recomputed.
        download_limit: Maximum counted downloads; None means unlimited.
        download_count: Counted downloads so far.
        tracking_enabled: Whether download events keep IP/location detail.
        approval_required: Whether recipients need owner sign-off.
        status: Persisted status (ACTIVE, REVOKED, or a cached EXPIRED).
    """

    id: str
    share_token: str
    expiration_at: datetime
    owner_id: str | None = None
    title: str | None = None
    message: str | None = None
    sender_email: str | None = None
    recipient_email: str | None = None
    password_hash: str | None = None
    download_limit: int | None = None
    download_count: int = 0
    tracking_enabled: bool = True
    approval_required: bool = False
    status: TransferStatus = TransferStatus.ACTIVE
    files: tuple[TransferFile, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    @property
    def is_revoked(self) -> bool:
        return self.status == TransferStatus.REVOKED

    @property
    def total_size(self) -> int:
        return sum(f.file_size for f in self.files)

    def file(self, file_id: str) -> TransferFile | None:
        for f in self.files:
            if f.id == file_id:
                return f
        return None

    def to_public_dict(self, now: datetime) -> dict[str, Any]:
        """Recipient-facing view. No storage keys, no owner data, no hash."""
        return {
            'id': self.id,
            'title': self.title,
            'message': self.message,
            'sender_email': self.sender_email,
            'expiration_at': self.expiration_at.isoformat(),
            'status': effective_status(self, now).value,
            'has_password': self.has_password,
            'download_limit': self.download_limit,
            'approval_required': self.approval_required,
            'total_size': self.total_size,
            'files': [f.to_public_dict() for f in self.files],
        }

    def to_owner_dict(self, now: datetime) -> dict[str, Any]:
        """Owner dashboard view."""
        return {
            **self.to_public_dict(now),
            'share_token': self.share_token,
            'recipient_email': self.recipient_email,
            'download_count': self.download_count,
            'tracking_enabled': self.tracking_enabled,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }


def effective_status(transfer: Transfer, now: datetime) -> TransferStatus:
    """Derive the status that governs access at ``now``.

    REVOKED wins, then expiry, then an exhausted download limit. A cached
    EXPIRED in ``transfer.status`` is ignored; expiry is recomputed.
    """
    require_aware(now)
    if transfer.status == TransferStatus.REVOKED:
        return TransferStatus.REVOKED
    if now > transfer.expiration_at:
        return TransferStatus.EXPIRED
    if (
        transfer.download_limit is not None
        and transfer.download_count >= transfer.download_limit
    ):
        return TransferStatus.EXHAUSTED
    return TransferStatus.ACTIVE


# ── Creation request ──────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class CreateTransferRequest:
    expiration_days: int
    files: Sequence[FileSpec]
    user_id: str | None = None
    title: str | None = None
    message: str | None = None
    sender_email: str | None = None
    recipient_email: str | None = None
    password: str | None = None
    download_limit: int | None = None
    tracking_enabled: bool = True
    approval_required: bool = False
    share_link: str | None = None
    client_origin: str | None = None

    def __repr__(self) -> str:
        return (
            f'CreateTransferRequest(user_id={self.user_id!r}, '
            f'expiration_days={self.expiration_days!r}, '
            f'files={len(self.files)}, password={"set" if self.password else None})'
        )

    def validation_errors(self, *, max_expiration_days: int) -> list[str]:
        errors: list[str] = []
        if self.expiration_days < 1:
            errors.append('expiration_days must be > 0')
        elif self.expiration_days > max_expiration_days:
            errors.append(f'expiration_days must be <= {max_expiration_days}')
        if self.download_limit is not None and self.download_limit < 0:
            errors.append('download_limit must be >= 0')
        for name in ('sender_email', 'recipient_email'):
            value = getattr(self, name)
            if value is not None and '@' not in value:
                errors.append(f'{name} is not an email address')
        if self.password is not None and self.password == '':
            errors.append('password must not be empty')
        if not self.files:
            errors.append('at least one file is required')
        for index, spec in enumerate(self.files):
            if spec.file_size < 0:
                errors.append(f'files[{index}].file_size must be >= 0')
            if not spec.storage_key:
                errors.append(f'files[{index}].storage_key is required')
            if not spec.file_name:
                errors.append(f'files[{index}].file_name is required')
        return errors

    def validate(self, *, max_expiration_days: int) -> None:
        errors = self.validation_errors(max_expiration_days=max_expiration_days)
        if errors:
            raise TransferError(ErrorKind.INVALID_REQUEST, 'create', '; '.join(errors))


# ── Repository protocol ──────────────────────────────────────────────


@runtime_checkable
class TransferRepository(Protocol):
    """Transfer storage.

    Implementations: InMemoryTransferRepository (local, tests),
    SupabaseTransferRepository (production). Infrastructure failures are
    raised as ``TransferError(STORAGE_UNAVAILABLE)``.
    """

    async def create(self, transfer: Transfer) -> Transfer:
        """Persist a new transfer.

        Raises:
            ShareTokenTaken: ``transfer.share_token`` is already stored.
        """
        ...

    async def token_exists(self, share_token: str) -> bool: ...

    async def get_by_token(self, share_token: str) -> Transfer | None: ...

    async def get_by_id(self, transfer_id: str) -> Transfer | None: ...

    async def list_for_owner(self, owner_id: str) -> list[Transfer]: ...

    async def mark_revoked(
        self, transfer_id: str, *, now: datetime,
    ) -> tuple[Transfer | None, bool]:
        """Set REVOKED. Returns the stored transfer and whether it changed."""
        ...

    async def list_stale_active(self, now: datetime) -> list[Transfer]:
        """Persisted-ACTIVE transfers whose expiration_at is before ``now``."""
        ...

    async def mark_expired(self, transfer_ids: Sequence[str], *, now: datetime) -> int:
        """Cache EXPIRED on persisted-ACTIVE rows; returns rows changed."""
        ...
