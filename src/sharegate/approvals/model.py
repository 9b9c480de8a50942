"""Approval request state machine and storage.

One request exists per (transfer, requester email):

  PENDING -> APPROVED
  PENDING -> DENIED

Both outcomes are terminal. Deciding an already-decided request is a no-op
that reports ``changed=False``; it never overwrites the first decision.
Concurrent deciders are serialized per request, so exactly one of them
applies.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

from ..errors import ErrorKind, TransferError


class ApprovalStatus(str, Enum):
    PENDING = 'PENDING'
    APPROVED = 'APPROVED'
    DENIED = 'DENIED'


TERMINAL_STATES = frozenset({ApprovalStatus.APPROVED, ApprovalStatus.DENIED})

ALLOWED_TRANSITIONS = MappingProxyType(
    {
        ApprovalStatus.PENDING: frozenset(
            {ApprovalStatus.APPROVED, ApprovalStatus.DENIED},
        ),
        ApprovalStatus.APPROVED: frozenset(),
        ApprovalStatus.DENIED: frozenset(),
    }
)


def normalize_email(email: str | None, operation: str = 'request_access') -> str:
    """Trim and lower-case an email address used as an approval key."""
    normalized = (email or '').strip().lower()
    if '@' not in normalized:
        raise TransferError(
            ErrorKind.INVALID_REQUEST, operation, 'a valid requester email is required',
        )
    return normalized


def parse_outcome(raw: str | ApprovalStatus, operation: str = 'decide') -> ApprovalStatus:
    try:
        outcome = ApprovalStatus(str(getattr(raw, 'value', raw)).upper())
    except ValueError:
        outcome = None
    if outcome not in TERMINAL_STATES:
        raise TransferError(
            ErrorKind.INVALID_REQUEST, operation, 'outcome must be APPROVED or DENIED',
        )
    return outcome


@dataclass(frozen=True, slots=True)
class ApprovalRequest:
    id: str
    transfer_id: str
    requester_email: str
    status: ApprovalStatus = ApprovalStatus.PENDING
    request_message: str | None = None
    response_message: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_decided(self) -> bool:
        return self.status in TERMINAL_STATES

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'transfer_id': self.transfer_id,
            'requester_email': self.requester_email,
            'status': self.status.value,
            'request_message': self.request_message,
            'response_message': self.response_message,
            'decided_by': self.decided_by,
            'decided_at': self.decided_at.isoformat() if self.decided_at else None,
            'created_at': self.created_at.isoformat(),
        }


def new_request(
    *,
    transfer_id: str,
    requester_email: str,
    now: datetime,
    message: str | None = None,
) -> ApprovalRequest:
    return ApprovalRequest(
        id=str(uuid.uuid4()),
        transfer_id=transfer_id,
        requester_email=requester_email,
        request_message=message,
        created_at=now,
    )


def apply_decision(
    request: ApprovalRequest,
    outcome: ApprovalStatus,
    *,
    now: datetime,
    decided_by: str,
    message: str | None = None,
) -> tuple[ApprovalRequest, bool]:
    """Pure transition. Returns the resulting request and whether it changed."""
    if outcome not in TERMINAL_STATES:
        raise TransferError(
            ErrorKind.INVALID_REQUEST, 'decide', 'outcome must be APPROVED or DENIED',
        )
    if outcome not in ALLOWED_TRANSITIONS[request.status]:
        return request, False
    decided = replace(
        request,
        status=outcome,
        decided_by=decided_by,
        decided_at=now,
        response_message=message,
    )
    return decided, True


# ── Repository protocol ──────────────────────────────────────────────


@runtime_checkable
class ApprovalRepository(Protocol):
    """Approval request storage.

    Implementations: InMemoryApprovalRepository (local, tests),
    SupabaseApprovalRepository (production).
    """

    async def get_or_create(
        self, request: ApprovalRequest,
    ) -> tuple[ApprovalRequest, bool]:
        """Store ``request`` unless one exists for its (transfer, email) pair.

        Returns the stored request and whether it was created.
        """
        ...

    async def get(self, request_id: str) -> ApprovalRequest | None: ...

    async def find(
        self, transfer_id: str, requester_email: str,
    ) -> ApprovalRequest | None: ...

    async def decide_if_pending(
        self,
        request_id: str,
        outcome: ApprovalStatus,
        *,
        now: datetime,
        decided_by: str,
        message: str | None = None,
    ) -> tuple[ApprovalRequest | None, bool]:
        """Conditionally move PENDING -> outcome as one serialized step."""
        ...

    async def list_for_transfer(
        self, transfer_id: str, *, status: ApprovalStatus | None = None,
    ) -> list[ApprovalRequest]: ...


# ── In-memory implementation ─────────────────────────────────────────


class InMemoryApprovalRepository:
    """Dict-backed approval requests with per-request locks.

    Locks live as long as the request they guard; requests are never deleted
    and unknown ids never get a lock.
    """

    def __init__(self) -> None:
        self._requests: dict[str, ApprovalRequest] = {}
        self._by_key: dict[tuple[str, str], str] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def get_or_create(
        self, request: ApprovalRequest,
    ) -> tuple[ApprovalRequest, bool]:
        key = (request.transfer_id, request.requester_email)
        existing_id = self._by_key.get(key)
        if existing_id is not None:
            return self._requests[existing_id], False
        self._requests[request.id] = request
        self._by_key[key] = request.id
        return request, True

    async def get(self, request_id: str) -> ApprovalRequest | None:
        return self._requests.get(request_id)

    async def find(
        self, transfer_id: str, requester_email: str,
    ) -> ApprovalRequest | None:
        request_id = self._by_key.get((transfer_id, requester_email))
        return self._requests.get(request_id) if request_id else None

    async def decide_if_pending(
        self,
        request_id: str,
        outcome: ApprovalStatus,
        *,
        now: datetime,
        decided_by: str,
        message: str | None = None,
    ) -> tuple[ApprovalRequest | None, bool]:
        if request_id not in self._requests:
            return None, False
        async with self._lock_for(request_id):
            current = self._requests[request_id]
            decided, changed = apply_decision(
                current, outcome, now=now, decided_by=decided_by, message=message,
            )
            if changed:
                self._requests[request_id] = decided
            return decided, changed

    async def list_for_transfer(
        self, transfer_id: str, *, status: ApprovalStatus | None = None,
    ) -> list[ApprovalRequest]:
        result = [
            r for r in self._requests.values()
            if r.transfer_id == transfer_id and (status is None or r.status == status)
        ]
        return sorted(result, key=lambda r: r.created_at)
