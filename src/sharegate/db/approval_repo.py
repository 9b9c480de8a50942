"""Supabase-backed approval request storage.

Uniqueness of (transfer_id, requester_email) is a database constraint, so
two concurrent ``get_or_create`` calls converge on one row.
``decide_if_pending`` is a PATCH filtered on ``status=eq.PENDING``: at most
one decider matches the row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from ..approvals.model import ApprovalRequest, ApprovalStatus
from ..errors import ErrorKind, TransferError
from .errors import PostgrestConflict
from .postgrest import PostgrestClient, is_uuid


def _row_to_request(row: dict[str, Any]) -> ApprovalRequest:
    decided_at = row.get('decided_at')
    return ApprovalRequest(
        id=str(row['id']),
        transfer_id=str(row['transfer_id']),
        requester_email=row['requester_email'],
        status=ApprovalStatus(row['status']),
        request_message=row.get('request_message'),
        response_message=row.get('response_message'),
        decided_by=row.get('decided_by'),
        decided_at=datetime.fromisoformat(decided_at) if decided_at else None,
        created_at=datetime.fromisoformat(row['created_at']),
    )


class SupabaseApprovalRepository:
    """ApprovalRepository backed by sharegate.approval_requests."""

    TABLE = 'sharegate.approval_requests'

    def __init__(self, client: PostgrestClient) -> None:
        self._client = client

    async def get_or_create(
        self, request: ApprovalRequest,
    ) -> tuple[ApprovalRequest, bool]:
        row = {
            'id': request.id,
            'transfer_id': request.transfer_id,
            'requester_email': request.requester_email,
            'status': request.status.value,
            'request_message': request.request_message,
            'created_at': request.created_at.isoformat(),
        }
        try:
            rows = await self._client.insert(self.TABLE, row)
        except PostgrestConflict:
            existing = await self.find(request.transfer_id, request.requester_email)
            if existing is None:
                raise TransferError(
                    ErrorKind.STORAGE_UNAVAILABLE,
                    'request_access',
                    'approval request conflict without a matching row',
                )
            return existing, False
        return (_row_to_request(rows[0]) if rows else request), True

    async def get(self, request_id: str) -> ApprovalRequest | None:
        if not is_uuid(request_id):
            return None
        return await self._fetch(request_id)

    async def _fetch(self, request_id: str) -> ApprovalRequest | None:
        rows = await self._client.select(self.TABLE, {'id': request_id}, limit=1)
        return _row_to_request(rows[0]) if rows else None

    async def find(
        self, transfer_id: str, requester_email: str,
    ) -> ApprovalRequest | None:
        rows = await self._client.select(
            self.TABLE,
            {'transfer_id': transfer_id, 'requester_email': requester_email},
            limit=1,
        )
        return _row_to_request(rows[0]) if rows else None

    async def decide_if_pending(
        self,
        request_id: str,
        outcome: ApprovalStatus,
        *,
        now: datetime,
        decided_by: str,
        message: str | None = None,
    ) -> tuple[ApprovalRequest | None, bool]:
        rows = await self._client.update(
            self.TABLE,
            {'id': request_id, 'status': ApprovalStatus.PENDING.value},
            {
                'status': outcome.value,
                'decided_by': decided_by,
                'decided_at': now.isoformat(),
                'response_message': message,
            },
        )
        if rows:
            return _row_to_request(rows[0]), True
        return await self._fetch(request_id), False

    async def list_for_transfer(
        self, transfer_id: str, *, status: ApprovalStatus | None = None,
    ) -> list[ApprovalRequest]:
        filters: dict[str, Any] = {'transfer_id': transfer_id}
        if status is not None:
            filters['status'] = status.value
        rows = await self._client.select(
            self.TABLE, filters, order='created_at.asc',
        )
        return [_row_to_request(r) for r in rows]
