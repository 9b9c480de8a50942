"""Supabase-backed transfer storage and download ledger.

Transfers live in sharegate.transfers with their file list as a jsonb
column, so a transfer and its files are inserted in one statement. The
conditional download increment is the ``record_transfer_download`` SQL
function (see migrations/001_transfers.sql); it locks the transfer row, so
concurrent downloads of one transfer serialize in the database.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from ..downloads.model import DownloadEvent, RecordResult
from ..errors import ErrorKind, TransferError
from ..transfers.model import ShareTokenTaken, Transfer, TransferFile, TransferStatus
from .errors import PostgrestConflict
from .postgrest import PostgrestClient, is_uuid


def _ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_transfer(row: dict[str, Any]) -> Transfer:
    return Transfer(
        id=str(row['id']),
        share_token=row['share_token'],
        owner_id=row.get('owner_id'),
        title=row.get('title'),
        message=row.get('message'),
        sender_email=row.get('sender_email'),
        recipient_email=row.get('recipient_email'),
        password_hash=row.get('password_hash'),
        expiration_at=_ts(row['expiration_at']),
        download_limit=row.get('download_limit'),
        download_count=int(row.get('download_count') or 0),
        tracking_enabled=bool(row.get('tracking_enabled', True)),
        approval_required=bool(row.get('approval_required', False)),
        status=TransferStatus(row.get('status') or 'ACTIVE'),
        files=tuple(
            TransferFile(
                id=f['id'],
                file_name=f['file_name'],
                file_size=int(f['file_size']),
                mime_type=f['mime_type'],
                storage_key=f['storage_key'],
            )
            for f in row.get('files') or ()
        ),
        created_at=_ts(row['created_at']),
        updated_at=_ts(row['updated_at']),
    )


def _transfer_to_row(transfer: Transfer) -> dict[str, Any]:
    return {
        'id': transfer.id,
        'share_token': transfer.share_token,
        'owner_id': transfer.owner_id,
        'title': transfer.title,
        'message': transfer.message,
        'sender_email': transfer.sender_email,
        'recipient_email': transfer.recipient_email,
        'password_hash': transfer.password_hash,
        'expiration_at': transfer.expiration_at.isoformat(),
        'download_limit': transfer.download_limit,
        'download_count': transfer.download_count,
        'tracking_enabled': transfer.tracking_enabled,
        'approval_required': transfer.approval_required,
        'status': transfer.status.value,
        'files': [
            {
                'id': f.id,
                'file_name': f.file_name,
                'file_size': f.file_size,
                'mime_type': f.mime_type,
                'storage_key': f.storage_key,
            }
            for f in transfer.files
        ],
        'created_at': transfer.created_at.isoformat(),
        'updated_at': transfer.updated_at.isoformat(),
    }


def _row_to_event(row: dict[str, Any]) -> DownloadEvent:
    return DownloadEvent(
        id=str(row['id']),
        transfer_id=str(row['transfer_id']),
        downloaded_at=_ts(row['downloaded_at']),
        ip_address=row.get('ip_address'),
        location=row.get('location'),
        user_agent=row.get('user_agent'),
    )


class SupabaseTransferRepository:
    """TransferRepository and DownloadLedger over PostgREST."""

    TABLE = 'sharegate.transfers'
    EVENTS_TABLE = 'sharegate.download_events'
    RECORD_FUNCTION = 'record_transfer_download'

    def __init__(self, client: PostgrestClient) -> None:
        self._client = client

    async def create(self, transfer: Transfer) -> Transfer:
        try:
            rows = await self._client.insert(self.TABLE, _transfer_to_row(transfer))
        except PostgrestConflict as exc:
            raise ShareTokenTaken(transfer.share_token) from exc
        return _row_to_transfer(rows[0]) if rows else transfer

    async def token_exists(self, share_token: str) -> bool:
        rows = await self._client.select(
            self.TABLE, {'share_token': share_token}, columns='id', limit=1,
        )
        return bool(rows)

    async def get_by_token(self, share_token: str) -> Transfer | None:
        rows = await self._client.select(
            self.TABLE, {'share_token': share_token}, limit=1,
        )
        return _row_to_transfer(rows[0]) if rows else None

    async def get_by_id(self, transfer_id: str) -> Transfer | None:
        if not is_uuid(transfer_id):
            return None
        return await self._fetch(transfer_id)

    async def _fetch(self, transfer_id: str) -> Transfer | None:
        rows = await self._client.select(self.TABLE, {'id': transfer_id}, limit=1)
        return _row_to_transfer(rows[0]) if rows else None

    async def list_for_owner(self, owner_id: str) -> list[Transfer]:
        rows = await self._client.select(
            self.TABLE, {'owner_id': owner_id}, order='created_at.desc',
        )
        return [_row_to_transfer(r) for r in rows]

    async def mark_revoked(
        self, transfer_id: str, *, now: datetime,
    ) -> tuple[Transfer | None, bool]:
        rows = await self._client.update(
            self.TABLE,
            {'id': transfer_id, 'status': ('neq', TransferStatus.REVOKED.value)},
            {'status': TransferStatus.REVOKED.value, 'updated_at': now.isoformat()},
        )
        if rows:
            return _row_to_transfer(rows[0]), True
        return await self._fetch(transfer_id), False

    async def list_stale_active(self, now: datetime) -> list[Transfer]:
        rows = await self._client.select(
            self.TABLE,
            {
                'status': TransferStatus.ACTIVE.value,
                'expiration_at': ('lt', now.isoformat()),
            },
        )
        return [_row_to_transfer(r) for r in rows]

    async def mark_expired(self, transfer_ids: Sequence[str], *, now: datetime) -> int:
        if not transfer_ids:
            return 0
        rows = await self._client.update(
            self.TABLE,
            {
                'id': ('in', list(transfer_ids)),
                'status': TransferStatus.ACTIVE.value,
            },
            {'status': TransferStatus.EXPIRED.value, 'updated_at': now.isoformat()},
        )
        return len(rows)

    async def record_if_below_limit(self, event: DownloadEvent) -> RecordResult:
        payload = await self._client.rpc(
            self.RECORD_FUNCTION,
            {
                'p_transfer_id': event.transfer_id,
                'p_event_id': event.id,
                'p_downloaded_at': event.downloaded_at.isoformat(),
                'p_ip_address': event.ip_address,
                'p_location': event.location,
                'p_user_agent': event.user_agent,
            },
            schema='sharegate',
        )
        if not isinstance(payload, dict) or 'kind' not in payload:
            raise TransferError(
                ErrorKind.STORAGE_UNAVAILABLE,
                'record_download',
                'unexpected response from record_transfer_download',
            )
        kind = ErrorKind(payload['kind'])
        return RecordResult(
            kind,
            event=event if kind == ErrorKind.OK else None,
            download_count=payload.get('download_count'),
        )

    async def list_events(self, transfer_id: str) -> list[DownloadEvent]:
        rows = await self._client.select(
            self.EVENTS_TABLE,
            {'transfer_id': transfer_id},
            order='downloaded_at.desc',
        )
        return [_row_to_event(r) for r in rows]
