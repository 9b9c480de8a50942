"""In-memory transfer storage for local mode and tests.

Implements both ``TransferRepository`` and ``DownloadLedger``. Mutations of
one transfer are serialized by a lock keyed on its id, so contention on one
transfer never blocks another. ``latency`` inserts an await inside the
critical section to stand in for a storage round-trip.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Sequence

from ..downloads.model import DownloadEvent, RecordResult
from ..errors import ErrorKind
from .model import ShareTokenTaken, Transfer, TransferStatus


class InMemoryTransferRepository:
    """Dict-backed transfers and download events.

    One lock per transfer id is kept for the life of the repository. Transfers
    are never deleted, so the lock table grows with the stored data and no
    faster. Unknown ids never get a lock.
    """

    def __init__(self, *, latency: float = 0.0) -> None:
        self._transfers: dict[str, Transfer] = {}
        self._by_token: dict[str, str] = {}
        self._events: dict[str, list[DownloadEvent]] = defaultdict(list)
        self._locks: dict[str, asyncio.Lock] = {}
        self._latency = latency

    def _lock_for(self, transfer_id: str) -> asyncio.Lock:
        lock = self._locks.get(transfer_id)
        if lock is None:
            lock = self._locks[transfer_id] = asyncio.Lock()
        return lock

    async def _round_trip(self) -> None:
        if self._latency:
            await asyncio.sleep(self._latency)

    # ── TransferRepository ───────────────────────────────────────────

    async def create(self, transfer: Transfer) -> Transfer:
        if transfer.share_token in self._by_token:
            raise ShareTokenTaken(transfer.share_token)
        self._transfers[transfer.id] = transfer
        self._by_token[transfer.share_token] = transfer.id
        return transfer

    async def token_exists(self, share_token: str) -> bool:
        return share_token in self._by_token

    async def get_by_token(self, share_token: str) -> Transfer | None:
        transfer_id = self._by_token.get(share_token)
        return self._transfers.get(transfer_id) if transfer_id else None

    async def get_by_id(self, transfer_id: str) -> Transfer | None:
        return self._transfers.get(transfer_id)

    async def list_for_owner(self, owner_id: str) -> list[Transfer]:
        owned = [t for t in self._transfers.values() if t.owner_id == owner_id]
        return sorted(owned, key=lambda t: t.created_at, reverse=True)

    async def mark_revoked(
        self, transfer_id: str, *, now: datetime,
    ) -> tuple[Transfer | None, bool]:
        if transfer_id not in self._transfers:
            return None, False
        async with self._lock_for(transfer_id):
            current = self._transfers[transfer_id]
            if current.status == TransferStatus.REVOKED:
                return current, False
            await self._round_trip()
            updated = replace(current, status=TransferStatus.REVOKED, updated_at=now)
            self._transfers[transfer_id] = updated
            return updated, True

    async def list_stale_active(self, now: datetime) -> list[Transfer]:
        return [
            t for t in self._transfers.values()
            if t.status == TransferStatus.ACTIVE and t.expiration_at < now
        ]

    async def mark_expired(self, transfer_ids: Sequence[str], *, now: datetime) -> int:
        marked = 0
        for transfer_id in transfer_ids:
            if transfer_id not in self._transfers:
                continue
            async with self._lock_for(transfer_id):
                current = self._transfers[transfer_id]
                if current.status != TransferStatus.ACTIVE:
                    continue
                self._transfers[transfer_id] = replace(
                    current, status=TransferStatus.EXPIRED, updated_at=now,
                )
                marked += 1
        return marked

    # ── DownloadLedger ───────────────────────────────────────────────

    async def record_if_below_limit(self, event: DownloadEvent) -> RecordResult:
        if event.transfer_id not in self._transfers:
            return RecordResult(ErrorKind.TRANSFER_NOT_FOUND)
        async with self._lock_for(event.transfer_id):
            current = self._transfers[event.transfer_id]
            await self._round_trip()
            if current.status == TransferStatus.REVOKED:
                return RecordResult(ErrorKind.TRANSFER_REVOKED, download_count=current.download_count)
            if event.downloaded_at > current.expiration_at:
                return RecordResult(ErrorKind.TRANSFER_EXPIRED, download_count=current.download_count)
            if (
                current.download_limit is not None
                and current.download_count >= current.download_limit
            ):
                return RecordResult(
                    ErrorKind.DOWNLOAD_LIMIT_REACHED,
                    download_count=current.download_count,
                )
            updated = replace(
                current,
                download_count=current.download_count + 1,
                updated_at=event.downloaded_at,
            )
            self._transfers[event.transfer_id] = updated
            self._events[event.transfer_id].append(event)
            return RecordResult(ErrorKind.OK, event=event, download_count=updated.download_count)

    async def list_events(self, transfer_id: str) -> list[DownloadEvent]:
        return list(self._events.get(transfer_id, ()))
