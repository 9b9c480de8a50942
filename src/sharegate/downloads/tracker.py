"""Download tracker: counted downloads and derived statistics.

``record_download`` is the only path that increments a transfer's
``download_count``. Location lookup happens before the ledger call so the
atomic section stays a single storage step.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from ..collaborators import GeoIpResolver, resolve_location_best_effort
from ..errors import ErrorKind, TransferError
from ..observability.logging import get_logger
from ..observability.metrics import DOWNLOADS_RECORDED_TOTAL
from ..transfers.model import Transfer, TransferRepository, require_aware, utcnow
from .model import DownloadEvent, DownloadLedger, DownloadStats, RecordResult, compute_stats

logger = get_logger(__name__)

DEFAULT_RECENT_LIMIT = 10


class DownloadTracker:
    def __init__(
        self,
        ledger: DownloadLedger,
        transfers: TransferRepository,
        *,
        geoip: GeoIpResolver,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ) -> None:
        self._ledger = ledger
        self._transfers = transfers
        self._geoip = geoip
        self._recent_limit = recent_limit

    async def record_download(
        self,
        transfer_id: str,
        ip_address: str | None,
        *,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> RecordResult:
        """Count one download if the transfer is still below its limit.

        A non-OK result means nothing was written.
        """
        transfer = await self._transfers.get_by_id(transfer_id)
        if transfer is None:
            return RecordResult(ErrorKind.TRANSFER_NOT_FOUND)
        return await self.record_for(
            transfer, ip_address, user_agent=user_agent, now=now,
        )

    async def record_for(
        self,
        transfer: Transfer,
        ip_address: str | None,
        *,
        user_agent: str | None = None,
        now: datetime | None = None,
    ) -> RecordResult:
        """``record_download`` for an already-loaded transfer snapshot.

        Only ``tracking_enabled`` is read from the snapshot; the limit check
        runs against fresh state inside the ledger.
        """
        now = require_aware(now) if now is not None else utcnow()
        if transfer.tracking_enabled:
            location = await resolve_location_best_effort(self._geoip, ip_address)
            event = DownloadEvent(
                id=uuid.uuid4().hex,
                transfer_id=transfer.id,
                downloaded_at=now,
                ip_address=ip_address,
                location=location,
                user_agent=user_agent,
            )
        else:
            event = DownloadEvent(
                id=uuid.uuid4().hex, transfer_id=transfer.id, downloaded_at=now,
            )

        result = await self._ledger.record_if_below_limit(event)
        if result.ok:
            DOWNLOADS_RECORDED_TOTAL.labels(
                tracking='on' if transfer.tracking_enabled else 'off',
            ).inc()
            logger.info(
                'download_recorded',
                transfer_id=transfer.id,
                download_count=result.download_count,
                download_limit=transfer.download_limit,
            )
        else:
            logger.info(
                'download_not_recorded',
                transfer_id=transfer.id,
                reason=result.kind.value,
            )
        return result

    async def stats(
        self,
        transfer_id: str,
        *,
        recent_limit: int | None = None,
    ) -> DownloadStats:
        transfer = await self._transfers.get_by_id(transfer_id)
        if transfer is None:
            raise TransferError(ErrorKind.TRANSFER_NOT_FOUND, 'stats')
        events = await self._ledger.list_events(transfer_id)
        limit = self._recent_limit if recent_limit is None else max(recent_limit, 0)
        return compute_stats(events, recent_limit=limit)
