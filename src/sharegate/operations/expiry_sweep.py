"""Advisory expiry sweep.

Marks persisted-ACTIVE transfers whose ``expiration_at`` has passed as
EXPIRED so owner listings and queries can filter cheaply. Access decisions
never read this cache: ``effective_status`` recomputes expiry on every
attempt, so a sweep that is late, failing, or disabled changes nothing
about who can download.

The sweep only updates status. Records are never deleted, so a share token
stays taken for the lifetime of the store.

Usage::

    sweeper = ExpirySweeper(transfer_repo)
    report = await sweeper.sweep(now=datetime.now(timezone.utc))
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone

from ..errors import TransferError
from ..observability.logging import get_logger
from ..observability.metrics import (
    EXPIRY_SWEEP_FAILURES_TOTAL,
    TRANSFERS_EXPIRED_MARKED_TOTAL,
)
from ..transfers.model import TransferRepository, require_aware

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SweepReport:
    """Result of one sweep.

    Attributes:
        candidates: Transfer ids found ACTIVE past expiry.
        marked: How many of them this sweep changed to EXPIRED.
        sweep_ts: Timestamp of the sweep.
    """

    candidates: tuple[str, ...]
    marked: int
    sweep_ts: datetime


class ExpirySweeper:
    def __init__(self, repo: TransferRepository) -> None:
        self._repo = repo

    async def sweep(self, *, now: datetime) -> SweepReport:
        require_aware(now)
        stale = await self._repo.list_stale_active(now)
        ids = tuple(t.id for t in stale)
        marked = await self._repo.mark_expired(ids, now=now) if ids else 0
        if marked:
            TRANSFERS_EXPIRED_MARKED_TOTAL.inc(marked)
            logger.info('expiry_sweep_marked', marked=marked)
        return SweepReport(candidates=ids, marked=marked, sweep_ts=now)

    async def run_periodically(self, interval_seconds: float) -> None:
        """Sweep forever every ``interval_seconds``; cancel the task to stop."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.sweep(now=datetime.now(timezone.utc))
            except TransferError as exc:
                EXPIRY_SWEEP_FAILURES_TOTAL.inc()
                logger.warning('expiry_sweep_failed', error=exc.kind.value)
            except Exception:
                EXPIRY_SWEEP_FAILURES_TOTAL.inc()
                logger.exception('expiry_sweep_crashed')
