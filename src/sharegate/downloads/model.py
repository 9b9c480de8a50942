"""Download events, statistics, and the download ledger protocol.

Events are append-only. Aggregates are always derived from the event log;
the only stored counter is ``Transfer.download_count``, which the ledger
updates in the same atomic step that appends the event.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, Sequence, runtime_checkable

from ..errors import ErrorKind


@dataclass(frozen=True, slots=True)
class DownloadEvent:
    """One counted download.

    ``ip_address``, ``location`` and ``user_agent`` are None when the
    transfer has tracking disabled; the event itself is still recorded.
    """

    id: str
    transfer_id: str
    downloaded_at: datetime
    ip_address: str | None = None
    location: str | None = None
    user_agent: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'ip_address': self.ip_address,
            'location': self.location,
            'user_agent': self.user_agent,
            'downloaded_at': self.downloaded_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class RecordResult:
    """Outcome of one conditional increment.

    ``kind`` is OK when the download was counted and ``event`` appended.
    Otherwise it names the condition that blocked the increment
    (DOWNLOAD_LIMIT_REACHED, TRANSFER_REVOKED, TRANSFER_EXPIRED or
    TRANSFER_NOT_FOUND) and nothing was written.
    """

    kind: ErrorKind
    event: DownloadEvent | None = None
    download_count: int | None = None

    @property
    def ok(self) -> bool:
        return self.kind == ErrorKind.OK


@dataclass(frozen=True, slots=True)
class DownloadStats:
    total_downloads: int
    unique_downloaders: int
    last_download: datetime | None
    downloads: tuple[DownloadEvent, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            'total_downloads': self.total_downloads,
            'unique_downloaders': self.unique_downloaders,
            'last_download': (
                self.last_download.isoformat() if self.last_download else None
            ),
            'downloads': [e.to_dict() for e in self.downloads],
        }


def compute_stats(
    events: Sequence[DownloadEvent],
    *,
    recent_limit: int,
) -> DownloadStats:
    """Aggregate an event log. ``downloads`` holds the newest ``recent_limit``."""
    newest_first = sorted(events, key=lambda e: e.downloaded_at, reverse=True)
    return DownloadStats(
        total_downloads=len(events),
        unique_downloaders=len({e.ip_address for e in events if e.ip_address}),
        last_download=newest_first[0].downloaded_at if newest_first else None,
        downloads=tuple(newest_first[:recent_limit]),
    )


@runtime_checkable
class DownloadLedger(Protocol):
    """Atomic download accounting.

    ``record_if_below_limit`` is one indivisible step per transfer: it
    re-reads the transfer, refuses when it is revoked, past
    ``event.downloaded_at`` expiry, or at its limit, and otherwise
    increments ``download_count`` and appends ``event`` together.
    """

    async def record_if_below_limit(self, event: DownloadEvent) -> RecordResult: ...

    async def list_events(self, transfer_id: str) -> list[DownloadEvent]: ...
