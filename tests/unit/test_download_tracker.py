"""Tests for download accounting and statistics.

Validates:
  - record_download is the only path that increments download_count.
  - The increment refuses at the limit, after revocation and past expiry.
  - Tracking-disabled transfers still count, without IP/location/user agent.
  - Geo-IP failures never block a download.
  - Stats derive from the event log: totals, unique IPs, newest-first recents.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from sharegate.downloads.model import DownloadEvent, compute_stats
from sharegate.errors import ErrorKind, TransferError
from sharegate.transfers.model import CreateTransferRequest, FileSpec

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

REPORT = FileSpec('report.pdf', 2048, 'application/pdf', 'uploads/report.pdf')


async def _transfer(engine, **overrides):
    fields = {'expiration_days': 7, 'files': [REPORT], 'user_id': 'user_owner'}
    fields.update(overrides)
    result = await engine.store.create(CreateTransferRequest(**fields), now=NOW)
    return result.transfer


class _StaticGeoIp:
    async def resolve(self, ip_address):
        return f'City of {ip_address}'


class _BrokenGeoIp:
    async def resolve(self, ip_address):
        raise OSError('geo db missing')


# =====================================================================
# Recording
# =====================================================================


class TestRecordDownload:

    @pytest.mark.asyncio
    async def test_counts_and_appends(self, make_engine):
        engine = make_engine(geoip=_StaticGeoIp())
        transfer = await _transfer(engine)
        result = await engine.tracker.record_download(
            transfer.id, '203.0.113.7', user_agent='curl/8', now=NOW,
        )
        assert result.ok
        assert result.download_count == 1
        assert result.event.ip_address == '203.0.113.7'
        assert result.event.location == 'City of 203.0.113.7'
        assert result.event.user_agent == 'curl/8'

        stored = await engine.store.get_by_id(transfer.id)
        assert stored.download_count == 1
        assert await engine.repo.list_events(transfer.id) == [result.event]

    @pytest.mark.asyncio
    async def test_refuses_at_limit(self, engine):
        transfer = await _transfer(engine, download_limit=2)
        results = [
            await engine.tracker.record_download(transfer.id, '10.0.0.1', now=NOW)
            for _ in range(3)
        ]
        assert [r.kind for r in results] == [
            ErrorKind.OK, ErrorKind.OK, ErrorKind.DOWNLOAD_LIMIT_REACHED,
        ]
        assert results[2].event is None
        stored = await engine.store.get_by_id(transfer.id)
        assert stored.download_count == 2
        assert len(await engine.repo.list_events(transfer.id)) == 2

    @pytest.mark.asyncio
    async def test_refuses_after_revoke(self, engine, owner):
        transfer = await _transfer(engine)
        await engine.store.revoke(transfer.id, owner, now=NOW)
        result = await engine.tracker.record_download(transfer.id, '10.0.0.1', now=NOW)
        assert result.kind == ErrorKind.TRANSFER_REVOKED
        assert await engine.repo.list_events(transfer.id) == []

    @pytest.mark.asyncio
    async def test_refuses_past_expiry(self, engine):
        transfer = await _transfer(engine, expiration_days=1)
        result = await engine.tracker.record_download(
            transfer.id, '10.0.0.1', now=NOW + timedelta(days=1, seconds=1),
        )
        assert result.kind == ErrorKind.TRANSFER_EXPIRED

    @pytest.mark.asyncio
    async def test_unknown_transfer(self, engine):
        result = await engine.tracker.record_download('missing', '10.0.0.1', now=NOW)
        assert result.kind == ErrorKind.TRANSFER_NOT_FOUND

    @pytest.mark.asyncio
    async def test_tracking_disabled_redacts_event(self, make_engine):
        engine = make_engine(geoip=_StaticGeoIp())
        transfer = await _transfer(engine, tracking_enabled=False)
        result = await engine.tracker.record_download(
            transfer.id, '203.0.113.7', user_agent='curl/8', now=NOW,
        )
        assert result.ok
        assert result.event.ip_address is None
        assert result.event.location is None
        assert result.event.user_agent is None
        stored = await engine.store.get_by_id(transfer.id)
        assert stored.download_count == 1

    @pytest.mark.asyncio
    async def test_geoip_failure_still_counts(self, make_engine):
        engine = make_engine(geoip=_BrokenGeoIp())
        transfer = await _transfer(engine)
        result = await engine.tracker.record_download(transfer.id, '10.0.0.1', now=NOW)
        assert result.ok
        assert result.event.location is None
        assert result.event.ip_address == '10.0.0.1'

    @pytest.mark.asyncio
    async def test_concurrent_increments_respect_limit(self, make_engine):
        engine = make_engine(latency=0.001)
        transfer = await _transfer(engine, download_limit=3)
        results = await asyncio.gather(
            *(
                engine.tracker.record_download(transfer.id, f'10.0.0.{i}', now=NOW)
                for i in range(10)
            ),
        )
        assert sum(r.ok for r in results) == 3
        stored = await engine.store.get_by_id(transfer.id)
        assert stored.download_count == 3

    @pytest.mark.asyncio
    async def test_locks_only_for_stored_transfers(self, engine):
        transfer = await _transfer(engine)
        for i in range(3):
            await engine.tracker.record_download(transfer.id, f'10.0.0.{i}', now=NOW)

        missing = DownloadEvent(id='e1', transfer_id='missing', downloaded_at=NOW)
        result = await engine.repo.record_if_below_limit(missing)
        assert result.kind == ErrorKind.TRANSFER_NOT_FOUND
        assert await engine.repo.mark_revoked('missing', now=NOW) == (None, False)
        assert await engine.repo.mark_expired(['missing'], now=NOW) == 0

        assert list(engine.repo._locks) == [transfer.id]


# =====================================================================
# Stats
# =====================================================================


def _event(n: int, ip: str | None) -> DownloadEvent:
    return DownloadEvent(
        id=f'e{n}',
        transfer_id='t1',
        downloaded_at=NOW + timedelta(minutes=n),
        ip_address=ip,
    )


class TestComputeStats:

    def test_empty(self):
        stats = compute_stats([], recent_limit=10)
        assert stats.total_downloads == 0
        assert stats.unique_downloaders == 0
        assert stats.last_download is None
        assert stats.downloads == ()

    def test_aggregates(self):
        events = [_event(0, '1.1.1.1'), _event(1, '2.2.2.2'), _event(2, '1.1.1.1')]
        stats = compute_stats(events, recent_limit=10)
        assert stats.total_downloads == 3
        assert stats.unique_downloaders == 2
        assert stats.last_download == NOW + timedelta(minutes=2)
        assert [e.id for e in stats.downloads] == ['e2', 'e1', 'e0']

    def test_untracked_events_not_unique_downloaders(self):
        stats = compute_stats([_event(0, None), _event(1, None)], recent_limit=10)
        assert stats.total_downloads == 2
        assert stats.unique_downloaders == 0

    def test_recent_limit(self):
        events = [_event(n, '1.1.1.1') for n in range(15)]
        stats = compute_stats(events, recent_limit=10)
        assert len(stats.downloads) == 10
        assert stats.downloads[0].id == 'e14'

    def test_to_dict(self):
        body = compute_stats([_event(0, '1.1.1.1')], recent_limit=10).to_dict()
        assert body['total_downloads'] == 1
        assert body['last_download'] == NOW.isoformat()
        assert body['downloads'][0]['ip_address'] == '1.1.1.1'


class TestTrackerStats:

    @pytest.mark.asyncio
    async def test_stats_from_recorded_downloads(self, engine):
        transfer = await _transfer(engine)
        for i, ip in enumerate(['1.1.1.1', '2.2.2.2', '1.1.1.1']):
            await engine.tracker.record_download(
                transfer.id, ip, now=NOW + timedelta(minutes=i),
            )
        stats = await engine.tracker.stats(transfer.id)
        assert stats.total_downloads == 3
        assert stats.unique_downloaders == 2
        assert stats.last_download == NOW + timedelta(minutes=2)
        stored = await engine.store.get_by_id(transfer.id)
        assert stats.total_downloads == stored.download_count

    @pytest.mark.asyncio
    async def test_recent_limit_override(self, engine):
        transfer = await _transfer(engine)
        for i in range(5):
            await engine.tracker.record_download(
                transfer.id, '1.1.1.1', now=NOW + timedelta(minutes=i),
            )
        stats = await engine.tracker.stats(transfer.id, recent_limit=2)
        assert len(stats.downloads) == 2
        assert stats.total_downloads == 5

    @pytest.mark.asyncio
    async def test_unknown_transfer(self, engine):
        with pytest.raises(TransferError) as exc_info:
            await engine.tracker.stats('missing')
        assert exc_info.value.kind == ErrorKind.TRANSFER_NOT_FOUND
