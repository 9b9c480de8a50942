"""Download accounting and statistics."""

from .model import DownloadEvent, DownloadLedger, DownloadStats, RecordResult, compute_stats
from .tracker import DownloadTracker

__all__ = [
    'DownloadEvent',
    'DownloadLedger',
    'DownloadStats',
    'DownloadTracker',
    'RecordResult',
    'compute_stats',
]
