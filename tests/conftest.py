"""Pytest configuration for sharegate tests."""
import sys
from dataclasses import dataclass
from pathlib import Path

# Add src/ to path for src-layout imports
_PROJECT_ROOT = Path(__file__).parent.parent
_SRC = _PROJECT_ROOT / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest

from sharegate.access.evaluator import AccessPolicyEvaluator
from sharegate.approvals.model import InMemoryApprovalRepository
from sharegate.approvals.workflow import ApprovalWorkflow
from sharegate.collaborators import (
    InMemoryNotificationDispatcher,
    NullGeoIpResolver,
)
from sharegate.downloads.tracker import DownloadTracker
from sharegate.identity import Identity
from sharegate.settings import TransferSettings
from sharegate.transfers.inmemory import InMemoryTransferRepository
from sharegate.transfers.store import TransferStore

# bcrypt's minimum cost keeps password tests fast.
TEST_SETTINGS = TransferSettings(password_hash_rounds=4)


@dataclass
class Engine:
    settings: TransferSettings
    repo: InMemoryTransferRepository
    approvals: InMemoryApprovalRepository
    notifier: object
    geoip: object
    store: TransferStore
    workflow: ApprovalWorkflow
    tracker: DownloadTracker
    evaluator: AccessPolicyEvaluator


def build_engine(
    *,
    latency: float = 0.0,
    notifier=None,
    geoip=None,
    settings: TransferSettings = TEST_SETTINGS,
) -> Engine:
    repo = InMemoryTransferRepository(latency=latency)
    approvals = InMemoryApprovalRepository()
    notifier = notifier or InMemoryNotificationDispatcher()
    geoip = geoip or NullGeoIpResolver()
    tracker = DownloadTracker(
        repo, repo, geoip=geoip, recent_limit=settings.stats_recent_limit,
    )
    return Engine(
        settings=settings,
        repo=repo,
        approvals=approvals,
        notifier=notifier,
        geoip=geoip,
        store=TransferStore(repo, notifier=notifier, settings=settings),
        workflow=ApprovalWorkflow(
            approvals,
            repo,
            notifier=notifier,
            notification_timeout=settings.notification_timeout_seconds,
        ),
        tracker=tracker,
        evaluator=AccessPolicyEvaluator(repo, approvals, tracker),
    )


@pytest.fixture
def make_engine():
    return build_engine


@pytest.fixture
def engine():
    return build_engine()


@pytest.fixture
def owner():
    return Identity(user_id='user_owner', email='owner@example.com')


@pytest.fixture
def stranger():
    return Identity(user_id='user_other', email='other@example.com')
