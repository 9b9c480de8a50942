"""Collaborator protocols consumed by the engine, with local implementations.

The engine never owns blob storage, geo-IP lookup or notification delivery.
It calls them through these protocols. Geo-IP and notification calls are
best-effort: ``resolve_location_best_effort`` and ``dispatch_best_effort``
absorb failures and timeouts so they can never fail or roll back the
enclosing operation.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from .observability.logging import get_logger
from .observability.metrics import COLLABORATOR_FAILURES_TOTAL

logger = get_logger(__name__)


@runtime_checkable
class BlobStore(Protocol):
    """Opaque key -> bytes storage for uploaded files."""

    async def put(self, key: str, data: bytes) -> None: ...
    async def get(self, key: str) -> bytes | None: ...


@runtime_checkable
class GeoIpResolver(Protocol):
    """Best-effort IP -> human readable location."""

    async def resolve(self, ip_address: str) -> str | None: ...


@dataclass(frozen=True, slots=True)
class Notification:
    kind: str
    recipient: str
    subject: str
    payload: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Fire-and-forget notification delivery (email, chat, ...)."""

    async def dispatch(self, notification: Notification) -> None: ...


# ── Local implementations ─────────────────────────────────────────────


class InMemoryBlobStore:
    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)

    async def get(self, key: str) -> bytes | None:
        return self._blobs.get(key)


class NullGeoIpResolver:
    """Resolver for deployments without a geo-IP service."""

    async def resolve(self, ip_address: str) -> str | None:
        return None


class InMemoryNotificationDispatcher:
    """Records notifications instead of delivering them."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def dispatch(self, notification: Notification) -> None:
        self.sent.append(notification)

    def find(self, *, kind: str | None = None, recipient: str | None = None) -> list[Notification]:
        return [
            n for n in self.sent
            if (kind is None or n.kind == kind)
            and (recipient is None or n.recipient == recipient)
        ]


# ── Failure isolation ─────────────────────────────────────────────────


async def resolve_location_best_effort(
    resolver: GeoIpResolver,
    ip_address: str | None,
) -> str | None:
    if not ip_address:
        return None
    try:
        return await resolver.resolve(ip_address)
    except Exception as exc:
        COLLABORATOR_FAILURES_TOTAL.labels(collaborator='geoip').inc()
        logger.warning('geoip_lookup_failed', error=type(exc).__name__)
        return None


async def dispatch_best_effort(
    dispatcher: NotificationDispatcher,
    notification: Notification,
    *,
    timeout: float = 5.0,
) -> bool:
    """Deliver ``notification``; return False instead of raising on failure."""
    try:
        await asyncio.wait_for(dispatcher.dispatch(notification), timeout=timeout)
    except asyncio.TimeoutError:
        COLLABORATOR_FAILURES_TOTAL.labels(collaborator='notification').inc()
        logger.warning(
            'notification_timeout', kind=notification.kind, timeout_seconds=timeout,
        )
        return False
    except Exception as exc:
        COLLABORATOR_FAILURES_TOTAL.labels(collaborator='notification').inc()
        logger.warning(
            'notification_failed', kind=notification.kind, error=type(exc).__name__,
        )
        return False
    return True
