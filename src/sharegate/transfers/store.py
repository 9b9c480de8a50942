"""Transfer lifecycle service: create, look up, list, revoke.

The store is the only writer of transfer records apart from the download
ledger, which owns ``download_count``.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any

from ..collaborators import Notification, NotificationDispatcher, dispatch_best_effort
from ..errors import ErrorKind, TransferError
from ..identity import Identity, can_own_transfers, require_owner
from ..observability.logging import get_logger, redact_token
from ..observability.metrics import TRANSFERS_CREATED_TOTAL, TRANSFERS_REVOKED_TOTAL
from ..settings import TransferSettings
from .model import (
    CreateTransferRequest,
    ShareTokenTaken,
    Transfer,
    TransferFile,
    TransferRepository,
    require_aware,
    utcnow,
)
from .passwords import hash_password, password_problem
from .tokens import TokenIssuer

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CreateTransferResult:
    transfer: Transfer
    download_url: str

    def to_dict(self) -> dict[str, Any]:
        return {
            'transfer_id': self.transfer.id,
            'share_link': self.transfer.share_token,
            'download_url': self.download_url,
            'expiration_at': self.transfer.expiration_at.isoformat(),
        }


class TransferStore:
    """Create and mutate transfers.

    Args:
        repo: Transfer storage.
        notifier: Receives the best-effort "transfer shared" notification.
        settings: Expiry bounds, bcrypt cost, token policy, public URL.
        issuer: Token issuer; defaults to one checking ``repo.token_exists``.
    """

    def __init__(
        self,
        repo: TransferRepository,
        *,
        notifier: NotificationDispatcher,
        settings: TransferSettings | None = None,
        issuer: TokenIssuer | None = None,
    ) -> None:
        self._repo = repo
        self._notifier = notifier
        self._settings = settings or TransferSettings()
        self._issuer = issuer or TokenIssuer(
            repo.token_exists,
            token_bytes=self._settings.token_bytes,
            max_attempts=self._settings.token_max_attempts,
        )

    async def create(
        self,
        request: CreateTransferRequest,
        *,
        now: datetime | None = None,
    ) -> CreateTransferResult:
        """Validate, hash, issue a token and persist a new transfer.

        Raises:
            TransferError: INVALID_REQUEST, TOKEN_SPACE_EXHAUSTED or
                STORAGE_UNAVAILABLE.
        """
        now = require_aware(now) if now is not None else utcnow()
        request.validate(max_expiration_days=self._settings.max_expiration_days)

        password_hash = None
        if request.password is not None:
            problem = password_problem(request.password)
            if problem is not None:
                raise TransferError(ErrorKind.INVALID_REQUEST, 'create', problem)
            password_hash = await asyncio.to_thread(
                hash_password,
                request.password,
                rounds=self._settings.password_hash_rounds,
            )

        draft = Transfer(
            id=str(uuid.uuid4()),
            share_token='',
            owner_id=request.user_id,
            title=request.title,
            message=request.message,
            sender_email=request.sender_email,
            recipient_email=request.recipient_email,
            password_hash=password_hash,
            expiration_at=now + timedelta(days=request.expiration_days),
            download_limit=request.download_limit,
            tracking_enabled=request.tracking_enabled,
            approval_required=request.approval_required,
            files=tuple(
                TransferFile(
                    id=uuid.uuid4().hex,
                    file_name=spec.file_name,
                    file_size=spec.file_size,
                    mime_type=spec.mime_type or 'application/octet-stream',
                    storage_key=spec.storage_key,
                )
                for spec in request.files
            ),
            created_at=now,
            updated_at=now,
        )

        transfer = await self._persist_with_unique_token(draft, request.share_link)
        TRANSFERS_CREATED_TOTAL.inc()
        logger.info(
            'transfer_created',
            transfer_id=transfer.id,
            token=redact_token(transfer.share_token),
            owner_id=transfer.owner_id,
            file_count=len(transfer.files),
            download_limit=transfer.download_limit,
            approval_required=transfer.approval_required,
            password_protected=transfer.has_password,
        )

        origin = (request.client_origin or self._settings.public_url).rstrip('/')
        result = CreateTransferResult(
            transfer=transfer,
            download_url=f'{origin}/download/{transfer.share_token}',
        )
        if transfer.recipient_email:
            await dispatch_best_effort(
                self._notifier,
                Notification(
                    kind='transfer_shared',
                    recipient=transfer.recipient_email,
                    subject=transfer.title or 'Files shared with you',
                    payload={
                        'download_url': result.download_url,
                        'sender_email': transfer.sender_email,
                        'message': transfer.message,
                        'file_count': len(transfer.files),
                        'total_size': transfer.total_size,
                        'expiration_at': transfer.expiration_at.isoformat(),
                    },
                ),
                timeout=self._settings.notification_timeout_seconds,
            )
        return result

    async def _persist_with_unique_token(
        self, draft: Transfer, proposed: str | None,
    ) -> Transfer:
        # token_exists and create are separate round-trips; a concurrent
        # creator can still take the token in between.
        for attempt in range(1, self._issuer.max_attempts + 1):
            token = await self._issuer.issue(proposed)
            try:
                return await self._repo.create(replace(draft, share_token=token))
            except ShareTokenTaken:
                logger.warning(
                    'share_token_taken_on_insert',
                    attempt=attempt,
                    token=redact_token(token),
                )
                proposed = None
        raise self._issuer.exhausted()

    async def get(self, share_token: str) -> Transfer | None:
        return await self._repo.get_by_token(share_token)

    async def get_by_id(self, transfer_id: str) -> Transfer | None:
        return await self._repo.get_by_id(transfer_id)

    async def get_owned(
        self,
        transfer_id: str,
        identity: Identity | None,
        operation: str,
    ) -> Transfer:
        """Load a transfer and check that ``identity`` owns it."""
        transfer = await self._repo.get_by_id(transfer_id)
        if transfer is None:
            raise TransferError(ErrorKind.TRANSFER_NOT_FOUND, operation)
        require_owner(identity, transfer.owner_id, operation)
        return transfer

    async def list_for_owner(self, identity: Identity | None) -> list[Transfer]:
        if identity is None or not can_own_transfers(identity):
            raise TransferError(
                ErrorKind.FORBIDDEN, 'list_transfers', 'an owner identity is required',
            )
        return await self._repo.list_for_owner(identity.user_id)

    async def revoke(
        self,
        transfer_id: str,
        identity: Identity | None,
        *,
        now: datetime | None = None,
    ) -> tuple[Transfer, bool]:
        """Revoke a transfer. Repeating the call is a no-op.

        Returns:
            The stored transfer and whether this call changed it.
        """
        now = require_aware(now) if now is not None else utcnow()
        await self.get_owned(transfer_id, identity, 'revoke')
        transfer, changed = await self._repo.mark_revoked(transfer_id, now=now)
        if transfer is None:
            raise TransferError(ErrorKind.TRANSFER_NOT_FOUND, 'revoke')
        if changed:
            TRANSFERS_REVOKED_TOTAL.inc()
            logger.info('transfer_revoked', transfer_id=transfer_id)
        else:
            logger.info('transfer_revoke_noop', transfer_id=transfer_id)
        return transfer, changed
