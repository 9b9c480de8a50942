"""Approval workflow service: request access, decide, list."""

from __future__ import annotations

from datetime import datetime

from ..collaborators import Notification, NotificationDispatcher, dispatch_best_effort
from ..errors import ErrorKind, TransferError
from ..identity import Identity, require_owner
from ..observability.logging import get_logger
from ..observability.metrics import APPROVAL_DECISIONS_TOTAL
from ..transfers.model import Transfer, TransferRepository, require_aware, utcnow
from .model import (
    ApprovalRepository,
    ApprovalRequest,
    ApprovalStatus,
    new_request,
    normalize_email,
    parse_outcome,
)

logger = get_logger(__name__)


class ApprovalWorkflow:
    """Per-requester owner sign-off for approval-gated transfers."""

    def __init__(
        self,
        approvals: ApprovalRepository,
        transfers: TransferRepository,
        *,
        notifier: NotificationDispatcher,
        notification_timeout: float = 5.0,
    ) -> None:
        self._approvals = approvals
        self._transfers = transfers
        self._notifier = notifier
        self._notification_timeout = notification_timeout

    async def request_access(
        self,
        transfer_id: str,
        requester_email: str,
        *,
        message: str | None = None,
        now: datetime | None = None,
    ) -> tuple[ApprovalRequest, bool]:
        """Open a PENDING request, or return the existing one unchanged.

        Returns:
            The stored request and whether this call created it.
        """
        now = require_aware(now) if now is not None else utcnow()
        email = normalize_email(requester_email)
        transfer = await self._transfers.get_by_id(transfer_id)
        if transfer is None:
            raise TransferError(ErrorKind.TRANSFER_NOT_FOUND, 'request_access')
        if transfer.is_revoked:
            raise TransferError(ErrorKind.TRANSFER_REVOKED, 'request_access')
        if not transfer.approval_required:
            raise TransferError(
                ErrorKind.INVALID_REQUEST,
                'request_access',
                'transfer does not require approval',
            )

        request, created = await self._approvals.get_or_create(
            new_request(
                transfer_id=transfer_id,
                requester_email=email,
                now=now,
                message=message,
            )
        )
        if created:
            logger.info(
                'approval_requested', transfer_id=transfer_id, request_id=request.id,
            )
            if transfer.sender_email:
                await self._notify(
                    Notification(
                        kind='approval_requested',
                        recipient=transfer.sender_email,
                        subject=f'Access requested for {transfer.title or "your transfer"}',
                        payload={
                            'request_id': request.id,
                            'transfer_id': transfer_id,
                            'requester_email': email,
                            'message': message,
                        },
                    )
                )
        return request, created

    async def decide(
        self,
        request_id: str,
        identity: Identity | None,
        outcome: ApprovalStatus | str,
        *,
        message: str | None = None,
        now: datetime | None = None,
    ) -> tuple[ApprovalRequest, bool]:
        """Record the owner's decision. A second decision is a no-op.

        Returns:
            The stored request and whether this call decided it.
        """
        now = require_aware(now) if now is not None else utcnow()
        request = await self._approvals.get(request_id)
        if request is None:
            raise TransferError(ErrorKind.APPROVAL_NOT_FOUND, 'decide')
        resolved = parse_outcome(outcome)
        transfer = await self._transfers.get_by_id(request.transfer_id)
        if transfer is None:
            raise TransferError(ErrorKind.TRANSFER_NOT_FOUND, 'decide')
        require_owner(identity, transfer.owner_id, 'decide')
        if transfer.is_revoked:
            raise TransferError(ErrorKind.TRANSFER_REVOKED, 'decide')

        decided, changed = await self._approvals.decide_if_pending(
            request_id,
            resolved,
            now=now,
            decided_by=identity.user_id,
            message=message,
        )
        if decided is None:
            raise TransferError(ErrorKind.APPROVAL_NOT_FOUND, 'decide')

        APPROVAL_DECISIONS_TOTAL.labels(
            outcome=resolved.value, applied=str(changed).lower(),
        ).inc()
        if not changed:
            logger.info(
                'approval_decision_noop',
                request_id=request_id,
                existing=decided.status.value,
                attempted=resolved.value,
            )
            return decided, False

        logger.info(
            'approval_decided', request_id=request_id, outcome=resolved.value,
        )
        await self._notify(_decision_notification(decided, transfer))
        return decided, True

    async def find(
        self, transfer_id: str, requester_email: str,
    ) -> ApprovalRequest | None:
        return await self._approvals.find(
            transfer_id, normalize_email(requester_email, 'find_approval'),
        )

    async def list_for_transfer(
        self,
        transfer_id: str,
        identity: Identity | None,
        *,
        status: ApprovalStatus | None = None,
    ) -> list[ApprovalRequest]:
        transfer = await self._transfers.get_by_id(transfer_id)
        if transfer is None:
            raise TransferError(ErrorKind.TRANSFER_NOT_FOUND, 'list_approvals')
        require_owner(identity, transfer.owner_id, 'list_approvals')
        return await self._approvals.list_for_transfer(transfer_id, status=status)

    async def _notify(self, notification: Notification) -> None:
        await dispatch_best_effort(
            self._notifier, notification, timeout=self._notification_timeout,
        )


def _decision_notification(
    request: ApprovalRequest, transfer: Transfer,
) -> Notification:
    approved = request.status == ApprovalStatus.APPROVED
    title = transfer.title or 'shared files'
    return Notification(
        kind='approval_approved' if approved else 'approval_denied',
        recipient=request.requester_email,
        subject=(
            f'Access approved for {title}' if approved
            else f'Access denied for {title}'
        ),
        payload={
            'request_id': request.id,
            'transfer_id': transfer.id,
            'share_link': transfer.share_token if approved else None,
            'message': request.response_message,
        },
    )
