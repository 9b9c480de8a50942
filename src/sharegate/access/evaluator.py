"""Access policy evaluation for one attempt against a share token.

Decision order, first match wins:

  1. unknown token                  -> TRANSFER_NOT_FOUND
  2. effective status REVOKED       -> TRANSFER_REVOKED
  3. effective status EXPIRED       -> TRANSFER_EXPIRED
  4. effective status EXHAUSTED     -> DOWNLOAD_LIMIT_REACHED
  5. password missing / wrong       -> PASSWORD_REQUIRED / PASSWORD_INCORRECT
  6. approval gate                  -> APPROVAL_REQUIRED / _PENDING / _DENIED
     requested file not in transfer -> FILE_NOT_FOUND
  7. conditional increment          -> OK, or the ledger's refusal

Steps 1-6 only read. The download is counted in step 7 and nothing is
written on any other path. Domain denials come back as ``AccessResult``
values; only storage failures raise.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from ..approvals.model import ApprovalRepository, ApprovalStatus
from ..downloads.model import DownloadEvent
from ..downloads.tracker import DownloadTracker
from ..errors import HTTP_STATUS, ErrorKind, TransferError
from ..observability.logging import get_logger, redact_token
from ..observability.metrics import ACCESS_DECISIONS_TOTAL
from ..transfers.model import (
    Transfer,
    TransferFile,
    TransferRepository,
    TransferStatus,
    effective_status,
    require_aware,
)
from ..transfers.passwords import verify_password

logger = get_logger(__name__)

_STATUS_DENIALS = {
    TransferStatus.REVOKED: ErrorKind.TRANSFER_REVOKED,
    TransferStatus.EXPIRED: ErrorKind.TRANSFER_EXPIRED,
    TransferStatus.EXHAUSTED: ErrorKind.DOWNLOAD_LIMIT_REACHED,
}

_APPROVAL_DENIALS = {
    ApprovalStatus.PENDING: ErrorKind.APPROVAL_PENDING,
    ApprovalStatus.DENIED: ErrorKind.APPROVAL_DENIED,
}


@dataclass(frozen=True, slots=True)
class AccessResult:
    """Decision for one access attempt.

    On OK, ``files`` holds what the caller may stream (every file, or just
    the requested one) and ``event`` is the recorded download.
    """

    kind: ErrorKind
    transfer: Transfer | None = None
    files: tuple[TransferFile, ...] = ()
    event: DownloadEvent | None = None

    @property
    def ok(self) -> bool:
        return self.kind == ErrorKind.OK

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.kind]

    @property
    def storage_keys(self) -> tuple[str, ...]:
        return tuple(f.storage_key for f in self.files)


class AccessPolicyEvaluator:
    def __init__(
        self,
        transfers: TransferRepository,
        approvals: ApprovalRepository,
        tracker: DownloadTracker,
    ) -> None:
        self._transfers = transfers
        self._approvals = approvals
        self._tracker = tracker

    async def preview(self, share_token: str, now: datetime) -> AccessResult:
        """Steps 1-4 only. Used by the public metadata view; never counts."""
        require_aware(now)
        transfer = await self._transfers.get_by_token(share_token)
        if transfer is None:
            return AccessResult(ErrorKind.TRANSFER_NOT_FOUND)
        denial = _STATUS_DENIALS.get(effective_status(transfer, now))
        if denial is not None:
            return AccessResult(denial, transfer=transfer)
        return AccessResult(ErrorKind.OK, transfer=transfer, files=transfer.files)

    async def evaluate(
        self,
        share_token: str,
        now: datetime,
        *,
        provided_password: str | None = None,
        requester_email: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        file_id: str | None = None,
    ) -> AccessResult:
        """Decide one access attempt and, when allowed, count the download.

        Raises:
            TransferError: STORAGE_UNAVAILABLE only. Retrying is safe because
                the increment re-checks the limit.
        """
        try:
            result = await self._evaluate(
                share_token,
                require_aware(now),
                provided_password=provided_password,
                requester_email=requester_email,
                ip_address=ip_address,
                user_agent=user_agent,
                file_id=file_id,
            )
        except TransferError as exc:
            logger.error(
                'access_evaluation_failed',
                token=redact_token(share_token),
                error=exc.kind.value,
            )
            raise

        ACCESS_DECISIONS_TOTAL.labels(result=result.kind.value).inc()
        if result.ok:
            logger.info(
                'access_granted',
                token=redact_token(share_token),
                transfer_id=result.transfer.id,
            )
        else:
            logger.info(
                'access_denied',
                token=redact_token(share_token),
                result=result.kind.value,
            )
        return result

    async def _evaluate(
        self,
        share_token: str,
        now: datetime,
        *,
        provided_password: str | None,
        requester_email: str | None,
        ip_address: str | None,
        user_agent: str | None,
        file_id: str | None,
    ) -> AccessResult:
        # 1-4
        gate = await self.preview(share_token, now)
        if not gate.ok:
            return gate
        transfer = gate.transfer

        # 5
        if transfer.password_hash is not None:
            if not provided_password:
                return AccessResult(ErrorKind.PASSWORD_REQUIRED, transfer=transfer)
            matches = await asyncio.to_thread(
                verify_password, provided_password, transfer.password_hash,
            )
            if not matches:
                return AccessResult(ErrorKind.PASSWORD_INCORRECT, transfer=transfer)

        # 6
        if transfer.approval_required:
            denial = await self._approval_denial(transfer, requester_email)
            if denial is not None:
                return AccessResult(denial, transfer=transfer)

        files = transfer.files
        if file_id is not None:
            requested = transfer.file(file_id)
            if requested is None:
                return AccessResult(ErrorKind.FILE_NOT_FOUND, transfer=transfer)
            files = (requested,)

        # 7
        recorded = await self._tracker.record_for(
            transfer, ip_address, user_agent=user_agent, now=now,
        )
        if not recorded.ok:
            return AccessResult(recorded.kind, transfer=transfer)
        return AccessResult(
            ErrorKind.OK, transfer=transfer, files=files, event=recorded.event,
        )

    async def _approval_denial(
        self, transfer: Transfer, requester_email: str | None,
    ) -> ErrorKind | None:
        email = (requester_email or '').strip().lower()
        if not email:
            return ErrorKind.APPROVAL_REQUIRED
        request = await self._approvals.find(transfer.id, email)
        if request is None:
            return ErrorKind.APPROVAL_REQUIRED
        return _APPROVAL_DENIALS.get(request.status)
