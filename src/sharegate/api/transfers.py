"""Transfer API endpoints.

  POST   /api/v1/transfers                               create
  GET    /api/v1/transfers                               owner listing
  GET    /api/v1/transfers/{token}                       public metadata
  POST   /api/v1/transfers/{token}/access                access grant
  GET    /api/v1/transfers/{token}/files/{file_id}       stream one file
  POST   /api/v1/transfers/{token}/approvals             request access
  DELETE /api/v1/transfers/id/{transfer_id}              revoke
  GET    /api/v1/transfers/id/{transfer_id}/stats        download stats
  GET    /api/v1/transfers/id/{transfer_id}/approvals    approval requests

Each call to ``/access`` or ``/files/{file_id}`` is one access attempt and,
when allowed, counts one download. Owner routes are addressed by transfer
id, recipient routes by share token.
"""

from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import quote

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from ..access.evaluator import AccessPolicyEvaluator
from ..approvals.model import ApprovalStatus
from ..approvals.workflow import ApprovalWorkflow
from ..collaborators import BlobStore
from ..downloads.tracker import DownloadTracker
from ..errors import ErrorKind, TransferError
from ..identity import Identity, can_own_transfers
from ..settings import TransferSettings
from ..transfers.model import CreateTransferRequest, FileSpec
from ..transfers.store import TransferStore
from .deps import client_ip, get_identity
from .errors import denial_response, error_response


# ── Request schemas ──────────────────────────────────────────────────


class FileBody(BaseModel):
    file_name: str = Field(..., min_length=1)
    file_size: int
    mime_type: str = 'application/octet-stream'
    storage_key: str = Field(..., min_length=1)


class CreateTransferBody(BaseModel):
    """Request body for transfer creation. The owner comes from the caller identity."""

    title: str | None = None
    message: str | None = None
    sender_email: str | None = None
    recipient_email: str | None = None
    password: str | None = None
    expiration_days: int | None = Field(
        default=None, description='Defaults to the configured expiration',
    )
    download_limit: int | None = None
    tracking_enabled: bool = True
    approval_required: bool = False
    share_link: str | None = Field(default=None, description='Client-proposed token')
    client_origin: str | None = None
    files: list[FileBody] = Field(default_factory=list)


class AccessBody(BaseModel):
    password: str | None = None
    requester_email: str | None = None


class ApprovalRequestBody(BaseModel):
    requester_email: str
    message: str | None = Field(default=None, max_length=2000)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Route factory ────────────────────────────────────────────────────


def create_transfer_router(
    store: TransferStore,
    evaluator: AccessPolicyEvaluator,
    tracker: DownloadTracker,
    workflow: ApprovalWorkflow,
    blob_store: BlobStore,
    settings: TransferSettings,
) -> APIRouter:
    """Create the transfer router with injected services."""
    router = APIRouter(prefix='/api/v1/transfers', tags=['transfers'])

    @router.post('', status_code=201)
    async def create_transfer(
        body: CreateTransferBody,
        identity: Identity | None = Depends(get_identity),
    ):
        owner_id = (
            identity.user_id
            if identity is not None and can_own_transfers(identity)
            else None
        )
        result = await store.create(
            CreateTransferRequest(
                user_id=owner_id,
                title=body.title,
                message=body.message,
                sender_email=body.sender_email,
                recipient_email=body.recipient_email,
                password=body.password,
                expiration_days=(
                    body.expiration_days
                    if body.expiration_days is not None
                    else settings.default_expiration_days
                ),
                download_limit=body.download_limit,
                tracking_enabled=body.tracking_enabled,
                approval_required=body.approval_required,
                share_link=body.share_link,
                client_origin=body.client_origin,
                files=[
                    FileSpec(
                        file_name=f.file_name,
                        file_size=f.file_size,
                        mime_type=f.mime_type,
                        storage_key=f.storage_key,
                    )
                    for f in body.files
                ],
            )
        )
        return result.to_dict()

    @router.get('')
    async def list_transfers(identity: Identity | None = Depends(get_identity)):
        now = _now()
        transfers = await store.list_for_owner(identity)
        return {'transfers': [t.to_owner_dict(now) for t in transfers]}

    @router.get('/id/{transfer_id}/stats')
    async def transfer_stats(
        transfer_id: str,
        limit: int | None = Query(default=None, ge=0, le=1000),
        identity: Identity | None = Depends(get_identity),
    ):
        await store.get_owned(transfer_id, identity, 'stats')
        stats = await tracker.stats(transfer_id, recent_limit=limit)
        return stats.to_dict()

    @router.get('/id/{transfer_id}/approvals')
    async def list_approvals(
        transfer_id: str,
        status: str | None = None,
        identity: Identity | None = Depends(get_identity),
    ):
        status_filter = None
        if status is not None:
            try:
                status_filter = ApprovalStatus(status.upper())
            except ValueError:
                return error_response(
                    ErrorKind.INVALID_REQUEST,
                    'list_approvals',
                    'status must be PENDING, APPROVED or DENIED',
                )
        requests = await workflow.list_for_transfer(
            transfer_id, identity, status=status_filter,
        )
        return {'approvals': [r.to_dict() for r in requests]}

    @router.delete('/id/{transfer_id}')
    async def revoke_transfer(
        transfer_id: str,
        identity: Identity | None = Depends(get_identity),
    ):
        transfer, changed = await store.revoke(transfer_id, identity)
        return {
            'transfer_id': transfer.id,
            'status': transfer.status.value,
            'changed': changed,
        }

    @router.get('/{token}')
    async def get_transfer(token: str):
        now = _now()
        result = await evaluator.preview(token, now)
        if not result.ok:
            return denial_response(result, 'get_transfer')
        return result.transfer.to_public_dict(now)

    @router.post('/{token}/access')
    async def access_transfer(
        token: str,
        request: Request,
        body: AccessBody | None = None,
        x_share_password: str | None = Header(default=None),
        x_requester_email: str | None = Header(default=None),
    ):
        body = body or AccessBody()
        result = await evaluator.evaluate(
            token,
            _now(),
            provided_password=body.password or x_share_password,
            requester_email=body.requester_email or x_requester_email,
            ip_address=client_ip(request),
            user_agent=request.headers.get('user-agent'),
        )
        if not result.ok:
            return denial_response(result, 'access')
        return {
            'transfer_id': result.transfer.id,
            'download_id': result.event.id if result.event else None,
            'files': [
                {**f.to_public_dict(), 'storage_key': f.storage_key}
                for f in result.files
            ],
        }

    @router.get('/{token}/files/{file_id}')
    async def download_file(
        token: str,
        file_id: str,
        request: Request,
        x_share_password: str | None = Header(default=None),
        x_requester_email: str | None = Header(default=None),
    ):
        result = await evaluator.evaluate(
            token,
            _now(),
            provided_password=x_share_password,
            requester_email=x_requester_email,
            ip_address=client_ip(request),
            user_agent=request.headers.get('user-agent'),
            file_id=file_id,
        )
        if not result.ok:
            return denial_response(result, 'download')

        target = result.files[0]
        try:
            data = await blob_store.get(target.storage_key)
        except Exception as exc:
            raise TransferError(
                ErrorKind.STORAGE_UNAVAILABLE,
                'download',
                'blob store unavailable',
                cause=exc,
            ) from exc
        if data is None:
            return error_response(
                ErrorKind.FILE_NOT_FOUND, 'download', 'File content is missing.',
            )
        return Response(
            content=data,
            media_type=target.mime_type,
            headers={
                'Content-Disposition': (
                    f"attachment; filename*=UTF-8''{quote(target.file_name)}"
                ),
            },
        )

    @router.post('/{token}/approvals')
    async def request_approval(token: str, body: ApprovalRequestBody):
        transfer = await store.get(token)
        if transfer is None:
            return error_response(ErrorKind.TRANSFER_NOT_FOUND, 'request_access')
        approval, created = await workflow.request_access(
            transfer.id, body.requester_email, message=body.message,
        )
        return JSONResponse(
            status_code=201 if created else 200,
            content=approval.to_dict(),
        )

    return router
