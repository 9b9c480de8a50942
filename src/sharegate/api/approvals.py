"""Approval decision endpoint.

  POST /api/v1/approvals/{request_id}/decision   owner decides

A repeated or conflicting decision returns 200 with ``changed: false`` and
the request as first decided.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..approvals.workflow import ApprovalWorkflow
from ..identity import Identity
from .deps import get_identity


class DecisionBody(BaseModel):
    outcome: str = Field(..., description='APPROVED or DENIED')
    message: str | None = Field(default=None, max_length=2000)


def create_approval_router(workflow: ApprovalWorkflow) -> APIRouter:
    router = APIRouter(prefix='/api/v1/approvals', tags=['approvals'])

    @router.post('/{request_id}/decision')
    async def decide(
        request_id: str,
        body: DecisionBody,
        identity: Identity | None = Depends(get_identity),
    ):
        request, changed = await workflow.decide(
            request_id, identity, body.outcome, message=body.message,
        )
        return {'request': request.to_dict(), 'changed': changed}

    return router
