"""
Reconciliation Ledger - Matches Router

API endpoints for the match lifecycle: create, approve, comment, unmatch.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status

from recon_ledger.dependencies import get_actor_context, get_request_context, get_service
from recon_ledger.models.match import MatchStatus
from recon_ledger.schemas.match import (
    BatchUnmatchRequest,
    BatchUnmatchResponse,
    MatchApproveRequest,
    MatchCommentUpdate,
    MatchCreateRequest,
    MatchResponse,
    ReconciliationSummaryResponse,
)
from recon_ledger.services.audit_chain_service import RequestContext
from recon_ledger.services.reconciliation_service import ActorContext, ReconciliationService

router = APIRouter(prefix="/matches", tags=["Matches"])


# Static paths are declared before /{match_id}

@router.get("/summary", response_model=ReconciliationSummaryResponse)
async def get_reconciliation_summary(
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    """Counts and absolute values of matched and unmatched transactions per side."""
    return await service.get_reconciliation_summary()


@router.post("/batch-unmatch", response_model=BatchUnmatchResponse)
async def batch_unmatch(
    request: BatchUnmatchRequest,
    actor: ActorContext = Depends(get_actor_context),
    context: RequestContext = Depends(get_request_context),
    service: ReconciliationService = Depends(get_service),
):
    """
    Unmatch several groups at once.

    Groups that no longer exist or fall in a closed period are skipped
    and reported; the rest are unmatched in one transaction.
    """
    return await service.batch_unmatch(
        request.match_ids, actor, justification=request.justification, context=context
    )


@router.post("", response_model=MatchResponse, status_code=status.HTTP_201_CREATED)
async def create_match(
    request: MatchCreateRequest,
    actor: ActorContext = Depends(get_actor_context),
    context: RequestContext = Depends(get_request_context),
    service: ReconciliationService = Depends(get_service),
):
    """
    Match left-side against right-side transactions.

    A zero difference is approved immediately. A non-zero difference is
    approved as an adjustment when within the actor's limit, otherwise the
    match waits for approval by a different actor.
    """
    return await service.create_match(
        request.left_transaction_ids,
        request.right_transaction_ids,
        actor,
        comment=request.comment,
        context=context,
    )


@router.get("", response_model=List[MatchResponse])
async def list_matches(
    status_filter: Optional[MatchStatus] = Query(None, alias="status"),
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    """List match groups, newest first."""
    return await service.get_matches(status_filter)


@router.get("/{match_id}", response_model=MatchResponse)
async def get_match(
    match_id: uuid.UUID,
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    return await service.get_match(match_id)


@router.post("/{match_id}/approve", response_model=MatchResponse)
async def approve_match(
    match_id: uuid.UUID,
    request: Optional[MatchApproveRequest] = None,
    actor: ActorContext = Depends(get_actor_context),
    context: RequestContext = Depends(get_request_context),
    service: ReconciliationService = Depends(get_service),
):
    """Approve a pending match. The creator cannot approve their own match."""
    request = request or MatchApproveRequest()
    return await service.approve_match(
        match_id,
        actor,
        expected_version=request.expected_version,
        justification=request.justification,
        context=context,
    )


@router.patch("/{match_id}/comment", response_model=MatchResponse)
async def update_match_comment(
    match_id: uuid.UUID,
    request: MatchCommentUpdate,
    actor: ActorContext = Depends(get_actor_context),
    context: RequestContext = Depends(get_request_context),
    service: ReconciliationService = Depends(get_service),
):
    return await service.update_match_comment(
        match_id,
        request.comment,
        actor,
        expected_version=request.expected_version,
        context=context,
    )


@router.delete("/{match_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unmatch(
    match_id: uuid.UUID,
    justification: Optional[str] = Query(None, max_length=2000),
    actor: ActorContext = Depends(get_actor_context),
    context: RequestContext = Depends(get_request_context),
    service: ReconciliationService = Depends(get_service),
):
    """Delete a match group and return its transactions to UNMATCHED."""
    await service.unmatch(match_id, actor, justification=justification, context=context)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
