"""
Reconciliation Ledger - Financial Periods Router

Closing a period blocks matching, unmatching and comment edits for every
transaction dated inside it.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, status

from recon_ledger.dependencies import get_actor_context, get_request_context, get_service
from recon_ledger.schemas.period import PeriodActionRequest, PeriodCreate, PeriodResponse
from recon_ledger.services.audit_chain_service import RequestContext
from recon_ledger.services.reconciliation_service import ActorContext, ReconciliationService

router = APIRouter(prefix="/periods", tags=["Financial Periods"])


@router.post("", response_model=PeriodResponse, status_code=status.HTTP_201_CREATED)
async def create_period(
    request: PeriodCreate,
    actor: ActorContext = Depends(get_actor_context),
    context: RequestContext = Depends(get_request_context),
    service: ReconciliationService = Depends(get_service),
):
    return await service.create_period(
        request.name,
        request.start_date,
        request.end_date,
        actor,
        notes=request.notes,
        context=context,
    )


@router.get("", response_model=List[PeriodResponse])
async def list_periods(
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    return await service.list_periods()


@router.get("/{period_id}", response_model=PeriodResponse)
async def get_period(
    period_id: uuid.UUID,
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    return await service.get_period(period_id)


@router.post("/{period_id}/close", response_model=PeriodResponse)
async def close_period(
    period_id: uuid.UUID,
    request: Optional[PeriodActionRequest] = None,
    actor: ActorContext = Depends(get_actor_context),
    context: RequestContext = Depends(get_request_context),
    service: ReconciliationService = Depends(get_service),
):
    """Lock a period against further reconciliation changes."""
    justification = request.justification if request else None
    return await service.close_period(
        period_id, actor, justification=justification, context=context
    )


@router.post("/{period_id}/reopen", response_model=PeriodResponse)
async def reopen_period(
    period_id: uuid.UUID,
    request: Optional[PeriodActionRequest] = None,
    actor: ActorContext = Depends(get_actor_context),
    context: RequestContext = Depends(get_request_context),
    service: ReconciliationService = Depends(get_service),
):
    justification = request.justification if request else None
    return await service.reopen_period(
        period_id, actor, justification=justification, context=context
    )
