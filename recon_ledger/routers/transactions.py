"""
Reconciliation Ledger - Transactions Router

API endpoints for importing and listing transactions.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from recon_ledger.dependencies import get_actor_context, get_request_context, get_service
from recon_ledger.models.transaction import TransactionSide, TransactionStatus
from recon_ledger.schemas.transaction import (
    TransactionImportRequest,
    TransactionImportResponse,
    TransactionResponse,
)
from recon_ledger.services.audit_chain_service import RequestContext
from recon_ledger.services.ledger_store import TransactionRecord
from recon_ledger.services.reconciliation_service import ActorContext, ReconciliationService

router = APIRouter(prefix="/transactions", tags=["Transactions"])


@router.post(
    "/import",
    response_model=TransactionImportResponse,
    status_code=status.HTTP_201_CREATED,
)
async def import_transactions(
    request: TransactionImportRequest,
    actor: ActorContext = Depends(get_actor_context),
    context: RequestContext = Depends(get_request_context),
    service: ReconciliationService = Depends(get_service),
):
    """
    Import a batch of validated transactions.

    All transactions start UNMATCHED. The batch is recorded as a single
    IMPORT entry in the audit chain.
    """
    records = [
        TransactionRecord(
            transaction_date=item.transaction_date,
            description=item.description,
            amount=item.amount,
            side=item.side,
            reference=item.reference,
        )
        for item in request.transactions
    ]
    transactions = await service.import_transactions(
        records, actor, source_name=request.source_name, context=context
    )
    return TransactionImportResponse(
        imported=len(transactions),
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
    )


@router.get("", response_model=List[TransactionResponse])
async def list_transactions(
    status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
    side: Optional[TransactionSide] = Query(None),
    start_date: Optional[date] = Query(None, description="Filter from date"),
    end_date: Optional[date] = Query(None, description="Filter to date"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    """List transactions, oldest first."""
    return await service.get_transactions(
        status=status_filter,
        side=side,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: uuid.UUID,
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    return await service.get_transaction(transaction_id)
