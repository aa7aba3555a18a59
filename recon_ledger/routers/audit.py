"""
Reconciliation Ledger - Audit Trail Router

API endpoints for the hash-chained audit log.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from recon_ledger.config import settings
from recon_ledger.dependencies import get_actor_context, get_service
from recon_ledger.models.audit import AuditAction, AuditEntityType
from recon_ledger.models.base import as_utc, utc_now
from recon_ledger.schemas.audit import (
    AuditLogResponse,
    ChainVerificationResponse,
    EntityAuditTrailResponse,
    UserActivityResponse,
)
from recon_ledger.services.reconciliation_service import ActorContext, ReconciliationService

router = APIRouter(prefix="/audit", tags=["Audit Trail"])


@router.get("/logs", response_model=List[AuditLogResponse])
async def get_audit_logs(
    user_id: Optional[str] = Query(None, description="Filter by actor"),
    action: Optional[AuditAction] = Query(None, description="Filter by action type"),
    entity_type: Optional[AuditEntityType] = Query(None, description="Filter by entity type"),
    entity_id: Optional[str] = Query(None, description="Filter by entity ID"),
    start_date: Optional[datetime] = Query(None, description="Entries at or after"),
    end_date: Optional[datetime] = Query(None, description="Entries at or before"),
    limit: int = Query(
        settings.audit_log_default_limit, ge=1, le=settings.audit_log_max_limit
    ),
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    """
    Get audit logs with optional filtering, newest first.

    Supports filtering by:
    - Actor
    - Action type (MATCH, APPROVE, UNMATCH, ...)
    - Entity type and specific entity ID
    - Time window
    """
    return await service.get_audit_logs(
        user_id=user_id,
        action_type=action,
        entity_type=entity_type,
        entity_id=entity_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )


@router.get("/trail/{entity_type}/{entity_id}", response_model=EntityAuditTrailResponse)
async def get_entity_audit_trail(
    entity_type: AuditEntityType,
    entity_id: str,
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    """Complete chronological history of one record."""
    history = await service.get_entity_audit_trail(entity_type, entity_id)
    return {
        "entity_type": entity_type.value,
        "entity_id": entity_id,
        "history": history,
    }


@router.get("/verify", response_model=ChainVerificationResponse)
async def verify_audit_chain(
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    """
    Verify the integrity of the whole audit chain.

    A broken chain is reported in the body with valid=false, never as an
    error status.
    """
    result = await service.verify_audit_chain()
    return result.to_dict()


@router.get("/users/{user_id}/activity", response_model=UserActivityResponse)
async def get_user_activity(
    user_id: str,
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    actor: ActorContext = Depends(get_actor_context),
    service: ReconciliationService = Depends(get_service),
):
    """Activity summary for one actor. Defaults to the last 30 days."""
    end_date = as_utc(end_date) if end_date else utc_now()
    start_date = as_utc(start_date) if start_date else end_date - timedelta(days=30)

    summary = await service.get_user_activity_summary(user_id, start_date, end_date)
    return {
        "user_id": user_id,
        "start_date": start_date,
        "end_date": end_date,
        **summary,
    }


@router.get("/actions")
async def list_audit_actions(actor: ActorContext = Depends(get_actor_context)):
    """Action and entity types that can appear in the chain."""
    return {
        "actions": [a.value for a in AuditAction],
        "entity_types": [e.value for e in AuditEntityType],
    }
