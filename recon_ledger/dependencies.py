"""
Reconciliation Ledger - FastAPI Dependencies

Shared dependencies for database sessions, the acting user and request
metadata.

Authentication lives in front of this service: the gateway forwards the
authenticated actor in X-Actor-Id and their role in X-Actor-Role. The role
is mapped to an adjustment limit and the self-approval override through
settings.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from recon_ledger.database import get_async_session
from recon_ledger.services.audit_chain_service import RequestContext
from recon_ledger.services.reconciliation_service import (
    ActorContext,
    ReconciliationService,
    get_reconciliation_service,
)


async def get_actor_context(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    x_actor_role: Optional[str] = Header(None, alias="X-Actor-Role"),
) -> ActorContext:
    """
    Resolve the acting user from forwarded headers.

    Raises:
        HTTPException: If no actor id was forwarded
    """
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id header",
        )
    return ActorContext.for_role(x_actor_id.strip(), x_actor_role)


async def get_request_context(
    request: Request,
    x_session_id: Optional[str] = Header(None, alias="X-Session-Id"),
    x_device_fingerprint: Optional[str] = Header(None, alias="X-Device-Fingerprint"),
    x_geolocation: Optional[str] = Header(None, alias="X-Geolocation"),
) -> RequestContext:
    """Request metadata recorded with each audit entry."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None

    return RequestContext(
        session_id=x_session_id,
        ip_address=ip_address,
        device_fingerprint=x_device_fingerprint,
        geolocation=x_geolocation,
    )


async def get_service(
    db: AsyncSession = Depends(get_async_session),
) -> ReconciliationService:
    return get_reconciliation_service(db)
