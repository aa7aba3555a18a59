"""
Reconciliation Ledger - Audit Schemas
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel

from recon_ledger.models.audit import AuditAction


class AuditLogResponse(BaseModel):
    """Schema for a single audit chain entry."""
    id: UUID
    sequence_number: int
    timestamp: datetime
    user_id: str
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    device_fingerprint: Optional[str] = None
    geolocation: Optional[str] = None
    action_type: AuditAction
    entity_type: str
    entity_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    change_summary: str
    justification: Optional[str] = None
    previous_hash: Optional[str] = None
    current_hash: str

    class Config:
        from_attributes = True


class EntityAuditTrailResponse(BaseModel):
    entity_type: str
    entity_id: str
    history: List[AuditLogResponse]


class ChainVerificationResponse(BaseModel):
    """Outcome of a full chain verification."""
    valid: bool
    errors: List[str]
    entries_checked: int


class UserActivityResponse(BaseModel):
    user_id: str
    start_date: datetime
    end_date: datetime
    total_actions: int
    actions_by_type: Dict[str, int]
    recent_actions: List[AuditLogResponse]
