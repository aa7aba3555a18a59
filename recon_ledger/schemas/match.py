"""
Reconciliation Ledger - Match Schemas

Pydantic schemas for match creation, approval and unmatching.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from recon_ledger.models.match import MatchStatus


class MatchCreateRequest(BaseModel):
    """Schema for matching left-side against right-side transactions."""
    left_transaction_ids: List[UUID] = Field(default_factory=list)
    right_transaction_ids: List[UUID] = Field(default_factory=list)
    comment: Optional[str] = Field(None, max_length=2000)


class MatchApproveRequest(BaseModel):
    """Schema for approving a pending match."""
    expected_version: Optional[int] = Field(None, ge=1)
    justification: Optional[str] = Field(None, max_length=2000)


class MatchCommentUpdate(BaseModel):
    comment: Optional[str] = Field(None, max_length=2000)
    expected_version: Optional[int] = Field(None, ge=1)


class BatchUnmatchRequest(BaseModel):
    match_ids: List[UUID] = Field(..., min_length=1)
    justification: Optional[str] = Field(None, max_length=2000)


class SkippedMatch(BaseModel):
    match_id: UUID
    reason: str


class BatchUnmatchResponse(BaseModel):
    unmatched: List[UUID]
    skipped: List[SkippedMatch]


class MatchResponse(BaseModel):
    """Schema for match group response."""
    id: UUID
    left_transaction_ids: List[UUID]
    right_transaction_ids: List[UUID]
    total_left: Decimal
    total_right: Decimal
    difference: Decimal
    adjustment: Optional[Decimal] = None
    comment: Optional[str] = None
    status: MatchStatus
    match_by_user_id: str
    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    version: int
    created_at: datetime

    class Config:
        from_attributes = True


class SideSummary(BaseModel):
    count: int
    value: Decimal


class ReconciliationSummaryResponse(BaseModel):
    """Counts and absolute values per side and status."""
    transactions: Dict[str, Dict[str, SideSummary]]
    total_transactions: int
    matched_transactions: int
    unmatched_transactions: int
    matches_by_status: Dict[str, int]
    pending_adjustment_total: Decimal
