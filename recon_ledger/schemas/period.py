"""
Reconciliation Ledger - Financial Period Schemas
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class PeriodCreate(BaseModel):
    """Schema for creating a financial period."""
    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    notes: Optional[str] = None


class PeriodActionRequest(BaseModel):
    """Body for close/reopen."""
    justification: Optional[str] = Field(None, max_length=2000)


class PeriodResponse(BaseModel):
    id: UUID
    name: str
    start_date: date
    end_date: date
    is_closed: bool
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
