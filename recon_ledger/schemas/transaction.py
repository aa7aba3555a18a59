"""
Reconciliation Ledger - Transaction Schemas

Pydantic schemas for transaction import and listing.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from recon_ledger.models.transaction import TransactionSide, TransactionStatus


class TransactionImportItem(BaseModel):
    """One validated line handed over by the import collaborator."""
    transaction_date: date
    description: str = Field(..., min_length=1, max_length=2000)
    amount: Decimal = Field(..., max_digits=18, decimal_places=2)
    side: TransactionSide
    reference: Optional[str] = Field(None, max_length=100)

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Description cannot be blank")
        return v


class TransactionImportRequest(BaseModel):
    """Schema for importing a batch of transactions."""
    source_name: Optional[str] = Field(None, max_length=255, description="File or feed name")
    transactions: List[TransactionImportItem] = Field(..., min_length=1)


class TransactionResponse(BaseModel):
    """Schema for transaction response."""
    id: UUID
    transaction_date: date
    description: str
    amount: Decimal
    reference: Optional[str] = None
    side: TransactionSide
    status: TransactionStatus
    match_id: Optional[UUID] = None
    imported_by_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TransactionImportResponse(BaseModel):
    """Schema for import result."""
    imported: int
    transactions: List[TransactionResponse]
