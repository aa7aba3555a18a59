"""
Reconciliation Ledger - Transaction Model

Ledger and statement lines awaiting reconciliation.

A transaction is created UNMATCHED by the import collaborator. Only the
match engine moves it to MATCHED (with match_id set) and back.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Numeric, String, Text, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from recon_ledger.models.base import BaseModel


class TransactionSide(str, Enum):
    """Which of the two reconciled sources a transaction belongs to."""
    LEFT = "LEFT"    # internal ledger
    RIGHT = "RIGHT"  # external statement


class TransactionStatus(str, Enum):
    """Reconciliation status of a transaction."""
    UNMATCHED = "UNMATCHED"
    MATCHED = "MATCHED"


class Transaction(BaseModel):
    """
    A single ledger or statement line.

    Invariant: status == MATCHED if and only if match_id references a live
    match group listing this transaction on its side.
    """

    __tablename__ = "transactions"

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=False,
        comment="Signed amount as imported",
    )
    reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    side: Mapped[TransactionSide] = mapped_column(
        SQLEnum(TransactionSide),
        nullable=False,
    )
    status: Mapped[TransactionStatus] = mapped_column(
        SQLEnum(TransactionStatus),
        default=TransactionStatus.UNMATCHED,
        nullable=False,
        index=True,
    )
    match_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("match_groups.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )

    imported_by_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Actor who imported the record",
    )

    __table_args__ = (
        CheckConstraint(
            "(status = 'MATCHED') = (match_id IS NOT NULL)",
            name="status_match_id",
        ),
        Index("ix_transactions_date_side_status", "transaction_date", "side", "status"),
    )

    @property
    def absolute_amount(self) -> Decimal:
        return abs(self.amount)

    def to_snapshot(self) -> dict:
        """Serializable view used in audit before/after states."""
        return {
            "id": str(self.id),
            "transaction_date": self.transaction_date.isoformat(),
            "description": self.description,
            "amount": str(self.amount),
            "reference": self.reference,
            "side": self.side.value,
            "status": self.status.value,
            "match_id": str(self.match_id) if self.match_id else None,
        }

    def __repr__(self) -> str:
        return f"<Transaction(id={self.id}, side={self.side.value}, status={self.status.value})>"
