"""
Reconciliation Ledger - Financial Period Model

Closed periods freeze the reconciliation state of every transaction dated
inside them.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from recon_ledger.models.base import BaseModel


class FinancialPeriod(BaseModel):
    """An accounting period that can be closed to further matching."""

    __tablename__ = "financial_periods"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_closed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_financial_periods_range", "start_date", "end_date"),
    )

    def contains(self, value: date) -> bool:
        return self.start_date <= value <= self.end_date

    def to_snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "is_closed": self.is_closed,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "closed_by": self.closed_by,
        }

    def __repr__(self) -> str:
        return f"<FinancialPeriod(name={self.name}, closed={self.is_closed})>"
