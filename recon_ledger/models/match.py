"""
Reconciliation Ledger - Match Group Models

A match group asserts that a set of left-side and right-side transactions
represent the same economic event(s). Membership is held in an explicit
join table so the storage layer enforces that a transaction belongs to at
most one live group.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from recon_ledger.database import Base
from recon_ledger.models.base import BaseModel
from recon_ledger.models.transaction import TransactionSide


class MatchStatus(str, Enum):
    """Lifecycle status of a match group."""
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"


class MatchGroup(BaseModel):
    """
    A reconciled group of transactions.

    `version` is the optimistic-concurrency counter: every UPDATE or DELETE
    is issued against the version that was loaded, and fails if another
    writer got there first.
    """

    __tablename__ = "match_groups"

    total_left: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), nullable=False)
    total_right: Mapped[Decimal] = mapped_column(Numeric(precision=18, scale=2), nullable=False)
    difference: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=False,
        comment="|total_left - total_right|",
    )
    adjustment: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=True,
        comment="Tolerated difference; set only when difference > 0",
    )
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[MatchStatus] = mapped_column(
        SQLEnum(MatchStatus),
        nullable=False,
        default=MatchStatus.PENDING_APPROVAL,
    )

    match_by_user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    approved_by_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    members: Mapped[List["MatchGroupMember"]] = relationship(
        "MatchGroupMember",
        back_populates="match_group",
        cascade="all, delete-orphan",
        order_by="MatchGroupMember.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_match_groups_status_created", "status", "created_at"),
    )

    def _member_ids(self, side: TransactionSide) -> List[uuid.UUID]:
        return [m.transaction_id for m in self.members if m.side == side]

    @property
    def left_transaction_ids(self) -> List[uuid.UUID]:
        return self._member_ids(TransactionSide.LEFT)

    @property
    def right_transaction_ids(self) -> List[uuid.UUID]:
        return self._member_ids(TransactionSide.RIGHT)

    @property
    def transaction_ids(self) -> List[uuid.UUID]:
        return [m.transaction_id for m in self.members]

    def to_snapshot(self) -> dict:
        """Serializable view used in audit before/after states."""
        return {
            "id": str(self.id),
            "left_transaction_ids": [str(i) for i in self.left_transaction_ids],
            "right_transaction_ids": [str(i) for i in self.right_transaction_ids],
            "total_left": str(self.total_left),
            "total_right": str(self.total_right),
            "difference": str(self.difference),
            "adjustment": str(self.adjustment) if self.adjustment is not None else None,
            "comment": self.comment,
            "status": self.status.value,
            "match_by_user_id": self.match_by_user_id,
            "approved_by_id": self.approved_by_id,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "version": self.version,
        }

    def __repr__(self) -> str:
        return f"<MatchGroup(id={self.id}, status={self.status.value}, version={self.version})>"


class MatchGroupMember(Base):
    """Membership of one transaction in one match group."""

    __tablename__ = "match_group_members"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    match_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("match_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("transactions.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    side: Mapped[TransactionSide] = mapped_column(SQLEnum(TransactionSide), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    match_group: Mapped["MatchGroup"] = relationship("MatchGroup", back_populates="members")

    def __repr__(self) -> str:
        return f"<MatchGroupMember(match_id={self.match_id}, transaction_id={self.transaction_id})>"
