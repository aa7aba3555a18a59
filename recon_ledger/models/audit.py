"""
Reconciliation Ledger - Audit Log Models

Append-only, hash-chained audit log for every mutating action.

Each entry stores the hash of the entry before it, so any retroactive edit
of a stored entry breaks either its own hash or the link from its
successor. Appends are serialized through the single AuditChainHead row.

This table should have no UPDATE or DELETE permissions.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, JSON, String, Text, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from recon_ledger.database import Base


class AuditAction(str, Enum):
    """Audit action types."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVE = "APPROVE"
    MATCH = "MATCH"
    UNMATCH = "UNMATCH"
    IMPORT = "IMPORT"
    EXPORT = "EXPORT"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"


class AuditEntityType(str, Enum):
    """Kinds of record an audit entry can refer to."""
    TRANSACTION = "TRANSACTION"
    MATCH = "MATCH"
    USER = "USER"
    ROLE = "ROLE"
    PERIOD = "PERIOD"
    SNAPSHOT = "SNAPSHOT"
    FILE_IMPORT = "FILE_IMPORT"


class AuditLog(Base):
    """
    One link of the audit hash chain.

    current_hash = H(user_id, action_type, entity_type, entity_id,
    change_summary, previous_hash, timestamp)
    """

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Position in the chain, gap-free from 1
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)

    # Timestamp (immutable, strictly increasing along the chain)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    # Actor and request context
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    device_fingerprint: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    geolocation: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Action and target
    action_type: Mapped[AuditAction] = mapped_column(SQLEnum(AuditAction), nullable=False)
    entity_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="Type of record affected (MATCH, TRANSACTION, ...)",
    )
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Before/after snapshots
    before_state: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    after_state: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    change_summary: Mapped[str] = mapped_column(Text, nullable=False)
    justification: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Hash chain
    previous_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    current_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_timestamp_user_action", "timestamp", "user_id", "action_type"),
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(seq={self.sequence_number}, action={self.action_type.value}, type={self.entity_type})>"


class AuditChainHead(Base):
    """
    Tail marker of the audit chain.

    A single row (id = 1) that every append locks before reading the last
    hash, so concurrent writers queue up instead of forking the chain.
    """

    __tablename__ = "audit_chain_head"

    CHAIN_ID = 1

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditChainHead(last_sequence={self.last_sequence})>"
