"""
Reconciliation Ledger - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from recon_ledger.models.base import BaseModel, TimestampMixin, utc_now, as_utc
from recon_ledger.models.transaction import Transaction, TransactionSide, TransactionStatus
from recon_ledger.models.match import MatchGroup, MatchGroupMember, MatchStatus
from recon_ledger.models.audit import AuditLog, AuditAction, AuditEntityType, AuditChainHead
from recon_ledger.models.period import FinancialPeriod

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "utc_now",
    "as_utc",
    "Transaction",
    "TransactionSide",
    "TransactionStatus",
    "MatchGroup",
    "MatchGroupMember",
    "MatchStatus",
    "AuditLog",
    "AuditAction",
    "AuditEntityType",
    "AuditChainHead",
    "FinancialPeriod",
]
