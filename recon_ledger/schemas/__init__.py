"""
Reconciliation Ledger - Schemas Package

Pydantic schemas for request/response validation.
"""

from recon_ledger.schemas.audit import (
    AuditLogResponse,
    ChainVerificationResponse,
    EntityAuditTrailResponse,
    UserActivityResponse,
)
from recon_ledger.schemas.match import (
    BatchUnmatchRequest,
    BatchUnmatchResponse,
    MatchApproveRequest,
    MatchCommentUpdate,
    MatchCreateRequest,
    MatchResponse,
    ReconciliationSummaryResponse,
)
from recon_ledger.schemas.period import PeriodActionRequest, PeriodCreate, PeriodResponse
from recon_ledger.schemas.transaction import (
    TransactionImportItem,
    TransactionImportRequest,
    TransactionImportResponse,
    TransactionResponse,
)

__all__ = [
    "AuditLogResponse",
    "ChainVerificationResponse",
    "EntityAuditTrailResponse",
    "UserActivityResponse",
    "BatchUnmatchRequest",
    "BatchUnmatchResponse",
    "MatchApproveRequest",
    "MatchCommentUpdate",
    "MatchCreateRequest",
    "MatchResponse",
    "ReconciliationSummaryResponse",
    "PeriodActionRequest",
    "PeriodCreate",
    "PeriodResponse",
    "TransactionImportItem",
    "TransactionImportRequest",
    "TransactionImportResponse",
    "TransactionResponse",
]
