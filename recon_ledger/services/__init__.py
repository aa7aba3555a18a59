"""
Reconciliation Ledger - Services Package

Business logic services.
"""

from recon_ledger.services.audit_chain_service import (
    AuditChainService,
    ChainVerificationResult,
    RequestContext,
)
from recon_ledger.services.ledger_store import LedgerStore, TransactionRecord
from recon_ledger.services.match_engine import MatchDecision, MatchEngine, decide_match
from recon_ledger.services.period_service import PeriodService
from recon_ledger.services.reconciliation_service import (
    ActorContext,
    ReconciliationService,
    get_reconciliation_service,
)

__all__ = [
    "AuditChainService",
    "ChainVerificationResult",
    "RequestContext",
    "LedgerStore",
    "TransactionRecord",
    "MatchDecision",
    "MatchEngine",
    "decide_match",
    "PeriodService",
    "ActorContext",
    "ReconciliationService",
    "get_reconciliation_service",
]
