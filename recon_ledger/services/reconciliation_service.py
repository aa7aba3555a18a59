"""
Reconciliation Ledger - Reconciliation Service

Request-facing facade over the ledger store, the match engine, the period
locks and the audit chain. Each mutating operation is one unit of work:
the business change and its audit entry commit together or not at all.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from recon_ledger.config import settings
from recon_ledger.models.audit import AuditAction, AuditEntityType, AuditLog
from recon_ledger.models.base import as_utc
from recon_ledger.models.match import MatchGroup, MatchStatus
from recon_ledger.models.period import FinancialPeriod
from recon_ledger.models.transaction import Transaction, TransactionSide, TransactionStatus
from recon_ledger.services.audit_chain_service import (
    AuditChainService,
    ChainVerificationResult,
    RequestContext,
)
from recon_ledger.services.ledger_store import LedgerStore, TransactionRecord, to_money
from recon_ledger.services.match_engine import MatchEngine
from recon_ledger.services.period_service import PeriodService
from recon_ledger.utils.error_handling import (
    AppException,
    InvalidDateRangeException,
    StorageException,
    TransactionNotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)


@dataclass
class ActorContext:
    """
    The acting user as resolved by the permission collaborator.

    adjustment_limit None means unlimited.
    """
    actor_id: str
    role: Optional[str] = None
    adjustment_limit: Optional[Decimal] = Decimal("0.00")
    allow_self_approval: bool = False

    @classmethod
    def for_role(cls, actor_id: str, role: Optional[str] = None) -> "ActorContext":
        """Build a context from the configured role policy."""
        return cls(
            actor_id=actor_id,
            role=role.upper() if role else None,
            adjustment_limit=settings.adjustment_limit_for(role),
            allow_self_approval=settings.can_self_approve(role),
        )


class ReconciliationService:
    """Service for reconciliation operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditChainService(db)
        self.ledger = LedgerStore(db)
        self.periods = PeriodService(db, self.audit)
        self.engine = MatchEngine(db, ledger=self.ledger, audit=self.audit, periods=self.periods)

    @asynccontextmanager
    async def _unit_of_work(self, operation: str) -> AsyncIterator[None]:
        """Commit on success; roll back and re-raise on any failure."""
        try:
            yield
            await self.db.commit()
        except AppException as e:
            await self.db.rollback()
            logger.warning(f"{operation.capitalize()} rejected: {e.code.value} - {e.message}")
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Storage error during {operation}: {e}", exc_info=True)
            raise StorageException(operation, original_error=e) from e

    # ===========================================
    # TRANSACTIONS
    # ===========================================

    async def import_transactions(
        self,
        records: Sequence[TransactionRecord],
        actor: ActorContext,
        source_name: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> List[Transaction]:
        """Store a batch of validated records as UNMATCHED transactions."""
        if not records:
            raise ValidationException("Import contains no transactions", field="transactions")

        async with self._unit_of_work("transaction import"):
            transactions = await self.ledger.add_transactions(records, imported_by=actor.actor_id)

            left = [t for t in transactions if t.side == TransactionSide.LEFT]
            right = [t for t in transactions if t.side == TransactionSide.RIGHT]
            left_count, right_count = len(left), len(right)
            batch_id = uuid.uuid4()

            await self.audit.create_audit_log(
                user_id=actor.actor_id,
                action_type=AuditAction.IMPORT,
                entity_type=AuditEntityType.FILE_IMPORT,
                entity_id=batch_id,
                after_state={
                    "source_name": source_name,
                    "transaction_count": len(transactions),
                    "left_count": left_count,
                    "right_count": right_count,
                    "left_total": to_money(sum((t.absolute_amount for t in left), Decimal("0"))),
                    "right_total": to_money(sum((t.absolute_amount for t in right), Decimal("0"))),
                    "transaction_ids": [str(t.id) for t in transactions],
                },
                change_summary=(
                    f"Imported {len(transactions)} transactions "
                    f"({left_count} left, {right_count} right)"
                    + (f" from {source_name}" if source_name else "")
                ),
                context=context,
            )

        logger.info(f"Import by {actor.actor_id}: {len(transactions)} transactions")
        return transactions

    async def get_transaction(self, transaction_id: uuid.UUID) -> Transaction:
        transaction = await self.ledger.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFoundException([transaction_id])
        return transaction

    async def get_transactions(
        self,
        status: Optional[TransactionStatus] = None,
        side: Optional[TransactionSide] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Transaction]:
        if start_date and end_date and end_date < start_date:
            raise InvalidDateRangeException(start_date, end_date)
        return await self.ledger.get_transactions(
            status=status, side=side, start_date=start_date, end_date=end_date,
            skip=skip, limit=limit,
        )

    # ===========================================
    # MATCHES
    # ===========================================

    async def create_match(
        self,
        left_ids: Sequence[uuid.UUID],
        right_ids: Sequence[uuid.UUID],
        actor: ActorContext,
        comment: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> MatchGroup:
        async with self._unit_of_work("match creation"):
            match_group = await self.engine.create_match(
                left_ids,
                right_ids,
                actor_id=actor.actor_id,
                actor_adjustment_limit=actor.adjustment_limit,
                comment=comment,
                context=context,
            )
        return match_group

    async def approve_match(
        self,
        match_id: uuid.UUID,
        actor: ActorContext,
        expected_version: Optional[int] = None,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> MatchGroup:
        async with self._unit_of_work("match approval"):
            match_group = await self.engine.approve_match(
                match_id,
                approver_id=actor.actor_id,
                allow_self_approval=actor.allow_self_approval,
                expected_version=expected_version,
                justification=justification,
                context=context,
            )
        return match_group

    async def update_match_comment(
        self,
        match_id: uuid.UUID,
        comment: Optional[str],
        actor: ActorContext,
        expected_version: Optional[int] = None,
        context: Optional[RequestContext] = None,
    ) -> MatchGroup:
        async with self._unit_of_work("comment update"):
            match_group = await self.engine.update_match_comment(
                match_id, comment, actor.actor_id,
                expected_version=expected_version, context=context,
            )
        return match_group

    async def unmatch(
        self,
        match_id: uuid.UUID,
        actor: ActorContext,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> None:
        async with self._unit_of_work("unmatch"):
            await self.engine.unmatch(
                match_id, actor.actor_id, justification=justification, context=context
            )

    async def batch_unmatch(
        self,
        match_ids: Sequence[uuid.UUID],
        actor: ActorContext,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        async with self._unit_of_work("batch unmatch"):
            outcome = await self.engine.batch_unmatch(
                match_ids, actor.actor_id, justification=justification, context=context
            )
        return outcome

    async def get_match(self, match_id: uuid.UUID) -> MatchGroup:
        return await self.engine.get_match(match_id)

    async def get_matches(self, status: Optional[MatchStatus] = None) -> List[MatchGroup]:
        return await self.engine.get_matches(status)

    async def get_reconciliation_summary(self) -> Dict[str, Any]:
        return await self.engine.get_reconciliation_summary()

    # ===========================================
    # PERIODS
    # ===========================================

    async def create_period(
        self,
        name: str,
        start_date: date,
        end_date: date,
        actor: ActorContext,
        notes: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> FinancialPeriod:
        async with self._unit_of_work("period creation"):
            period = await self.periods.create_period(
                name, start_date, end_date, actor.actor_id, notes=notes, context=context
            )
        return period

    async def close_period(
        self,
        period_id: uuid.UUID,
        actor: ActorContext,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> FinancialPeriod:
        async with self._unit_of_work("period close"):
            period = await self.periods.close_period(
                period_id, actor.actor_id, justification=justification, context=context
            )
        return period

    async def reopen_period(
        self,
        period_id: uuid.UUID,
        actor: ActorContext,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> FinancialPeriod:
        async with self._unit_of_work("period reopen"):
            period = await self.periods.reopen_period(
                period_id, actor.actor_id, justification=justification, context=context
            )
        return period

    async def get_period(self, period_id: uuid.UUID) -> FinancialPeriod:
        return await self.periods.get_period(period_id)

    async def list_periods(self) -> List[FinancialPeriod]:
        return await self.periods.list_periods()

    # ===========================================
    # AUDIT
    # ===========================================

    async def create_audit_log(
        self,
        user_id: str,
        action_type: AuditAction,
        entity_type: Union[AuditEntityType, str],
        change_summary: str,
        entity_id: Optional[Union[str, uuid.UUID]] = None,
        before_state: Optional[Dict[str, Any]] = None,
        after_state: Optional[Dict[str, Any]] = None,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> AuditLog:
        """Standalone append for actions recorded outside the match engine."""
        async with self._unit_of_work("audit append"):
            entry = await self.audit.create_audit_log(
                user_id=user_id,
                action_type=action_type,
                entity_type=entity_type,
                change_summary=change_summary,
                entity_id=entity_id,
                before_state=before_state,
                after_state=after_state,
                justification=justification,
                context=context,
            )
        return entry

    async def get_audit_logs(self, **filters: Any) -> List[AuditLog]:
        for key in ("start_date", "end_date"):
            if filters.get(key):
                filters[key] = as_utc(filters[key])
        start_date = filters.get("start_date")
        end_date = filters.get("end_date")
        if start_date and end_date and end_date < start_date:
            raise InvalidDateRangeException(start_date, end_date)
        return await self.audit.get_audit_logs(**filters)

    async def get_entity_audit_trail(
        self,
        entity_type: Union[AuditEntityType, str],
        entity_id: Union[str, uuid.UUID],
    ) -> List[AuditLog]:
        return await self.audit.get_entity_audit_trail(entity_type, entity_id)

    async def verify_audit_chain(self) -> ChainVerificationResult:
        return await self.audit.verify_audit_chain()

    async def get_user_activity_summary(
        self,
        user_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> Dict[str, Any]:
        start_date, end_date = as_utc(start_date), as_utc(end_date)
        if end_date < start_date:
            raise InvalidDateRangeException(start_date, end_date)
        return await self.audit.get_user_activity_summary(user_id, start_date, end_date)


def get_reconciliation_service(db: AsyncSession) -> ReconciliationService:
    """Factory function for ReconciliationService."""
    return ReconciliationService(db)
