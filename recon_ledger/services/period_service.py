"""
Reconciliation Ledger - Financial Period Service

Closing a period freezes the reconciliation state of every transaction
dated inside it: no new matches, no unmatches, no comment edits.
"""

import logging
import uuid
from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from recon_ledger.models.audit import AuditAction, AuditEntityType
from recon_ledger.models.base import utc_now
from recon_ledger.models.period import FinancialPeriod
from recon_ledger.services.audit_chain_service import AuditChainService, RequestContext
from recon_ledger.utils.error_handling import (
    BusinessRuleException,
    DuplicateEntryException,
    InvalidDateRangeException,
    PeriodClosedException,
    PeriodNotFoundException,
)

logger = logging.getLogger(__name__)


class PeriodService:
    """Service for financial period locks."""

    def __init__(self, db: AsyncSession, audit: Optional[AuditChainService] = None):
        self.db = db
        self.audit = audit or AuditChainService(db)

    async def create_period(
        self,
        name: str,
        start_date: date,
        end_date: date,
        actor_id: str,
        notes: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> FinancialPeriod:
        """Create an open period."""
        if end_date < start_date:
            raise InvalidDateRangeException(start_date, end_date)

        existing = await self.db.execute(
            select(FinancialPeriod.id).where(FinancialPeriod.name == name)
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateEntryException("FinancialPeriod", "name", name)

        period = FinancialPeriod(
            name=name,
            start_date=start_date,
            end_date=end_date,
            is_closed=False,
            notes=notes,
        )
        self.db.add(period)
        await self.db.flush()

        await self.audit.create_audit_log(
            user_id=actor_id,
            action_type=AuditAction.CREATE,
            entity_type=AuditEntityType.PERIOD,
            entity_id=period.id,
            after_state=period.to_snapshot(),
            change_summary=f"Created period '{name}' ({start_date.isoformat()} to {end_date.isoformat()})",
            context=context,
        )
        return period

    async def get_period(self, period_id: uuid.UUID) -> FinancialPeriod:
        result = await self.db.execute(
            select(FinancialPeriod)
            .where(FinancialPeriod.id == period_id)
            .execution_options(populate_existing=True)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundException(period_id)
        return period

    async def list_periods(self) -> List[FinancialPeriod]:
        result = await self.db.execute(
            select(FinancialPeriod).order_by(FinancialPeriod.start_date)
        )
        return list(result.scalars().all())

    async def close_period(
        self,
        period_id: uuid.UUID,
        actor_id: str,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> FinancialPeriod:
        """Lock a period against further reconciliation changes."""
        period = await self.get_period(period_id)
        if period.is_closed:
            raise BusinessRuleException(
                f"Period '{period.name}' is already closed",
                rule="PERIOD_OPEN",
                details={"period_id": str(period.id)},
            )

        before = period.to_snapshot()
        period.is_closed = True
        period.closed_at = utc_now()
        period.closed_by = actor_id
        await self.db.flush()

        await self.audit.create_audit_log(
            user_id=actor_id,
            action_type=AuditAction.UPDATE,
            entity_type=AuditEntityType.PERIOD,
            entity_id=period.id,
            before_state=before,
            after_state=period.to_snapshot(),
            change_summary=f"Closed period '{period.name}'",
            justification=justification,
            context=context,
        )
        logger.info(f"Period '{period.name}' closed by {actor_id}")
        return period

    async def reopen_period(
        self,
        period_id: uuid.UUID,
        actor_id: str,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> FinancialPeriod:
        """Unlock a closed period."""
        period = await self.get_period(period_id)
        if not period.is_closed:
            raise BusinessRuleException(
                f"Period '{period.name}' is not closed",
                rule="PERIOD_CLOSED",
                details={"period_id": str(period.id)},
            )

        before = period.to_snapshot()
        period.is_closed = False
        period.closed_at = None
        period.closed_by = None
        await self.db.flush()

        await self.audit.create_audit_log(
            user_id=actor_id,
            action_type=AuditAction.UPDATE,
            entity_type=AuditEntityType.PERIOD,
            entity_id=period.id,
            before_state=before,
            after_state=period.to_snapshot(),
            change_summary=f"Reopened period '{period.name}'",
            justification=justification,
            context=context,
        )
        logger.info(f"Period '{period.name}' reopened by {actor_id}")
        return period

    async def find_closed_period(self, value: date) -> Optional[FinancialPeriod]:
        """The closed period containing a date, if any."""
        result = await self.db.execute(
            select(FinancialPeriod)
            .where(
                and_(
                    FinancialPeriod.is_closed == True,  # noqa: E712
                    FinancialPeriod.start_date <= value,
                    FinancialPeriod.end_date >= value,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def ensure_dates_open(self, dates: Iterable[date], operation: str = "modification") -> None:
        """Raise PeriodClosedException for the first date inside a closed period."""
        for value in sorted(set(dates)):
            period = await self.find_closed_period(value)
            if period is not None:
                raise PeriodClosedException(value, period.name, operation)
