"""
Reconciliation Ledger - Ledger Store

Durable storage of transactions and their reconciliation status.

The store never commits: callers own the transaction boundary, and
set_status is only ever issued inside the same unit of work as the match
group mutation it belongs to.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from recon_ledger.models.transaction import Transaction, TransactionSide, TransactionStatus
from recon_ledger.utils.error_handling import TransactionNotFoundException

logger = logging.getLogger(__name__)


CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Quantize an amount to cents."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class TransactionRecord:
    """A validated record handed over by the import collaborator."""
    transaction_date: date
    description: str
    amount: Decimal
    side: TransactionSide
    reference: Optional[str] = None


class LedgerStore:
    """Storage operations for transactions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_transactions(
        self,
        records: Sequence[TransactionRecord],
        imported_by: Optional[str] = None,
    ) -> List[Transaction]:
        """Persist new UNMATCHED transactions."""
        transactions = [
            Transaction(
                transaction_date=record.transaction_date,
                description=record.description,
                amount=to_money(record.amount),
                reference=record.reference,
                side=TransactionSide(record.side),
                status=TransactionStatus.UNMATCHED,
                match_id=None,
                imported_by_id=imported_by,
            )
            for record in records
        ]
        self.db.add_all(transactions)
        await self.db.flush()

        logger.info(f"Stored {len(transactions)} imported transactions")
        return transactions

    async def fetch_by_ids(
        self,
        ids: Iterable[uuid.UUID],
        for_update: bool = False,
    ) -> List[Transaction]:
        """
        Load transactions by id, in the order requested.

        Raises TransactionNotFoundException listing every id that does not
        resolve. Status is not filtered; callers must check it. With
        for_update the rows stay locked until the enclosing transaction ends.
        """
        wanted = list(dict.fromkeys(ids))
        if not wanted:
            return []

        query = select(Transaction).where(Transaction.id.in_(wanted))
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)

        result = await self.db.execute(query)
        found: Dict[uuid.UUID, Transaction] = {t.id: t for t in result.scalars().all()}

        missing = [i for i in wanted if i not in found]
        if missing:
            raise TransactionNotFoundException(missing)

        return [found[i] for i in wanted]

    async def set_status(
        self,
        ids: Iterable[uuid.UUID],
        status: TransactionStatus,
        match_id: Optional[uuid.UUID],
    ) -> None:
        """Bulk status transition; must run inside the caller's transaction."""
        if status == TransactionStatus.MATCHED and match_id is None:
            raise ValueError("MATCHED transactions require a match_id")
        if status == TransactionStatus.UNMATCHED and match_id is not None:
            raise ValueError("UNMATCHED transactions cannot reference a match")

        id_list = list(ids)
        if not id_list:
            return

        await self.db.execute(
            update(Transaction)
            .where(Transaction.id.in_(id_list))
            .values(status=status, match_id=match_id)
        )

    async def get_transaction(self, transaction_id: uuid.UUID) -> Optional[Transaction]:
        result = await self.db.execute(
            select(Transaction).where(Transaction.id == transaction_id)
        )
        return result.scalar_one_or_none()

    async def get_transactions(
        self,
        status: Optional[TransactionStatus] = None,
        side: Optional[TransactionSide] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Transaction]:
        """List transactions with optional filters, oldest first."""
        query = select(Transaction)

        if status:
            query = query.where(Transaction.status == status)
        if side:
            query = query.where(Transaction.side == side)
        if start_date:
            query = query.where(Transaction.transaction_date >= start_date)
        if end_date:
            query = query.where(Transaction.transaction_date <= end_date)

        query = query.order_by(
            Transaction.transaction_date, Transaction.created_at
        ).offset(skip).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())
