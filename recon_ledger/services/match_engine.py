"""
Reconciliation Ledger - Match Engine

State-machine authority for matching ledger (LEFT) against statement
(RIGHT) transactions:

- create:  ∅ → APPROVED | PENDING_APPROVAL, members → MATCHED
- approve: PENDING_APPROVAL → APPROVED (separation of duties enforced)
- unmatch: APPROVED | PENDING_APPROVAL → deleted, members → UNMATCHED

Approval routing is amount-based: a zero difference is approved outright,
a difference within the creating actor's adjustment limit is auto-approved
as an adjustment, anything larger waits for a second approver.

Every state change appends one audit chain entry in the same database
transaction. The engine flushes but never commits.
"""

import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select, Numeric
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from recon_ledger.models.audit import AuditAction, AuditEntityType
from recon_ledger.models.base import utc_now
from recon_ledger.models.match import MatchGroup, MatchGroupMember, MatchStatus
from recon_ledger.models.transaction import Transaction, TransactionSide, TransactionStatus
from recon_ledger.services.audit_chain_service import AuditChainService, RequestContext
from recon_ledger.services.ledger_store import LedgerStore, to_money
from recon_ledger.services.period_service import PeriodService
from recon_ledger.utils.error_handling import (
    AlreadyApprovedException,
    AlreadyMatchedException,
    ConflictOfInterestException,
    EmptySelectionException,
    InvalidSelectionException,
    MatchNotFoundException,
    PeriodClosedException,
    StaleVersionException,
)

logger = logging.getLogger(__name__)


@dataclass
class MatchDecision:
    """Totals and approval routing for a candidate match."""

    total_left: Decimal
    total_right: Decimal
    difference: Decimal
    adjustment: Optional[Decimal]
    status: MatchStatus


def decide_match(
    left: Sequence[Transaction],
    right: Sequence[Transaction],
    adjustment_limit: Optional[Decimal],
) -> MatchDecision:
    """
    Compute totals and route the match.

    Totals are sums of absolute amounts per side. A limit of None means the
    actor may auto-approve any difference.
    """
    total_left = to_money(sum((t.absolute_amount for t in left), Decimal("0")))
    total_right = to_money(sum((t.absolute_amount for t in right), Decimal("0")))
    difference = abs(total_left - total_right)

    if difference == 0:
        return MatchDecision(total_left, total_right, difference, None, MatchStatus.APPROVED)

    if adjustment_limit is None or difference <= to_money(adjustment_limit):
        status = MatchStatus.APPROVED
    else:
        status = MatchStatus.PENDING_APPROVAL

    return MatchDecision(total_left, total_right, difference, difference, status)


def _validate_selection(
    left_ids: Sequence[uuid.UUID],
    right_ids: Sequence[uuid.UUID],
) -> None:
    if not left_ids:
        raise EmptySelectionException(TransactionSide.LEFT.value)
    if not right_ids:
        raise EmptySelectionException(TransactionSide.RIGHT.value)

    for ids in (left_ids, right_ids):
        duplicates = [i for i, n in Counter(ids).items() if n > 1]
        if duplicates:
            raise InvalidSelectionException(
                "A transaction was selected more than once", sorted(duplicates, key=str)
            )

    overlap = set(left_ids) & set(right_ids)
    if overlap:
        raise InvalidSelectionException(
            "A transaction cannot be on both sides of a match", sorted(overlap, key=str)
        )


class MatchEngine:
    """
    Match lifecycle operations.

    All mutating methods must run inside a single database transaction
    owned by the caller (see ReconciliationService).
    """

    def __init__(
        self,
        db: AsyncSession,
        ledger: Optional[LedgerStore] = None,
        audit: Optional[AuditChainService] = None,
        periods: Optional[PeriodService] = None,
    ):
        self.db = db
        self.ledger = ledger or LedgerStore(db)
        self.audit = audit or AuditChainService(db)
        self.periods = periods or PeriodService(db, self.audit)

    # ===========================================
    # CREATE
    # ===========================================

    async def create_match(
        self,
        left_ids: Sequence[uuid.UUID],
        right_ids: Sequence[uuid.UUID],
        actor_id: str,
        actor_adjustment_limit: Optional[Decimal],
        comment: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> MatchGroup:
        """
        Match left-side against right-side transactions.

        Args:
            left_ids: Ledger-side transaction ids
            right_ids: Statement-side transaction ids
            actor_id: Creating actor
            actor_adjustment_limit: Largest difference the actor may
                auto-approve (None = unlimited)
            comment: Free-text note
            context: Request metadata for the audit entry

        Returns:
            The new MatchGroup
        """
        left_ids = list(left_ids)
        right_ids = list(right_ids)
        _validate_selection(left_ids, right_ids)

        # Row locks serialize matches that share a transaction
        transactions = await self.ledger.fetch_by_ids(left_ids + right_ids, for_update=True)

        already_matched = [t.id for t in transactions if t.status == TransactionStatus.MATCHED]
        if already_matched:
            raise AlreadyMatchedException(already_matched)

        left = transactions[:len(left_ids)]
        right = transactions[len(left_ids):]

        wrong_side = [t.id for t in left if t.side != TransactionSide.LEFT]
        wrong_side += [t.id for t in right if t.side != TransactionSide.RIGHT]
        if wrong_side:
            raise InvalidSelectionException(
                "Transaction side does not match the side it was selected for", wrong_side
            )

        await self.periods.ensure_dates_open(
            (t.transaction_date for t in transactions), operation="matching"
        )

        decision = decide_match(left, right, actor_adjustment_limit)

        match_group = MatchGroup(
            id=uuid.uuid4(),
            created_at=utc_now(),
            total_left=decision.total_left,
            total_right=decision.total_right,
            difference=decision.difference,
            adjustment=decision.adjustment,
            comment=comment.strip() if comment and comment.strip() else None,
            status=decision.status,
            match_by_user_id=actor_id,
        )
        for position, txn in enumerate(left):
            match_group.members.append(
                MatchGroupMember(transaction_id=txn.id, side=TransactionSide.LEFT, position=position)
            )
        for position, txn in enumerate(right):
            match_group.members.append(
                MatchGroupMember(transaction_id=txn.id, side=TransactionSide.RIGHT, position=position)
            )

        self.db.add(match_group)
        await self.db.flush()

        await self.ledger.set_status(
            [t.id for t in transactions], TransactionStatus.MATCHED, match_group.id
        )

        await self.audit.create_audit_log(
            user_id=actor_id,
            action_type=AuditAction.MATCH,
            entity_type=AuditEntityType.MATCH,
            entity_id=match_group.id,
            after_state=match_group.to_snapshot(),
            change_summary=(
                f"Matched {len(left)} left and {len(right)} right transactions: "
                f"total left {decision.total_left}, total right {decision.total_right}, "
                f"difference {decision.difference}, status {decision.status.value}"
            ),
            context=context,
        )

        logger.info(
            f"Created match {match_group.id} ({decision.status.value}, difference {decision.difference})"
        )
        return match_group

    # ===========================================
    # READ
    # ===========================================

    async def get_match(self, match_id: uuid.UUID, for_update: bool = False) -> MatchGroup:
        """Load a match group or raise MatchNotFoundException."""
        query = select(MatchGroup).where(MatchGroup.id == match_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        match_group = result.scalar_one_or_none()
        if match_group is None:
            raise MatchNotFoundException(match_id)
        return match_group

    async def get_matches(self, status: Optional[MatchStatus] = None) -> List[MatchGroup]:
        """Match groups, newest first."""
        query = select(MatchGroup)
        if status:
            query = query.where(MatchGroup.status == MatchStatus(status))
        query = query.order_by(MatchGroup.created_at.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_reconciliation_summary(self) -> Dict[str, Any]:
        """Counts and absolute values by side/status, plus match statistics."""
        txn_rows = await self.db.execute(
            select(
                Transaction.side,
                Transaction.status,
                func.count(Transaction.id).label("count"),
                func.sum(func.abs(Transaction.amount), type_=Numeric(18, 2)).label("total"),
            ).group_by(Transaction.side, Transaction.status)
        )

        sides: Dict[str, Dict[str, Any]] = {
            side.value: {
                status.value: {"count": 0, "value": Decimal("0.00")}
                for status in TransactionStatus
            }
            for side in TransactionSide
        }
        for row in txn_rows:
            sides[row.side.value][row.status.value] = {
                "count": row.count,
                "value": to_money(row.total or 0),
            }

        match_rows = await self.db.execute(
            select(MatchGroup.status, func.count(MatchGroup.id).label("count"))
            .group_by(MatchGroup.status)
        )
        matches_by_status = {status.value: 0 for status in MatchStatus}
        for row in match_rows:
            matches_by_status[row.status.value] = row.count

        pending_adjustments = await self.db.scalar(
            select(func.coalesce(func.sum(MatchGroup.adjustment), 0))
            .where(MatchGroup.status == MatchStatus.PENDING_APPROVAL)
        )

        total_count = sum(v["count"] for side in sides.values() for v in side.values())
        matched_count = sum(side[TransactionStatus.MATCHED.value]["count"] for side in sides.values())

        return {
            "transactions": sides,
            "total_transactions": total_count,
            "matched_transactions": matched_count,
            "unmatched_transactions": total_count - matched_count,
            "matches_by_status": matches_by_status,
            "pending_adjustment_total": to_money(pending_adjustments or 0),
        }

    # ===========================================
    # APPROVE
    # ===========================================

    async def approve_match(
        self,
        match_id: uuid.UUID,
        approver_id: str,
        allow_self_approval: bool = False,
        expected_version: Optional[int] = None,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> MatchGroup:
        """
        Approve a pending match.

        The creator of a match may not approve it unless the permission
        collaborator grants the self-approval override.
        """
        match_group = await self.get_match(match_id, for_update=True)

        if expected_version is not None and expected_version != match_group.version:
            raise StaleVersionException(match_id, expected_version, match_group.version)

        if match_group.status == MatchStatus.APPROVED:
            raise AlreadyApprovedException(match_id)

        if approver_id == match_group.match_by_user_id and not allow_self_approval:
            logger.warning(f"Self-approval of match {match_id} by {approver_id} rejected")
            raise ConflictOfInterestException(match_id, approver_id)

        before = match_group.to_snapshot()
        loaded_version = match_group.version

        match_group.status = MatchStatus.APPROVED
        match_group.approved_by_id = approver_id
        match_group.approved_at = utc_now()

        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise StaleVersionException(match_id, loaded_version) from exc

        await self.audit.create_audit_log(
            user_id=approver_id,
            action_type=AuditAction.APPROVE,
            entity_type=AuditEntityType.MATCH,
            entity_id=match_group.id,
            before_state=before,
            after_state=match_group.to_snapshot(),
            change_summary=(
                f"Approved match {match_group.id} with adjustment "
                f"{match_group.adjustment if match_group.adjustment is not None else '0.00'}"
            ),
            justification=justification,
            context=context,
        )

        logger.info(f"Match {match_group.id} approved by {approver_id} (version {match_group.version})")
        return match_group

    # ===========================================
    # UPDATE COMMENT
    # ===========================================

    async def update_match_comment(
        self,
        match_id: uuid.UUID,
        comment: Optional[str],
        actor_id: str,
        expected_version: Optional[int] = None,
        context: Optional[RequestContext] = None,
    ) -> MatchGroup:
        """Replace a match's comment; blocked in closed periods."""
        match_group = await self.get_match(match_id, for_update=True)

        if expected_version is not None and expected_version != match_group.version:
            raise StaleVersionException(match_id, expected_version, match_group.version)

        members = await self.ledger.fetch_by_ids(match_group.transaction_ids)
        await self.periods.ensure_dates_open(
            (t.transaction_date for t in members), operation="comment update"
        )

        old_comment = match_group.comment
        loaded_version = match_group.version
        match_group.comment = comment.strip() if comment and comment.strip() else None

        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise StaleVersionException(match_id, loaded_version) from exc

        await self.audit.create_audit_log(
            user_id=actor_id,
            action_type=AuditAction.UPDATE,
            entity_type=AuditEntityType.MATCH,
            entity_id=match_group.id,
            before_state={"comment": old_comment, "version": loaded_version},
            after_state={"comment": match_group.comment, "version": match_group.version},
            change_summary=f"Updated comment for match {match_group.id}",
            context=context,
        )
        return match_group

    # ===========================================
    # UNMATCH
    # ===========================================

    async def unmatch(
        self,
        match_id: uuid.UUID,
        actor_id: str,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> None:
        """
        Delete a match group and release its transactions.

        The audit entry carries the full before-state because the group
        row ceases to exist.
        """
        match_group = await self.get_match(match_id, for_update=True)
        member_ids = match_group.transaction_ids
        members = await self.ledger.fetch_by_ids(member_ids, for_update=True)

        await self.periods.ensure_dates_open(
            (t.transaction_date for t in members), operation="unmatching"
        )

        before = match_group.to_snapshot()
        before["transactions"] = [t.to_snapshot() for t in members]
        loaded_version = match_group.version

        await self.ledger.set_status(member_ids, TransactionStatus.UNMATCHED, None)
        await self.db.delete(match_group)

        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise StaleVersionException(match_id, loaded_version) from exc

        await self.audit.create_audit_log(
            user_id=actor_id,
            action_type=AuditAction.UNMATCH,
            entity_type=AuditEntityType.MATCH,
            entity_id=match_id,
            before_state=before,
            change_summary=(
                f"Unmatched group {match_id}: released {len(member_ids)} transactions "
                f"(total left {before['total_left']}, total right {before['total_right']}, "
                f"difference {before['difference']})"
            ),
            justification=justification,
            context=context,
        )

        logger.info(f"Match {match_id} unmatched by {actor_id}")

    async def batch_unmatch(
        self,
        match_ids: Sequence[uuid.UUID],
        actor_id: str,
        justification: Optional[str] = None,
        context: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """
        Unmatch several groups, skipping missing or period-locked ones.

        Skips are decided before any write for that group, so a skipped
        group leaves no partial state.
        """
        unmatched: List[uuid.UUID] = []
        skipped: List[Dict[str, str]] = []

        for match_id in dict.fromkeys(match_ids):
            try:
                await self.unmatch(match_id, actor_id, justification=justification, context=context)
            except (MatchNotFoundException, PeriodClosedException) as exc:
                skipped.append({"match_id": str(match_id), "reason": exc.code.value})
                continue
            unmatched.append(match_id)

        logger.info(f"Batch unmatch by {actor_id}: {len(unmatched)} unmatched, {len(skipped)} skipped")
        return {"unmatched": unmatched, "skipped": skipped}
