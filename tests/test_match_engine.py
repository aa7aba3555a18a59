"""
Reconciliation Ledger - Match Engine Tests

Tests cover:
1. Approval routing (zero difference, adjustment limits)
2. Separation of duties on approval
3. Selection validation
4. Unmatch
5. Optimistic concurrency
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError

from recon_ledger.database import build_session_factory
from recon_ledger.models.audit import AuditAction, AuditEntityType
from recon_ledger.models.match import MatchGroup, MatchStatus
from recon_ledger.models.transaction import TransactionStatus
from recon_ledger.services.match_engine import decide_match
from recon_ledger.services.reconciliation_service import ActorContext, ReconciliationService
from recon_ledger.utils.error_handling import (
    AlreadyApprovedException,
    AlreadyMatchedException,
    ConflictOfInterestException,
    EmptySelectionException,
    InvalidSelectionException,
    MatchNotFoundException,
    StaleVersionException,
    TransactionNotFoundException,
)


class _Line:
    def __init__(self, amount: str):
        self.absolute_amount = abs(Decimal(amount))


# ===========================================
# 1. ROUTING
# ===========================================

class TestDecideMatch:
    """Pure routing rules"""

    def test_zero_difference_is_approved_without_adjustment(self):
        decision = decide_match([_Line("150.00")], [_Line("100.00"), _Line("50.00")], Decimal("0"))

        assert decision.status == MatchStatus.APPROVED
        assert decision.difference == Decimal("0.00")
        assert decision.adjustment is None

    def test_signs_are_ignored(self):
        decision = decide_match([_Line("-75.00")], [_Line("75.00")], Decimal("0"))

        assert decision.total_left == Decimal("75.00")
        assert decision.difference == Decimal("0.00")

    def test_difference_within_limit_is_auto_approved(self):
        decision = decide_match([_Line("110.00")], [_Line("100.00")], Decimal("10.00"))

        assert decision.status == MatchStatus.APPROVED
        assert decision.adjustment == Decimal("10.00")

    def test_difference_over_limit_needs_approval(self):
        decision = decide_match([_Line("110.01")], [_Line("100.00")], Decimal("10.00"))

        assert decision.status == MatchStatus.PENDING_APPROVAL
        assert decision.adjustment == Decimal("10.01")

    def test_unlimited_actor_approves_any_difference(self):
        decision = decide_match([_Line("1000000.00")], [_Line("1.00")], None)

        assert decision.status == MatchStatus.APPROVED
        assert decision.adjustment == Decimal("999999.00")


class TestCreateMatch:
    """Tests for match creation"""

    @pytest.mark.asyncio
    async def test_exact_match_is_approved(self, service, analyst, make_transactions):
        left, right_a, right_b = await make_transactions(
            ("LEFT", "150.00"), ("RIGHT", "100.00"), ("RIGHT", "50.00")
        )

        match = await service.create_match([left.id], [right_a.id, right_b.id], analyst)

        assert match.status == MatchStatus.APPROVED
        assert match.total_left == Decimal("150.00")
        assert match.total_right == Decimal("150.00")
        assert match.difference == Decimal("0.00")
        assert match.adjustment is None
        assert match.match_by_user_id == "analyst-1"
        assert match.version == 1
        assert match.left_transaction_ids == [left.id]
        assert match.right_transaction_ids == [right_a.id, right_b.id]

        for txn_id in (left.id, right_a.id, right_b.id):
            txn = await service.get_transaction(txn_id)
            assert txn.status == TransactionStatus.MATCHED
            assert txn.match_id == match.id

    @pytest.mark.asyncio
    async def test_match_writes_one_audit_entry(self, service, analyst, make_transactions):
        left, right = await make_transactions(("LEFT", "20.00"), ("RIGHT", "20.00"))

        match = await service.create_match([left.id], [right.id], analyst, comment="  rent  ")

        trail = await service.get_entity_audit_trail(AuditEntityType.MATCH, match.id)
        assert len(trail) == 1
        assert trail[0].action_type == AuditAction.MATCH
        assert trail[0].user_id == "analyst-1"
        assert trail[0].after_state["status"] == "APPROVED"
        assert "difference 0.00" in trail[0].change_summary
        assert match.comment == "rent"

    @pytest.mark.asyncio
    async def test_difference_over_limit_is_pending(self, service, analyst, make_transactions):
        left, right = await make_transactions(("LEFT", "200.00"), ("RIGHT", "150.00"))

        match = await service.create_match([left.id], [right.id], analyst)

        assert match.status == MatchStatus.PENDING_APPROVAL
        assert match.difference == Decimal("50.00")
        assert match.adjustment == Decimal("50.00")
        # Pending matches still lock their transactions
        assert (await service.get_transaction(left.id)).status == TransactionStatus.MATCHED

    @pytest.mark.asyncio
    async def test_manager_limit_boundary(self, service, manager, make_transactions):
        l1, r1, l2, r2 = await make_transactions(
            ("LEFT", "600.00"), ("RIGHT", "100.00"),
            ("LEFT", "600.01"), ("RIGHT", "100.00"),
        )

        at_limit = await service.create_match([l1.id], [r1.id], manager)
        over_limit = await service.create_match([l2.id], [r2.id], manager)

        assert at_limit.status == MatchStatus.APPROVED
        assert at_limit.adjustment == Decimal("500.00")
        assert over_limit.status == MatchStatus.PENDING_APPROVAL

    @pytest.mark.asyncio
    async def test_auditor_cannot_auto_approve_any_difference(self, service, auditor, make_transactions):
        left, right = await make_transactions(("LEFT", "10.01"), ("RIGHT", "10.00"))

        match = await service.create_match([left.id], [right.id], auditor)

        assert match.status == MatchStatus.PENDING_APPROVAL


# ===========================================
# 2. APPROVAL
# ===========================================

class TestApproveMatch:
    """Tests for the approval workflow"""

    @pytest.mark.asyncio
    async def test_second_actor_approves(self, service, analyst, manager, make_transactions):
        left, right = await make_transactions(("LEFT", "200.00"), ("RIGHT", "150.00"))
        match = await service.create_match([left.id], [right.id], analyst)

        approved = await service.approve_match(match.id, manager, justification="Bank fee")

        assert approved.status == MatchStatus.APPROVED
        assert approved.approved_by_id == "manager-1"
        assert approved.approved_at is not None
        assert approved.version == 2

        trail = await service.get_entity_audit_trail(AuditEntityType.MATCH, match.id)
        assert [e.action_type for e in trail] == [AuditAction.MATCH, AuditAction.APPROVE]
        assert trail[1].before_state["status"] == "PENDING_APPROVAL"
        assert trail[1].after_state["status"] == "APPROVED"
        assert trail[1].justification == "Bank fee"

    @pytest.mark.asyncio
    async def test_creator_cannot_approve_own_match(self, service, analyst, make_transactions):
        left, right = await make_transactions(("LEFT", "200.00"), ("RIGHT", "150.00"))
        match = await service.create_match([left.id], [right.id], analyst)
        match_id = match.id

        with pytest.raises(ConflictOfInterestException):
            await service.approve_match(match_id, analyst)

        reloaded = await service.get_match(match_id)
        assert reloaded.status == MatchStatus.PENDING_APPROVAL
        assert reloaded.approved_by_id is None

    @pytest.mark.asyncio
    async def test_self_approval_override(self, service, auditor, make_transactions):
        left, right = await make_transactions(("LEFT", "10.00"), ("RIGHT", "20.00"))
        # The auditor's zero limit leaves the match pending
        match = await service.create_match([left.id], [right.id], auditor)
        override = ActorContext(actor_id="auditor-1", allow_self_approval=True)

        approved = await service.approve_match(match.id, override)

        assert approved.status == MatchStatus.APPROVED
        assert approved.approved_by_id == "auditor-1"

    @pytest.mark.asyncio
    async def test_admin_role_grants_override(self, admin):
        assert admin.allow_self_approval is True
        assert admin.adjustment_limit is None

    @pytest.mark.asyncio
    async def test_cannot_approve_twice(self, service, analyst, manager, make_transactions):
        left, right = await make_transactions(("LEFT", "200.00"), ("RIGHT", "150.00"))
        match = await service.create_match([left.id], [right.id], analyst)
        match_id = match.id
        await service.approve_match(match_id, manager)

        with pytest.raises(AlreadyApprovedException):
            await service.approve_match(match_id, manager)

    @pytest.mark.asyncio
    async def test_auto_approved_match_cannot_be_approved(self, service, analyst, manager, make_transactions):
        left, right = await make_transactions(("LEFT", "5.00"), ("RIGHT", "5.00"))
        match = await service.create_match([left.id], [right.id], analyst)
        match_id = match.id

        with pytest.raises(AlreadyApprovedException):
            await service.approve_match(match_id, manager)

    @pytest.mark.asyncio
    async def test_approve_unknown_match(self, service, manager):
        with pytest.raises(MatchNotFoundException):
            await service.approve_match(uuid.uuid4(), manager)


# ===========================================
# 3. VALIDATION
# ===========================================

class TestMatchValidation:
    """Tests for rejected selections"""

    @pytest.mark.asyncio
    async def test_empty_left_side(self, service, analyst, make_transactions):
        (right,) = await make_transactions(("RIGHT", "1.00"))

        with pytest.raises(EmptySelectionException) as exc_info:
            await service.create_match([], [right.id], analyst)

        assert exc_info.value.details["side"] == "LEFT"

    @pytest.mark.asyncio
    async def test_empty_right_side(self, service, analyst, make_transactions):
        (left,) = await make_transactions(("LEFT", "1.00"))

        with pytest.raises(EmptySelectionException):
            await service.create_match([left.id], [], analyst)

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, service, analyst, make_transactions):
        (left,) = await make_transactions(("LEFT", "1.00"))
        missing = uuid.uuid4()

        with pytest.raises(TransactionNotFoundException) as exc_info:
            await service.create_match([left.id], [missing], analyst)

        assert exc_info.value.missing_ids == [str(missing)]

    @pytest.mark.asyncio
    async def test_already_matched(self, service, analyst, make_transactions):
        left, right_a, right_b = await make_transactions(
            ("LEFT", "10.00"), ("RIGHT", "10.00"), ("RIGHT", "10.00")
        )
        left_id, right_b_id = left.id, right_b.id
        await service.create_match([left_id], [right_a.id], analyst)

        with pytest.raises(AlreadyMatchedException) as exc_info:
            await service.create_match([left_id], [right_b_id], analyst)

        assert exc_info.value.transaction_ids == [str(left_id)]
        assert (await service.get_transaction(right_b_id)).status == TransactionStatus.UNMATCHED

    @pytest.mark.asyncio
    async def test_duplicate_selection(self, service, analyst, make_transactions):
        left, right = await make_transactions(("LEFT", "10.00"), ("RIGHT", "20.00"))

        with pytest.raises(InvalidSelectionException):
            await service.create_match([left.id, left.id], [right.id], analyst)

    @pytest.mark.asyncio
    async def test_same_transaction_on_both_sides(self, service, analyst, make_transactions):
        left, right = await make_transactions(("LEFT", "10.00"), ("RIGHT", "20.00"))

        with pytest.raises(InvalidSelectionException):
            await service.create_match([left.id], [left.id, right.id], analyst)

    @pytest.mark.asyncio
    async def test_wrong_side(self, service, analyst, make_transactions):
        left_a, left_b = await make_transactions(("LEFT", "10.00"), ("LEFT", "10.00"))

        with pytest.raises(InvalidSelectionException):
            await service.create_match([left_a.id], [left_b.id], analyst)

    @pytest.mark.asyncio
    async def test_rejected_match_leaves_no_trace(self, service, analyst, make_transactions):
        (left,) = await make_transactions(("LEFT", "10.00"))

        with pytest.raises(TransactionNotFoundException):
            await service.create_match([left.id], [uuid.uuid4()], analyst)

        assert await service.get_matches() == []
        assert await service.get_audit_logs() == []


# ===========================================
# 4. UNMATCH
# ===========================================

class TestUnmatch:
    """Tests for unmatching"""

    @pytest.mark.asyncio
    async def test_unmatch_releases_transactions(self, service, analyst, make_transactions):
        left, right = await make_transactions(("LEFT", "30.00"), ("RIGHT", "30.00"))
        left_id, right_id = left.id, right.id
        match = await service.create_match([left_id], [right_id], analyst)
        match_id = match.id

        await service.unmatch(match_id, analyst, justification="Wrong pairing")

        with pytest.raises(MatchNotFoundException):
            await service.get_match(match_id)
        for txn_id in (left_id, right_id):
            txn = await service.get_transaction(txn_id)
            assert txn.status == TransactionStatus.UNMATCHED
            assert txn.match_id is None

    @pytest.mark.asyncio
    async def test_unmatch_audit_keeps_before_state(self, service, analyst, make_transactions):
        left, right = await make_transactions(("LEFT", "30.00"), ("RIGHT", "15.00"))
        match = await service.create_match([left.id], [right.id], analyst)
        match_id = match.id

        await service.unmatch(match_id, analyst)

        trail = await service.get_entity_audit_trail(AuditEntityType.MATCH, match_id)
        assert [e.action_type for e in trail] == [AuditAction.MATCH, AuditAction.UNMATCH]
        unmatch_entry = trail[1]
        assert unmatch_entry.after_state is None
        assert unmatch_entry.before_state["id"] == str(match_id)
        assert unmatch_entry.before_state["status"] == "PENDING_APPROVAL"
        assert len(unmatch_entry.before_state["transactions"]) == 2

    @pytest.mark.asyncio
    async def test_released_transactions_can_be_rematched(self, service, analyst, make_transactions):
        left, right = await make_transactions(("LEFT", "30.00"), ("RIGHT", "30.00"))
        left_id, right_id = left.id, right.id
        first = await service.create_match([left_id], [right_id], analyst)
        first_id = first.id
        await service.unmatch(first_id, analyst)

        second = await service.create_match([left_id], [right_id], analyst)

        assert second.id != first_id
        assert (await service.get_transaction(left_id)).match_id == second.id

    @pytest.mark.asyncio
    async def test_unmatch_unknown_match(self, service, analyst):
        with pytest.raises(MatchNotFoundException):
            await service.unmatch(uuid.uuid4(), analyst)

    @pytest.mark.asyncio
    async def test_group_cannot_be_deleted_under_its_transactions(
        self, db_session, service, analyst, make_transactions
    ):
        left, right = await make_transactions(("LEFT", "30.00"), ("RIGHT", "30.00"))
        match = await service.create_match([left.id], [right.id], analyst)
        match_id, left_id = match.id, left.id
        groups = MatchGroup.__table__

        with pytest.raises(IntegrityError):
            await db_session.execute(delete(groups).where(groups.c.id == match_id))
        await db_session.rollback()

        assert (await service.get_transaction(left_id)).match_id == match_id

    @pytest.mark.asyncio
    async def test_chain_verifies_after_lifecycle(self, service, analyst, manager, make_transactions):
        left, right = await make_transactions(("LEFT", "200.00"), ("RIGHT", "150.00"))
        match = await service.create_match([left.id], [right.id], analyst)
        match_id = match.id
        await service.approve_match(match_id, manager)
        await service.unmatch(match_id, manager)

        result = await service.verify_audit_chain()

        assert result.valid is True
        # match, approve, unmatch
        assert result.entries_checked == 3


# ===========================================
# 5. CONCURRENCY
# ===========================================

class TestOptimisticConcurrency:
    """Tests for the version check"""

    @pytest.mark.asyncio
    async def test_stale_expected_version_is_rejected(self, service, analyst, manager, make_transactions):
        left, right = await make_transactions(("LEFT", "200.00"), ("RIGHT", "150.00"))
        match = await service.create_match([left.id], [right.id], analyst)
        match_id = match.id
        await service.update_match_comment(match_id, "checked", analyst, expected_version=1)

        with pytest.raises(StaleVersionException) as exc_info:
            await service.approve_match(match_id, manager, expected_version=1)

        assert exc_info.value.details["actual_version"] == 2
        assert (await service.get_match(match_id)).status == MatchStatus.PENDING_APPROVAL

    @pytest.mark.asyncio
    async def test_current_expected_version_is_accepted(self, service, analyst, manager, make_transactions):
        left, right = await make_transactions(("LEFT", "200.00"), ("RIGHT", "150.00"))
        match = await service.create_match([left.id], [right.id], analyst)

        approved = await service.approve_match(match.id, manager, expected_version=1)

        assert approved.version == 2

    @pytest.mark.asyncio
    async def test_comment_update_bumps_version(self, service, analyst, make_transactions):
        left, right = await make_transactions(("LEFT", "1.00"), ("RIGHT", "1.00"))
        match = await service.create_match([left.id], [right.id], analyst)

        updated = await service.update_match_comment(match.id, "Reviewed", analyst)

        assert updated.comment == "Reviewed"
        assert updated.version == 2
        trail = await service.get_entity_audit_trail(AuditEntityType.MATCH, match.id)
        assert trail[-1].action_type == AuditAction.UPDATE
        assert trail[-1].after_state == {"comment": "Reviewed", "version": 2}


class TestConcurrentWriters:
    """A second session commits between this session's read and its flush"""

    @staticmethod
    def _approve_elsewhere_after_load(service, test_engine, approver):
        other_sessions = build_session_factory(test_engine)
        load_group = service.engine.get_match

        async def _load(match_id, for_update=False):
            match_group = await load_group(match_id, for_update=for_update)
            async with other_sessions() as other:
                await ReconciliationService(other).approve_match(match_id, approver)
            return match_group

        return _load

    @pytest.mark.asyncio
    async def test_lost_approval_race_is_stale_version(
        self, test_engine, service, analyst, manager, admin, make_transactions, monkeypatch
    ):
        left, right = await make_transactions(("LEFT", "200.00"), ("RIGHT", "150.00"))
        match = await service.create_match([left.id], [right.id], analyst)
        match_id = match.id
        monkeypatch.setattr(
            service.engine, "get_match", self._approve_elsewhere_after_load(service, test_engine, admin)
        )

        with pytest.raises(StaleVersionException) as exc_info:
            await service.approve_match(match_id, manager)

        assert exc_info.value.details["expected_version"] == 1
        monkeypatch.undo()
        current = await service.get_match(match_id)
        assert current.approved_by_id == "admin-1"
        assert current.version == 2
        trail = await service.get_entity_audit_trail(AuditEntityType.MATCH, match_id)
        assert [e.action_type for e in trail] == [AuditAction.MATCH, AuditAction.APPROVE]

    @pytest.mark.asyncio
    async def test_lost_unmatch_race_keeps_group(
        self, test_engine, service, analyst, manager, make_transactions, monkeypatch
    ):
        left, right = await make_transactions(("LEFT", "200.00"), ("RIGHT", "150.00"))
        match = await service.create_match([left.id], [right.id], analyst)
        match_id, left_id = match.id, left.id
        monkeypatch.setattr(
            service.engine, "get_match", self._approve_elsewhere_after_load(service, test_engine, manager)
        )

        with pytest.raises(StaleVersionException):
            await service.unmatch(match_id, analyst)

        monkeypatch.undo()
        assert (await service.get_match(match_id)).status == MatchStatus.APPROVED
        released = await service.get_transaction(left_id)
        assert released.status == TransactionStatus.MATCHED
        assert released.match_id == match_id
