"""
Reconciliation Ledger - Audit Chain Tests

Tests cover:
1. Appending entries and hash linkage
2. Tamper detection on any entry
3. Queries: filters, entity trail, actor activity
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from recon_ledger.models.audit import AuditAction, AuditChainHead, AuditEntityType, AuditLog
from recon_ledger.services.audit_chain_service import (
    AuditChainService,
    RequestContext,
    canonical_timestamp,
)


async def _append(service: AuditChainService, count: int, user_id: str = "analyst-1"):
    entries = []
    for i in range(count):
        entries.append(
            await service.create_audit_log(
                user_id=user_id,
                action_type=AuditAction.UPDATE,
                entity_type=AuditEntityType.MATCH,
                entity_id=f"match-{i}",
                change_summary=f"Change {i}",
            )
        )
    return entries


# ===========================================
# 1. APPEND
# ===========================================

class TestAuditChainAppend:
    """Tests for writing to the chain"""

    @pytest.mark.asyncio
    async def test_first_entry_has_no_previous_hash(self, db_session):
        service = AuditChainService(db_session)

        entry = await service.create_audit_log(
            user_id="analyst-1",
            action_type=AuditAction.CREATE,
            entity_type=AuditEntityType.PERIOD,
            change_summary="Created period",
        )

        assert entry.sequence_number == 1
        assert entry.previous_hash is None
        assert len(entry.current_hash) == 64

    @pytest.mark.asyncio
    async def test_entries_are_linked(self, db_session):
        service = AuditChainService(db_session)

        first, second, third = await _append(service, 3)

        assert second.previous_hash == first.current_hash
        assert third.previous_hash == second.current_hash
        assert [e.sequence_number for e in (first, second, third)] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_timestamps_strictly_increase(self, db_session):
        service = AuditChainService(db_session)

        entries = await _append(service, 5)

        stamps = [e.timestamp for e in entries]
        assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))

    @pytest.mark.asyncio
    async def test_hash_covers_stored_timestamp(self, db_session):
        service = AuditChainService(db_session)
        (entry,) = await _append(service, 1)

        assert service.recalculate_entry_hash(entry) == entry.current_hash

        shifted = service.calculate_hash(
            user_id=entry.user_id,
            action_type=entry.action_type.value,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            change_summary=entry.change_summary,
            previous_hash=entry.previous_hash,
            timestamp=entry.timestamp + timedelta(microseconds=1),
        )
        assert shifted != entry.current_hash

    @pytest.mark.asyncio
    async def test_request_context_is_stored(self, db_session):
        service = AuditChainService(db_session)
        context = RequestContext(
            session_id="sess-1",
            ip_address="10.0.0.7",
            device_fingerprint="fp-abc",
            geolocation="Lagos, NG",
        )

        entry = await service.create_audit_log(
            user_id="analyst-1",
            action_type=AuditAction.MATCH,
            entity_type=AuditEntityType.MATCH,
            change_summary="Matched",
            context=context,
        )

        assert entry.session_id == "sess-1"
        assert entry.ip_address == "10.0.0.7"
        assert entry.device_fingerprint == "fp-abc"
        assert entry.geolocation == "Lagos, NG"

    @pytest.mark.asyncio
    async def test_chain_continues_across_commits(self, db_session):
        service = AuditChainService(db_session)
        (first,) = await _append(service, 1)
        await db_session.commit()

        (second,) = await _append(AuditChainService(db_session), 1)
        await db_session.commit()

        assert second.sequence_number == 2
        assert second.previous_hash == first.current_hash

    @pytest.mark.asyncio
    async def test_seeded_head_starts_the_chain(self, db_session):
        db_session.add(AuditChainHead(id=AuditChainHead.CHAIN_ID, last_sequence=0))
        await db_session.commit()
        service = AuditChainService(db_session)

        first, second = await _append(service, 2)
        await db_session.commit()

        assert first.sequence_number == 1
        assert first.previous_hash is None
        assert second.previous_hash == first.current_hash
        assert (await service.verify_audit_chain()).valid is True

    def test_canonical_timestamp_ignores_representation(self):
        aware = datetime(2026, 1, 15, 12, 0, 0, 5, tzinfo=timezone.utc)
        naive = datetime(2026, 1, 15, 12, 0, 0, 5)
        shifted = datetime(2026, 1, 15, 13, 0, 0, 5, tzinfo=timezone(timedelta(hours=1)))

        assert canonical_timestamp(aware) == "2026-01-15T12:00:00.000005"
        assert canonical_timestamp(naive) == canonical_timestamp(aware)
        assert canonical_timestamp(shifted) == canonical_timestamp(aware)


# ===========================================
# 2. VERIFY
# ===========================================

class TestAuditChainVerify:
    """Tests for tamper detection"""

    @pytest.mark.asyncio
    async def test_empty_chain_is_valid(self, db_session):
        result = await AuditChainService(db_session).verify_audit_chain()

        assert result.valid is True
        assert result.errors == []
        assert result.entries_checked == 0

    @pytest.mark.asyncio
    async def test_intact_chain_verifies(self, db_session):
        service = AuditChainService(db_session)
        await _append(service, 4)
        await db_session.commit()

        result = await service.verify_audit_chain()

        assert result.valid is True
        assert result.entries_checked == 4

    @pytest.mark.asyncio
    async def test_verification_is_idempotent(self, db_session):
        service = AuditChainService(db_session)
        await _append(service, 3)
        await db_session.commit()

        first = await service.verify_audit_chain()
        second = await service.verify_audit_chain()

        assert first.to_dict() == second.to_dict()

    @pytest.mark.asyncio
    async def test_edited_middle_entry_is_detected(self, db_session):
        service = AuditChainService(db_session)
        entries = await _append(service, 3)
        await db_session.commit()
        tampered_id = entries[1].id

        await db_session.execute(
            update(AuditLog)
            .where(AuditLog.id == tampered_id)
            .values(change_summary="Nothing to see here")
        )
        await db_session.commit()

        result = await service.verify_audit_chain()

        assert result.valid is False
        assert result.entries_checked == 3
        assert len(result.errors) == 1
        assert result.errors[0].startswith(f"Hash mismatch at log {tampered_id}")

    @pytest.mark.asyncio
    async def test_edited_first_entry_is_detected(self, db_session):
        service = AuditChainService(db_session)
        entries = await _append(service, 2)
        await db_session.commit()
        first_id = entries[0].id

        await db_session.execute(
            update(AuditLog).where(AuditLog.id == first_id).values(user_id="someone-else")
        )
        await db_session.commit()

        result = await service.verify_audit_chain()

        assert result.valid is False
        assert any(str(first_id) in error for error in result.errors)

    @pytest.mark.asyncio
    async def test_broken_link_is_detected(self, db_session):
        service = AuditChainService(db_session)
        entries = await _append(service, 3)
        await db_session.commit()
        relinked_id = entries[2].id

        await db_session.execute(
            update(AuditLog)
            .where(AuditLog.id == relinked_id)
            .values(previous_hash="0" * 64)
        )
        await db_session.commit()

        result = await service.verify_audit_chain()

        assert result.valid is False
        assert any(
            e.startswith(f"Chain broken at log {relinked_id}") for e in result.errors
        )
        # previous_hash is hashed too, so the entry's own hash no longer matches
        assert any(
            e.startswith(f"Hash mismatch at log {relinked_id}") for e in result.errors
        )

    @pytest.mark.asyncio
    async def test_all_violations_are_reported(self, db_session):
        service = AuditChainService(db_session)
        entries = await _append(service, 4)
        await db_session.commit()

        for entry_id in (entries[0].id, entries[3].id):
            await db_session.execute(
                update(AuditLog).where(AuditLog.id == entry_id).values(change_summary="edited")
            )
        await db_session.commit()

        result = await service.verify_audit_chain()

        mismatches = [e for e in result.errors if e.startswith("Hash mismatch")]
        assert len(mismatches) == 2


# ===========================================
# 3. QUERIES
# ===========================================

class TestAuditChainQueries:
    """Tests for reading the chain"""

    @pytest.mark.asyncio
    async def test_get_audit_logs_newest_first_with_filters(self, db_session):
        service = AuditChainService(db_session)
        await _append(service, 2, user_id="analyst-1")
        await service.create_audit_log(
            user_id="manager-1",
            action_type=AuditAction.APPROVE,
            entity_type=AuditEntityType.MATCH,
            entity_id="match-0",
            change_summary="Approved",
        )
        await db_session.commit()

        everything = await service.get_audit_logs()
        approvals = await service.get_audit_logs(action_type=AuditAction.APPROVE)
        by_analyst = await service.get_audit_logs(user_id="analyst-1")
        for_match_0 = await service.get_audit_logs(entity_id="match-0")

        assert [e.sequence_number for e in everything] == [3, 2, 1]
        assert [e.user_id for e in approvals] == ["manager-1"]
        assert len(by_analyst) == 2
        assert len(for_match_0) == 2

    @pytest.mark.asyncio
    async def test_get_audit_logs_limit(self, db_session):
        service = AuditChainService(db_session)
        await _append(service, 5)
        await db_session.commit()

        assert len(await service.get_audit_logs(limit=2)) == 2
        assert len(await service.get_audit_logs(limit=0)) == 1

    @pytest.mark.asyncio
    async def test_get_audit_logs_time_window(self, db_session):
        service = AuditChainService(db_session)
        entries = await _append(service, 3)
        await db_session.commit()

        window = await service.get_audit_logs(
            start_date=entries[1].timestamp,
            end_date=entries[2].timestamp,
        )

        assert {e.id for e in window} == {entries[1].id, entries[2].id}

    @pytest.mark.asyncio
    async def test_entity_audit_trail_is_chronological(self, db_session):
        service = AuditChainService(db_session)
        for summary in ("Created", "Approved", "Unmatched"):
            await service.create_audit_log(
                user_id="analyst-1",
                action_type=AuditAction.UPDATE,
                entity_type=AuditEntityType.MATCH,
                entity_id="match-42",
                change_summary=summary,
            )
        await _append(service, 1)
        await db_session.commit()

        trail = await service.get_entity_audit_trail(AuditEntityType.MATCH, "match-42")

        assert [e.change_summary for e in trail] == ["Created", "Approved", "Unmatched"]

    @pytest.mark.asyncio
    async def test_user_activity_summary(self, db_session):
        service = AuditChainService(db_session)
        start = datetime.now(timezone.utc) - timedelta(minutes=1)
        await _append(service, 2, user_id="analyst-1")
        await service.create_audit_log(
            user_id="analyst-1",
            action_type=AuditAction.MATCH,
            entity_type=AuditEntityType.MATCH,
            change_summary="Matched",
        )
        await _append(service, 1, user_id="manager-1")
        await db_session.commit()
        end = datetime.now(timezone.utc) + timedelta(minutes=1)

        summary = await service.get_user_activity_summary("analyst-1", start, end)

        assert summary["total_actions"] == 3
        assert summary["actions_by_type"] == {"UPDATE": 2, "MATCH": 1}
        assert summary["recent_actions"][0].action_type == AuditAction.MATCH
        assert all(e.user_id == "analyst-1" for e in summary["recent_actions"])

    @pytest.mark.asyncio
    async def test_entries_are_persisted(self, db_session):
        service = AuditChainService(db_session)
        await _append(service, 2)
        await db_session.commit()

        rows = (await db_session.execute(select(AuditLog))).scalars().all()

        assert len(rows) == 2
