"""
Audit Chain Service
Implements a hash chain over the audit log for tamper evidence

Every mutating action appends an entry that is cryptographically linked to
the entry before it, so retroactive edits are detectable by re-walking the
chain.

Appends are serialized through the AuditChainHead row: the head is locked
(SELECT ... FOR UPDATE), the new entry takes the head's hash and sequence,
and the head advances, all inside the caller's database transaction.
"""

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from recon_ledger.config import settings
from recon_ledger.models.audit import AuditAction, AuditChainHead, AuditEntityType, AuditLog
from recon_ledger.models.base import as_utc, utc_now

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal, date, UUID and Enum types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


@dataclass
class RequestContext:
    """Request metadata recorded with every audit entry."""
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    device_fingerprint: Optional[str] = None
    geolocation: Optional[str] = None


@dataclass
class ChainVerificationResult:
    """Outcome of a full chain scan. Tampering is data, not an exception."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    entries_checked: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def canonical_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with microseconds and no offset, stable across backends."""
    return as_utc(value).replace(tzinfo=None).isoformat(timespec="microseconds")


def _enum_value(value: Union[str, Enum, None]) -> Optional[str]:
    if isinstance(value, Enum):
        return value.value
    return value


def _json_safe(state: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if state is None:
        return None
    return json.loads(json.dumps(state, cls=DecimalEncoder))


class AuditChainService:
    """
    Service for writing and verifying the hash-chained audit log.

    The service never commits; the caller's transaction makes the entry
    durable together with the change it describes.
    """

    HASH_ALGORITHM = settings.audit_hash_algorithm

    def __init__(self, db: AsyncSession):
        self.db = db

    # ===========================================
    # WRITE
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
        """
        Append an entry to the chain.

        There is no business validation here: auditability must not depend
        on the audit content being "correct". Only storage errors escape.
        """
        context = context or RequestContext()
        action = AuditAction(action_type)

        head = await self._lock_chain_head()

        sequence_number = head.last_sequence + 1
        previous_hash = head.last_hash

        # Strictly increasing timestamps keep timestamp order == chain order
        timestamp = utc_now()
        if head.last_timestamp is not None:
            last = as_utc(head.last_timestamp)
            if timestamp <= last:
                timestamp = last + timedelta(microseconds=1)

        entity_type_value = _enum_value(entity_type)
        entity_id_value = str(entity_id) if entity_id is not None else None

        current_hash = self.calculate_hash(
            user_id=user_id,
            action_type=action.value,
            entity_type=entity_type_value,
            entity_id=entity_id_value,
            change_summary=change_summary,
            previous_hash=previous_hash,
            timestamp=timestamp,
        )

        audit_log = AuditLog(
            sequence_number=sequence_number,
            timestamp=timestamp,
            user_id=user_id,
            session_id=context.session_id,
            ip_address=context.ip_address,
            device_fingerprint=context.device_fingerprint,
            geolocation=context.geolocation,
            action_type=action,
            entity_type=entity_type_value,
            entity_id=entity_id_value,
            before_state=_json_safe(before_state),
            after_state=_json_safe(after_state),
            change_summary=change_summary,
            justification=justification,
            previous_hash=previous_hash,
            current_hash=current_hash,
        )
        self.db.add(audit_log)

        head.last_sequence = sequence_number
        head.last_hash = current_hash
        head.last_timestamp = timestamp

        await self.db.flush()

        logger.info(
            f"Appended audit entry #{sequence_number}: {action.value} {entity_type_value} {entity_id_value}"
        )
        return audit_log

    async def _lock_chain_head(self) -> AuditChainHead:
        """
        Lock the chain tail marker for the rest of the transaction.

        The migration seeds the head row. Schemas built with create_all get
        it on first use, seeded from the newest existing entry so a log
        written before the head existed keeps its chain.
        """
        result = await self.db.execute(
            select(AuditChainHead)
            .where(AuditChainHead.id == AuditChainHead.CHAIN_ID)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        head = result.scalar_one_or_none()
        if head is not None:
            return head

        last_entry = await self._get_last_entry()
        head = AuditChainHead(
            id=AuditChainHead.CHAIN_ID,
            last_sequence=last_entry.sequence_number if last_entry else 0,
            last_hash=last_entry.current_hash if last_entry else None,
            last_timestamp=last_entry.timestamp if last_entry else None,
        )
        self.db.add(head)
        await self.db.flush()
        return head

    async def _get_last_entry(self) -> Optional[AuditLog]:
        """Get the last entry of the chain"""
        result = await self.db.execute(
            select(AuditLog).order_by(desc(AuditLog.sequence_number)).limit(1)
        )
        return result.scalar_one_or_none()

    def calculate_hash(
        self,
        user_id: str,
        action_type: str,
        entity_type: str,
        entity_id: Optional[str],
        change_summary: str,
        previous_hash: Optional[str],
        timestamp: datetime,
    ) -> str:
        """Calculate the hash of an entry's identifying fields"""
        data = {
            "user_id": user_id,
            "action_type": action_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "change_summary": change_summary,
            "previous_hash": previous_hash,
            "timestamp": canonical_timestamp(timestamp),
        }

        # Sort keys for consistent hashing
        json_str = json.dumps(data, sort_keys=True, cls=DecimalEncoder)

        return hashlib.new(self.HASH_ALGORITHM, json_str.encode("utf-8")).hexdigest()

    def recalculate_entry_hash(self, entry: AuditLog) -> str:
        """Recompute an entry's hash from its stored fields"""
        return self.calculate_hash(
            user_id=entry.user_id,
            action_type=entry.action_type.value,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            change_summary=entry.change_summary,
            previous_hash=entry.previous_hash,
            timestamp=entry.timestamp,
        )

    # ===========================================
    # VERIFY
    # ===========================================

    async def verify_audit_chain(self) -> ChainVerificationResult:
        """
        Walk the whole chain in timestamp order.

        Every entry's hash is recomputed and every link is checked. All
        violations are collected so one scan yields a full damage report.
        Read-only and idempotent.
        """
        result = await self.db.execute(
            select(AuditLog)
            .order_by(AuditLog.timestamp, AuditLog.sequence_number)
            .execution_options(populate_existing=True)
        )
        entries = result.scalars().all()

        errors: List[str] = []
        prior: Optional[AuditLog] = None

        for entry in entries:
            expected_previous = prior.current_hash if prior else None
            if entry.previous_hash != expected_previous:
                errors.append(
                    f"Chain broken at log {entry.id}: "
                    f"expected previous hash {expected_previous}, "
                    f"got {entry.previous_hash}"
                )

            expected_hash = self.recalculate_entry_hash(entry)
            if entry.current_hash != expected_hash:
                errors.append(
                    f"Hash mismatch at log {entry.id}: "
                    f"expected {expected_hash}, got {entry.current_hash}"
                )

            prior = entry

        verification = ChainVerificationResult(
            valid=not errors,
            errors=errors,
            entries_checked=len(entries),
        )

        if verification.valid:
            logger.info(f"Audit chain verified: {len(entries)} entries intact")
        else:
            logger.warning(
                f"Audit chain verification failed: {len(errors)} violations across {len(entries)} entries"
            )

        return verification

    # ===========================================
    # READ
    # ===========================================

    async def get_audit_logs(
        self,
        user_id: Optional[str] = None,
        action_type: Optional[AuditAction] = None,
        entity_type: Optional[Union[AuditEntityType, str]] = None,
        entity_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AuditLog]:
        """
        Get audit logs with optional filtering, newest first.

        Args:
            user_id: Filter by actor
            action_type: Filter by action type
            entity_type: Filter by entity type
            entity_id: Filter by specific entity
            start_date: Entries at or after this instant
            end_date: Entries at or before this instant
            limit: Maximum entries (defaults and caps come from settings)
        """
        if limit is None:
            limit = settings.audit_log_default_limit
        limit = max(1, min(limit, settings.audit_log_max_limit))

        query = select(AuditLog)

        if user_id:
            query = query.where(AuditLog.user_id == user_id)
        if action_type:
            query = query.where(AuditLog.action_type == AuditAction(action_type))
        if entity_type:
            query = query.where(AuditLog.entity_type == _enum_value(entity_type))
        if entity_id:
            query = query.where(AuditLog.entity_id == str(entity_id))
        if start_date:
            query = query.where(AuditLog.timestamp >= start_date)
        if end_date:
            query = query.where(AuditLog.timestamp <= end_date)

        query = query.order_by(
            AuditLog.timestamp.desc(), AuditLog.sequence_number.desc()
        ).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_entity_audit_trail(
        self,
        entity_type: Union[AuditEntityType, str],
        entity_id: Union[str, uuid.UUID],
    ) -> List[AuditLog]:
        """All entries for one record, oldest first"""
        result = await self.db.execute(
            select(AuditLog)
            .where(
                AuditLog.entity_type == _enum_value(entity_type),
                AuditLog.entity_id == str(entity_id),
            )
            .order_by(AuditLog.timestamp, AuditLog.sequence_number)
        )
        return list(result.scalars().all())

    async def get_user_activity_summary(
        self,
        user_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> Dict[str, Any]:
        """Get activity summary for a specific actor."""
        window = (
            AuditLog.user_id == user_id,
            AuditLog.timestamp >= start_date,
            AuditLog.timestamp <= end_date,
        )

        counts = await self.db.execute(
            select(AuditLog.action_type, func.count(AuditLog.id).label("count"))
            .where(*window)
            .group_by(AuditLog.action_type)
        )
        actions_by_type = {row.action_type.value: row.count for row in counts}

        recent = await self.db.execute(
            select(AuditLog)
            .where(*window)
            .order_by(AuditLog.timestamp.desc(), AuditLog.sequence_number.desc())
            .limit(settings.recent_actions_limit)
        )

        return {
            "total_actions": sum(actions_by_type.values()),
            "actions_by_type": actions_by_type,
            "recent_actions": list(recent.scalars().all()),
        }
