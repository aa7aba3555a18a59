"""Reconciliation ledger - transactions, match groups, audit chain, periods

Revision ID: 20261018_0900_reconciliation_ledger
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '20261018_0900_reconciliation_ledger'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


transaction_side = sa.Enum('LEFT', 'RIGHT', name='transactionside')
transaction_status = sa.Enum('UNMATCHED', 'MATCHED', name='transactionstatus')
match_status = sa.Enum('PENDING_APPROVAL', 'APPROVED', name='matchstatus')
audit_action = sa.Enum(
    'CREATE', 'UPDATE', 'DELETE', 'APPROVE', 'MATCH', 'UNMATCH',
    'IMPORT', 'EXPORT', 'LOGIN', 'LOGOUT',
    name='auditaction',
)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # =====================================================
    # MATCH GROUPS
    # =====================================================
    op.create_table(
        'match_groups',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('total_left', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('total_right', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('difference', sa.Numeric(precision=18, scale=2), nullable=False, comment='|total_left - total_right|'),
        sa.Column('adjustment', sa.Numeric(precision=18, scale=2), nullable=True, comment='Tolerated difference; set only when difference > 0'),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('status', match_status, nullable=False),
        sa.Column('match_by_user_id', sa.String(100), nullable=False),
        sa.Column('approved_by_id', sa.String(100), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_match_groups'),
    )
    op.create_index('ix_match_groups_match_by_user_id', 'match_groups', ['match_by_user_id'])
    op.create_index('ix_match_groups_approved_by_id', 'match_groups', ['approved_by_id'])
    op.create_index('ix_match_groups_status_created', 'match_groups', ['status', 'created_at'])

    # =====================================================
    # TRANSACTIONS
    # =====================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False, comment='Signed amount as imported'),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('side', transaction_side, nullable=False),
        sa.Column('status', transaction_status, nullable=False),
        sa.Column('match_id', sa.Uuid(), nullable=True),
        sa.Column('imported_by_id', sa.String(100), nullable=True, comment='Actor who imported the record'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_transactions'),
        sa.ForeignKeyConstraint(
            ['match_id'], ['match_groups.id'],
            name='fk_transactions_match_id_match_groups', ondelete='RESTRICT',
        ),
        sa.CheckConstraint(
            "(status = 'MATCHED') = (match_id IS NOT NULL)",
            name='ck_transactions_status_match_id',
        ),
    )
    op.create_index('ix_transactions_transaction_date', 'transactions', ['transaction_date'])
    op.create_index('ix_transactions_status', 'transactions', ['status'])
    op.create_index('ix_transactions_match_id', 'transactions', ['match_id'])
    op.create_index('ix_transactions_date_side_status', 'transactions', ['transaction_date', 'side', 'status'])

    # =====================================================
    # MATCH GROUP MEMBERS
    # A transaction belongs to at most one live group
    # =====================================================
    op.create_table(
        'match_group_members',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('match_id', sa.Uuid(), nullable=False),
        sa.Column('transaction_id', sa.Uuid(), nullable=False),
        sa.Column('side', transaction_side, nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_match_group_members'),
        sa.ForeignKeyConstraint(
            ['match_id'], ['match_groups.id'],
            name='fk_match_group_members_match_id_match_groups', ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['transaction_id'], ['transactions.id'],
            name='fk_match_group_members_transaction_id_transactions', ondelete='RESTRICT',
        ),
        sa.UniqueConstraint('transaction_id', name='uq_match_group_members_transaction_id'),
    )
    op.create_index('ix_match_group_members_match_id', 'match_group_members', ['match_id'])

    # =====================================================
    # AUDIT CHAIN
    # =====================================================
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('session_id', sa.String(100), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('device_fingerprint', sa.String(255), nullable=True),
        sa.Column('geolocation', sa.String(255), nullable=True),
        sa.Column('action_type', audit_action, nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False, comment='Type of record affected (MATCH, TRANSACTION, ...)'),
        sa.Column('entity_id', sa.String(100), nullable=True),
        sa.Column('before_state', sa.JSON(), nullable=True),
        sa.Column('after_state', sa.JSON(), nullable=True),
        sa.Column('change_summary', sa.Text(), nullable=False),
        sa.Column('justification', sa.Text(), nullable=True),
        sa.Column('previous_hash', sa.String(128), nullable=True),
        sa.Column('current_hash', sa.String(128), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_audit_logs'),
        sa.UniqueConstraint('sequence_number', name='uq_audit_logs_sequence_number'),
    )
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_timestamp_user_action', 'audit_logs', ['timestamp', 'user_id', 'action_type'])
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity_type', 'entity_id'])

    op.create_table(
        'audit_chain_head',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('last_sequence', sa.Integer(), nullable=False),
        sa.Column('last_hash', sa.String(128), nullable=True),
        sa.Column('last_timestamp', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_audit_chain_head'),
    )
    op.bulk_insert(
        sa.table(
            'audit_chain_head',
            sa.column('id', sa.Integer()),
            sa.column('last_sequence', sa.Integer()),
        ),
        [{'id': 1, 'last_sequence': 0}],
    )

    # =====================================================
    # FINANCIAL PERIODS
    # =====================================================
    op.create_table(
        'financial_periods',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_closed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_financial_periods'),
        sa.UniqueConstraint('name', name='uq_financial_periods_name'),
    )
    op.create_index('ix_financial_periods_is_closed', 'financial_periods', ['is_closed'])
    op.create_index('ix_financial_periods_range', 'financial_periods', ['start_date', 'end_date'])


def downgrade() -> None:
    op.drop_table('financial_periods')
    op.drop_table('audit_chain_head')
    op.drop_table('audit_logs')
    op.drop_table('match_group_members')
    op.drop_table('transactions')
    op.drop_table('match_groups')

    bind = op.get_bind()
    for enum_type in (audit_action, match_status, transaction_status, transaction_side):
        enum_type.drop(bind, checkfirst=True)
