"""create points ledger tables

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a1c2e3f4b5d6'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


PENDING_ONLY = sa.text("status = 'pending'")


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(50), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('is_admin', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('points_balance', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'points_balances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('balance', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('total_earned', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('total_spent', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('total_recharged', sa.Float(), server_default='0', nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),
        sa.Column('freeze_reason', sa.String(200), nullable=True),
        sa.Column('total_transactions', sa.Integer(), server_default='0', nullable=False),
        sa.Column('average_recharge', sa.Float(), server_default='0', nullable=False),
        sa.Column('last_recharge_amount', sa.Float(), nullable=True),
        sa.Column('last_recharge_at', sa.DateTime(), nullable=True),
        sa.Column('first_recharge_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('balance >= 0', name='ck_points_balance_non_negative'),
    )
    op.create_index('ix_points_balances_user_id', 'points_balances', ['user_id'], unique=True)

    op.create_table(
        'points_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('transaction_id', sa.String(80), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('category', sa.String(40), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('balance_before', sa.BigInteger(), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.String(300), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_points_tx_amount_positive'),
    )
    op.create_index('ix_points_transactions_transaction_id', 'points_transactions', ['transaction_id'], unique=True)
    op.create_index('ix_points_transactions_user_id', 'points_transactions', ['user_id'])
    op.create_index('ix_points_tx_user_created', 'points_transactions', ['user_id', 'created_at'])
    op.create_index('ix_points_tx_category_created', 'points_transactions', ['category', 'created_at'])

    op.create_table(
        'recharge_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.String(60), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('points_to_add', sa.BigInteger(), nullable=False),
        sa.Column('bonus_points', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('method', sa.String(20), server_default='bank', nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('payment_tx_hash', sa.String(100), nullable=True),
        sa.Column('rejection_reason', sa.String(300), nullable=True),
        sa.Column('admin_notes', sa.String(500), nullable=True),
        sa.Column('cancelled_by', sa.String(10), nullable=True),
        sa.Column('processed_by', sa.BigInteger(), nullable=True),
        sa.Column('requested_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('failed_at', sa.DateTime(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_recharge_requests_request_id', 'recharge_requests', ['request_id'], unique=True)
    op.create_index('ix_recharge_user_status', 'recharge_requests', ['user_id', 'status'])
    op.create_index('ix_recharge_status_requested', 'recharge_requests', ['status', 'requested_at'])
    op.create_index('uq_recharge_payment_tx_hash', 'recharge_requests', ['payment_tx_hash'], unique=True)
    op.create_index(
        'uq_recharge_one_pending_per_user', 'recharge_requests', ['user_id'], unique=True,
        postgresql_where=PENDING_ONLY, sqlite_where=PENDING_ONLY,
    )

    op.create_table(
        'withdrawal_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.String(60), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('points_to_deduct', sa.BigInteger(), nullable=False),
        sa.Column('method', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('rejection_reason', sa.String(300), nullable=True),
        sa.Column('admin_notes', sa.String(500), nullable=True),
        sa.Column('approved_by', sa.BigInteger(), nullable=True),
        sa.Column('rejected_by', sa.BigInteger(), nullable=True),
        sa.Column('cancelled_by', sa.String(10), nullable=True),
        sa.Column('requested_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_withdrawal_requests_request_id', 'withdrawal_requests', ['request_id'], unique=True)
    op.create_index('ix_withdrawal_user_status', 'withdrawal_requests', ['user_id', 'status'])
    op.create_index('ix_withdrawal_status_requested', 'withdrawal_requests', ['status', 'requested_at'])
    op.create_index(
        'uq_withdrawal_one_pending_per_user', 'withdrawal_requests', ['user_id'], unique=True,
        postgresql_where=PENDING_ONLY, sqlite_where=PENDING_ONLY,
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(40), nullable=False),
        sa.Column('message', sa.String(300), nullable=False),
        sa.Column('points_amount', sa.BigInteger(), nullable=True),
        sa.Column('is_read', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_notification_user_created', 'notifications', ['user_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_notification_user_created', 'notifications')
    op.drop_table('notifications')
    op.drop_index('uq_withdrawal_one_pending_per_user', 'withdrawal_requests')
    op.drop_index('ix_withdrawal_status_requested', 'withdrawal_requests')
    op.drop_index('ix_withdrawal_user_status', 'withdrawal_requests')
    op.drop_index('ix_withdrawal_requests_request_id', 'withdrawal_requests')
    op.drop_table('withdrawal_requests')
    op.drop_index('uq_recharge_one_pending_per_user', 'recharge_requests')
    op.drop_index('uq_recharge_payment_tx_hash', 'recharge_requests')
    op.drop_index('ix_recharge_status_requested', 'recharge_requests')
    op.drop_index('ix_recharge_user_status', 'recharge_requests')
    op.drop_index('ix_recharge_requests_request_id', 'recharge_requests')
    op.drop_table('recharge_requests')
    op.drop_index('ix_points_tx_category_created', 'points_transactions')
    op.drop_index('ix_points_tx_user_created', 'points_transactions')
    op.drop_index('ix_points_transactions_user_id', 'points_transactions')
    op.drop_index('ix_points_transactions_transaction_id', 'points_transactions')
    op.drop_table('points_transactions')
    op.drop_index('ix_points_balances_user_id', 'points_balances')
    op.drop_table('points_balances')
    op.drop_index('ix_users_email', 'users')
    op.drop_index('ix_users_username', 'users')
    op.drop_table('users')
