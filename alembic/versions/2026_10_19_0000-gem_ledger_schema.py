"""gem ledger schema

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '2026_10_19_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create gem ledger tables."""

    # ========================================================================
    # Create gem_accounts table
    # ========================================================================
    op.create_table(
        'gem_accounts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('balance', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_earned', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_spent', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('balance >= 0', name='ck_gem_balance_non_negative'),
        sa.CheckConstraint('total_earned >= 0', name='ck_gem_total_earned_non_negative'),
        sa.CheckConstraint('total_spent >= 0', name='ck_gem_total_spent_non_negative'),
        sa.CheckConstraint('balance = total_earned - total_spent', name='ck_gem_balance_matches_totals'),
        sa.UniqueConstraint('user_id', name='uq_gem_accounts_user_id'),
    )

    # ========================================================================
    # Create gem_transactions table (append-only)
    # ========================================================================
    op.create_table(
        'gem_transactions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('transaction_type', sa.String(30), nullable=False),
        sa.Column('gems_delta', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('balance_after', sa.BigInteger(), nullable=True),
        sa.Column('metadata_partner_id', sa.String(100), nullable=True),
        sa.Column('metadata_offer_type', sa.String(20), nullable=True),
        sa.Column('metadata_promo_code', sa.String(100), nullable=True),
        sa.Column('metadata_item_category', sa.String(30), nullable=True),
        sa.Column('metadata_item_id', sa.String(100), nullable=True),
        sa.Column('metadata_custom_value', sa.String(20), nullable=True),
        sa.Column('metadata_points_used', sa.BigInteger(), nullable=True),
        sa.Column('metadata_conversion_rate', sa.Integer(), nullable=True),
        sa.Column('metadata_admin_note', sa.String(500), nullable=True),
        sa.Column('metadata_failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),

        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'cancelled')",
            name='ck_gem_transaction_status',
        ),
    )

    op.create_index('idx_gem_transactions_user_created', 'gem_transactions', ['user_id', 'created_at', 'id'])
    op.create_index('idx_gem_transactions_user_type', 'gem_transactions', ['user_id', 'transaction_type'])
    op.create_index(
        'uq_gem_partner_offer_completed',
        'gem_transactions',
        ['user_id', 'metadata_partner_id', 'metadata_offer_type'],
        unique=True,
        postgresql_where=sa.text("transaction_type = 'partner_offer' AND status = 'completed'"),
        sqlite_where=sa.text("transaction_type = 'partner_offer' AND status = 'completed'"),
    )

    # ========================================================================
    # Create gem_active_selections table
    # ========================================================================
    op.create_table(
        'gem_active_selections',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('category', sa.String(30), nullable=False),
        sa.Column('item_id', sa.String(100), nullable=False),
        sa.Column('custom_value', sa.String(20), nullable=True),
        sa.Column('transaction_id', sa.Uuid(), nullable=False),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.UniqueConstraint('user_id', 'category', name='uq_gem_active_selection_category'),
        sa.ForeignKeyConstraint(
            ['transaction_id'], ['gem_transactions.id'],
            name='fk_gem_active_selections_transaction', ondelete='RESTRICT',
        ),
    )

    # ========================================================================
    # Create gem_owned_items table
    # ========================================================================
    op.create_table(
        'gem_owned_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('category', sa.String(30), nullable=False),
        sa.Column('item_id', sa.String(100), nullable=False),
        sa.Column('purchase_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('first_purchased_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_purchased_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('purchase_count > 0', name='ck_gem_owned_purchase_count_positive'),
        sa.UniqueConstraint('user_id', 'category', 'item_id', name='uq_gem_owned_item'),
    )

    # ========================================================================
    # Create gem_justifications table
    # ========================================================================
    op.create_table(
        'gem_justifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('transaction_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('reference', sa.String(64), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('justification_type', sa.String(20), nullable=False),
        sa.Column('content_type', sa.String(100), nullable=True),
        sa.Column('content', sa.LargeBinary(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=True),

        # Constraints
        sa.CheckConstraint("status IN ('issued', 'pending')", name='ck_gem_justification_status'),
        sa.CheckConstraint(
            "justification_type IN ('image', 'qr', 'pdf')", name='ck_gem_justification_type'
        ),
        sa.UniqueConstraint('transaction_id', name='uq_gem_justifications_transaction'),
        sa.UniqueConstraint('reference', name='uq_gem_justifications_reference'),
        sa.ForeignKeyConstraint(
            ['transaction_id'], ['gem_transactions.id'],
            name='fk_gem_justifications_transaction', ondelete='RESTRICT',
        ),
    )

    op.create_index('idx_gem_justifications_user_id', 'gem_justifications', ['user_id'])


def downgrade() -> None:
    """Drop gem ledger tables."""
    op.drop_index('idx_gem_justifications_user_id', table_name='gem_justifications')
    op.drop_table('gem_justifications')
    op.drop_table('gem_owned_items')
    op.drop_table('gem_active_selections')
    op.drop_index('uq_gem_partner_offer_completed', table_name='gem_transactions')
    op.drop_index('idx_gem_transactions_user_type', table_name='gem_transactions')
    op.drop_index('idx_gem_transactions_user_created', table_name='gem_transactions')
    op.drop_table('gem_transactions')
    op.drop_table('gem_accounts')
