"""Create trades and holding_ledgers tables

Revision ID: 5b2e91d4a7c3
Revises:
Create Date: 2026-10-19 10:12:31.204118

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '5b2e91d4a7c3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'trades',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('symbol', sa.String(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False, server_default=sa.text('0')),
        sa.Column('profit', sa.Float(), nullable=False, server_default=sa.text('0')),
        sa.Column('execution_mode', sa.String(), nullable=True),
        sa.Column('order_type', sa.String(), nullable=True),
        sa.Column('time_in_force', sa.String(), nullable=True),
        sa.Column('request_price', sa.Float(), nullable=True),
        sa.Column('average_price', sa.Float(), nullable=True),
        sa.Column('requested_amount', sa.Float(), nullable=True),
        sa.Column('filled_amount', sa.Float(), nullable=True),
        sa.Column('filled_ratio', sa.Float(), nullable=True),
        sa.Column('order_status', sa.String(), nullable=True),
        sa.Column('expected_edge_rate', sa.Float(), nullable=True),
        sa.Column('estimated_cost_rate', sa.Float(), nullable=True),
        sa.Column('spread_rate', sa.Float(), nullable=True),
        sa.Column('impact_rate', sa.Float(), nullable=True),
        sa.Column('missed_opportunity_cost', sa.Float(), nullable=True),
        sa.Column('gate_bypassed_reason', sa.String(), nullable=True),
        sa.Column('trigger_reason', sa.String(), nullable=True),
        sa.Column('recommendation', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_trades_id'), 'trades', ['id'], unique=False)
    op.create_index(op.f('ix_trades_user_id'), 'trades', ['user_id'], unique=False)
    op.create_index('idx_trades_user_created', 'trades', ['user_id', 'created_at'], unique=False)
    op.create_index('idx_trades_symbol', 'trades', ['symbol'], unique=False)

    op.create_table(
        'holding_ledgers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('symbol', sa.String(), nullable=False),
        sa.Column('category', sa.String(), nullable=False),
        sa.Column('index', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'symbol', 'category', name='uq_holding_ledgers_user_symbol_category'),
    )
    op.create_index(op.f('ix_holding_ledgers_user_id'), 'holding_ledgers', ['user_id'], unique=False)
    op.create_index('idx_holding_ledgers_user_index', 'holding_ledgers', ['user_id', 'index'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_holding_ledgers_user_index', table_name='holding_ledgers')
    op.drop_index(op.f('ix_holding_ledgers_user_id'), table_name='holding_ledgers')
    op.drop_table('holding_ledgers')

    op.drop_index('idx_trades_symbol', table_name='trades')
    op.drop_index('idx_trades_user_created', table_name='trades')
    op.drop_index(op.f('ix_trades_user_id'), table_name='trades')
    op.drop_index(op.f('ix_trades_id'), table_name='trades')
    op.drop_table('trades')
