"""launchpad_indexer_tables

Create assets, pool_stats and trades for the launchpad indexer.

Revision ID: b7c1d2e3f4a5
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'b7c1d2e3f4a5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'assets',
        sa.Column('address', sa.String(80), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('symbol', sa.String(50), nullable=False),
        sa.Column('creator', sa.String(80), nullable=False),
        sa.Column('decimals', sa.Integer(), nullable=False),
        sa.Column('max_supply', sa.Numeric(), nullable=True),
        sa.Column('icon_uri', sa.String(512), nullable=True),
        sa.Column('project_uri', sa.String(512), nullable=True),
        sa.Column('mint_fee_per_unit', sa.Numeric(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('indexed_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_assets_creator', 'assets', ['creator'])

    # One row per asset; only ever changed by SQL-side increments
    op.create_table(
        'pool_stats',
        sa.Column(
            'fa_address', sa.String(80),
            sa.ForeignKey('assets.address', ondelete='CASCADE'),
            primary_key=True,
        ),
        sa.Column('apt_reserves', sa.Numeric(), nullable=False),
        sa.Column('total_volume', sa.Numeric(), nullable=False),
        sa.Column('trade_count', sa.Integer(), nullable=False),
        sa.Column('is_graduated', sa.Boolean(), nullable=False),
        sa.Column('graduated_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_pool_stats_graduated', 'pool_stats', ['is_graduated'])

    # Append-only; transaction_hash is the dedup key
    op.create_table(
        'trades',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('transaction_hash', sa.String(80), nullable=False, unique=True),
        sa.Column('fa_address', sa.String(80), nullable=False),
        sa.Column('user_address', sa.String(80), nullable=False),
        sa.Column('apt_amount', sa.Numeric(), nullable=False),
        sa.Column('token_amount', sa.Numeric(), nullable=False),
        sa.Column('price_per_token', sa.Numeric(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('indexed_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_trades_fa_time', 'trades', ['fa_address', 'created_at'])
    op.create_index('idx_trades_time', 'trades', ['created_at'])


def downgrade() -> None:
    op.drop_index('idx_trades_time', 'trades')
    op.drop_index('idx_trades_fa_time', 'trades')
    op.drop_table('trades')
    op.drop_index('idx_pool_stats_graduated', 'pool_stats')
    op.drop_table('pool_stats')
    op.drop_index('idx_assets_creator', 'assets')
    op.drop_table('assets')
