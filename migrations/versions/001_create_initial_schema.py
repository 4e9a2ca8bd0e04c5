"""create pastes table

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


paste_status_enum = sa.Enum('ALIVE', 'EXPIRED', 'EXHAUSTED', name='paste_status_enum')


def upgrade() -> None:
    op.create_table(
        'pastes',
        sa.Column('id', sa.String(length=16), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('max_views', sa.Integer(), nullable=True),
        sa.Column('view_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', paste_status_enum, nullable=False, server_default='ALIVE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('max_views IS NULL OR max_views >= 1', name='ck_pastes_max_views_min_1'),
        sa.CheckConstraint('view_count >= 0', name='ck_pastes_view_count_non_negative'),
    )
    # Lets the purge sweep find time-expired rows without a full scan.
    op.create_index(op.f('ix_pastes_expires_at'), 'pastes', ['expires_at'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_pastes_expires_at'), table_name='pastes')
    op.drop_table('pastes')
    paste_status_enum.drop(op.get_bind(), checkfirst=True)
