"""Create terms and mentions tables

Revision ID: 20261018_terms_mentions
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from typing import Union


# revision identifiers, used by Alembic.
revision: str = '20261018_terms_mentions'
down_revision: Union[str, None] = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'terms',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('text', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_scanned_at', sa.DateTime(), nullable=True),
        sa.Column('next_eligible_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_terms_tenant_id', 'terms', ['tenant_id'], unique=False)
    # Supports the lease query (WHERE is_active AND next_eligible_at <= now ORDER BY next_eligible_at)
    op.create_index(
        'ix_terms_active_next_eligible', 'terms', ['is_active', 'next_eligible_at'], unique=False
    )

    op.create_table(
        'mentions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('source_url', sa.String(length=500), nullable=False),
        sa.Column('content_snippet', sa.String(length=500), nullable=False, server_default=''),
        sa.Column('author', sa.String(length=100), nullable=True),
        sa.Column('community', sa.String(length=100), nullable=True),
        sa.Column('sentiment', sa.String(length=20), nullable=False, server_default='UNKNOWN'),
        sa.Column('found_at', sa.DateTime(), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('term_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['term_id'], ['terms.id'], name='fk_mentions_term_id'),
    )
    # Unique source_url is what makes ON CONFLICT DO NOTHING dedup work
    op.create_index('ix_mentions_source_url', 'mentions', ['source_url'], unique=True)
    op.create_index('ix_mentions_tenant_id', 'mentions', ['tenant_id'], unique=False)
    op.create_index('ix_mentions_term_id', 'mentions', ['term_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_mentions_term_id', table_name='mentions')
    op.drop_index('ix_mentions_tenant_id', table_name='mentions')
    op.drop_index('ix_mentions_source_url', table_name='mentions')
    op.drop_table('mentions')
    op.drop_index('ix_terms_active_next_eligible', table_name='terms')
    op.drop_index('ix_terms_tenant_id', table_name='terms')
    op.drop_table('terms')
