"""create_customer_sync_tables

Revision ID: a41c7e2d9b10
Revises:
Create Date: 2026-10-18

Customers mirrored from Shopify with enrichment state, sync run audit log,
and the export ledger.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a41c7e2d9b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create customers, sync_logs and export_activity."""
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('external_id', sa.BigInteger(), nullable=False, unique=True, index=True),

        # Identity / contact
        sa.Column('email', sa.String(), nullable=True, index=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),

        # Default address
        sa.Column('city', sa.String(), nullable=True, index=True),
        sa.Column('country', sa.String(), nullable=True, index=True),
        sa.Column('province', sa.String(), nullable=True, index=True),
        sa.Column('postal_code', sa.String(), nullable=True),

        # Commerce
        sa.Column('tags', sa.Text(), nullable=True),
        sa.Column('orders_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_spent', sa.Numeric(12, 2), nullable=False, server_default='0'),

        # Shopify timestamps
        sa.Column('created_at_source', sa.DateTime(), nullable=True, index=True),
        sa.Column('updated_at_source', sa.DateTime(), nullable=True, index=True),
        sa.Column('last_order_at', sa.DateTime(), nullable=True, index=True),

        # Enrichment
        sa.Column('gender_inferred', sa.String(), nullable=True, index=True),
        sa.Column('gender_confidence', sa.Float(), nullable=True),
        sa.Column('enrichment_status', sa.String(), nullable=False, server_default='pending', index=True),

        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )

    op.create_table(
        'sync_logs',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('sync_type', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, index=True),
        sa.Column('customers_processed', sa.Integer(), server_default='0'),
        sa.Column('customers_created', sa.Integer(), server_default='0'),
        sa.Column('customers_updated', sa.Integer(), server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False, index=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True, index=True),
    )

    op.create_table(
        'export_activity',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('format', sa.String(), nullable=False),
        sa.Column('exported_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False, index=True),
    )


def downgrade() -> None:
    """Drop the customer sync tables."""
    op.drop_table('export_activity')
    op.drop_table('sync_logs')
    op.drop_table('customers')
