"""Initial product refresh schema

Revision ID: 5c1e9a7d2b40
Revises:
Create Date: 2026-10-18 12:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5c1e9a7d2b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # gen_random_uuid() is built in from PostgreSQL 13; pgcrypto covers older servers
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')

    # Create marketplaces table
    op.create_table('marketplaces',
    sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
    sa.Column('code', sa.String(length=3), nullable=False),
    sa.Column('region_name', sa.String(length=100), nullable=False),
    sa.Column('currency', sa.String(length=3), nullable=False),
    sa.Column('paapi_endpoint', sa.String(length=255), nullable=False),
    sa.Column('associate_tag', sa.String(length=100), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    sa.CheckConstraint("code ~ '^[A-Z]{2,3}$'", name='ck_marketplaces_code'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('code')
    )

    # Create products table
    op.create_table('products',
    sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
    sa.Column('asin', sa.String(length=10), nullable=False),
    sa.Column('marketplace_id', postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column('title', sa.Text(), nullable=True),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('brand', sa.String(length=255), nullable=True),
    sa.Column('manufacturer', sa.String(length=255), nullable=True),
    sa.Column('images', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('detail_page_url', sa.Text(), nullable=True),
    sa.Column('current_price', sa.Numeric(precision=10, scale=2), nullable=True),
    sa.Column('original_price', sa.Numeric(precision=10, scale=2), nullable=True),
    sa.Column('savings_amount', sa.Numeric(precision=10, scale=2), nullable=True),
    sa.Column('savings_percentage', sa.Numeric(precision=5, scale=2), nullable=True),
    sa.Column('currency', sa.String(length=3), nullable=True),
    sa.Column('availability_type', sa.String(length=50), nullable=True),
    sa.Column('availability_message', sa.Text(), nullable=True),
    sa.Column('customer_review_count', sa.Integer(), nullable=True),
    sa.Column('star_rating', sa.Numeric(precision=2, scale=1), nullable=True),
    sa.Column('status', sa.String(length=20), server_default='draft', nullable=False),
    sa.Column('last_refresh_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('last_available_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('raw_paapi_response', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    sa.CheckConstraint("asin ~ '^[A-Z0-9]{10}$'", name='ck_products_asin'),
    sa.CheckConstraint("status IN ('draft', 'active', 'unavailable')", name='ck_products_status'),
    sa.ForeignKeyConstraint(['marketplace_id'], ['marketplaces.id'], ondelete='RESTRICT'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('asin', 'marketplace_id', name='uq_products_asin_marketplace')
    )
    # Partial index backing the stale-first refresh queue
    op.create_index('idx_products_refresh_queue', 'products', ['last_refresh_at'], unique=False, postgresql_where=sa.text("status IN ('active', 'draft')"))

    # Create refresh_jobs table
    op.create_table('refresh_jobs',
    sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
    sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
    sa.Column('scheduled_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('retry_count', sa.Integer(), server_default='0', nullable=False),
    sa.Column('error_code', sa.String(length=50), nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('circuit_breaker_state', sa.String(length=20), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
    sa.CheckConstraint("status IN ('pending', 'running', 'success', 'failed', 'skipped')", name='ck_refresh_jobs_status'),
    sa.CheckConstraint('retry_count >= 0', name='ck_refresh_jobs_retry_count'),
    sa.CheckConstraint("circuit_breaker_state IS NULL OR circuit_breaker_state IN ('closed', 'open', 'half-open')", name='ck_refresh_jobs_circuit_state'),
    sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_refresh_jobs_product', 'refresh_jobs', ['product_id', 'created_at'], unique=False)
    op.create_index('idx_refresh_jobs_status', 'refresh_jobs', ['status'], unique=False)

    # Seed the two launch marketplaces; associate tags are set per deployment
    marketplaces = sa.table(
        'marketplaces',
        sa.column('code', sa.String),
        sa.column('region_name', sa.String),
        sa.column('currency', sa.String),
        sa.column('paapi_endpoint', sa.String),
        sa.column('associate_tag', sa.String),
    )
    op.bulk_insert(marketplaces, [
        {'code': 'US', 'region_name': 'United States', 'currency': 'USD',
         'paapi_endpoint': 'webservices.amazon.com', 'associate_tag': 'changeme-20'},
        {'code': 'DE', 'region_name': 'Germany', 'currency': 'EUR',
         'paapi_endpoint': 'webservices.amazon.de', 'associate_tag': 'changeme-21'},
    ])


def downgrade() -> None:
    op.drop_index('idx_refresh_jobs_status', table_name='refresh_jobs')
    op.drop_index('idx_refresh_jobs_product', table_name='refresh_jobs')
    op.drop_table('refresh_jobs')
    op.drop_index('idx_products_refresh_queue', table_name='products', postgresql_where=sa.text("status IN ('active', 'draft')"))
    op.drop_table('products')
    op.drop_table('marketplaces')
