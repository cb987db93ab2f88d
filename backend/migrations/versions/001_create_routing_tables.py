"""Create manufacturer, order, job and routing history tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'manufacturer',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('contact_name', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('accepting_new_orders', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('country', sa.Text(), nullable=True),
        sa.Column('zone', sa.Text(), nullable=True),
        sa.Column('capabilities', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('min_order_qty', sa.Integer(), server_default='1', nullable=False),
        sa.Column('lead_time_days', sa.Integer(), server_default='14', nullable=False),
        sa.Column('max_concurrent_jobs', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_manufacturer_name'),
        sa.CheckConstraint('min_order_qty >= 1', name='ck_manufacturer_min_order_qty'),
        sa.CheckConstraint('lead_time_days >= 0', name='ck_manufacturer_lead_time_days'),
    )
    op.create_index('ix_manufacturer_active_accepting', 'manufacturer', ['is_active', 'accepting_new_orders'])

    op.create_table(
        'customer_order',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_code', sa.Text(), nullable=False),
        sa.Column('order_name', sa.Text(), nullable=False),
        sa.Column('priority', sa.Text(), server_default='normal', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_code', name='uq_customer_order_code'),
    )

    op.create_table(
        'manufacturing_job',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('routing_status', sa.Text(), nullable=True),
        sa.Column('routing_reason', sa.Text(), nullable=True),
        sa.Column('manufacturer_id', sa.Integer(), nullable=True),
        sa.Column('original_manufacturer_id', sa.Integer(), nullable=True,
                  comment='Manufacturer held before the last manual assignment'),
        sa.Column('is_completed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['order_id'], ['customer_order.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['manufacturer_id'], ['manufacturer.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['original_manufacturer_id'], ['manufacturer.id'], ondelete='SET NULL'),
        sa.CheckConstraint(
            "routing_status IS NULL OR routing_status IN ('auto', 'fallback', 'manual', 'pending')",
            name='ck_manufacturing_job_routing_status'
        ),
    )
    op.create_index('ix_manufacturing_job_order_id', 'manufacturing_job', ['order_id'])
    op.create_index('ix_manufacturing_job_manufacturer_id', 'manufacturing_job', ['manufacturer_id'])
    op.create_index('ix_manufacturing_job_routing_status', 'manufacturing_job', ['routing_status'])

    op.create_table(
        'job_line_item',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.Text(), nullable=False),
        sa.Column('variant_code', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('required_capabilities', postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column('manufacturer_id', sa.Integer(), nullable=True),
        sa.Column('routed_by', sa.Text(), nullable=True),
        sa.Column('routing_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['job_id'], ['manufacturing_job.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['manufacturer_id'], ['manufacturer.id'], ondelete='RESTRICT'),
        sa.CheckConstraint('quantity >= 1', name='ck_job_line_item_quantity'),
    )
    op.create_index('ix_job_line_item_job_id', 'job_line_item', ['job_id'])

    # Append-only: rows are never updated or deleted
    op.create_table(
        'routing_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('job_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('manufacturer_id', sa.Integer(), nullable=True),
        sa.Column('routed_by', sa.Text(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('operation', sa.Text(), nullable=False),
        sa.Column('actor', sa.Text(), server_default='system', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['job_id'], ['manufacturing_job.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['order_id'], ['customer_order.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['manufacturer_id'], ['manufacturer.id'], ondelete='RESTRICT'),
        sa.CheckConstraint(
            "routed_by IN ('auto', 'fallback', 'manual', 'pending')",
            name='ck_routing_history_routed_by'
        ),
        sa.CheckConstraint(
            "operation IN ('route', 'reroute', 'assign')",
            name='ck_routing_history_operation'
        ),
    )
    op.create_index('ix_routing_history_job_id', 'routing_history', ['job_id'])
    op.create_index('ix_routing_history_created_at', 'routing_history', [sa.text('created_at DESC')])


def downgrade():
    op.drop_index('ix_routing_history_created_at', table_name='routing_history')
    op.drop_index('ix_routing_history_job_id', table_name='routing_history')
    op.drop_table('routing_history')

    op.drop_index('ix_job_line_item_job_id', table_name='job_line_item')
    op.drop_table('job_line_item')

    op.drop_index('ix_manufacturing_job_routing_status', table_name='manufacturing_job')
    op.drop_index('ix_manufacturing_job_manufacturer_id', table_name='manufacturing_job')
    op.drop_index('ix_manufacturing_job_order_id', table_name='manufacturing_job')
    op.drop_table('manufacturing_job')

    op.drop_table('customer_order')

    op.drop_index('ix_manufacturer_active_accepting', table_name='manufacturer')
    op.drop_table('manufacturer')
