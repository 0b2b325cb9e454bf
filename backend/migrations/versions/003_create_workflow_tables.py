"""Create workflow_stage, stage_transition and qc_review tables

Revision ID: 003
Revises: 002
Create Date: 2026-10-12 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '003'
down_revision = '002'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'workflow_stage',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('display_name', sa.Text(), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_workflow_stage_tenant_name'),
        sa.UniqueConstraint('tenant_id', 'order_index', name='uq_workflow_stage_tenant_order'),
        sa.CheckConstraint(
            "name NOT IN ('UPLOADED', 'COMPLETED', 'ARCHIVED')",
            name='ck_workflow_stage_not_system',
        ),
    )

    op.create_table(
        'stage_transition',
        sa.Column('id', sa.BigInteger(), sa.Identity(always=False), nullable=False),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('file_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('from_stage', sa.Text(), nullable=True),
        sa.Column('to_stage', sa.Text(), nullable=False),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['file_id'], ['file.id'], ondelete='RESTRICT'),
        sa.CheckConstraint(
            "action IN ('ASSIGN', 'APPROVE', 'FAIL', 'REVISE', 'REOPEN', 'ARCHIVE')",
            name='ck_stage_transition_action',
        ),
    )
    op.create_index('ix_stage_transition_file_order', 'stage_transition', ['file_id', 'created_at', 'id'])
    op.create_index('ix_stage_transition_tenant_id', 'stage_transition', ['tenant_id'])

    # The ledger is append-only
    op.execute("""
        CREATE OR REPLACE FUNCTION forbid_ledger_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
          RAISE EXCEPTION 'stage_transition is append-only';
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER stage_transition_append_only
        BEFORE UPDATE OR DELETE ON stage_transition
        FOR EACH ROW
        EXECUTE FUNCTION forbid_ledger_mutation();
    """)

    op.create_table(
        'qc_review',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('file_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('stage', sa.Text(), nullable=False),
        sa.Column('action', sa.Text(), nullable=True),
        sa.Column('reviewer_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('status', sa.Text(), server_default='PENDING', nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['file_id'], ['file.id'], ondelete='RESTRICT'),
        sa.CheckConstraint("status IN ('PENDING', 'COMPLETED')", name='ck_qc_review_status'),
    )
    op.create_index('ix_qc_review_tenant_id', 'qc_review', ['tenant_id'])
    op.create_index(
        'uq_qc_review_open_per_stage',
        'qc_review',
        ['file_id', 'stage'],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
    )


def downgrade():
    op.drop_index('uq_qc_review_open_per_stage', table_name='qc_review')
    op.drop_index('ix_qc_review_tenant_id', table_name='qc_review')
    op.drop_table('qc_review')

    op.execute('DROP TRIGGER IF EXISTS stage_transition_append_only ON stage_transition')
    op.execute('DROP FUNCTION IF EXISTS forbid_ledger_mutation()')
    op.drop_index('ix_stage_transition_tenant_id', table_name='stage_transition')
    op.drop_index('ix_stage_transition_file_order', table_name='stage_transition')
    op.drop_table('stage_transition')

    op.drop_table('workflow_stage')
