"""Create file table

Revision ID: 002
Revises: 001
Create Date: 2026-10-12 11:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'file',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('project_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('original_name', sa.Text(), nullable=False),
        sa.Column('mime_type', sa.Text(), nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('storage_key', sa.Text(), nullable=False),
        sa.Column('upload_status', sa.Text(), server_default='PENDING', nullable=False),
        sa.Column('current_stage', sa.Text(), nullable=True),
        sa.Column('revision_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('assigned_to', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('uploaded_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('confirmed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenant.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['project_id'], ['project.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('storage_key', name='uq_file_storage_key'),
        sa.CheckConstraint("upload_status IN ('PENDING', 'CONFIRMED')", name='ck_file_upload_status'),
        sa.CheckConstraint('revision_count >= 0', name='ck_file_revision_count'),
        sa.CheckConstraint('size_bytes >= 0', name='ck_file_size_bytes'),
        sa.CheckConstraint(
            "(upload_status = 'PENDING' AND current_stage IS NULL) "
            "OR (upload_status = 'CONFIRMED' AND current_stage IS NOT NULL)",
            name='ck_file_stage_matches_upload_status',
        ),
    )

    op.create_index('ix_file_tenant_id', 'file', ['tenant_id'])
    op.create_index('ix_file_tenant_stage', 'file', ['tenant_id', 'current_stage'])
    op.create_index('ix_file_tenant_upload_status_created', 'file', ['tenant_id', 'upload_status', 'created_at'])

    op.execute("""
        CREATE TRIGGER update_file_updated_at
        BEFORE UPDATE ON file
        FOR EACH ROW
        EXECUTE FUNCTION update_updated_at_column();
    """)

    # storage_key is immutable once issued
    op.execute("""
        CREATE OR REPLACE FUNCTION forbid_storage_key_update()
        RETURNS TRIGGER AS $$
        BEGIN
          IF NEW.storage_key <> OLD.storage_key THEN
            RAISE EXCEPTION 'file.storage_key is immutable';
          END IF;
          RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER file_storage_key_immutable
        BEFORE UPDATE ON file
        FOR EACH ROW
        EXECUTE FUNCTION forbid_storage_key_update();
    """)


def downgrade():
    op.execute('DROP TRIGGER IF EXISTS update_file_updated_at ON file')
    op.execute('DROP TRIGGER IF EXISTS file_storage_key_immutable ON file')
    op.execute('DROP FUNCTION IF EXISTS forbid_storage_key_update()')
    op.drop_index('ix_file_tenant_upload_status_created', table_name='file')
    op.drop_index('ix_file_tenant_stage', table_name='file')
    op.drop_index('ix_file_tenant_id', table_name='file')
    op.drop_table('file')
