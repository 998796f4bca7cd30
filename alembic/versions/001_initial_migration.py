"""Initial migration

Revision ID: 001
Revises:
Create Date: 2026-09-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Reference data
    op.create_table(
        'workers',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('employee_id', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('pin_hash', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_workers_active', 'workers', ['is_active'])
    op.create_index('idx_workers_updated_at', 'workers', ['updated_at'])

    op.create_table(
        'jobs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('job_code', sa.String(50), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('tags', sa.JSON, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_jobs_updated_at', 'jobs', ['updated_at'])

    op.create_table(
        'break_types',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('is_paid', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('default_minutes', sa.Integer, nullable=False, server_default='15'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'system_settings',
        sa.Column('key', sa.String(100), primary_key=True),
        sa.Column('value', sa.JSON, nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    # Tracked records, keyed by the device-generated offline GUID
    op.create_table(
        'time_entries',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('offline_guid', sa.Uuid(as_uuid=True), nullable=False, unique=True),
        sa.Column('worker_id', sa.Integer, sa.ForeignKey('workers.id'), nullable=False),
        sa.Column('job_id', sa.Integer, sa.ForeignKey('jobs.id'), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('start_latitude', sa.Float, nullable=True),
        sa.Column('start_longitude', sa.Float, nullable=True),
        sa.Column('end_latitude', sa.Float, nullable=True),
        sa.Column('end_longitude', sa.Float, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('regular_hours', sa.Float, nullable=True),
        sa.Column('overtime_hours', sa.Float, nullable=True),
        sa.Column('is_synced', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('has_conflict', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('conflict_reason', sa.Text, nullable=True),
        sa.Column('device_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_time_entries_worker_id', 'time_entries', ['worker_id'])
    op.create_index('ix_time_entries_job_id', 'time_entries', ['job_id'])
    op.create_index('idx_time_entries_worker_start', 'time_entries', ['worker_id', 'start_time'])
    op.create_index('idx_time_entries_conflict', 'time_entries', ['has_conflict'])

    op.create_table(
        'break_entries',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('offline_guid', sa.Uuid(as_uuid=True), nullable=False, unique=True),
        sa.Column('time_entry_id', sa.Integer, sa.ForeignKey('time_entries.id', ondelete='CASCADE'), nullable=False),
        sa.Column('time_entry_offline_guid', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('break_type_id', sa.Integer, sa.ForeignKey('break_types.id'), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_minutes', sa.Integer, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('is_synced', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('has_conflict', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('conflict_reason', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_break_entries_time_entry_id', 'break_entries', ['time_entry_id'])
    op.create_index('ix_break_entries_time_entry_offline_guid', 'break_entries', ['time_entry_offline_guid'])

    op.create_table(
        'photos',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('offline_guid', sa.Uuid(as_uuid=True), nullable=False, unique=True),
        sa.Column('time_entry_id', sa.Integer, sa.ForeignKey('time_entries.id', ondelete='CASCADE'), nullable=True),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('file_path', sa.Text, nullable=True),
        sa.Column('mime_type', sa.String(100), nullable=True),
        sa.Column('file_size', sa.Integer, nullable=True),
        sa.Column('compressed_size', sa.Integer, nullable=True),
        sa.Column('width', sa.Integer, nullable=True),
        sa.Column('height', sa.Integer, nullable=True),
        sa.Column('captured_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('latitude', sa.Float, nullable=True),
        sa.Column('longitude', sa.Float, nullable=True),
        sa.Column('is_synced', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('is_deleted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_photos_time_entry_id', 'photos', ['time_entry_id'])

    # Licensing
    op.create_table(
        'licenses',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('license_id', sa.String(255), nullable=False),
        sa.Column('seats_max', sa.Integer, nullable=False),
        sa.Column('expiry_updates', sa.DateTime(timezone=True), nullable=True),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('issuer', sa.String(255), nullable=False),
        sa.Column('signature', sa.Text, nullable=False),
        sa.Column('document', sa.Text, nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('uploaded_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('uploaded_by', sa.String(255), nullable=True),
    )
    op.create_index('ix_licenses_license_id', 'licenses', ['license_id'])
    op.create_index('idx_licenses_active_uploaded', 'licenses', ['is_active', 'uploaded_at'])

    # Sync bookkeeping
    op.create_table(
        'sync_logs',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('device_id', sa.String(255), nullable=False),
        sa.Column('sync_type', sa.Enum('push', 'pull', name='synctype'), nullable=False),
        sa.Column('records_processed', sa.Integer, nullable=False, server_default='0'),
        sa.Column('records_succeeded', sa.Integer, nullable=False, server_default='0'),
        sa.Column('records_failed', sa.Integer, nullable=False, server_default='0'),
        sa.Column('error_details', sa.JSON, nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.Enum('running', 'completed', 'failed', name='synclogstatus'), nullable=False),
    )
    op.create_index('idx_sync_logs_device_started', 'sync_logs', ['device_id', 'started_at'])

    op.create_table(
        'sync_conflicts',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_guid', sa.Uuid(as_uuid=True), nullable=False),
        sa.Column('conflict_type', sa.Enum('update_conflict', 'time_overlap', 'missing_reference', name='conflicttype'), nullable=False),
        sa.Column('severity', sa.Enum('high', 'medium', 'low', name='conflictseverity'), nullable=False),
        sa.Column('device_id', sa.String(255), nullable=True),
        sa.Column('client_data', sa.JSON, nullable=False),
        sa.Column('server_data', sa.JSON, nullable=False),
        sa.Column('resolved', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('resolution', sa.Enum('keep_client', 'keep_server', name='conflictaction'), nullable=True),
        sa.Column('resolved_by', sa.String(255), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_sync_conflicts_entity_guid', 'sync_conflicts', ['entity_guid'])
    op.create_index('idx_sync_conflicts_resolved_severity', 'sync_conflicts', ['resolved', 'severity'])


def downgrade() -> None:
    op.drop_table('sync_conflicts')
    op.drop_table('sync_logs')
    op.drop_table('licenses')
    op.drop_table('photos')
    op.drop_table('break_entries')
    op.drop_table('time_entries')
    op.drop_table('system_settings')
    op.drop_table('break_types')
    op.drop_table('jobs')
    op.drop_table('workers')
    sa.Enum(name='conflictaction').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='conflictseverity').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='conflicttype').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='synclogstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='synctype').drop(op.get_bind(), checkfirst=True)
