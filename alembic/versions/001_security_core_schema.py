"""security core schema

Revision ID: 001
Revises:
Create Date: 2024-11-04

Creates the back-office security tables:

1. admin_profiles - Back-office administrators (bcrypt password hashes)
2. ip_allowlist_entries - Global and per-admin IP allowlist (CIDR or literal)
3. webhook_security_settings - Per (provider, endpoint) signature settings
4. webhook_request_logs - Append-only inbound webhook log (rate limit + flood counting)
5. abuse_detection_alerts - Alerts, at most one open per (type, entity)
6. failed_login_attempts - Append-only, feeds failed-login flood detection
7. call_history - Voice-agent calls (read by call-spike detection)
8. call_spike_detection - Detected call spikes
9. admin_activity_log - Append-only admin audit trail
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
    """Create all security core tables."""

    # admin_profiles
    op.create_table(
        'admin_profiles',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='support'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_admin_profiles_email', 'admin_profiles', ['email'], unique=True)

    # ip_allowlist_entries
    op.create_table(
        'ip_allowlist_entries',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('scope', sa.String(), nullable=False),
        sa.Column('admin_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.ForeignKeyConstraint(['admin_id'], ['admin_profiles.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            "(scope = 'global' AND admin_id IS NULL) OR (scope = 'admin' AND admin_id IS NOT NULL)",
            name='ck_ip_allowlist_entries_scope_admin',
        ),
    )
    op.create_index('ix_ip_allowlist_entries_scope', 'ip_allowlist_entries', ['scope'])
    op.create_index('ix_ip_allowlist_entries_admin_id', 'ip_allowlist_entries', ['admin_id'])

    # webhook_security_settings
    op.create_table(
        'webhook_security_settings',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('provider_name', sa.String(), nullable=False),
        sa.Column('webhook_endpoint', sa.String(), nullable=False),
        sa.Column('secret_key', sa.Text(), nullable=False),
        sa.Column('signature_algorithm', sa.String(), nullable=False, server_default='hmac_sha256'),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('require_signature', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('allowed_ips', postgresql.ARRAY(sa.String()), nullable=False, server_default='{}'),
        sa.Column('rate_limit_per_minute', sa.Integer(), nullable=False, server_default='60'),
        sa.Column('last_validated_at', sa.DateTime(), nullable=True),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint(
            'provider_name',
            'webhook_endpoint',
            name='uq_webhook_security_settings_provider_endpoint',
        ),
    )
    op.create_index(
        'ix_webhook_security_settings_provider_name',
        'webhook_security_settings',
        ['provider_name'],
    )

    # webhook_request_logs
    op.create_table(
        'webhook_request_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('provider_name', sa.String(), nullable=False),
        sa.Column('webhook_endpoint', sa.String(), nullable=False),
        sa.Column('request_method', sa.String(), nullable=False),
        sa.Column('request_headers', postgresql.JSONB(), nullable=True),
        sa.Column('request_body', postgresql.JSONB(), nullable=True),
        sa.Column('request_ip', sa.String(), nullable=True),
        sa.Column('signature_valid', sa.Boolean(), nullable=False),
        sa.Column('signature_error', sa.String(), nullable=True),
        sa.Column('processing_time_ms', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_webhook_request_logs_created_at', 'webhook_request_logs', ['created_at'])
    op.create_index(
        'ix_webhook_request_logs_provider_endpoint_created',
        'webhook_request_logs',
        ['provider_name', 'webhook_endpoint', 'created_at'],
    )

    # abuse_detection_alerts
    op.create_table(
        'abuse_detection_alerts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('alert_type', sa.String(), nullable=False),
        sa.Column('severity', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('threshold_value', sa.Float(), nullable=False),
        sa.Column('actual_value', sa.Float(), nullable=False),
        sa.Column('time_window_minutes', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='open'),
        sa.Column('resolved_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_abuse_detection_alerts_alert_type', 'abuse_detection_alerts', ['alert_type'])
    op.create_index('ix_abuse_detection_alerts_severity', 'abuse_detection_alerts', ['severity'])
    op.create_index('ix_abuse_detection_alerts_status', 'abuse_detection_alerts', ['status'])
    op.create_index('ix_abuse_detection_alerts_created_at', 'abuse_detection_alerts', ['created_at'])

    # At most one open alert per entity; detectors insert with ON CONFLICT DO NOTHING
    op.create_index(
        'uq_abuse_detection_alerts_open_entity',
        'abuse_detection_alerts',
        ['alert_type', 'entity_type', 'entity_id'],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
    )

    # failed_login_attempts
    op.create_table(
        'failed_login_attempts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('ip_address', sa.String(), nullable=False),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('failure_reason', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_failed_login_attempts_email', 'failed_login_attempts', ['email'])
    op.create_index('ix_failed_login_attempts_created_at', 'failed_login_attempts', ['created_at'])
    op.create_index(
        'ix_failed_login_attempts_ip_created',
        'failed_login_attempts',
        ['ip_address', 'created_at'],
    )

    # call_history
    op.create_table(
        'call_history',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('agent_id', sa.String(), nullable=True),
        sa.Column('call_start_time', sa.DateTime(), nullable=False),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
    )
    op.create_index('ix_call_history_agent_id', 'call_history', ['agent_id'])
    op.create_index('ix_call_history_user_start', 'call_history', ['user_id', 'call_start_time'])

    # call_spike_detection
    op.create_table(
        'call_spike_detection',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('agent_id', sa.String(), nullable=True),
        sa.Column('time_window_start', sa.DateTime(), nullable=False),
        sa.Column('time_window_end', sa.DateTime(), nullable=False),
        sa.Column('call_count', sa.Integer(), nullable=False),
        sa.Column('threshold_count', sa.Integer(), nullable=False),
        sa.Column('average_calls_per_hour', sa.Float(), nullable=False),
        sa.Column('is_alerted', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_call_spike_detection_user_id', 'call_spike_detection', ['user_id'])

    # admin_activity_log
    op.create_table(
        'admin_activity_log',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('admin_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('target_type', sa.String(), nullable=True),
        sa.Column('target_id', sa.String(), nullable=True),
        sa.Column('details', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('severity', sa.String(), nullable=False, server_default='info'),
        sa.Column('old_values', postgresql.JSONB(), nullable=True),
        sa.Column('new_values', postgresql.JSONB(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.Column('session_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_admin_activity_log_admin_id', 'admin_activity_log', ['admin_id'])
    op.create_index('ix_admin_activity_log_action', 'admin_activity_log', ['action'])
    op.create_index('ix_admin_activity_log_severity', 'admin_activity_log', ['severity'])
    op.create_index('ix_admin_activity_log_created_at', 'admin_activity_log', ['created_at'])

    # Append-only tables: block UPDATE and DELETE at the database level
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_append_only_modification()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION '% is append-only', TG_TABLE_NAME;
        END;
        $$ LANGUAGE plpgsql;
    """)
    for table in ('admin_activity_log', 'webhook_request_logs', 'failed_login_attempts'):
        op.execute(f"""
            CREATE TRIGGER {table}_append_only
            BEFORE UPDATE OR DELETE ON {table}
            FOR EACH ROW EXECUTE FUNCTION prevent_append_only_modification();
        """)


def downgrade():
    """Drop all security core tables."""
    for table in ('admin_activity_log', 'webhook_request_logs', 'failed_login_attempts'):
        op.execute(f"DROP TRIGGER IF EXISTS {table}_append_only ON {table};")
    op.execute("DROP FUNCTION IF EXISTS prevent_append_only_modification();")

    op.drop_table('admin_activity_log')
    op.drop_table('call_spike_detection')
    op.drop_table('call_history')
    op.drop_table('failed_login_attempts')
    op.drop_index('uq_abuse_detection_alerts_open_entity', table_name='abuse_detection_alerts')
    op.drop_table('abuse_detection_alerts')
    op.drop_table('webhook_request_logs')
    op.drop_table('webhook_security_settings')
    op.drop_table('ip_allowlist_entries')
    op.drop_table('admin_profiles')
