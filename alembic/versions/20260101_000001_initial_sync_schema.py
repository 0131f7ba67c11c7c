"""Initial schema for multi-platform sync, metrics and alerts

Revision ID: 20260101_000001
Revises:
Create Date: 2026-01-01

WHAT:
    Creates tenants, connected_accounts, campaigns, metrics,
    web_analytics_daily, alert_rules, alerts and sync_runs.

WHY:
    - One connected_accounts table for every platform (campaigns reference
      it through a single account_id)
    - Unique keys on (campaign_id, date) and
      (tenant_id, property_id, date) back the ON CONFLICT upserts

REFERENCES:
    - app/models.py
    - app/services/upserts.py
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20260101_000001'
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    'platform_enum': ('GOOGLE_ADS', 'FACEBOOK', 'GOOGLE_ANALYTICS', 'TIKTOK', 'LINE_ADS'),
    'account_status_enum': ('ENABLED', 'ACTIVE', 'DISABLED'),
    'campaign_status_enum': ('DRAFT', 'ACTIVE', 'PAUSED', 'ENDED', 'DELETED'),
    'alert_rule_type_enum': ('PRESET', 'CUSTOM'),
    'alert_operator_enum': ('gt', 'lt', 'eq', 'gte', 'lte'),
    'alert_severity_enum': ('INFO', 'WARNING', 'CRITICAL'),
    'alert_status_enum': ('OPEN', 'ACKNOWLEDGED', 'RESOLVED'),
    'sync_status_enum': (
        'PENDING', 'FETCHING_CAMPAIGNS', 'UPSERTING_CAMPAIGNS',
        'FETCHING_METRICS', 'UPSERTING_METRICS', 'DONE', 'FAILED',
    ),
    'sync_trigger_enum': ('SCHEDULED', 'MANUAL'),
}


def _enum(name):
    # Types are created once in upgrade(); tables only reference them
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('NOW()')),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        'tenants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()')),
    )

    op.create_table(
        'connected_accounts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('platform', _enum('platform_enum'), nullable=False),
        sa.Column('external_account_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('status', _enum('account_status_enum'), nullable=False),
        sa.Column('access_token_enc', sa.Text(), nullable=True),
        sa.Column('refresh_token_enc', sa.Text(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'platform', 'external_account_id', name='uq_account_tenant_platform_external'),
    )

    op.create_table(
        'campaigns',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('connected_accounts.id'), nullable=True, index=True),
        sa.Column('platform', _enum('platform_enum'), nullable=False),
        sa.Column('external_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('status', _enum('campaign_status_enum'), nullable=False),
        sa.Column('budget', sa.Numeric(18, 4), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'platform', 'external_id', name='uq_campaign_tenant_platform_external'),
    )

    op.create_table(
        'metrics',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('campaign_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('campaigns.id'), nullable=False, index=True),
        sa.Column('date', sa.Date(), nullable=False, index=True),
        sa.Column('impressions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('spend', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('conversions', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('revenue', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('ctr', sa.Float(), nullable=False, server_default='0'),
        sa.Column('cpc', sa.Float(), nullable=False, server_default='0'),
        sa.Column('cpm', sa.Float(), nullable=False, server_default='0'),
        sa.Column('roas', sa.Float(), nullable=False, server_default='0'),
        sa.Column('is_mock_data', sa.Boolean(), nullable=False, server_default='false'),
        *_timestamps(),
        sa.UniqueConstraint('campaign_id', 'date', name='uq_metric_campaign_date'),
    )

    op.create_table(
        'web_analytics_daily',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('property_id', sa.String(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False, index=True),
        sa.Column('sessions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('active_users', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('new_users', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('page_views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('conversions', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('revenue', sa.Numeric(18, 4), nullable=False, server_default='0'),
        sa.Column('is_mock_data', sa.Boolean(), nullable=False, server_default='false'),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'property_id', 'date', name='uq_web_analytics_tenant_property_date'),
    )

    op.create_table(
        'alert_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('type', _enum('alert_rule_type_enum'), nullable=False),
        sa.Column('metric', sa.String(), nullable=False),
        sa.Column('operator', _enum('alert_operator_enum'), nullable=False),
        sa.Column('threshold', sa.Float(), nullable=False),
        sa.Column('severity', _enum('alert_severity_enum'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        *_timestamps(),
    )

    op.create_table(
        'alerts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('rule_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('alert_rules.id', ondelete='SET NULL'), nullable=True),
        sa.Column('campaign_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('campaigns.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('severity', _enum('alert_severity_enum'), nullable=False),
        sa.Column('status', _enum('alert_status_enum'), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )

    # Dedup lookup in check_alerts: (tenant, campaign, type) among unresolved alerts
    op.create_index('ix_alerts_tenant_campaign_type', 'alerts', ['tenant_id', 'campaign_id', 'type'])

    op.create_table(
        'sync_runs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('account_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('connected_accounts.id'), nullable=False, index=True),
        sa.Column('platform', _enum('platform_enum'), nullable=False),
        sa.Column('trigger', _enum('sync_trigger_enum'), nullable=False),
        sa.Column('status', _enum('sync_status_enum'), nullable=False),
        sa.Column('campaigns_synced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('metrics_synced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), server_default=sa.text('NOW()')),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('sync_runs')
    op.drop_index('ix_alerts_tenant_campaign_type', table_name='alerts')
    op.drop_table('alerts')
    op.drop_table('alert_rules')
    op.drop_table('web_analytics_daily')
    op.drop_table('metrics')
    op.drop_table('campaigns')
    op.drop_table('connected_accounts')
    op.drop_table('tenants')

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
