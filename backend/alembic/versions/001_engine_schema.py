"""Event, session, visitor, goal and funnel schema

Revision ID: 001_engine
Revises:
Create Date: 2026-10-16 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Events - one row per tracker interaction
    op.create_table(
        'events',
        sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column('site_id', sa.String(64), nullable=False, index=True),
        sa.Column('session_id', sa.String(255), nullable=False),
        sa.Column('visitor_hash', sa.String(64), nullable=False, index=True),
        sa.Column('event_type', sa.String(50), nullable=False, index=True),
        sa.Column('event_name', sa.String(255)),
        sa.Column('event_data', postgresql.JSONB),
        sa.Column('url', sa.String(2048)),
        sa.Column('path', sa.String(1024), nullable=False, server_default='/'),
        sa.Column('page_title', sa.String(512)),
        sa.Column('scroll_depth_pct', sa.Integer),
        sa.Column('engaged_time_ms', sa.Integer),
        sa.Column('time_on_page_ms', sa.Integer),
        sa.Column('form_id', sa.String(255)),
        sa.Column('revenue', sa.Float),
        sa.Column('currency', sa.String(3)),
        sa.Column('order_id', sa.String(255)),
        sa.Column('referrer', sa.Text),
        sa.Column('referrer_hostname', sa.String(255)),
        sa.Column('utm_source', sa.String(255)),
        sa.Column('utm_medium', sa.String(255)),
        sa.Column('utm_campaign', sa.String(255)),
        sa.Column('utm_term', sa.String(255)),
        sa.Column('utm_content', sa.String(255)),
        sa.Column('browser', sa.String(100)),
        sa.Column('os', sa.String(100)),
        sa.Column('device_type', sa.String(50)),
        sa.Column('country_code', sa.String(2)),
        sa.Column('city', sa.String(100)),
        sa.Column('language', sa.String(35)),
        sa.Column('screen_width', sa.Integer),
        sa.Column('screen_height', sa.Integer),
        sa.Column('custom_props', postgresql.JSONB),
        sa.Column('is_entry', sa.Boolean, server_default=sa.false()),
        sa.Column('is_exit', sa.Boolean, server_default=sa.false()),
        sa.Column('is_bounce', sa.Boolean, server_default=sa.false()),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_events_session_timestamp', 'events', ['session_id', 'timestamp'])
    op.create_index('idx_events_site_timestamp', 'events', ['site_id', 'timestamp'])

    # Sessions - live aggregate per visit
    op.create_table(
        'sessions',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('site_id', sa.String(64), nullable=False, index=True),
        sa.Column('visitor_hash', sa.String(64), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_ms', sa.Integer, server_default='0'),
        sa.Column('engaged_time_ms', sa.Integer, server_default='0'),
        sa.Column('pageviews', sa.Integer, server_default='0'),
        sa.Column('events_count', sa.Integer, server_default='0'),
        sa.Column('is_bounce', sa.Boolean, server_default=sa.true()),
        sa.Column('entry_path', sa.String(1024)),
        sa.Column('exit_path', sa.String(1024)),
        sa.Column('referrer_hostname', sa.String(255)),
        sa.Column('utm_source', sa.String(255)),
        sa.Column('utm_medium', sa.String(255)),
        sa.Column('utm_campaign', sa.String(255)),
        sa.Column('country_code', sa.String(2)),
        sa.Column('city', sa.String(100)),
        sa.Column('device_type', sa.String(50)),
        sa.Column('browser', sa.String(100)),
        sa.Column('os', sa.String(100)),
        sa.Column('total_revenue', sa.Float, server_default='0'),
        sa.Column('custom_props', postgresql.JSONB),
    )
    op.create_index('idx_sessions_site_started', 'sessions', ['site_id', 'started_at'])

    # Visitors - lifetime aggregate per anonymous visitor
    op.create_table(
        'visitors',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('site_id', sa.String(64), nullable=False, index=True),
        sa.Column('visitor_id', sa.String(64), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('total_sessions', sa.Integer, server_default='0'),
        sa.Column('total_pageviews', sa.Integer, server_default='0'),
        sa.Column('total_events', sa.Integer, server_default='0'),
        sa.Column('total_revenue', sa.Float, server_default='0'),
        sa.Column('total_engaged_time_ms', sa.Integer, server_default='0'),
        sa.Column('first_referrer_hostname', sa.String(255)),
        sa.Column('first_utm_source', sa.String(255)),
        sa.Column('first_utm_medium', sa.String(255)),
        sa.Column('first_utm_campaign', sa.String(255)),
        sa.Column('first_entry_path', sa.String(1024)),
        sa.Column('last_country_code', sa.String(2)),
        sa.Column('last_city', sa.String(100)),
        sa.Column('last_device_type', sa.String(50)),
        sa.Column('last_browser', sa.String(100)),
        sa.Column('last_os', sa.String(100)),
        sa.Column('last_language', sa.String(35)),
        sa.Column('last_screen_width', sa.Integer),
        sa.Column('last_screen_height', sa.Integer),
        sa.Column('custom_props', postgresql.JSONB),
        sa.UniqueConstraint('site_id', 'visitor_id', name='uq_visitors_site_visitor'),
    )

    # Goals - definitions owned by site configuration
    op.create_table(
        'goals',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('site_id', sa.String(64), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('goal_type', sa.String(50), nullable=False),
        sa.Column('conditions', postgresql.JSONB, nullable=False),
        sa.Column('revenue_value', sa.Float),
        sa.Column('use_dynamic_revenue', sa.Boolean, server_default=sa.false()),
        sa.Column('count_mode', sa.String(30), server_default='once_per_session'),
        sa.Column('notify_webhook', sa.String(2048)),
        sa.Column('notify_slack_webhook', sa.String(2048)),
        sa.Column('notify_email', postgresql.JSONB),
        sa.Column('active', sa.Boolean, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Goal conversions - append-only, one per (goal, event)
    op.create_table(
        'goal_conversions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'goal_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('goals.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('site_id', sa.String(64), nullable=False, index=True),
        sa.Column('session_id', sa.String(255), nullable=False),
        sa.Column('visitor_hash', sa.String(64), nullable=False),
        sa.Column('event_id', sa.BigInteger, nullable=False),
        sa.Column('referrer_hostname', sa.String(255)),
        sa.Column('utm_source', sa.String(255)),
        sa.Column('utm_medium', sa.String(255)),
        sa.Column('utm_campaign', sa.String(255)),
        sa.Column('entry_path', sa.String(1024)),
        sa.Column('conversion_path', sa.String(1024)),
        sa.Column('revenue', sa.Float),
        sa.Column('converted_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('goal_id', 'event_id', name='uq_goal_conversions_goal_event'),
    )
    op.create_index(
        'idx_goal_conversions_goal_session',
        'goal_conversions',
        ['goal_id', 'session_id'],
    )

    # Funnels - ordered step definitions
    op.create_table(
        'funnels',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('site_id', sa.String(64), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('steps', postgresql.JSONB, nullable=False),
        sa.Column('window_hours', sa.Integer, server_default='168'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # System settings - persisted daily salt and similar
    op.create_table(
        'system_settings',
        sa.Column('key', sa.String(100), primary_key=True),
        sa.Column('value', sa.Text, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('system_settings')
    op.drop_table('funnels')
    op.drop_index('idx_goal_conversions_goal_session', table_name='goal_conversions')
    op.drop_table('goal_conversions')
    op.drop_table('goals')
    op.drop_table('visitors')
    op.drop_index('idx_sessions_site_started', table_name='sessions')
    op.drop_table('sessions')
    op.drop_index('idx_events_site_timestamp', table_name='events')
    op.drop_index('idx_events_session_timestamp', table_name='events')
    op.drop_table('events')
