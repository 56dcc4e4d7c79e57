"""Add event store and click attribution tables.

Revision ID: 20261012_000002
Revises: 20261012_000001
Create Date: 2026-10-12 09:30:00.000000

WHAT:
    Event store (read-only for the view-through engine):
    - pixel_events: immutable raw pixel log (purchases = checkout_completed)
    - ad_impressions: daily impressions/reach per platform/campaign/adset/ad
    - customer_journeys / journey_touchpoints: click touchpoints per visitor

    Click attribution output:
    - attributions: credit per touchpoint per order per model
    - attribution_daily_summaries: daily rollup per model/platform

WHY:
    Attribution is always recomputable from the event store; the daily
    summary is what dashboards read.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20261012_000002'
down_revision = '20261012_000001'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # =========================================================================
    # STEP 1: pixel_events (immutable event log)
    # =========================================================================
    op.create_table(
        'pixel_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('workspace_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('workspaces.id'), nullable=False),
        sa.Column('visitor_id', sa.String(), nullable=True),
        # Client-generated UUID for deduplication
        sa.Column('event_id', sa.String(), nullable=True),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('event_data', sa.JSON(), nullable=True),
        # Purchase fields (checkout_completed only)
        sa.Column('order_id', sa.String(), nullable=True),
        sa.Column('revenue', sa.Numeric(12, 2), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()')),
    )
    op.create_index('ix_pixel_events_workspace_type_created', 'pixel_events',
                    ['workspace_id', 'event_type', 'created_at'])
    op.create_index(
        'ix_pixel_events_order',
        'pixel_events',
        ['workspace_id', 'order_id'],
        postgresql_where=sa.text('order_id IS NOT NULL')
    )

    # =========================================================================
    # STEP 2: ad_impressions (daily rollup from the ad platforms)
    # =========================================================================
    op.create_table(
        'ad_impressions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('workspace_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('workspaces.id'), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('campaign_id', sa.String(), nullable=True),
        sa.Column('campaign_name', sa.String(), nullable=True),
        sa.Column('adset_id', sa.String(), nullable=True),
        sa.Column('ad_id', sa.String(), nullable=True),
        sa.Column('impressions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reach', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('frequency', sa.Numeric(6, 2), nullable=False, server_default='0'),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()')),
        sa.UniqueConstraint('workspace_id', 'provider', 'campaign_id', 'adset_id', 'ad_id', 'date',
                            name='uq_ad_impression_day'),
    )
    op.create_index('ix_ad_impressions_workspace_date', 'ad_impressions',
                    ['workspace_id', 'date'])
    op.create_index('ix_ad_impressions_workspace_provider_date', 'ad_impressions',
                    ['workspace_id', 'provider', 'date'])

    # =========================================================================
    # STEP 3: customer_journeys + journey_touchpoints
    # =========================================================================
    op.create_table(
        'customer_journeys',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('workspace_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('workspaces.id'), nullable=False),
        sa.Column('visitor_id', sa.String(), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.Column('touchpoint_count', sa.Integer(), server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('NOW()')),
        # One journey per visitor per workspace
        sa.UniqueConstraint('workspace_id', 'visitor_id', name='uq_journey_visitor'),
    )

    op.create_table(
        'journey_touchpoints',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('journey_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('customer_journeys.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('event_type', sa.String(), nullable=False, server_default='page_viewed'),
        sa.Column('utm_source', sa.String(), nullable=True),
        sa.Column('utm_medium', sa.String(), nullable=True),
        sa.Column('utm_campaign', sa.String(), nullable=True),
        sa.Column('fbclid', sa.String(), nullable=True),
        sa.Column('gclid', sa.String(), nullable=True),
        sa.Column('ttclid', sa.String(), nullable=True),
        sa.Column('provider', sa.String(), nullable=True),
        sa.Column('touched_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_touchpoints_journey', 'journey_touchpoints',
                    ['journey_id', 'touched_at'])

    # =========================================================================
    # STEP 4: attributions (click model output)
    # =========================================================================
    op.create_table(
        'attributions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('workspace_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('workspaces.id'), nullable=False),
        sa.Column('journey_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('customer_journeys.id'), nullable=True),
        sa.Column('touchpoint_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('journey_touchpoints.id', ondelete='CASCADE'), nullable=True),
        sa.Column('order_id', sa.String(), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('attribution_model', sa.String(), nullable=False,
                  server_default='last_click'),
        sa.Column('revenue', sa.Numeric(12, 2), nullable=False, server_default='0'),
        # Fraction of the conversion credited to this touchpoint (0.0-1.0)
        sa.Column('attribution_credit', sa.Numeric(10, 6), nullable=False, server_default='1.0'),
        sa.Column('attributed_revenue', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('order_created_at', sa.DateTime(), nullable=True),
        sa.Column('attributed_at', sa.DateTime(), server_default=sa.text('NOW()')),
        sa.UniqueConstraint('touchpoint_id', 'order_id', 'attribution_model',
                            name='uq_attribution_touchpoint_order_model'),
    )
    op.create_index('ix_attributions_workspace_model', 'attributions',
                    ['workspace_id', 'attribution_model'])

    # =========================================================================
    # STEP 5: attribution_daily_summaries
    # =========================================================================
    op.create_table(
        'attribution_daily_summaries',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('workspace_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('workspaces.id'), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('attribution_model', sa.String(), nullable=False),
        sa.Column('provider', sa.String(), nullable=True),
        sa.Column('utm_campaign', sa.String(), nullable=True),
        sa.Column('attributed_conversions', sa.Numeric(10, 4), nullable=False, server_default='0'),
        sa.Column('attributed_revenue', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('touchpoints', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unique_visitors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('computed_at', sa.DateTime(), server_default=sa.text('NOW()')),
    )
    op.create_index('ix_attr_summary_workspace_model_date', 'attribution_daily_summaries',
                    ['workspace_id', 'attribution_model', 'date'])
    op.create_index('ix_attr_summary_workspace_provider_date', 'attribution_daily_summaries',
                    ['workspace_id', 'provider', 'date'])


def downgrade() -> None:
    # Drop tables in reverse order (respect foreign keys)
    op.drop_table('attribution_daily_summaries')
    op.drop_table('attributions')
    op.drop_table('journey_touchpoints')
    op.drop_table('customer_journeys')
    op.drop_table('ad_impressions')
    op.drop_table('pixel_events')
