"""Add view-through attribution results and summary columns.

Revision ID: 20261019_000001
Revises: 20261012_000002
Create Date: 2026-10-19 08:00:00.000000

WHAT:
    - view_through_results: modeled view-through credit per
      order/platform/campaign, upserted on recompute
    - view_through_conversions / view_through_revenue on
      attribution_daily_summaries

WHY:
    Ad platforms show far more impressions than get clicked. View-through
    credit is modeled from impressions and kept additive to click credit.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20261019_000001'
down_revision = '20261012_000002'
branch_labels = None
depends_on = None


def upgrade() -> None:
    # =========================================================================
    # STEP 1: view_through_results
    # =========================================================================
    # campaign_id is NOT NULL ('' for impressions without a campaign) so the
    # unique key always matches on recompute
    op.create_table(
        'view_through_results',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True,
                  server_default=sa.text('gen_random_uuid()')),
        sa.Column('workspace_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('workspaces.id'), nullable=False),
        sa.Column('visitor_id', sa.String(), nullable=False),
        sa.Column('order_id', sa.String(), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('campaign_id', sa.String(), nullable=False, server_default=''),
        sa.Column('revenue', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('view_probability', sa.Numeric(10, 6), nullable=False, server_default='0'),
        sa.Column('attributed_revenue', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('converted_at', sa.DateTime(), nullable=False),
        sa.Column('conversion_date', sa.Date(), nullable=False),
        sa.Column('model_version', sa.String(), nullable=False, server_default='v1'),
        sa.Column('computed_at', sa.DateTime(), nullable=False, server_default=sa.text('NOW()')),
        sa.UniqueConstraint('workspace_id', 'visitor_id', 'order_id', 'provider', 'campaign_id',
                            name='uq_view_through_result'),
    )
    op.create_index('ix_view_through_workspace_date', 'view_through_results',
                    ['workspace_id', 'conversion_date'])
    op.create_index('ix_view_through_workspace_provider', 'view_through_results',
                    ['workspace_id', 'provider'])

    # =========================================================================
    # STEP 2: view-through columns on the daily summary
    # =========================================================================
    op.add_column(
        'attribution_daily_summaries',
        sa.Column('view_through_conversions', sa.Numeric(10, 4), nullable=False, server_default='0')
    )
    op.add_column(
        'attribution_daily_summaries',
        sa.Column('view_through_revenue', sa.Numeric(12, 2), nullable=False, server_default='0')
    )


def downgrade() -> None:
    op.drop_column('attribution_daily_summaries', 'view_through_revenue')
    op.drop_column('attribution_daily_summaries', 'view_through_conversions')

    op.drop_index('ix_view_through_workspace_provider', table_name='view_through_results')
    op.drop_index('ix_view_through_workspace_date', table_name='view_through_results')
    op.drop_table('view_through_results')
