"""Folds view-through totals into the daily attribution summaries.

WHAT: Writes Σ view_probability / Σ attributed_revenue per (date, provider)
      into the `view_through_*` columns of `attribution_daily_summaries`
WHY: Dashboards read the daily summary; view-through must show up there
     next to the click numbers without a second table read

Only existing summary rows are touched (the click batch owns their
creation). Every model row of a date/provider gets the same view-through
totals, since view-through credit does not depend on the click model.

The range is reset to zero before the new totals are applied, so a
provider whose view-through rows were pruned drops back to 0.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Dict, Tuple
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from viewthrough.models import AttributionDailySummary, ViewThroughResult

logger = logging.getLogger(__name__)


def aggregate_view_through(
    db: Session,
    workspace_id: UUID,
    start_date: date,
    end_date: date,
) -> Dict[Tuple[date, str], Tuple[Decimal, Decimal]]:
    """(conversion_date, provider) -> (Σ view_probability, Σ attributed_revenue)."""
    rows = (
        db.query(
            ViewThroughResult.conversion_date,
            ViewThroughResult.provider,
            func.sum(ViewThroughResult.view_probability).label("conversions"),
            func.sum(ViewThroughResult.attributed_revenue).label("revenue"),
        )
        .filter(
            ViewThroughResult.workspace_id == workspace_id,
            ViewThroughResult.conversion_date >= start_date,
            ViewThroughResult.conversion_date <= end_date,
        )
        .group_by(ViewThroughResult.conversion_date, ViewThroughResult.provider)
        .all()
    )

    totals: Dict[Tuple[date, str], Tuple[Decimal, Decimal]] = {}
    for row in rows:
        totals[(row.conversion_date, row.provider)] = (
            Decimal(str(row.conversions or 0)).quantize(Decimal("0.0001")),
            Decimal(str(row.revenue or 0)).quantize(Decimal("0.01")),
        )
    return totals


def merge_view_through_into_summary(
    db: Session,
    workspace_id: UUID,
    start_date: date,
    end_date: date,
) -> int:
    """Update existing summary rows with view-through totals. Never inserts.

    Returns:
        Number of summary rows that received view-through totals
    """
    totals = aggregate_view_through(db, workspace_id, start_date, end_date)

    try:
        db.query(AttributionDailySummary).filter(
            AttributionDailySummary.workspace_id == workspace_id,
            AttributionDailySummary.date >= start_date,
            AttributionDailySummary.date <= end_date,
        ).update(
            {
                AttributionDailySummary.view_through_conversions: 0,
                AttributionDailySummary.view_through_revenue: 0,
            },
            synchronize_session=False,
        )

        updated = 0
        for (conversion_date, provider), (conversions, revenue) in sorted(totals.items()):
            updated += db.query(AttributionDailySummary).filter(
                AttributionDailySummary.workspace_id == workspace_id,
                AttributionDailySummary.date == conversion_date,
                AttributionDailySummary.provider == provider,
            ).update(
                {
                    AttributionDailySummary.view_through_conversions: conversions,
                    AttributionDailySummary.view_through_revenue: revenue,
                },
                synchronize_session=False,
            )

        db.commit()
    except Exception:
        db.rollback()
        logger.exception("[VIEW_THROUGH] Summary merge failed for workspace %s", workspace_id)
        raise

    logger.info(
        "[VIEW_THROUGH] Merged %d (date, provider) totals into %d summary rows for workspace %s",
        len(totals), updated, workspace_id,
    )
    return updated
