"""Read-only loaders over the event store.

WHAT:
    Pulls one workspace's converted orders, impression rollups and clicked
    platforms into memory for a view-through computation.

WHY:
    Each run reads its inputs once, then computes without touching the
    event store again. The view-through engine never writes these tables.

REFERENCES:
    - viewthrough/models.py: PixelEvent, AdImpression, CustomerJourney, JourneyTouchpoint
    - viewthrough/services/view_through_service.py: Caller
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Sequence, Set
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from viewthrough.models import AdImpression, CustomerJourney, JourneyTouchpoint, PixelEvent
from viewthrough.services.view_probability import ConvertedOrder, ImpressionRecord

logger = logging.getLogger(__name__)

PURCHASE_EVENT_TYPE = "checkout_completed"

# Bound the size of IN (...) lists
VISITOR_LOOKUP_CHUNK = 500


def day_bounds(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    """[start 00:00, end+1 00:00) bounds for an inclusive date range."""
    return (
        datetime.combine(start_date, time.min),
        datetime.combine(end_date + timedelta(days=1), time.min),
    )


def load_converted_orders(
    db: Session,
    workspace_id: UUID,
    start_date: date,
    end_date: date,
) -> List[ConvertedOrder]:
    """Purchases in [start_date, end_date], one per order id (earliest event)."""
    range_start, range_end = day_bounds(start_date, end_date)

    rows = (
        db.query(
            PixelEvent.order_id,
            PixelEvent.visitor_id,
            PixelEvent.revenue,
            PixelEvent.created_at,
        )
        .filter(
            PixelEvent.workspace_id == workspace_id,
            PixelEvent.event_type == PURCHASE_EVENT_TYPE,
            PixelEvent.order_id.isnot(None),
            PixelEvent.visitor_id.isnot(None),
            PixelEvent.created_at >= range_start,
            PixelEvent.created_at < range_end,
        )
        .order_by(PixelEvent.order_id, PixelEvent.created_at)
        .all()
    )

    orders: List[ConvertedOrder] = []
    seen: Set[str] = set()
    for row in rows:
        if row.order_id in seen:
            continue
        seen.add(row.order_id)
        orders.append(ConvertedOrder(
            order_id=row.order_id,
            visitor_id=row.visitor_id,
            revenue=float(row.revenue or 0),
            converted_at=row.created_at,
        ))

    return orders


def load_impression_records(
    db: Session,
    workspace_id: UUID,
    start_date: date,
    end_date: date,
    lookback_days: int,
) -> List[ImpressionRecord]:
    """Impressions rolled up per provider/campaign/day.

    The window starts `lookback_days` before `start_date` so early orders
    still see their full lookback.
    """
    window_start = start_date - timedelta(days=lookback_days)

    rows = (
        db.query(
            AdImpression.provider,
            AdImpression.campaign_id,
            AdImpression.date,
            func.sum(AdImpression.impressions).label("total_impressions"),
            func.max(AdImpression.reach).label("max_reach"),
        )
        .filter(
            AdImpression.workspace_id == workspace_id,
            AdImpression.date >= window_start,
            AdImpression.date <= end_date,
        )
        .group_by(AdImpression.provider, AdImpression.campaign_id, AdImpression.date)
        .order_by(AdImpression.provider, AdImpression.date)
        .all()
    )

    return [
        ImpressionRecord(
            provider=row.provider,
            campaign_id=row.campaign_id or "",
            impression_date=row.date,
            impressions=int(row.total_impressions or 0),
            reach=max(int(row.max_reach or 0), 1),
        )
        for row in rows
    ]


def load_global_max_reach(
    db: Session,
    workspace_id: UUID,
    start_date: date,
    end_date: date,
    lookback_days: int,
) -> int:
    """Largest single-row reach across all platforms in the loaded window (>= 1)."""
    window_start = start_date - timedelta(days=lookback_days)

    max_reach = (
        db.query(func.max(AdImpression.reach))
        .filter(
            AdImpression.workspace_id == workspace_id,
            AdImpression.date >= window_start,
            AdImpression.date <= end_date,
        )
        .scalar()
    )
    return max(int(max_reach or 0), 1)


def load_clicked_providers(
    db: Session,
    workspace_id: UUID,
    visitor_ids: Sequence[str],
) -> Dict[str, Set[str]]:
    """Map visitor_id -> set of providers the visitor clicked on (any time)."""
    clicked: Dict[str, Set[str]] = defaultdict(set)
    unique_visitors = sorted(set(visitor_ids))

    for i in range(0, len(unique_visitors), VISITOR_LOOKUP_CHUNK):
        chunk = unique_visitors[i:i + VISITOR_LOOKUP_CHUNK]
        rows = (
            db.query(CustomerJourney.visitor_id, JourneyTouchpoint.provider)
            .join(JourneyTouchpoint, JourneyTouchpoint.journey_id == CustomerJourney.id)
            .filter(
                CustomerJourney.workspace_id == workspace_id,
                CustomerJourney.visitor_id.in_(chunk),
                JourneyTouchpoint.provider.isnot(None),
            )
            .distinct()
            .all()
        )
        for row in rows:
            clicked[row.visitor_id].add(row.provider)

    return dict(clicked)
