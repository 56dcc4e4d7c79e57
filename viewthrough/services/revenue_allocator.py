"""Revenue allocator for modeled view-through credit.

WHAT: Turns one order's view estimates into bounded revenue line items
WHY: Modeled credit must never dominate real click credit

Allocation rules:
  - cap = order revenue × max_view_credit_share (30%)
  - platforms are taken in the order the estimator emitted them
    (lexicographic by platform name)
  - each platform asks for round(revenue × probability, 2) and gets
    whatever is left under the cap, first come first served
  - platforms that would receive nothing are skipped

Examples:
  revenue $100, meta p=0.20                    → meta $20.00
  revenue $100, google p=0.25, meta p=0.20     → google $25.00, meta $5.00
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import List

from viewthrough.services.view_probability import ConvertedOrder, ViewEstimate

CENT = Decimal("0.01")


@dataclass(frozen=True)
class ViewThroughLine:
    """One allocated view-through credit, ready to persist."""

    visitor_id: str
    order_id: str
    provider: str
    campaign_id: str
    revenue: Decimal
    view_probability: float
    attributed_revenue: Decimal
    converted_at: datetime


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def allocate_order_revenue(
    order: ConvertedOrder,
    estimates: List[ViewEstimate],
    max_view_credit_share: float,
) -> List[ViewThroughLine]:
    """Allocate capped view-through revenue for one order.

    Args:
        order: The converted order
        estimates: Estimator output for this order, in allocation order
        max_view_credit_share: Share of order revenue view-through may claim

    Returns:
        Line items whose attributed revenue sums to at most the cap
    """
    revenue = _to_decimal(order.revenue)
    if revenue <= 0:
        return []

    max_view_revenue = revenue * _to_decimal(max_view_credit_share)
    total_view_revenue = Decimal("0")
    lines: List[ViewThroughLine] = []

    for estimate in estimates:
        candidate = (revenue * _to_decimal(estimate.probability)).quantize(CENT, rounding=ROUND_HALF_UP)
        remaining = (max_view_revenue - total_view_revenue).quantize(CENT, rounding=ROUND_DOWN)
        attributed = min(candidate, remaining)

        if attributed <= 0:
            continue

        lines.append(ViewThroughLine(
            visitor_id=order.visitor_id,
            order_id=order.order_id,
            provider=estimate.provider,
            campaign_id=estimate.campaign_id,
            revenue=revenue,
            view_probability=estimate.probability,
            attributed_revenue=attributed,
            converted_at=order.converted_at,
        ))
        total_view_revenue += attributed

    return lines
