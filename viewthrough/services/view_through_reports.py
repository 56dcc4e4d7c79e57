"""View-through reporting layer.

WHAT:
    Read-side queries for the attribution dashboard:
    - View-through report: modeled credit per platform, with the click
      revenue of the same range and the resulting view share
    - Combined report: click model + view-through credit per platform
    - Impression rollup: pass-through aggregation of `ad_impressions`

WHY:
    View-through credit is additive on top of click credit. The dashboard
    shows both side by side so the modeled share stays visible.

ROUNDING:
    conversions (fractional) -> 4 decimals
    currency                 -> 2 decimals
    average probability      -> 6 decimals

DATE RANGES:
    Inclusive on both ends. View-through rows filter on `conversion_date`;
    click model rows on the order timestamp (falling back to attributed_at).

REFERENCES:
    - viewthrough/routers/attribution.py (HTTP surface)
    - viewthrough/models.py: ViewThroughResult, Attribution, AdImpression
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from viewthrough.models import AdImpression, Attribution, AttributionModelEnum, ViewThroughResult
from viewthrough.services.event_store import day_bounds

logger = logging.getLogger(__name__)

DEFAULT_ATTRIBUTION_MODEL = AttributionModelEnum.last_click.value
ALL_MODELS = [m.value for m in AttributionModelEnum]


class UnknownAttributionModelError(ValueError):
    """Raised when a click model identifier is not recognized."""

    def __init__(self, model: str):
        self.model = model
        super().__init__(f"Invalid model '{model}'. Must be one of: {', '.join(ALL_MODELS)}")


def validate_attribution_model(model: str) -> str:
    if model not in ALL_MODELS:
        raise UnknownAttributionModelError(model)
    return model


# =============================================================================
# REPORT TYPES
# =============================================================================

@dataclass
class PlatformViewReport:
    platform: str
    impressions: int
    view_conversions: float
    view_revenue: float
    avg_probability: float


@dataclass
class ViewThroughReport:
    platforms: List[PlatformViewReport]
    total_view_revenue: float
    total_click_revenue: float
    combined_revenue: float
    view_share: str


@dataclass
class CombinedPlatformRow:
    platform: str
    click_conversions: float = 0.0
    click_revenue: float = 0.0
    view_conversions: float = 0.0
    view_revenue: float = 0.0
    total_conversions: float = 0.0
    total_revenue: float = 0.0


@dataclass
class CombinedTotals:
    click_conversions: float = 0.0
    click_revenue: float = 0.0
    view_conversions: float = 0.0
    view_revenue: float = 0.0
    total_conversions: float = 0.0
    total_revenue: float = 0.0


@dataclass
class CombinedReport:
    platforms: List[CombinedPlatformRow] = field(default_factory=list)
    totals: CombinedTotals = field(default_factory=CombinedTotals)


@dataclass
class ImpressionRollupRow:
    platform: str
    campaign_id: Optional[str]
    campaign_name: Optional[str]
    date: date
    impressions: int
    reach: int
    frequency: float


# =============================================================================
# HELPERS
# =============================================================================

def _conversions(value) -> float:
    return round(float(value or 0), 4)


def _currency(value) -> float:
    return round(float(value or 0), 2)


def format_view_share(view_revenue: float, combined_revenue: float) -> str:
    """One-decimal percentage string, "0%" when there is nothing to share."""
    if combined_revenue <= 0:
        return "0%"
    return f"{view_revenue / combined_revenue * 100:.1f}%"


def _click_rows_in_range(query, start_date: date, end_date: date):
    range_start, range_end = day_bounds(start_date, end_date)
    order_time = func.coalesce(Attribution.order_created_at, Attribution.attributed_at)
    return query.filter(order_time >= range_start, order_time < range_end)


# =============================================================================
# VIEW-THROUGH REPORT
# =============================================================================

def get_view_through_report(
    db: Session,
    workspace_id: UUID,
    start_date: date,
    end_date: date,
) -> ViewThroughReport:
    """Per-platform view-through credit plus click revenue for the same range."""
    impressions_by_platform: Dict[str, int] = {
        row.provider: int(row.total_impressions or 0)
        for row in (
            db.query(
                AdImpression.provider,
                func.sum(AdImpression.impressions).label("total_impressions"),
            )
            .filter(
                AdImpression.workspace_id == workspace_id,
                AdImpression.date >= start_date,
                AdImpression.date <= end_date,
            )
            .group_by(AdImpression.provider)
            .all()
        )
    }

    view_rows = (
        db.query(
            ViewThroughResult.provider,
            func.sum(ViewThroughResult.view_probability).label("view_conversions"),
            func.sum(ViewThroughResult.attributed_revenue).label("view_revenue"),
            func.avg(ViewThroughResult.view_probability).label("avg_probability"),
        )
        .filter(
            ViewThroughResult.workspace_id == workspace_id,
            ViewThroughResult.conversion_date >= start_date,
            ViewThroughResult.conversion_date <= end_date,
        )
        .group_by(ViewThroughResult.provider)
        .all()
    )

    platforms = [
        PlatformViewReport(
            platform=row.provider,
            impressions=impressions_by_platform.get(row.provider, 0),
            view_conversions=_conversions(row.view_conversions),
            view_revenue=_currency(row.view_revenue),
            avg_probability=round(float(row.avg_probability or 0), 6),
        )
        for row in view_rows
    ]
    platforms.sort(key=lambda p: (-p.view_revenue, p.platform))

    click_revenue = _click_rows_in_range(
        db.query(func.sum(Attribution.attributed_revenue)).filter(
            Attribution.workspace_id == workspace_id,
            Attribution.attribution_model == DEFAULT_ATTRIBUTION_MODEL,
        ),
        start_date,
        end_date,
    ).scalar()

    total_view_revenue = _currency(sum(p.view_revenue for p in platforms))
    total_click_revenue = _currency(click_revenue)
    combined_revenue = _currency(total_view_revenue + total_click_revenue)

    return ViewThroughReport(
        platforms=platforms,
        total_view_revenue=total_view_revenue,
        total_click_revenue=total_click_revenue,
        combined_revenue=combined_revenue,
        view_share=format_view_share(total_view_revenue, combined_revenue),
    )


# =============================================================================
# COMBINED REPORT
# =============================================================================

def get_combined_attribution(
    db: Session,
    workspace_id: UUID,
    start_date: date,
    end_date: date,
    model: str = DEFAULT_ATTRIBUTION_MODEL,
) -> CombinedReport:
    """Click model and view-through credit per platform, additive.

    Raises:
        UnknownAttributionModelError: `model` is not a click model identifier
    """
    validate_attribution_model(model)

    click_rows = _click_rows_in_range(
        db.query(
            Attribution.provider,
            func.sum(Attribution.attribution_credit).label("click_conversions"),
            func.sum(Attribution.attributed_revenue).label("click_revenue"),
        ).filter(
            Attribution.workspace_id == workspace_id,
            Attribution.attribution_model == model,
        ),
        start_date,
        end_date,
    ).group_by(Attribution.provider).all()

    view_rows = (
        db.query(
            ViewThroughResult.provider,
            func.sum(ViewThroughResult.view_probability).label("view_conversions"),
            func.sum(ViewThroughResult.attributed_revenue).label("view_revenue"),
        )
        .filter(
            ViewThroughResult.workspace_id == workspace_id,
            ViewThroughResult.conversion_date >= start_date,
            ViewThroughResult.conversion_date <= end_date,
        )
        .group_by(ViewThroughResult.provider)
        .all()
    )

    by_platform: Dict[str, CombinedPlatformRow] = {}
    for row in click_rows:
        by_platform[row.provider] = CombinedPlatformRow(
            platform=row.provider,
            click_conversions=_conversions(row.click_conversions),
            click_revenue=_currency(row.click_revenue),
        )
    for row in view_rows:
        entry = by_platform.setdefault(row.provider, CombinedPlatformRow(platform=row.provider))
        entry.view_conversions = _conversions(row.view_conversions)
        entry.view_revenue = _currency(row.view_revenue)

    report = CombinedReport()
    totals = report.totals
    for entry in by_platform.values():
        entry.total_conversions = _conversions(entry.click_conversions + entry.view_conversions)
        entry.total_revenue = _currency(entry.click_revenue + entry.view_revenue)
        report.platforms.append(entry)

        totals.click_conversions += entry.click_conversions
        totals.click_revenue += entry.click_revenue
        totals.view_conversions += entry.view_conversions
        totals.view_revenue += entry.view_revenue
        totals.total_conversions += entry.total_conversions
        totals.total_revenue += entry.total_revenue

    report.platforms.sort(key=lambda p: (-p.total_revenue, p.platform))

    totals.click_conversions = _conversions(totals.click_conversions)
    totals.click_revenue = _currency(totals.click_revenue)
    totals.view_conversions = _conversions(totals.view_conversions)
    totals.view_revenue = _currency(totals.view_revenue)
    totals.total_conversions = _conversions(totals.total_conversions)
    totals.total_revenue = _currency(totals.total_revenue)

    return report


# =============================================================================
# IMPRESSION ROLLUP
# =============================================================================

def get_impression_rollup(
    db: Session,
    workspace_id: UUID,
    start_date: date,
    end_date: date,
    platform: Optional[str] = None,
) -> List[ImpressionRollupRow]:
    """Impressions per platform/campaign/day, newest first."""
    total_impressions = func.sum(AdImpression.impressions).label("impressions")

    query = db.query(
        AdImpression.provider,
        AdImpression.campaign_id,
        AdImpression.campaign_name,
        AdImpression.date,
        total_impressions,
        func.sum(AdImpression.reach).label("reach"),
        func.avg(AdImpression.frequency).label("frequency"),
    ).filter(
        AdImpression.workspace_id == workspace_id,
        AdImpression.date >= start_date,
        AdImpression.date <= end_date,
    )
    if platform:
        query = query.filter(AdImpression.provider == platform)

    rows = (
        query.group_by(
            AdImpression.provider,
            AdImpression.campaign_id,
            AdImpression.campaign_name,
            AdImpression.date,
        )
        .order_by(AdImpression.date.desc(), total_impressions.desc())
        .all()
    )

    return [
        ImpressionRollupRow(
            platform=row.provider,
            campaign_id=row.campaign_id,
            campaign_name=row.campaign_name,
            date=row.date,
            impressions=int(row.impressions or 0),
            reach=int(row.reach or 0),
            frequency=round(float(row.frequency or 0), 2),
        )
        for row in rows
    ]
