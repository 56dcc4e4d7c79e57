"""View-through attribution endpoints.

WHAT:
    Provides API endpoints for:
    - View-through report (modeled credit per platform + view share)
    - Combined click + view-through attribution per platform
    - Manual view-through computation for the caller's workspace
    - Raw impression rollup

WHY:
    Platforms show ads that get seen but never clicked. Users need to see
    that modeled credit next to click credit, and to recompute it on demand
    after a data backfill.

All endpoints are scoped to the authenticated user's active workspace.

REFERENCES:
    - viewthrough/services/view_through_reports.py
    - viewthrough/services/view_through_service.py
"""

import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..deps import get_current_user, get_settings
from ..models import User
from ..services.view_probability import ViewThroughConfig
from ..services.view_through_reports import (
    DEFAULT_ATTRIBUTION_MODEL,
    UnknownAttributionModelError,
    get_combined_attribution,
    get_impression_rollup,
    get_view_through_report,
)
from ..services.view_through_service import compute_view_through, default_window

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/attribution",
    tags=["Attribution"],
)


# =============================================================================
# SCHEMAS
# =============================================================================

class PlatformViewRow(BaseModel):
    """View-through credit for one platform."""
    platform: str
    impressions: int = 0
    view_conversions: float = Field(0, description="Σ view probability (fractional conversions)")
    view_revenue: float = 0
    avg_probability: float = 0


class ViewThroughReportResponse(BaseModel):
    """Response for the view-through report.

    WHAT: Modeled credit per platform plus the click revenue of the same range
    WHY: view_share keeps the modeled portion of revenue visible
    """
    start_date: str
    end_date: str
    platforms: List[PlatformViewRow] = Field(default_factory=list)
    total_view_revenue: float = 0
    total_click_revenue: float = 0
    combined_revenue: float = 0
    view_share: str = Field("0%", description="View revenue / combined revenue, e.g. '12.5%'")


class CombinedPlatformRowResponse(BaseModel):
    platform: str
    click_conversions: float = 0
    click_revenue: float = 0
    view_conversions: float = 0
    view_revenue: float = 0
    total_conversions: float = 0
    total_revenue: float = 0


class CombinedTotalsResponse(BaseModel):
    click_conversions: float = 0
    click_revenue: float = 0
    view_conversions: float = 0
    view_revenue: float = 0
    total_conversions: float = 0
    total_revenue: float = 0


class CombinedAttributionResponse(BaseModel):
    """Response for the combined click + view-through report."""
    start_date: str
    end_date: str
    model: str
    platforms: List[CombinedPlatformRowResponse] = Field(default_factory=list)
    totals: CombinedTotalsResponse = Field(default_factory=CombinedTotalsResponse)


class ComputeViewThroughRequest(BaseModel):
    """Optional window for a manual computation (defaults to the last 90 days)."""
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ComputeViewThroughResponse(BaseModel):
    success: bool
    orders_processed: int
    view_through_results: int


class ImpressionRowResponse(BaseModel):
    platform: str
    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = None
    date: date
    impressions: int = 0
    reach: int = 0
    frequency: float = 0


class ImpressionRollupResponse(BaseModel):
    start_date: str
    end_date: str
    platform: str
    data: List[ImpressionRowResponse] = Field(default_factory=list)


# =============================================================================
# HELPERS
# =============================================================================

def _parse_date_range(start: Optional[str], end: Optional[str]) -> tuple:
    """Parse required YYYY-MM-DD query params, 400 when missing or malformed."""
    if not start or not end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start and end query params are required (YYYY-MM-DD)",
        )
    try:
        start_date = datetime.strptime(start, "%Y-%m-%d").date()
        end_date = datetime.strptime(end, "%Y-%m-%d").date()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start and end must be dates in YYYY-MM-DD format",
        )
    return start_date, end_date


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get(
    "/view-through",
    response_model=ViewThroughReportResponse,
    summary="Get view-through attribution report",
    description="""
    Modeled view-through credit per ad platform for a date range.

    Returns:
    - Per platform: impressions, view conversions, view revenue, average probability
    - Total click revenue (last_click) for the same range
    - Combined revenue and the view-through share
    """
)
async def view_through_report(
    start: Optional[str] = Query(None, description="Start date (YYYY-MM-DD)"),
    end: Optional[str] = Query(None, description="End date (YYYY-MM-DD)"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    start_date, end_date = _parse_date_range(start, end)

    report = get_view_through_report(db, current_user.workspace_id, start_date, end_date)

    return ViewThroughReportResponse(
        start_date=start,
        end_date=end,
        platforms=[PlatformViewRow(**vars(p)) for p in report.platforms],
        total_view_revenue=report.total_view_revenue,
        total_click_revenue=report.total_click_revenue,
        combined_revenue=report.combined_revenue,
        view_share=report.view_share,
    )


@router.get(
    "/combined",
    response_model=CombinedAttributionResponse,
    summary="Get combined click + view-through attribution",
    description="""
    Click model credit merged with view-through credit per platform.

    `model` selects the click model: first_click, last_click (default),
    linear, time_decay, position_based.
    """
)
async def combined_attribution(
    start: Optional[str] = Query(None, description="Start date (YYYY-MM-DD)"),
    end: Optional[str] = Query(None, description="End date (YYYY-MM-DD)"),
    model: str = Query(DEFAULT_ATTRIBUTION_MODEL, description="Click attribution model"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    start_date, end_date = _parse_date_range(start, end)

    try:
        report = get_combined_attribution(db, current_user.workspace_id, start_date, end_date, model)
    except UnknownAttributionModelError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return CombinedAttributionResponse(
        start_date=start,
        end_date=end,
        model=model,
        platforms=[CombinedPlatformRowResponse(**vars(p)) for p in report.platforms],
        totals=CombinedTotalsResponse(**vars(report.totals)),
    )


@router.post(
    "/view-through/compute",
    response_model=ComputeViewThroughResponse,
    summary="Compute view-through attribution",
    description="Recompute view-through attribution for the caller's workspace (default: last 90 days).",
)
def compute_view_through_now(
    payload: Optional[ComputeViewThroughRequest] = Body(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Run the pipeline synchronously for the caller's workspace only."""
    settings = get_settings()
    default_start, default_end = default_window(days=settings.VIEW_THROUGH_WINDOW_DAYS)
    start_date = (payload.start_date if payload else None) or default_start
    end_date = (payload.end_date if payload else None) or default_end

    logger.info(
        "[VIEW_THROUGH] Manual compute for workspace %s (%s..%s) by %s",
        current_user.workspace_id, start_date, end_date, current_user.email,
    )
    result = compute_view_through(
        db,
        current_user.workspace_id,
        start_date,
        end_date,
        ViewThroughConfig.from_settings(settings),
    )

    return ComputeViewThroughResponse(
        success=True,
        orders_processed=result.orders,
        view_through_results=result.results,
    )


@router.get(
    "/impressions",
    response_model=ImpressionRollupResponse,
    summary="Get impression rollup",
    description="Impressions per platform/campaign/day, newest first. Optional platform filter.",
)
async def impression_rollup(
    start: Optional[str] = Query(None, description="Start date (YYYY-MM-DD)"),
    end: Optional[str] = Query(None, description="End date (YYYY-MM-DD)"),
    platform: Optional[str] = Query(None, description="Platform filter (meta, google, tiktok, ...)"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    start_date, end_date = _parse_date_range(start, end)

    rows = get_impression_rollup(db, current_user.workspace_id, start_date, end_date, platform)

    return ImpressionRollupResponse(
        start_date=start,
        end_date=end,
        platform=platform or "all",
        data=[ImpressionRowResponse(**vars(r)) for r in rows],
    )
