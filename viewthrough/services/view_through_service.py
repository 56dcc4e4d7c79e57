"""View-through attribution pipeline.

WHAT:
    Runs Estimator -> Allocator -> Save -> Summary merge for one
    workspace, and fans that out over every workspace for the daily batch.

WHY:
    Impressions without clicks still drive purchases. This pipeline gives
    each ad platform conservative, modeled credit for them, on top of the
    click model's credit.

FLOW (per workspace):
    1. Load converted orders for the range (earliest event per order id)
    2. Load impressions for [start - lookback, end] and the global max reach
    3. Load every buyer's clicked platforms in one bulk query
    4. Per order: estimate view probabilities, allocate capped revenue
    5. Per chunk of orders, delete rows this run no longer produces and
       upsert the new ones in one transaction
    6. Fold totals into existing daily summary rows

FAILURE ISOLATION:
    The all-workspace run turns each workspace's failure into a
    TenantRunResult(ok=False) and keeps going.

REFERENCES:
    - viewthrough/workers/arq_worker.py: Daily cron (03:30 UTC, after click attribution)
    - viewthrough/routers/attribution.py: Manual compute endpoint
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from viewthrough.models import Workspace
from viewthrough.services.event_store import (
    load_clicked_providers,
    load_converted_orders,
    load_global_max_reach,
    load_impression_records,
)
from viewthrough.services.revenue_allocator import ViewThroughLine, allocate_order_revenue
from viewthrough.services.summary_merger import merge_view_through_into_summary
from viewthrough.services.view_probability import (
    ViewThroughConfig,
    estimate_view_probabilities,
    group_impressions_by_provider,
)
from viewthrough.services.view_through_store import save_view_through_results
from viewthrough.telemetry import capture_exception

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 90


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class ComputeResult:
    """Outcome of one workspace computation."""

    orders: int = 0
    orders_allocated: int = 0
    results: int = 0
    pruned: int = 0
    summary_rows_updated: int = 0


@dataclass
class TenantRunResult:
    """Per-workspace outcome of the all-workspace run. Failures are values."""

    workspace_id: UUID
    ok: bool
    orders: int = 0
    results: int = 0
    error: Optional[str] = None


@dataclass
class ViewThroughRunSummary:
    start_date: date
    end_date: date
    tenants_total: int = 0
    tenants_processed: int = 0
    tenants_failed: int = 0
    orders_seen: int = 0
    results_written: int = 0
    tenant_results: List[TenantRunResult] = field(default_factory=list)

    def __repr__(self):
        return (
            f"ViewThroughRunSummary(tenants={self.tenants_total}, processed={self.tenants_processed}, "
            f"failed={self.tenants_failed}, orders={self.orders_seen}, results={self.results_written})"
        )


def default_window(now: Optional[datetime] = None, days: int = DEFAULT_WINDOW_DAYS) -> Tuple[date, date]:
    """Trailing `days`-day window ending today (UTC)."""
    today = (now or datetime.utcnow()).date()
    return today - timedelta(days=days), today


def _default_config() -> ViewThroughConfig:
    from viewthrough.deps import get_settings

    return ViewThroughConfig.from_settings(get_settings())


# =============================================================================
# SINGLE WORKSPACE
# =============================================================================

def compute_view_through(
    db: Session,
    workspace_id: UUID,
    start_date: date,
    end_date: date,
    config: Optional[ViewThroughConfig] = None,
) -> ComputeResult:
    """Compute and persist view-through attribution for one workspace.

    Args:
        db: Database session (committed per chunk of orders)
        workspace_id: Tenant to compute
        start_date: First conversion date (inclusive)
        end_date: Last conversion date (inclusive)
        config: Model parameters, defaults to the configured settings

    Returns:
        ComputeResult. `orders` counts every order seen, including
        zero-revenue orders that receive no allocation.
    """
    config = config or _default_config()

    orders = load_converted_orders(db, workspace_id, start_date, end_date)
    if not orders:
        logger.info("[VIEW_THROUGH] No converted orders for workspace %s (%s..%s)", workspace_id, start_date, end_date)
        return ComputeResult()

    impressions = load_impression_records(db, workspace_id, start_date, end_date, config.lookback_days)

    lines: List[ViewThroughLine] = []
    orders_allocated = 0
    if not impressions:
        # Still saved below so earlier rows of these orders are pruned
        logger.info(
            "[VIEW_THROUGH] No impressions for workspace %s, %d orders get no view credit",
            workspace_id, len(orders),
        )
    else:
        global_max_reach = load_global_max_reach(db, workspace_id, start_date, end_date, config.lookback_days)
        impressions_by_provider = group_impressions_by_provider(impressions)
        clicked = load_clicked_providers(db, workspace_id, [o.visitor_id for o in orders])

        for order in orders:
            estimates = estimate_view_probabilities(
                order,
                impressions_by_provider,
                clicked.get(order.visitor_id),
                global_max_reach,
                config,
            )
            order_lines = allocate_order_revenue(order, estimates, config.max_view_credit_share)
            if order_lines:
                orders_allocated += 1
                lines.extend(order_lines)

    written, pruned = save_view_through_results(
        db,
        workspace_id,
        [o.order_id for o in orders],
        lines,
        config.model_version,
        datetime.utcnow(),
        config.batch_size,
    )

    summary_rows = merge_view_through_into_summary(db, workspace_id, start_date, end_date)

    logger.info(
        "[VIEW_THROUGH] Workspace %s: %d orders, %d allocated, %d results, %d pruned, %d summary rows",
        workspace_id, len(orders), orders_allocated, written, pruned, summary_rows,
    )

    return ComputeResult(
        orders=len(orders),
        orders_allocated=orders_allocated,
        results=written,
        pruned=pruned,
        summary_rows_updated=summary_rows,
    )


def run_workspace_view_through(
    session_factory: Callable[[], Session],
    workspace_id: UUID,
    start_date: date,
    end_date: date,
    config: Optional[ViewThroughConfig] = None,
) -> TenantRunResult:
    """Run one workspace with its own session; never raises."""
    db = session_factory()
    try:
        result = compute_view_through(db, workspace_id, start_date, end_date, config)
        return TenantRunResult(
            workspace_id=workspace_id,
            ok=True,
            orders=result.orders,
            results=result.results,
        )
    except Exception as e:
        logger.exception("[VIEW_THROUGH] Failed for workspace %s", workspace_id)
        capture_exception(e, extra={
            "operation": "view_through_attribution",
            "workspace_id": str(workspace_id),
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        })
        return TenantRunResult(workspace_id=workspace_id, ok=False, error=str(e))
    finally:
        db.close()


# =============================================================================
# ALL WORKSPACES
# =============================================================================

def compute_view_through_for_all_workspaces(
    session_factory: Optional[Callable[[], Session]] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    config: Optional[ViewThroughConfig] = None,
    max_workers: int = 1,
) -> ViewThroughRunSummary:
    """Daily batch: view-through attribution for every workspace.

    WHAT:
        Enumerates workspaces and runs each one, sequentially or on a
        bounded thread pool (one session per workspace).

    WHY:
        Called by the arq cron after the click attribution batch. One
        workspace's failure must not stop the others.

    Args:
        session_factory: Session constructor, defaults to SessionLocal
        start_date/end_date: Explicit window, defaults to the trailing 90 days
        config: Model parameters, defaults to the configured settings
        max_workers: Workspaces computed concurrently (1 = sequential)

    Returns:
        ViewThroughRunSummary with per-workspace results
    """
    if session_factory is None:
        from viewthrough.database import SessionLocal
        session_factory = SessionLocal

    if start_date is None or end_date is None:
        default_start, default_end = default_window()
        start_date = start_date or default_start
        end_date = end_date or default_end

    config = config or _default_config()

    db = session_factory()
    try:
        workspace_ids = [row.id for row in db.query(Workspace.id).order_by(Workspace.created_at).all()]
    finally:
        db.close()

    summary = ViewThroughRunSummary(
        start_date=start_date,
        end_date=end_date,
        tenants_total=len(workspace_ids),
    )
    logger.info(
        "[VIEW_THROUGH] Starting run for %d workspaces (%s..%s, max_workers=%d)",
        len(workspace_ids), start_date, end_date, max_workers,
    )

    if max_workers > 1 and len(workspace_ids) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(run_workspace_view_through, session_factory, ws_id, start_date, end_date, config)
                for ws_id in workspace_ids
            ]
            tenant_results = [future.result() for future in as_completed(futures)]
    else:
        tenant_results = [
            run_workspace_view_through(session_factory, ws_id, start_date, end_date, config)
            for ws_id in workspace_ids
        ]

    for tenant in tenant_results:
        summary.tenant_results.append(tenant)
        if not tenant.ok:
            summary.tenants_failed += 1
            continue
        summary.orders_seen += tenant.orders
        summary.results_written += tenant.results
        if tenant.orders > 0:
            summary.tenants_processed += 1

    logger.info(
        "[VIEW_THROUGH] Run complete: %d/%d workspaces processed, %d failed, %d orders, %d results",
        summary.tenants_processed, summary.tenants_total, summary.tenants_failed,
        summary.orders_seen, summary.results_written,
    )
    return summary
