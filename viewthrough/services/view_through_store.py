"""Persistence for view-through results.

WHAT:
    Replaces the stored results of a batch of orders with freshly allocated
    lines: stale rows are deleted and new ones upserted in one transaction.

WHY:
    Recomputing a range must converge: same inputs produce the same value
    columns, and a platform the visitor has since clicked loses its row.

REFERENCES:
    - viewthrough/models.py: ViewThroughResult (uq_view_through_result)
    - viewthrough/services/view_through_service.py: Caller
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Sequence, Set, Tuple
from uuid import UUID

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from viewthrough.models import ViewThroughResult
from viewthrough.services.revenue_allocator import ViewThroughLine

logger = logging.getLogger(__name__)

CONFLICT_COLUMNS = ["workspace_id", "visitor_id", "order_id", "provider", "campaign_id"]
UPDATE_COLUMNS = [
    "revenue",
    "view_probability",
    "attributed_revenue",
    "converted_at",
    "conversion_date",
    "model_version",
    "computed_at",
]

# (order_id, visitor_id, provider, campaign_id)
ResultKey = Tuple[str, str, str, str]


def result_key(line: ViewThroughLine) -> ResultKey:
    return (line.order_id, line.visitor_id, line.provider, line.campaign_id)


def _insert_for(db: Session, model):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise RuntimeError(f"Upsert not supported for dialect '{dialect}'")


def bulk_upsert(
    db: Session,
    model,
    rows: List[dict],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str],
) -> int:
    """INSERT ... ON CONFLICT DO UPDATE for a batch of rows. Does not commit."""
    if not rows:
        return 0

    stmt = _insert_for(db, model).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    db.execute(stmt)
    return len(rows)


def _line_to_row(
    workspace_id: UUID,
    line: ViewThroughLine,
    model_version: str,
    computed_at: datetime,
) -> dict:
    return {
        "id": uuid.uuid4(),
        "workspace_id": workspace_id,
        "visitor_id": line.visitor_id,
        "order_id": line.order_id,
        "provider": line.provider,
        "campaign_id": line.campaign_id or "",
        "revenue": line.revenue,
        "view_probability": round(line.view_probability, 6),
        "attributed_revenue": line.attributed_revenue,
        "converted_at": line.converted_at,
        "conversion_date": line.converted_at.date(),
        "model_version": model_version,
        "computed_at": computed_at,
    }


def _stale_result_ids(
    db: Session,
    workspace_id: UUID,
    order_ids: List[str],
    keep_keys: Set[ResultKey],
) -> List[UUID]:
    rows = (
        db.query(
            ViewThroughResult.id,
            ViewThroughResult.order_id,
            ViewThroughResult.visitor_id,
            ViewThroughResult.provider,
            ViewThroughResult.campaign_id,
        )
        .filter(
            ViewThroughResult.workspace_id == workspace_id,
            ViewThroughResult.order_id.in_(order_ids),
        )
        .all()
    )
    return [
        row.id for row in rows
        if (row.order_id, row.visitor_id, row.provider, row.campaign_id) not in keep_keys
    ]


def save_view_through_results(
    db: Session,
    workspace_id: UUID,
    order_ids: Iterable[str],
    lines: List[ViewThroughLine],
    model_version: str,
    computed_at: datetime,
    batch_size: int = 500,
) -> Tuple[int, int]:
    """Replace the stored results of `order_ids` with `lines`.

    WHAT:
        Orders are processed in chunks of `batch_size`. Per chunk, rows this
        run no longer produces (a platform clicked since, a $0 order, no
        impressions left) are deleted and the new lines upserted, then the
        chunk is committed.

    WHY:
        An order's old and new rows never coexist in a committed state, so
        its view credit stays within the cap even if a chunk fails. A
        failing chunk is rolled back and the error re-raised; earlier
        chunks stay committed.

    Returns:
        (rows written, stale rows deleted)
    """
    lines_by_order: Dict[str, List[ViewThroughLine]] = {}
    for line in lines:
        lines_by_order.setdefault(line.order_id, []).append(line)

    order_list = sorted(set(order_ids) | set(lines_by_order))
    written = 0
    pruned = 0

    for i in range(0, len(order_list), batch_size):
        chunk = order_list[i:i + batch_size]
        chunk_lines = [line for order_id in chunk for line in lines_by_order.get(order_id, [])]
        keep_keys: Set[ResultKey] = {result_key(line) for line in chunk_lines}

        try:
            stale_ids = _stale_result_ids(db, workspace_id, chunk, keep_keys)
            if stale_ids:
                db.query(ViewThroughResult).filter(
                    ViewThroughResult.id.in_(stale_ids)
                ).delete(synchronize_session=False)

            for j in range(0, len(chunk_lines), batch_size):
                rows = [
                    _line_to_row(workspace_id, line, model_version, computed_at)
                    for line in chunk_lines[j:j + batch_size]
                ]
                bulk_upsert(db, ViewThroughResult, rows, CONFLICT_COLUMNS, UPDATE_COLUMNS)

            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                "[VIEW_THROUGH] Saving results failed for workspace %s (orders %d..%d)",
                workspace_id, i, i + len(chunk) - 1,
            )
            raise

        written += len(chunk_lines)
        pruned += len(stale_ids)

    if pruned:
        logger.info("[VIEW_THROUGH] Pruned %d stale results for workspace %s", pruned, workspace_id)
    return written, pruned
