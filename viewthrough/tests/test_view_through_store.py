"""Tests for view-through result persistence (replace per order chunk)."""

from datetime import datetime
from decimal import Decimal

import pytest

from viewthrough.models import ViewThroughResult
from viewthrough.services import view_through_store
from viewthrough.services.revenue_allocator import ViewThroughLine
from viewthrough.services.view_through_store import save_view_through_results

CONVERTED_AT = datetime(2026, 9, 10, 14, 30)


def _line(order_id="order-1", provider="meta", campaign_id="cmp-1", attributed="20.00", probability=0.2):
    return ViewThroughLine(
        visitor_id="visitor-1",
        order_id=order_id,
        provider=provider,
        campaign_id=campaign_id,
        revenue=Decimal("100.00"),
        view_probability=probability,
        attributed_revenue=Decimal(attributed),
        converted_at=CONVERTED_AT,
    )


def _save(db, workspace_id, lines, order_ids=None, **kwargs):
    if order_ids is None:
        order_ids = [line.order_id for line in lines]
    kwargs.setdefault("model_version", "v1")
    kwargs.setdefault("computed_at", datetime.utcnow())
    return save_view_through_results(db, workspace_id, order_ids, lines, **kwargs)


def _attributed_by_order(db):
    totals = {}
    for row in db.query(ViewThroughResult).all():
        totals[row.order_id] = totals.get(row.order_id, Decimal("0")) + Decimal(str(row.attributed_revenue))
    return totals


def test_save_overwrites_on_conflict_key(test_db_session, test_workspace):
    _save(test_db_session, test_workspace.id, [_line()], computed_at=datetime(2026, 9, 11, 3, 30))
    _save(
        test_db_session, test_workspace.id, [_line(attributed="12.34", probability=0.1234567)],
        model_version="v2", computed_at=datetime(2026, 9, 12, 3, 30),
    )

    rows = test_db_session.query(ViewThroughResult).all()
    assert len(rows) == 1
    assert Decimal(str(rows[0].attributed_revenue)) == Decimal("12.34")
    assert float(rows[0].view_probability) == pytest.approx(0.123457)
    assert rows[0].model_version == "v2"
    assert rows[0].computed_at == datetime(2026, 9, 12, 3, 30)
    assert rows[0].conversion_date == CONVERTED_AT.date()


def test_empty_campaign_id_still_matches_on_recompute(test_db_session, test_workspace):
    for _ in range(2):
        _save(test_db_session, test_workspace.id, [_line(campaign_id="")])

    assert test_db_session.query(ViewThroughResult).count() == 1


def test_save_commits_in_order_chunks(test_db_session, test_workspace):
    lines = [_line(order_id=f"order-{i}") for i in range(7)]

    written, pruned = _save(test_db_session, test_workspace.id, lines, batch_size=3)

    assert (written, pruned) == (7, 0)
    assert test_db_session.query(ViewThroughResult).count() == 7


def test_failed_chunk_keeps_earlier_chunks(test_db_session, test_workspace, monkeypatch):
    real_bulk_upsert = view_through_store.bulk_upsert
    calls = {"n": 0}

    def flaky_bulk_upsert(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("connection dropped")
        return real_bulk_upsert(*args, **kwargs)

    monkeypatch.setattr(view_through_store, "bulk_upsert", flaky_bulk_upsert)
    lines = [_line(order_id=f"order-{i}") for i in range(4)]

    with pytest.raises(RuntimeError):
        _save(test_db_session, test_workspace.id, lines, batch_size=2)

    orders = {r.order_id for r in test_db_session.query(ViewThroughResult).all()}
    assert orders == {"order-0", "order-1"}


def test_unproduced_rows_of_given_orders_are_deleted(test_db_session, test_workspace):
    kept = _line(provider="meta")
    stale = _line(provider="google", campaign_id="cmp-g")
    untouched = _line(order_id="order-9", provider="google", campaign_id="cmp-g")
    _save(test_db_session, test_workspace.id, [kept, stale, untouched])

    written, pruned = _save(test_db_session, test_workspace.id, [kept], order_ids=["order-1"])

    assert (written, pruned) == (1, 1)
    remaining = {(r.order_id, r.provider) for r in test_db_session.query(ViewThroughResult).all()}
    assert remaining == {("order-1", "meta"), ("order-9", "google")}


def test_order_without_lines_loses_all_rows(test_db_session, test_workspace):
    _save(test_db_session, test_workspace.id, [_line(provider="meta"), _line(provider="google")])

    written, pruned = _save(test_db_session, test_workspace.id, [], order_ids=["order-1"])

    assert (written, pruned) == (0, 2)
    assert test_db_session.query(ViewThroughResult).count() == 0


def test_failed_upsert_rolls_back_deletes_of_same_orders(test_db_session, test_workspace, monkeypatch):
    # google $25 + meta $5 at the cap; google then clicked, meta would grow to $20
    _save(test_db_session, test_workspace.id, [
        _line(provider="google", campaign_id="cmp-g", attributed="25.00", probability=0.25),
        _line(provider="meta", campaign_id="cmp-m", attributed="5.00"),
    ])

    def failing_bulk_upsert(*args, **kwargs):
        raise RuntimeError("statement timeout")

    monkeypatch.setattr(view_through_store, "bulk_upsert", failing_bulk_upsert)

    with pytest.raises(RuntimeError):
        _save(test_db_session, test_workspace.id, [_line(provider="meta", campaign_id="cmp-m")])

    providers = {r.provider for r in test_db_session.query(ViewThroughResult).all()}
    assert providers == {"google", "meta"}
    assert _attributed_by_order(test_db_session) == {"order-1": Decimal("30.00")}
