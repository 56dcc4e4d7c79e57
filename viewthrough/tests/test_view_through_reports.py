"""
Tests for the view-through reporting layer.

WHAT:
    View-through report, combined click + view report and impression rollup
    against seeded SQLite data.

WHY:
    Dashboards display these numbers as-is; totals must add up exactly
    after rounding and unknown click models must be rejected up front.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from viewthrough.services.revenue_allocator import ViewThroughLine
from viewthrough.services.view_through_reports import (
    UnknownAttributionModelError,
    format_view_share,
    get_combined_attribution,
    get_impression_rollup,
    get_view_through_report,
    validate_attribution_model,
)
from viewthrough.services.view_through_store import save_view_through_results

DAY = date(2026, 9, 10)
START = date(2026, 9, 1)
END = date(2026, 9, 30)


def _store(db, workspace_id, *specs):
    lines = [
        ViewThroughLine(
            visitor_id=f"visitor-{order_id}",
            order_id=order_id,
            provider=provider,
            campaign_id="cmp",
            revenue=Decimal("100.00"),
            view_probability=probability,
            attributed_revenue=Decimal(attributed),
            converted_at=datetime(2026, 9, 10, 12, 0),
        )
        for order_id, provider, probability, attributed in specs
    ]
    save_view_through_results(db, workspace_id, [line.order_id for line in lines], lines, "v1", datetime.utcnow())


def test_view_report_without_click_revenue_is_all_view(test_db_session, seed, test_workspace):
    seed.impressions(test_workspace, "meta", "cmp", DAY, impressions=1200)
    seed.impressions(test_workspace, "meta", "cmp-2", DAY, impressions=300)
    _store(test_db_session, test_workspace.id, ("o1", "meta", 0.2, "20.00"))

    report = get_view_through_report(test_db_session, test_workspace.id, START, END)

    assert len(report.platforms) == 1
    meta = report.platforms[0]
    assert meta.platform == "meta"
    assert meta.impressions == 1500
    assert meta.view_conversions == 0.2
    assert meta.view_revenue == 20.0
    assert meta.avg_probability == 0.2
    assert report.total_click_revenue == 0.0
    assert report.combined_revenue == 20.0
    assert report.view_share == "100.0%"


def test_view_report_share_and_sorting(test_db_session, seed, test_workspace):
    _store(
        test_db_session, test_workspace.id,
        ("o1", "meta", 0.2, "20.00"),
        ("o2", "google", 0.25, "25.00"),
        ("o2", "tiktok", 0.05, "5.00"),
    )
    seed.click_attribution(test_workspace, "o3", "meta", 1.0, "150.00", datetime(2026, 9, 12, 8, 0))
    # other model and out-of-range rows do not count toward click revenue
    seed.click_attribution(test_workspace, "o3", "meta", 1.0, "150.00", datetime(2026, 9, 12, 8, 0), model="linear")
    seed.click_attribution(test_workspace, "o4", "meta", 1.0, "99.00", datetime(2026, 10, 2, 8, 0))

    report = get_view_through_report(test_db_session, test_workspace.id, START, END)

    assert [p.platform for p in report.platforms] == ["google", "meta", "tiktok"]
    assert report.platforms[0].impressions == 0
    assert report.total_view_revenue == 50.0
    assert report.total_click_revenue == 150.0
    assert report.combined_revenue == 200.0
    assert report.view_share == "25.0%"


def test_view_report_empty_range(test_db_session, test_workspace):
    report = get_view_through_report(test_db_session, test_workspace.id, START, END)

    assert report.platforms == []
    assert report.combined_revenue == 0.0
    assert report.view_share == "0%"


def test_combined_report_merges_one_sided_platforms(test_db_session, seed, test_workspace):
    seed.click_attribution(test_workspace, "o1", "meta", 0.5, "40.10", datetime(2026, 9, 10, 9, 0))
    seed.click_attribution(test_workspace, "o2", "meta", 0.25, "10.05", datetime(2026, 9, 11, 9, 0))
    seed.click_attribution(test_workspace, "o3", "direct", 1.0, "12.00", datetime(2026, 9, 11, 9, 0))
    _store(
        test_db_session, test_workspace.id,
        ("o1", "meta", 0.2, "20.00"),
        ("o4", "google", 0.123456, "12.35"),
    )

    report = get_combined_attribution(test_db_session, test_workspace.id, START, END, "last_click")

    by_platform = {p.platform: p for p in report.platforms}
    assert set(by_platform) == {"meta", "google", "direct"}

    meta = by_platform["meta"]
    assert meta.click_conversions == 0.75
    assert meta.click_revenue == 50.15
    assert meta.view_conversions == 0.2
    assert meta.view_revenue == 20.0
    assert meta.total_conversions == 0.95
    assert meta.total_revenue == 70.15

    google = by_platform["google"]
    assert google.click_revenue == 0.0
    assert google.total_conversions == 0.1235
    assert google.total_revenue == 12.35

    assert [p.platform for p in report.platforms] == ["meta", "google", "direct"]

    for row in report.platforms:
        assert row.total_conversions == round(row.click_conversions + row.view_conversions, 4)
        assert row.total_revenue == round(row.click_revenue + row.view_revenue, 2)

    assert report.totals.click_revenue == 62.15
    assert report.totals.view_revenue == 32.35
    assert report.totals.total_revenue == 94.5
    assert report.totals.total_conversions == 2.0735


def test_combined_report_ties_sort_by_platform(test_db_session, seed, test_workspace):
    seed.click_attribution(test_workspace, "o1", "tiktok", 1.0, "10.00", datetime(2026, 9, 10, 9, 0))
    seed.click_attribution(test_workspace, "o2", "google", 1.0, "10.00", datetime(2026, 9, 10, 9, 0))

    report = get_combined_attribution(test_db_session, test_workspace.id, START, END)

    assert [p.platform for p in report.platforms] == ["google", "tiktok"]


def test_combined_report_filters_by_model(test_db_session, seed, test_workspace):
    seed.click_attribution(test_workspace, "o1", "meta", 1.0, "40.00", datetime(2026, 9, 10, 9, 0))
    seed.click_attribution(test_workspace, "o1", "meta", 0.5, "20.00", datetime(2026, 9, 10, 9, 0), model="linear")

    report = get_combined_attribution(test_db_session, test_workspace.id, START, END, "linear")

    assert report.platforms[0].click_revenue == 20.0
    assert report.platforms[0].click_conversions == 0.5


def test_unknown_model_is_rejected(test_db_session, test_workspace):
    with pytest.raises(UnknownAttributionModelError):
        get_combined_attribution(test_db_session, test_workspace.id, START, END, "u_shaped")

    assert validate_attribution_model("position_based") == "position_based"


def test_format_view_share():
    assert format_view_share(0, 0) == "0%"
    assert format_view_share(12.5, 100) == "12.5%"
    assert format_view_share(1, 3) == "33.3%"


def test_impression_rollup_orders_newest_first(test_db_session, seed, test_workspace):
    seed.impressions(test_workspace, "meta", "cmp-a", DAY, impressions=100, reach=50, campaign_name="A", ad_id="ad-1")
    seed.impressions(test_workspace, "meta", "cmp-a", DAY, impressions=300, reach=100, campaign_name="A", ad_id="ad-2")
    seed.impressions(test_workspace, "google", "cmp-g", DAY, impressions=1000, reach=200, campaign_name="G")
    seed.impressions(test_workspace, "meta", "cmp-a", date(2026, 9, 11), impressions=10, reach=10, campaign_name="A")

    rows = get_impression_rollup(test_db_session, test_workspace.id, START, END)

    assert [(r.platform, r.date) for r in rows] == [
        ("meta", date(2026, 9, 11)),
        ("google", DAY),
        ("meta", DAY),
    ]
    meta_day = rows[2]
    assert meta_day.impressions == 400
    assert meta_day.reach == 150
    assert meta_day.frequency == 2.5

    meta_only = get_impression_rollup(test_db_session, test_workspace.id, START, END, platform="meta")
    assert {r.platform for r in meta_only} == {"meta"}
