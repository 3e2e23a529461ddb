from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from app.models_sqlalchemy.models import DailyMetrics
from app.services.metrics import generate_daily_metrics, local_day_bounds, previous_local_date

TARGET = date(2026, 10, 18)
MIDDAY = datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc)


def _item(price, qty, category):
    return {"external_item_id": "MLB1", "title": "x", "quantity": qty, "unit_price": price, "category": category}


@pytest.fixture
def sales_day(make_order):
    make_order("s1", status="shipped", items=[_item(100.0, 2, "MLB1")], created_at=MIDDAY)
    make_order("s2", status="ready_to_ship", items=[_item(50.0, 1, None)], created_at=MIDDAY)
    # Not counted: cancelled, and 23:00 local on the previous day.
    make_order("s3", status="cancelled", items=[_item(999.0, 1, "MLB1")], created_at=MIDDAY)
    make_order(
        "s4",
        status="delivered",
        items=[_item(999.0, 1, "MLB1")],
        created_at=datetime(2026, 10, 18, 2, 0, tzinfo=timezone.utc),
    )


def test_local_day_bounds_for_sao_paulo():
    start, end = local_day_bounds(TARGET, ZoneInfo("America/Sao_Paulo"))

    assert start == datetime(2026, 10, 18, 3, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)


def test_previous_local_date_uses_seller_timezone():
    # 01:30 UTC on the 19th is still the 18th in Sao Paulo.
    now = datetime(2026, 10, 19, 1, 30, tzinfo=timezone.utc)

    assert previous_local_date(ZoneInfo("America/Sao_Paulo"), now) == date(2026, 10, 17)


def test_rollup_counts_only_handled_orders_of_the_day(db_session, sales_day):
    row = generate_daily_metrics(db_session, TARGET, "America/Sao_Paulo")

    assert row.date_key == "2026-10-18"
    assert row.total_sales == pytest.approx(250.0)
    assert row.total_orders == 2
    assert row.average_ticket == pytest.approx(125.0)
    assert row.conversion_rate == 0.0
    assert row.by_category == {"MLB1": pytest.approx(200.0), "uncategorized": pytest.approx(50.0)}


def test_rerun_overwrites_the_day(db_session, sales_day, make_order):
    generate_daily_metrics(db_session, TARGET, "America/Sao_Paulo")
    make_order("s5", status="delivered", items=[_item(30.0, 1, "MLB9")], created_at=MIDDAY)

    row = generate_daily_metrics(db_session, TARGET, "America/Sao_Paulo")

    assert db_session.query(DailyMetrics).count() == 1
    assert row.total_orders == 3
    assert row.total_sales == pytest.approx(280.0)


def test_day_without_sales_gets_zero_row(db_session):
    row = generate_daily_metrics(db_session, date(2026, 1, 2), "America/Sao_Paulo")

    assert row.total_sales == 0.0
    assert row.total_orders == 0
    assert row.average_ticket == 0.0
    assert row.by_category == {}
    assert db_session.query(DailyMetrics).filter(DailyMetrics.date_key == "2026-01-02").count() == 1


def test_default_target_is_previous_local_day(db_session):
    now = datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)

    row = generate_daily_metrics(db_session, tz_name="America/Sao_Paulo", now=now)

    assert row.date_key == "2026-10-18"
