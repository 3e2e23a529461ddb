from datetime import datetime, timedelta, timezone

import pytest

from app.models_sqlalchemy.models import Order
from app.services import shipment_scan
from app.services.errors import InvalidArgument, OrderNotFound
from app.services.order_events import pop_order_updates
from app.services.shipment_scan import resolve_and_mark_ready, resolve_order


def test_resolves_by_id_then_marketplace_id_then_tracking(db_session, make_order):
    make_order("A", ml_order_id="ML-A", tracking_number="TRK-A")
    make_order("B", ml_order_id="ML-B", tracking_number="TRK-B")
    make_order("C", ml_order_id="ML-C", tracking_number="TRK-C")

    assert resolve_order(db_session, "B").id == "B"
    assert resolve_order(db_session, "ML-C").id == "C"
    assert resolve_order(db_session, "TRK-A").id == "A"
    assert resolve_order(db_session, "nothing") is None


def test_id_match_wins_over_tracking_match(db_session, make_order):
    make_order("X1", tracking_number="X2")
    make_order("X2")

    assert resolve_order(db_session, "X2").id == "X2"


def test_pending_order_becomes_ready_to_ship(db_session, make_order):
    old = datetime.now(timezone.utc) - timedelta(days=1)
    make_order("500", tracking_number="BR500", updated_at=old)
    stamp = datetime(2026, 10, 18, 15, 0, tzinfo=timezone.utc)

    result = resolve_and_mark_ready(db_session, "  BR500 ", "ops@example.com", now=stamp)

    assert result.success is True
    assert result.order_id == "500"
    assert result.status == "ready_to_ship"

    db_session.expire_all()
    order = db_session.query(Order).filter(Order.id == "500").one()
    assert order.status == "ready_to_ship"
    assert order.last_scan == {
        "scanned_by": "ops@example.com",
        "scanned_at": stamp.isoformat(),
        "value": "BR500",
    }

    events = pop_order_updates(db_session)
    assert len(events) == 1
    assert (events[0].status_before, events[0].status_after) == ("pending", "ready_to_ship")


def test_already_ready_order_is_left_untouched(db_session, make_order):
    make_order("600", status="ready_to_ship")

    result = resolve_and_mark_ready(db_session, "600", "ops@example.com")

    assert result.success is True
    assert result.status == "ready_to_ship"
    db_session.expire_all()
    assert db_session.query(Order).filter(Order.id == "600").one().last_scan is None
    assert pop_order_updates(db_session) == []


@pytest.mark.parametrize("status", ["shipped", "delivered", "cancelled"])
def test_terminal_orders_are_refused(db_session, make_order, status):
    make_order("700", status=status)

    result = resolve_and_mark_ready(db_session, "700", "ops@example.com")

    assert result.success is False
    assert status in result.message
    db_session.expire_all()
    assert db_session.query(Order).filter(Order.id == "700").one().status == status
    assert pop_order_updates(db_session) == []


def test_unknown_value_raises_not_found_with_value(db_session, make_order):
    make_order("800")

    with pytest.raises(OrderNotFound) as exc_info:
        resolve_and_mark_ready(db_session, "NOPE-123", "ops@example.com")

    assert "NOPE-123" in exc_info.value.message


@pytest.mark.parametrize("value", [None, "", "   "])
def test_blank_value_is_invalid(db_session, value):
    with pytest.raises(InvalidArgument):
        resolve_and_mark_ready(db_session, value, "ops@example.com")


def test_conflicting_write_is_reevaluated(db_session, make_order, monkeypatch):
    make_order("900")
    real_snapshot = shipment_scan.snapshot_order
    calls = {"n": 0}

    def snapshot_then_cancel(order):
        calls["n"] += 1
        if calls["n"] == 1:
            # Another writer cancels the order between our read and our update.
            db_session.query(Order).filter(Order.id == "900").update(
                {"status": "cancelled"}, synchronize_session=False
            )
            db_session.commit()
        return real_snapshot(order)

    monkeypatch.setattr(shipment_scan, "snapshot_order", snapshot_then_cancel)

    result = resolve_and_mark_ready(db_session, "900", "ops@example.com")

    assert result.success is False
    assert result.status == "cancelled"
    db_session.expire_all()
    order = db_session.query(Order).filter(Order.id == "900").one()
    assert order.status == "cancelled"
    assert order.last_scan is None
    assert pop_order_updates(db_session) == []
