import pytest

from app.models_sqlalchemy.models import Order, OrderStatus
from app.services import orders as order_service
from app.services.errors import FailedPrecondition, OrderNotFound
from app.services.order_events import pop_order_updates


def test_manual_status_change_records_event(db_session, make_order):
    make_order("1001")

    order = order_service.change_order_status(db_session, "1001", OrderStatus.shipped, "ops@example.com")

    assert order.status == "shipped"
    events = pop_order_updates(db_session)
    assert [(e.status_before, e.status_after) for e in events] == [("pending", "shipped")]


def test_same_status_is_a_no_op(db_session, make_order):
    make_order("1001", status="shipped")

    order_service.change_order_status(db_session, "1001", OrderStatus.shipped, "ops@example.com")

    assert pop_order_updates(db_session) == []


def test_concurrent_change_is_refused(db_session, make_order, monkeypatch):
    make_order("1001")
    real_snapshot = order_service.snapshot_order
    calls = {"n": 0}

    def snapshot_then_scan(order):
        calls["n"] += 1
        if calls["n"] == 1:
            db_session.query(Order).filter(Order.id == "1001").update(
                {"status": "ready_to_ship"}, synchronize_session=False
            )
            db_session.commit()
        return real_snapshot(order)

    monkeypatch.setattr(order_service, "snapshot_order", snapshot_then_scan)

    with pytest.raises(FailedPrecondition):
        order_service.change_order_status(db_session, "1001", OrderStatus.cancelled, "ops@example.com")

    db_session.expire_all()
    assert db_session.query(Order).filter(Order.id == "1001").one().status == "ready_to_ship"


def test_unknown_order(db_session):
    with pytest.raises(OrderNotFound):
        order_service.get_order(db_session, "missing")


def test_list_filters_by_sync_error(db_session, make_order):
    make_order("1")
    make_order("2")
    db_session.query(Order).filter(Order.id == "2").update({"bling_sync_error": "down"}, synchronize_session=False)
    db_session.commit()

    rows = order_service.list_orders(db_session, with_sync_error=True)

    assert [o.id for o in rows] == ["2"]
