import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest

from app.config import settings
from app.models_sqlalchemy.models import Order
from app.services import order_sync
from app.services.errors import MarketplaceApiError, OrderSearchFailed, SellerLookupFailed
from app.services.order_events import pop_order_updates
from app.services.order_sync import run_order_sync_window, sync_orders, transform_marketplace_order

HEADERS = {"Authorization": "Bearer test"}


def _detail(order_id, status="paid", tracking=None, shipment_id=None, first_name="Ana", last_name="Souza"):
    return {
        "id": order_id,
        "status": status,
        "date_created": "2026-10-18T12:30:00.000-03:00",
        "buyer": {"first_name": first_name, "last_name": last_name, "email": None, "phone": {"number": "11999990000"}},
        "order_items": [
            {"item": {"id": "MLB1", "title": "Caneca", "category_id": "MLB1234"}, "quantity": 2, "unit_price": 100.0},
        ],
        "shipping": {
            "id": shipment_id,
            "tracking_number": tracking,
            "shipping_option": {"name": "Correios"},
        },
    }


class FakeMarketplaceClient:
    base_url = "https://api.mercadolibre.com"

    def __init__(self, details, failing=(), search_error=None, me_error=None, delay=0.0):
        self.details = {str(d["id"]): d for d in details}
        self.failing = {str(f) for f in failing}
        self.search_error = search_error
        self.me_error = me_error
        self.delay = delay
        self.search_params = None
        self.fetched = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def get_me(self, headers):
        if self.me_error:
            raise self.me_error
        return {"id": 555}

    async def search_orders(self, headers, params):
        self.search_params = dict(params)
        if self.search_error:
            raise self.search_error
        return {"results": [{"id": int(k)} for k in self.details]}

    async def get_order(self, headers, order_id):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            self.fetched.append(str(order_id))
            if str(order_id) in self.failing:
                raise MarketplaceApiError("detail failed", status_code=500)
            return self.details[str(order_id)]
        finally:
            self.in_flight -= 1


@pytest.mark.asyncio
async def test_zero_results_returns_zero_without_writing(db_session, monkeypatch):
    def _no_write(*args, **kwargs):
        raise AssertionError("upsert must not be called for an empty search")

    monkeypatch.setattr(order_sync, "upsert_orders", _no_write)
    client = FakeMarketplaceClient(details=[])

    count = await sync_orders(db_session, client, HEADERS, {"order.date_last_updated.from": "x"})

    assert count == 0
    assert client.fetched == []
    assert db_session.query(Order).count() == 0


@pytest.mark.asyncio
async def test_search_uses_seller_sort_and_limit(db_session):
    client = FakeMarketplaceClient(details=[])

    await sync_orders(db_session, client, HEADERS, {"order.date_last_updated.from": "2026-10-18T00:00:00+00:00"})

    assert client.search_params["seller"] == 555
    assert client.search_params["sort"] == "date_desc"
    assert client.search_params["limit"] == 50
    assert client.search_params["order.date_last_updated.from"] == "2026-10-18T00:00:00+00:00"


@pytest.mark.asyncio
async def test_partial_detail_failure_upserts_remaining_orders(db_session):
    client = FakeMarketplaceClient(
        details=[_detail(1), _detail(2), _detail(3)],
        failing=[2],
    )

    count = await sync_orders(db_session, client, HEADERS, {})

    assert count == 2
    ids = sorted(o.id for o in db_session.query(Order).all())
    assert ids == ["1", "3"]


@pytest.mark.asyncio
async def test_seller_lookup_failure_aborts(db_session):
    client = FakeMarketplaceClient(details=[_detail(1)], me_error=MarketplaceApiError("down"))

    with pytest.raises(SellerLookupFailed):
        await sync_orders(db_session, client, HEADERS, {})
    assert db_session.query(Order).count() == 0


@pytest.mark.asyncio
async def test_search_failure_aborts(db_session):
    client = FakeMarketplaceClient(details=[_detail(1)], search_error=MarketplaceApiError("down", status_code=503))

    with pytest.raises(OrderSearchFailed):
        await sync_orders(db_session, client, HEADERS, {})


@pytest.mark.asyncio
async def test_resync_preserves_operational_fields(db_session):
    client = FakeMarketplaceClient(details=[_detail(42)])
    await sync_orders(db_session, client, HEADERS, {})

    order = db_session.query(Order).filter(Order.id == "42").one()
    order.bling_id = "BL-9"
    order.bling_sync_error = "Bling API error 500"
    order.last_scan = {"scanned_by": "ops@example.com", "scanned_at": "2026-10-18T15:00:00+00:00", "value": "42"}
    db_session.commit()

    client = FakeMarketplaceClient(
        details=[_detail(42, status="shipped", tracking="BR123", shipment_id=777, first_name="Changed")]
    )
    count = await sync_orders(db_session, client, HEADERS, {})

    assert count == 1
    db_session.expire_all()
    rows = db_session.query(Order).all()
    assert len(rows) == 1
    order = rows[0]
    assert order.status == "shipped"
    assert order.bling_id == "BL-9"
    assert order.bling_sync_error == "Bling API error 500"
    assert order.last_scan["value"] == "42"
    # Customer is kept as first synced.
    assert order.customer["name"] == "Ana Souza"
    assert order.shipping["tracking_number"] == "BR123"
    assert order.shipping["carrier"] == "Correios"
    assert order.tracking_number == "BR123"


@pytest.mark.asyncio
async def test_status_change_on_resync_is_recorded(db_session):
    await sync_orders(db_session, FakeMarketplaceClient(details=[_detail(7)]), HEADERS, {})
    pop_order_updates(db_session)

    await sync_orders(db_session, FakeMarketplaceClient(details=[_detail(7, status="cancelled")]), HEADERS, {})

    events = pop_order_updates(db_session)
    assert len(events) == 1
    assert events[0].order_id == "7"
    assert events[0].status_before == "pending"
    assert events[0].status_after == "cancelled"


@pytest.mark.asyncio
async def test_detail_fetches_are_bounded(db_session):
    client = FakeMarketplaceClient(details=[_detail(i) for i in range(1, 9)], delay=0.01)

    count = await sync_orders(db_session, client, HEADERS, {}, concurrency=2)

    assert count == 8
    assert client.max_in_flight <= 2


@pytest.mark.asyncio
async def test_passed_deadline_skips_remaining_fetches(db_session):
    client = FakeMarketplaceClient(details=[_detail(1), _detail(2)])

    count = await sync_orders(db_session, client, HEADERS, {}, deadline=time.monotonic() - 1)

    assert count == 0
    assert client.fetched == []


def test_transform_fallbacks_and_label_url():
    doc = transform_marketplace_order(_detail(99, first_name=None, last_name="Lima"))

    assert doc["id"] == "99"
    assert doc["ml_order_id"] == "99"
    assert doc["status"] == "pending"
    assert doc["customer"] == {"name": "Lima", "email": "N/A", "phone": "11999990000"}
    assert doc["items"] == [
        {"external_item_id": "MLB1", "title": "Caneca", "quantity": 2, "unit_price": 100.0, "category": "MLB1234"}
    ]
    # No shipment id and no tracking number: only the carrier is known.
    assert doc["shipping"] == {"carrier": "Correios"}
    assert doc["created_at"] == datetime(2026, 10, 18, 15, 30, tzinfo=timezone.utc)


def test_transform_builds_label_url_from_shipment_id():
    doc = transform_marketplace_order(_detail(5, shipment_id=4321, tracking="BR999"))

    assert doc["shipping"]["label_url"] == "https://api.mercadolibre.com/shipments/4321/label"
    assert doc["shipping"]["tracking_number"] == "BR999"


class FakeTokenManager:
    async def get_auth_headers(self, db):
        return dict(HEADERS)


class RecordingBling:
    def __init__(self):
        self.calls = []

    async def update_order_status(self, order, status):
        self.calls.append((order["id"], status))
        return {}


@pytest.mark.asyncio
async def test_window_run_syncs_trailing_window_and_notifies_bling(db_session, make_order):
    make_order("9")
    client = FakeMarketplaceClient(details=[_detail(9, status="ready_to_ship")])
    bling = RecordingBling()
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    run = await run_order_sync_window(
        db_session,
        settings,
        client=client,
        token_manager=FakeTokenManager(),
        bling_client=bling,
        now=now,
    )

    window_from = now - timedelta(minutes=settings.ORDER_SYNC_WINDOW_MINUTES)
    assert client.search_params == {
        "seller": 555,
        "sort": "date_desc",
        "limit": settings.ORDER_SYNC_PAGE_LIMIT,
        "order.date_last_updated.from": window_from.isoformat(),
        "order.date_last_updated.to": now.isoformat(),
    }
    assert run.window_from == window_from
    assert run.orders_synced == 1
    assert run.notifications_attempted == 1
    assert bling.calls == [("9", "ready_to_ship")]
    db_session.expire_all()
    assert db_session.query(Order).filter(Order.id == "9").one().status == "ready_to_ship"


@pytest.mark.asyncio
async def test_window_run_honours_explicit_window(db_session):
    client = FakeMarketplaceClient(details=[])
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    run = await run_order_sync_window(
        db_session,
        settings,
        window_minutes=180,
        client=client,
        token_manager=FakeTokenManager(),
        bling_client=RecordingBling(),
        now=now,
    )

    assert run.orders_synced == 0
    assert run.notifications_attempted == 0
    assert client.search_params["order.date_last_updated.from"] == (now - timedelta(hours=3)).isoformat()


@pytest.mark.asyncio
async def test_repeated_order_id_is_written_once(db_session):
    client = FakeMarketplaceClient(details=[_detail(5)])
    # The search page lists the same order twice.
    original_search = client.search_orders

    async def search_with_duplicate(headers, params):
        result = await original_search(headers, params)
        return {"results": result["results"] * 2}

    client.search_orders = search_with_duplicate

    count = await sync_orders(db_session, client, HEADERS, {})

    assert count == 1
    assert db_session.query(Order).count() == 1
