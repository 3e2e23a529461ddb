import pytest

from app.models_sqlalchemy.models import OrderStatus
from app.services.order_status import map_marketplace_status, map_status_to_bling


@pytest.mark.parametrize("value,expected", [
    ("paid", OrderStatus.pending),
    ("handling", OrderStatus.pending),
    ("ready_to_ship", OrderStatus.ready_to_ship),
    ("shipped", OrderStatus.shipped),
    ("delivered", OrderStatus.delivered),
    ("cancelled", OrderStatus.cancelled),
])
def test_known_marketplace_statuses(value, expected):
    assert map_marketplace_status(value) == expected


@pytest.mark.parametrize("value", [
    None,
    "",
    "confirmed",
    "payment_required",
    "partially_refunded",
    "not_delivered",
    "something-new",
    12345,
])
def test_unknown_marketplace_status_defaults_to_pending(value):
    """Anything outside the table maps to pending and never raises."""
    assert map_marketplace_status(value) == OrderStatus.pending


def test_bling_status_mapping():
    assert map_status_to_bling(OrderStatus.ready_to_ship) == "Em andamento"
    assert map_status_to_bling("shipped") == "Atendido"


@pytest.mark.parametrize("status", ["pending", "delivered", "cancelled", "bogus", None])
def test_bling_status_mapping_default(status):
    assert map_status_to_bling(status) == "Em aberto"
