from typing import Optional, Union

from app.models_sqlalchemy.models import OrderStatus


# Marketplace order/shipment status -> canonical status.
_MARKETPLACE_STATUS_MAP = {
    "paid": OrderStatus.pending,
    "handling": OrderStatus.pending,
    "ready_to_ship": OrderStatus.ready_to_ship,
    "shipped": OrderStatus.shipped,
    "delivered": OrderStatus.delivered,
    "cancelled": OrderStatus.cancelled,
}

# Canonical status -> Bling "situacao" label.
_BLING_STATUS_MAP = {
    OrderStatus.ready_to_ship: "Em andamento",
    OrderStatus.shipped: "Atendido",
}
_BLING_DEFAULT_STATUS = "Em aberto"

TERMINAL_STATUSES = frozenset({OrderStatus.shipped, OrderStatus.delivered, OrderStatus.cancelled})


def map_marketplace_status(value: Optional[str]) -> OrderStatus:
    """Map a marketplace status string to an OrderStatus.

    Unknown or missing values fall back to ``pending``.
    """
    if not value:
        return OrderStatus.pending
    return _MARKETPLACE_STATUS_MAP.get(str(value).strip().lower(), OrderStatus.pending)


def map_status_to_bling(status: Union[OrderStatus, str, None]) -> str:
    try:
        key = OrderStatus(status) if status is not None else None
    except ValueError:
        key = None
    return _BLING_STATUS_MAP.get(key, _BLING_DEFAULT_STATUS)
