"""Tells Bling when an order starts being handled.

Only ``pending -> ready_to_ship`` and ``pending -> shipped`` are pushed.
A failed push is never raised to the writer that caused the change; it is
recorded as ``orders.bling_sync_error`` for an operator to re-drive through
``POST /api/orders/{id}/bling-resync``.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List

from fastapi import BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models_sqlalchemy.models import Order, OrderStatus
from app.services.bling_client import BlingClient
from app.services.errors import OrderNotFound
from app.services.order_events import OrderUpdateEvent, pop_order_updates
from app.utils.logger import logger


NOTIFY_FROM = OrderStatus.pending.value
NOTIFY_TO = frozenset({OrderStatus.ready_to_ship.value, OrderStatus.shipped.value})


def should_notify(event: OrderUpdateEvent) -> bool:
    before, after = event.status_before, event.status_after
    return before != after and before == NOTIFY_FROM and after in NOTIFY_TO


def _set_sync_error(db: Session, order_id: str, message) -> None:
    # Only the marker column: updated_at stays as the last business change.
    try:
        db.query(Order).filter(Order.id == order_id).update(
            {"bling_sync_error": message}, synchronize_session=False
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("[order_notifier] Failed to write bling_sync_error order_id=%s", order_id, exc_info=True)


async def handle_order_update(db: Session, event: OrderUpdateEvent, bling_client: BlingClient) -> bool:
    """Push a qualifying status change to Bling.

    Returns True when the Bling call was attempted. Never raises.
    """
    if not should_notify(event):
        return False

    logger.info(
        "[order_notifier] order_id=%s %s -> %s, notifying Bling",
        event.order_id,
        event.status_before,
        event.status_after,
    )
    try:
        await bling_client.update_order_status(event.after, event.status_after)
    except Exception as exc:
        logger.error(
            "[order_notifier] Bling update failed order_id=%s: %s",
            event.order_id,
            exc,
            exc_info=True,
        )
        _set_sync_error(db, event.order_id, str(exc) or type(exc).__name__)
    return True


async def dispatch_order_updates(db: Session, events: Iterable[OrderUpdateEvent], bling_client: BlingClient) -> int:
    """Run the notifier for events popped after a successful commit."""
    attempted = 0
    for event in events:
        if await handle_order_update(db, event, bling_client):
            attempted += 1
    return attempted


async def dispatch_order_updates_detached(
    events: List[OrderUpdateEvent],
    bling_client: BlingClient,
    session_factory: Callable[[], Session],
) -> int:
    """Background-task entry point: runs the notifier on its own session."""
    db = session_factory()
    try:
        return await dispatch_order_updates(db, events, bling_client)
    finally:
        db.close()


def queue_order_updates(
    background_tasks: BackgroundTasks,
    db: Session,
    bling_client: BlingClient,
    session_factory: Callable[[], Session],
) -> int:
    """Pop the events committed on ``db`` and notify after the response is sent."""
    events = pop_order_updates(db)
    qualifying = [e for e in events if should_notify(e)]
    if qualifying:
        background_tasks.add_task(dispatch_order_updates_detached, qualifying, bling_client, session_factory)
    return len(qualifying)


async def resync_order(db: Session, order_id: str, bling_client: BlingClient) -> Dict[str, Any]:
    """Re-drive the Bling update for an order's current status.

    Clears ``bling_sync_error`` on success and replaces it on failure.
    """
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")

    doc = order.to_document()
    try:
        response = await bling_client.update_order_status(doc, order.status)
    except Exception as exc:
        logger.warning("[order_notifier] Manual Bling resync failed order_id=%s: %s", order_id, exc)
        _set_sync_error(db, order_id, str(exc) or type(exc).__name__)
        return {"order_id": order_id, "synced": False, "bling_sync_error": str(exc)}

    _set_sync_error(db, order_id, None)
    logger.info("[order_notifier] Manual Bling resync ok order_id=%s status=%s", order_id, order.status)
    return {"order_id": order_id, "synced": True, "bling_sync_error": None, "response": response}
