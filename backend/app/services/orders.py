from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models_sqlalchemy.models import Order, OrderStatus
from app.services.errors import FailedPrecondition, OrderNotFound
from app.services.order_events import discard_order_updates, record_order_update, snapshot_order
from app.utils.logger import logger


def list_orders(
    db: Session,
    *,
    status: Optional[str] = None,
    with_sync_error: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> List[Order]:
    query = db.query(Order)
    if status:
        query = query.filter(Order.status == status)
    if with_sync_error:
        query = query.filter(Order.bling_sync_error.isnot(None))
    return query.order_by(Order.created_at.desc()).offset(offset).limit(limit).all()


def get_order(db: Session, order_id: str) -> Order:
    order = db.query(Order).filter(Order.id == order_id).first()
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


def change_order_status(db: Session, order_id: str, new_status: OrderStatus, changed_by: str) -> Order:
    """Manual status change from the dashboard.

    Applied only if the status is still the one read, so a concurrent scan
    or sync is never silently overwritten.
    """
    order = get_order(db, order_id)
    if order.status == new_status.value:
        return order

    expected_status = order.status
    before = snapshot_order(order)
    try:
        updated = (
            db.query(Order)
            .filter(Order.id == order_id, Order.status == expected_status)
            .update(
                {"status": new_status.value, "updated_at": datetime.now(timezone.utc)},
                synchronize_session=False,
            )
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        discard_order_updates(db)
        logger.error("[orders] Failed to change status of order_id=%s", order_id, exc_info=True)
        raise

    order = get_order(db, order_id)
    if not updated:
        raise FailedPrecondition(
            f"Order {order_id} changed from {expected_status} to {order.status} meanwhile; reload and retry."
        )

    record_order_update(db, before, snapshot_order(order))
    logger.info("[orders] order_id=%s %s -> %s (by %s)", order_id, expected_status, new_status.value, changed_by)
    return order
