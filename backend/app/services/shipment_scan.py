"""Shipping-station barcode scans.

A scanned value may be the order id, the marketplace order id or the
shipment tracking number; they are tried in that order. A successful scan
moves the order to ``ready_to_ship``.

The transition is a conditional update on the status that was read, so two
stations scanning the same package cannot both apply it. When the update
matches no row the order is re-read and the guard evaluated again.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models_sqlalchemy.models import Order, OrderStatus
from app.services.errors import Internal, InvalidArgument, OrderNotFound
from app.services.order_events import discard_order_updates, record_order_update, snapshot_order
from app.services.order_status import TERMINAL_STATUSES
from app.utils.logger import logger


MAX_SCAN_ATTEMPTS = 3


@dataclass
class ScanResult:
    success: bool
    message: str
    order_id: Optional[str] = None
    status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "order_id": self.order_id,
            "status": self.status,
        }


def resolve_order(db: Session, value: str) -> Optional[Order]:
    order = db.query(Order).filter(Order.id == value).first()
    if order is not None:
        return order

    order = db.query(Order).filter(Order.ml_order_id == value).order_by(Order.id).first()
    if order is not None:
        return order

    return db.query(Order).filter(Order.tracking_number == value).order_by(Order.id).first()


def _guard(order: Order) -> Optional[ScanResult]:
    if order.status == OrderStatus.ready_to_ship.value:
        return ScanResult(
            success=True,
            message=f"Order {order.id} is already ready to ship.",
            order_id=order.id,
            status=order.status,
        )
    if order.status in {s.value for s in TERMINAL_STATUSES}:
        return ScanResult(
            success=False,
            message=f"Order {order.id} cannot be marked ready to ship: status is {order.status}.",
            order_id=order.id,
            status=order.status,
        )
    return None


def resolve_and_mark_ready(
    db: Session,
    scanned_value: Optional[str],
    scanned_by: str,
    *,
    now: Optional[datetime] = None,
) -> ScanResult:
    value = (scanned_value or "").strip()
    if not value:
        raise InvalidArgument("scanned_value is required")

    order = resolve_order(db, value)
    if order is None:
        logger.info("[scan] No order matches scanned value %r (by %s)", value, scanned_by)
        raise OrderNotFound(f"Order not found for scanned value: {value}")

    order_id = order.id
    for attempt in range(1, MAX_SCAN_ATTEMPTS + 1):
        result = _guard(order)
        if result is not None:
            logger.info("[scan] order_id=%s status=%s success=%s (by %s)", order_id, order.status, result.success, scanned_by)
            return result

        stamp = now or datetime.now(timezone.utc)
        expected_status = order.status
        before = snapshot_order(order)
        last_scan = {"scanned_by": scanned_by, "scanned_at": stamp.isoformat(), "value": value}

        try:
            updated = (
                db.query(Order)
                .filter(Order.id == order_id, Order.status == expected_status)
                .update(
                    {
                        "status": OrderStatus.ready_to_ship.value,
                        "updated_at": stamp,
                        "last_scan": last_scan,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            discard_order_updates(db)
            logger.error("[scan] Failed to update order_id=%s", order_id, exc_info=True)
            raise

        order = db.query(Order).filter(Order.id == order_id).first()
        if order is None:
            raise OrderNotFound(f"Order not found for scanned value: {value}")

        if updated:
            record_order_update(db, before, snapshot_order(order))
            logger.info("[scan] order_id=%s %s -> ready_to_ship (by %s)", order_id, expected_status, scanned_by)
            return ScanResult(
                success=True,
                message=f"Order {order_id} marked ready to ship.",
                order_id=order_id,
                status=order.status,
            )

        logger.info("[scan] Conflict on order_id=%s (attempt %d), re-reading", order_id, attempt)

    raise Internal(f"Order {order_id} kept changing while scanning; try again.")
