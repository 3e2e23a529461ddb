"""Daily sales rollup.

One ``metrics`` row per seller-local calendar day, keyed ``YYYY-MM-DD``.
Re-running a day overwrites its row; a day without sales still gets a zero
row so dashboards can tell "no sales" from "not computed".
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models_sqlalchemy.models import DailyMetrics, Order, OrderStatus
from app.utils.logger import logger


COUNTED_STATUSES = (
    OrderStatus.ready_to_ship.value,
    OrderStatus.shipped.value,
    OrderStatus.delivered.value,
)
UNCATEGORIZED = "uncategorized"
DEFAULT_TIMEZONE = "America/Sao_Paulo"


def local_day_bounds(target_date: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """Return the UTC instants of local midnight for ``target_date`` and the next day."""
    start_local = datetime.combine(target_date, time.min, tzinfo=tz)
    end_local = datetime.combine(target_date + timedelta(days=1), time.min, tzinfo=tz)
    return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)


def previous_local_date(tz: ZoneInfo, now: Optional[datetime] = None) -> date:
    now = now or datetime.now(timezone.utc)
    return (now.astimezone(tz) - timedelta(days=1)).date()


def generate_daily_metrics(
    db: Session,
    target_date: Optional[date] = None,
    tz_name: str = DEFAULT_TIMEZONE,
    *,
    now: Optional[datetime] = None,
) -> DailyMetrics:
    tz = ZoneInfo(tz_name)
    now = now or datetime.now(timezone.utc)
    target_date = target_date or previous_local_date(tz, now)
    start_utc, end_utc = local_day_bounds(target_date, tz)
    date_key = target_date.isoformat()

    orders = (
        db.query(Order)
        .filter(
            Order.created_at >= start_utc,
            Order.created_at < end_utc,
            Order.status.in_(COUNTED_STATUSES),
        )
        .all()
    )

    total_sales = 0.0
    by_category: Dict[str, float] = {}
    for order in orders:
        for item in order.items or []:
            line_total = float(item.get("unit_price") or 0) * int(item.get("quantity") or 0)
            total_sales += line_total
            category = item.get("category") or UNCATEGORIZED
            by_category[category] = by_category.get(category, 0.0) + line_total

    total_orders = len(orders)
    average_ticket = total_sales / total_orders if total_orders else 0.0

    row = db.query(DailyMetrics).filter(DailyMetrics.date_key == date_key).first()
    if row is None:
        row = DailyMetrics(date_key=date_key)
        db.add(row)

    row.date = start_utc
    row.total_sales = total_sales
    row.total_orders = total_orders
    row.average_ticket = average_ticket
    # No visit data source is wired in yet.
    row.conversion_rate = 0.0
    row.by_category = by_category
    row.updated_at = now

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("[metrics] Failed to store metrics for %s", date_key, exc_info=True)
        raise
    db.refresh(row)

    logger.info(
        "[metrics] %s total_sales=%.2f total_orders=%d average_ticket=%.2f",
        date_key,
        total_sales,
        total_orders,
        average_ticket,
    )
    return row


def get_daily_metrics(db: Session, date_key: str) -> Optional[DailyMetrics]:
    return db.query(DailyMetrics).filter(DailyMetrics.date_key == date_key).first()
