"""Daily metrics rollup, run once a day at DAILY_METRICS_HOUR seller-local time."""
from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from app.config import settings
from app.models_sqlalchemy import SessionLocal
from app.services.metrics import generate_daily_metrics
from app.workers.heartbeat import run_periodic


WORKER_NAME = "daily_metrics"


def seconds_until_next_run(hour: int, tz: ZoneInfo, now: Optional[datetime] = None) -> float:
    now = (now or datetime.now(timezone.utc)).astimezone(tz)
    target = datetime.combine(now.date(), time(hour=hour), tzinfo=tz)
    if target <= now:
        target = datetime.combine(now.date() + timedelta(days=1), time(hour=hour), tzinfo=tz)
    return max(0.0, (target - now).total_seconds())


async def run_daily_metrics_once() -> Dict[str, Any]:
    db = SessionLocal()
    try:
        row = generate_daily_metrics(db, None, settings.SELLER_TIMEZONE)
        return {"status": "ok", "date_key": row.date_key, "total_orders": row.total_orders}
    finally:
        db.close()


async def run_daily_metrics_loop() -> None:
    await run_periodic(
        WORKER_NAME,
        run_daily_metrics_once,
        next_delay=lambda: seconds_until_next_run(settings.DAILY_METRICS_HOUR, settings.seller_tz),
    )
