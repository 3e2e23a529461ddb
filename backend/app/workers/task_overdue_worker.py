"""Hourly sweep marking pending tasks past their due date as overdue."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from app.config import settings
from app.models_sqlalchemy import SessionLocal
from app.services.tasks import mark_overdue_tasks
from app.workers.heartbeat import run_periodic


WORKER_NAME = "task_overdue"


async def process_overdue_tasks_once() -> Dict[str, Any]:
    db = SessionLocal()
    now = datetime.now(timezone.utc)
    try:
        updated = mark_overdue_tasks(db, now)
        return {"status": "ok", "updated": updated, "timestamp": now.isoformat()}
    finally:
        db.close()


async def run_task_overdue_loop(interval_seconds: Optional[int] = None) -> None:
    await run_periodic(
        WORKER_NAME,
        process_overdue_tasks_once,
        interval_seconds=interval_seconds or settings.TASK_OVERDUE_INTERVAL_MINUTES * 60,
    )
