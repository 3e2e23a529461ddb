"""BackgroundWorker heartbeat rows for the scheduled loops.

Each loop records when an iteration started and finished, its last status
and error, and how many runs in a row succeeded or failed, so the admin
side can tell a stale or failing loop from a healthy one.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models_sqlalchemy import SessionLocal
from app.models_sqlalchemy.models import BackgroundWorker
from app.utils.logger import logger


def get_or_create_worker_row(db: Session, worker_name: str, interval_seconds: Optional[int] = None) -> BackgroundWorker:
    worker = (
        db.query(BackgroundWorker)
        .filter(BackgroundWorker.worker_name == worker_name)
        .one_or_none()
    )
    if worker is None:
        worker = BackgroundWorker(
            worker_name=worker_name,
            interval_seconds=interval_seconds,
            runs_ok_in_row=0,
            runs_error_in_row=0,
        )
        db.add(worker)
    elif interval_seconds is not None:
        worker.interval_seconds = interval_seconds
    db.commit()
    db.refresh(worker)
    return worker


def record_started(db: Session, worker_name: str, now: Optional[datetime] = None) -> None:
    worker = get_or_create_worker_row(db, worker_name)
    worker.last_started_at = now or datetime.now(timezone.utc)
    worker.last_status = "running"
    worker.last_error_message = None
    db.commit()


def record_finished(
    db: Session,
    worker_name: str,
    *,
    error: Optional[BaseException] = None,
    now: Optional[datetime] = None,
) -> None:
    worker = get_or_create_worker_row(db, worker_name)
    worker.last_finished_at = now or datetime.now(timezone.utc)
    if error is None:
        worker.last_status = "ok"
        worker.runs_ok_in_row = (worker.runs_ok_in_row or 0) + 1
        worker.runs_error_in_row = 0
    else:
        worker.last_status = "error"
        worker.last_error_message = str(error)[:2000]
        worker.runs_error_in_row = (worker.runs_error_in_row or 0) + 1
        worker.runs_ok_in_row = 0
    db.commit()


def _safe_heartbeat(action: Callable[[Session], None], worker_name: str) -> None:
    db = SessionLocal()
    try:
        action(db)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("[%s] Failed to write heartbeat: %s", worker_name, exc)
    finally:
        db.close()


async def run_with_heartbeat(worker_name: str, run_once: Callable[[], Awaitable[Any]]) -> Any:
    """Run one iteration, recording start/finish on the worker row.

    Exceptions from ``run_once`` are recorded and re-raised.
    """
    _safe_heartbeat(lambda db: record_started(db, worker_name), worker_name)
    try:
        result = await run_once()
    except Exception as exc:
        _safe_heartbeat(lambda db: record_finished(db, worker_name, error=exc), worker_name)
        raise
    _safe_heartbeat(lambda db: record_finished(db, worker_name), worker_name)
    return result


async def run_periodic(
    worker_name: str,
    run_once: Callable[[], Awaitable[Any]],
    *,
    interval_seconds: Optional[float] = None,
    next_delay: Optional[Callable[[], float]] = None,
) -> None:
    """Run ``run_once`` forever, sleeping between iterations.

    Either a fixed ``interval_seconds`` or a ``next_delay`` callable that
    returns the seconds to sleep before the next run. An iteration that
    raises is logged and the loop carries on.
    """
    logger.info("[%s] loop started (interval=%s seconds)", worker_name, interval_seconds)
    _safe_heartbeat(
        lambda db: get_or_create_worker_row(db, worker_name, int(interval_seconds) if interval_seconds else None),
        worker_name,
    )

    while True:
        if next_delay is not None:
            await asyncio.sleep(next_delay())

        try:
            result = await run_with_heartbeat(worker_name, run_once)
            logger.info("[%s] cycle completed: %s", worker_name, result)
        except Exception as exc:
            logger.error("[%s] loop error: %s", worker_name, exc, exc_info=True)

        if next_delay is None:
            await asyncio.sleep(interval_seconds or 60)
