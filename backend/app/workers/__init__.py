"""
Background workers for the seller operations backend.

Workers:
- order_sync_worker: every 30 minutes, syncs Mercado Livre orders updated in the last hour
- task_overdue_worker: every hour, marks pending tasks past their due date as overdue
- daily_metrics_worker: once a day, rolls up the previous day's sales
"""

from app.workers.order_sync_worker import run_order_sync_loop, run_order_sync_once
from app.workers.task_overdue_worker import run_task_overdue_loop, process_overdue_tasks_once
from app.workers.daily_metrics_worker import run_daily_metrics_loop, run_daily_metrics_once

__all__ = [
    "run_order_sync_loop",
    "run_order_sync_once",
    "run_task_overdue_loop",
    "process_overdue_tasks_once",
    "run_daily_metrics_loop",
    "run_daily_metrics_once",
]
