"""Mercado Livre order sync loop.

Every ORDER_SYNC_INTERVAL_MINUTES re-reads the orders updated in the last
ORDER_SYNC_WINDOW_MINUTES. The window overlaps the interval, so orders
missed by a failed run are picked up by the next one.
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from app.config import settings
from app.models_sqlalchemy import SessionLocal
from app.services.bling_client import BlingClient
from app.services.mercadolivre_client import MercadoLivreClient
from app.services.order_sync import run_order_sync_window
from app.workers.heartbeat import run_periodic
from app.utils.logger import logger


WORKER_NAME = "order_sync"


async def run_order_sync_once(
    client: Optional[MercadoLivreClient] = None,
    bling_client: Optional[BlingClient] = None,
) -> Dict[str, Any]:
    db = SessionLocal()
    try:
        run = await run_order_sync_window(db, settings, client=client, bling_client=bling_client)
        logger.info(
            "[order_sync] run finished: %d orders, %d Bling notifications",
            run.orders_synced,
            run.notifications_attempted,
        )
        return {"status": "ok", **run.to_dict()}
    finally:
        db.close()


async def run_order_sync_loop(interval_seconds: Optional[int] = None) -> None:
    await run_periodic(
        WORKER_NAME,
        run_order_sync_once,
        interval_seconds=interval_seconds or settings.ORDER_SYNC_INTERVAL_MINUTES * 60,
    )
