"""Mercado Livre -> orders table sync.

``sync_orders`` pulls one page of orders for the authenticated seller,
fetches each order's detail with bounded concurrency, and upserts the
batch in a single transaction keyed by the marketplace order id.

Upsert merge rules for an existing row:
  - ``status``, ``ml_order_id``, non-empty shipping subfields and
    ``updated_at`` are refreshed from the marketplace;
  - ``customer``, ``items`` and ``created_at`` keep the values first synced;
  - ``bling_id``, ``bling_sync_error`` and ``last_scan`` are never written here.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings
from app.models_sqlalchemy.models import Order
from app.services.bling_client import BlingClient
from app.services.errors import MarketplaceApiError, OrderSearchFailed, SellerLookupFailed
from app.services.mercadolivre_client import MercadoLivreClient
from app.services.order_events import (
    discard_order_updates,
    pop_order_updates,
    record_order_update,
    snapshot_order,
)
from app.services.order_notifier import dispatch_order_updates
from app.services.order_status import map_marketplace_status
from app.services.token_manager import MarketplaceTokenManager
from app.utils.logger import logger


DEFAULT_LABEL_BASE_URL = "https://api.mercadolibre.com"
NOT_AVAILABLE = "N/A"


def _parse_marketplace_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def transform_marketplace_order(
    detail: Mapping[str, Any],
    *,
    label_base_url: str = DEFAULT_LABEL_BASE_URL,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Map a Mercado Livre order detail payload to an order document."""
    order_id = detail.get("id")
    if order_id is None:
        raise ValueError("marketplace order has no id")
    order_id = str(order_id)

    buyer = detail.get("buyer") or {}
    name = f"{buyer.get('first_name') or ''} {buyer.get('last_name') or ''}".strip()
    customer = {
        "name": name,
        "email": buyer.get("email") or NOT_AVAILABLE,
        "phone": (buyer.get("phone") or {}).get("number") or NOT_AVAILABLE,
    }

    items = []
    for entry in detail.get("order_items") or []:
        item = entry.get("item") or {}
        items.append(
            {
                "external_item_id": str(item.get("id")) if item.get("id") is not None else None,
                "title": item.get("title"),
                "quantity": _to_int(entry.get("quantity")),
                "unit_price": _to_float(entry.get("unit_price")),
                "category": item.get("category_id"),
            }
        )

    shipping_src = detail.get("shipping") or {}
    shipping: Dict[str, Any] = {}
    if shipping_src.get("tracking_number"):
        shipping["tracking_number"] = str(shipping_src["tracking_number"])
    carrier = (shipping_src.get("shipping_option") or {}).get("name")
    if carrier:
        shipping["carrier"] = carrier
    shipment_id = shipping_src.get("id")
    if shipment_id:
        shipping["label_url"] = f"{label_base_url.rstrip('/')}/shipments/{shipment_id}/label"

    created_at = _parse_marketplace_datetime(detail.get("date_created")) or now or datetime.now(timezone.utc)

    return {
        "id": order_id,
        "ml_order_id": order_id,
        "status": map_marketplace_status(detail.get("status")).value,
        "customer": customer,
        "items": items,
        "shipping": shipping,
        "created_at": created_at,
    }


def upsert_orders(db: Session, orders: List[Dict[str, Any]], *, now: Optional[datetime] = None) -> int:
    """Create-or-merge the given order documents in one transaction.

    Returns the number of distinct orders written; when an id repeats, the
    last document wins.
    """
    if not orders:
        return 0
    now = now or datetime.now(timezone.utc)

    orders = list({doc["id"]: doc for doc in orders}.values())
    ids = [doc["id"] for doc in orders]
    existing = {row.id: row for row in db.query(Order).filter(Order.id.in_(ids)).all()}

    try:
        for doc in orders:
            row = existing.get(doc["id"])
            if row is None:
                shipping = dict(doc.get("shipping") or {})
                row = Order(
                    id=doc["id"],
                    ml_order_id=doc["ml_order_id"],
                    status=doc["status"],
                    customer=doc.get("customer"),
                    items=doc.get("items"),
                    shipping=shipping,
                    tracking_number=shipping.get("tracking_number"),
                    created_at=doc.get("created_at") or now,
                    updated_at=now,
                )
                db.add(row)
                existing[row.id] = row
                continue

            before = snapshot_order(row)
            shipping = dict(row.shipping or {})
            for key, value in (doc.get("shipping") or {}).items():
                if value:
                    shipping[key] = value

            row.status = doc["status"]
            row.ml_order_id = doc["ml_order_id"]
            row.shipping = shipping
            row.tracking_number = shipping.get("tracking_number")
            row.updated_at = now
            record_order_update(db, before, snapshot_order(row))

        db.commit()
    except SQLAlchemyError:
        db.rollback()
        discard_order_updates(db)
        logger.error("[order_sync] Batch upsert failed, rolled back %d orders", len(orders), exc_info=True)
        raise

    return len(orders)


async def sync_orders(
    db: Session,
    client: MercadoLivreClient,
    auth_headers: Mapping[str, str],
    search_params: Optional[Mapping[str, Any]] = None,
    *,
    concurrency: int = 10,
    deadline: Optional[float] = None,
    page_limit: int = 50,
) -> int:
    """Sync one page of the seller's orders. Returns the number upserted.

    ``deadline`` is a ``time.monotonic()`` value; detail fetches not started
    by then are skipped and the run finishes with what it has.
    """
    try:
        seller = await client.get_me(auth_headers)
    except MarketplaceApiError as exc:
        logger.error("[order_sync] Seller lookup failed: %s", exc)
        raise SellerLookupFailed(f"Could not resolve seller id: {exc}") from exc

    seller_id = (seller or {}).get("id")
    if seller_id is None:
        raise SellerLookupFailed("Seller lookup returned no id")

    params: Dict[str, Any] = {"seller": seller_id, "sort": "date_desc", "limit": page_limit}
    params.update(search_params or {})
    logger.info("[order_sync] Searching orders params=%s", params)

    try:
        search = await client.search_orders(auth_headers, params)
    except MarketplaceApiError as exc:
        logger.error("[order_sync] Order search failed: %s", exc)
        raise OrderSearchFailed(f"Order search failed: {exc}") from exc

    summaries = (search or {}).get("results") or []
    if not summaries:
        logger.info("[order_sync] No orders found for params=%s", params)
        return 0

    semaphore = asyncio.Semaphore(max(1, concurrency))
    skipped = 0

    async def _fetch(summary: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        nonlocal skipped
        order_id = summary.get("id")
        if order_id is None:
            return None
        async with semaphore:
            if deadline is not None and time.monotonic() >= deadline:
                skipped += 1
                return None
            try:
                return await client.get_order(auth_headers, order_id)
            except Exception as exc:
                logger.error("[order_sync] Failed to fetch order %s: %s", order_id, exc)
                return None

    details = await asyncio.gather(*[_fetch(s) for s in summaries])
    if skipped:
        logger.warning("[order_sync] Deadline reached, skipped %d order detail fetches", skipped)

    label_base_url = getattr(client, "base_url", DEFAULT_LABEL_BASE_URL)
    orders: List[Dict[str, Any]] = []
    for detail in details:
        if not detail:
            continue
        try:
            orders.append(transform_marketplace_order(detail, label_base_url=label_base_url))
        except (TypeError, ValueError, AttributeError) as exc:
            logger.error("[order_sync] Could not transform order %s: %s", detail.get("id"), exc)

    logger.info("[order_sync] %d of %d orders fetched with details", len(orders), len(summaries))
    if not orders:
        return 0

    count = upsert_orders(db, orders)
    logger.info("[order_sync] %d orders saved/updated", count)
    return count


@dataclass
class OrderSyncRun:
    window_from: datetime
    window_to: datetime
    orders_synced: int = 0
    notifications_attempted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_from": self.window_from.isoformat(),
            "window_to": self.window_to.isoformat(),
            "orders_synced": self.orders_synced,
            "notifications_attempted": self.notifications_attempted,
        }


def build_window_params(window_from: datetime, window_to: datetime) -> Dict[str, str]:
    return {
        "order.date_last_updated.from": window_from.isoformat(),
        "order.date_last_updated.to": window_to.isoformat(),
    }


async def run_order_sync_window(
    db: Session,
    settings: Settings,
    *,
    window_minutes: Optional[int] = None,
    client: Optional[MercadoLivreClient] = None,
    token_manager: Optional[MarketplaceTokenManager] = None,
    bling_client: Optional[BlingClient] = None,
    now: Optional[datetime] = None,
) -> OrderSyncRun:
    """Sync orders updated within the trailing window and notify Bling.

    Shared by the scheduled worker and the manual sync endpoint.
    """
    client = client or MercadoLivreClient(settings)
    token_manager = token_manager or MarketplaceTokenManager(settings, client)
    bling_client = bling_client or BlingClient(settings)

    now = now or datetime.now(timezone.utc)
    minutes = window_minutes or settings.ORDER_SYNC_WINDOW_MINUTES
    run = OrderSyncRun(window_from=now - timedelta(minutes=minutes), window_to=now)

    headers = await token_manager.get_auth_headers(db)
    deadline = time.monotonic() + settings.ORDER_SYNC_DEADLINE_SECONDS

    discard_order_updates(db)
    run.orders_synced = await sync_orders(
        db,
        client,
        headers,
        build_window_params(run.window_from, run.window_to),
        concurrency=settings.ORDER_DETAIL_CONCURRENCY,
        deadline=deadline,
        page_limit=settings.ORDER_SYNC_PAGE_LIMIT,
    )
    run.notifications_attempted = await dispatch_order_updates(db, pop_order_updates(db), bling_client)
    return run
