from __future__ import annotations

from typing import Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from app.models.order import OrderStatusChangeRequest
from app.models.user import UserRole
from app.models_sqlalchemy import get_db, get_session_factory
from app.models_sqlalchemy.models import OrderStatus, User
from app.services.auth import admin_required, get_current_active_user, require_roles
from app.services.bling_client import BlingClient
from app.services.clients import get_bling_client
from app.services.order_notifier import queue_order_updates, resync_order
from app.services.orders import change_order_status, get_order, list_orders

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.get("")
async def get_orders(
    status: Optional[OrderStatus] = Query(None),
    with_sync_error: bool = Query(False, description="Only orders whose Bling update failed"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    orders = list_orders(
        db,
        status=status.value if status else None,
        with_sync_error=with_sync_error,
        limit=limit,
        offset=offset,
    )
    return {"items": [o.to_document() for o in orders], "limit": limit, "offset": offset}


@router.get("/{order_id}")
async def get_order_detail(
    order_id: str,
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    return get_order(db, order_id).to_document()


@router.post("/{order_id}/status")
async def update_order_status(
    order_id: str,
    payload: OrderStatusChangeRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_roles(UserRole.SHIPPING)),
    db: Session = Depends(get_db),
    bling: BlingClient = Depends(get_bling_client),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    order = change_order_status(db, order_id, payload.status, current_user.email)
    queue_order_updates(background_tasks, db, bling, session_factory)
    return order.to_document()


@router.post("/{order_id}/bling-resync")
async def bling_resync(
    order_id: str,
    _: User = Depends(admin_required),
    db: Session = Depends(get_db),
    bling: BlingClient = Depends(get_bling_client),
):
    return await resync_order(db, order_id, bling)
