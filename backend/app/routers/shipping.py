from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from app.models.order import ShipmentScanRequest, ShipmentScanResponse
from app.models.user import UserRole
from app.models_sqlalchemy import get_db, get_session_factory
from app.models_sqlalchemy.models import User
from app.services.auth import require_roles
from app.services.bling_client import BlingClient
from app.services.clients import get_bling_client
from app.services.order_notifier import queue_order_updates
from app.services.shipment_scan import resolve_and_mark_ready

router = APIRouter(prefix="/api/shipping", tags=["shipping"])


@router.post("/scan", response_model=ShipmentScanResponse)
async def process_shipment_scan(
    payload: ShipmentScanRequest,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_roles(UserRole.SHIPPING)),
    db: Session = Depends(get_db),
    bling: BlingClient = Depends(get_bling_client),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    result = resolve_and_mark_ready(db, payload.scanned_value, current_user.email or current_user.id)
    # The Bling push runs after the response; the operator never waits on it.
    queue_order_updates(background_tasks, db, bling, session_factory)
    return result.to_dict()
