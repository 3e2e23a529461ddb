from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.config import settings
from app.models.user import UserRole
from app.models_sqlalchemy import get_db
from app.models_sqlalchemy.models import User
from app.services.auth import admin_required, require_roles
from app.services.errors import InvalidArgument, NotFound
from app.services.metrics import generate_daily_metrics, get_daily_metrics

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


class MetricsRebuildRequest(BaseModel):
    target_date: Optional[date] = None


@router.get("/{date_key}")
async def get_metrics_for_day(
    date_key: str,
    _: User = Depends(require_roles(UserRole.METRICS, UserRole.SALES)),
    db: Session = Depends(get_db),
):
    try:
        date.fromisoformat(date_key)
    except ValueError:
        raise InvalidArgument(f"date_key must be YYYY-MM-DD, got {date_key!r}")

    row = get_daily_metrics(db, date_key)
    if row is None:
        raise NotFound(f"No metrics for {date_key}")
    return row.to_document()


@router.post("/rebuild")
async def rebuild_metrics(
    payload: MetricsRebuildRequest,
    _: User = Depends(admin_required),
    db: Session = Depends(get_db),
):
    row = generate_daily_metrics(db, payload.target_date, settings.SELLER_TIMEZONE)
    return row.to_document()
