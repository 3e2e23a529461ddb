from sqlalchemy import Column, Integer, Float, String, DateTime, Text, Boolean, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import enum
import uuid

from . import Base


def _json_type():
    """JSON type compatible with Postgres and SQLite."""
    return JSON().with_variant(JSONB, "postgresql")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise a stored timestamp to an aware UTC datetime.

    SQLite returns naive datetimes; everything we write is UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


class UserRole(str, enum.Enum):
    admin = "admin"
    sales = "sales"
    shipping = "shipping"
    metrics = "metrics"


class OrderStatus(str, enum.Enum):
    pending = "pending"
    ready_to_ship = "ready_to_ship"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class TaskType(str, enum.Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"


class TaskStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    overdue = "overdue"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    hashed_password = Column(String(255), nullable=False)
    role = Column(String(32), nullable=False, default=UserRole.sales.value)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Order(Base):
    """Canonical representation of a marketplace sale.

    The primary key is the marketplace order id, so re-syncing the same
    order always lands on the same row. ``tracking_number`` mirrors
    ``shipping["tracking_number"]`` so scans can look it up by index.

    ``bling_id``, ``bling_sync_error`` and ``last_scan`` are owned by other
    components and are never written by the order sync.
    """

    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    ml_order_id = Column(String(64), nullable=False, index=True)
    status = Column(String(32), nullable=False, index=True, default=OrderStatus.pending.value)

    customer = Column(_json_type(), nullable=True)
    items = Column(_json_type(), nullable=True)
    shipping = Column(_json_type(), nullable=True)
    tracking_number = Column(String(128), nullable=True, index=True)

    bling_id = Column(String(64), nullable=True)
    last_scan = Column(_json_type(), nullable=True)
    bling_sync_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ml_order_id": self.ml_order_id,
            "status": self.status,
            "customer": dict(self.customer or {}),
            "items": list(self.items or []),
            "shipping": dict(self.shipping or {}),
            "bling_id": self.bling_id,
            "last_scan": dict(self.last_scan) if self.last_scan else None,
            "bling_sync_error": self.bling_sync_error,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class IntegrationCredential(Base):
    """OAuth credentials for an external provider (one row per provider).

    Created by the OAuth callback, rewritten by every token refresh, never
    deleted: re-authorizing overwrites the same row.
    """

    __tablename__ = "integrations"

    provider = Column(String(64), primary_key=True)
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    expires_in = Column(Integer, nullable=True)  # seconds, as returned by the token endpoint
    user_id = Column(String(64), nullable=True)
    status = Column(String(32), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True)


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(16), nullable=False)
    assigned_to = Column(_json_type(), nullable=False, default=list)
    frequency = Column(_json_type(), nullable=True)
    status = Column(String(16), nullable=False, index=True, default=TaskStatus.pending.value)
    due_date = Column(DateTime(timezone=True), nullable=False, index=True)

    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(String(36), nullable=True)
    attachment_url = Column(Text, nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by = Column(String(36), nullable=True)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "assigned_to": list(self.assigned_to or []),
            "frequency": dict(self.frequency or {}),
            "status": self.status,
            "due_date": _iso(self.due_date),
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "completed_at": _iso(self.completed_at),
            "completed_by": self.completed_by,
            "attachment_url": self.attachment_url,
            "verified_at": _iso(self.verified_at),
            "verified_by": self.verified_by,
        }


class DailyMetrics(Base):
    """Per-day sales rollup, keyed by the seller-local calendar date."""

    __tablename__ = "metrics"

    date_key = Column(String(10), primary_key=True)  # YYYY-MM-DD
    date = Column(DateTime(timezone=True), nullable=False)
    total_sales = Column(Float, nullable=False, default=0.0)
    total_orders = Column(Integer, nullable=False, default=0)
    average_ticket = Column(Float, nullable=False, default=0.0)
    conversion_rate = Column(Float, nullable=False, default=0.0)
    by_category = Column(_json_type(), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    def to_document(self) -> Dict[str, Any]:
        return {
            "date_key": self.date_key,
            "date": _iso(self.date),
            "total_sales": self.total_sales,
            "total_orders": self.total_orders,
            "average_ticket": self.average_ticket,
            "conversion_rate": self.conversion_rate,
            "by_category": dict(self.by_category or {}),
            "updated_at": _iso(self.updated_at),
        }


class BackgroundWorker(Base):
    """Heartbeat + status row for the scheduled loops (order sync, task
    overdue sweep, daily metrics)."""

    __tablename__ = "background_workers"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    worker_name = Column(String(128), nullable=False, unique=True, index=True)
    interval_seconds = Column(Integer, nullable=True)

    last_started_at = Column(DateTime(timezone=True), nullable=True)
    last_finished_at = Column(DateTime(timezone=True), nullable=True)
    last_status = Column(String(32), nullable=True)
    last_error_message = Column(Text, nullable=True)

    runs_ok_in_row = Column(Integer, nullable=False, server_default="0")
    runs_error_in_row = Column(Integer, nullable=False, server_default="0")

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
