"""Before/after snapshots for order updates.

Writers that change an order (sync upsert, scan, manual status change)
snapshot it before and after the change and queue the pair on the session.
After a successful commit they pop the queue and hand the events to the
notifier. A rollback must discard the queue so no event leaks out for a
change that never happened.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models_sqlalchemy.models import Order


_QUEUE_KEY = "pending_order_updates"


@dataclass
class OrderUpdateEvent:
    order_id: str
    before: Dict[str, Any]
    after: Dict[str, Any]

    @property
    def status_before(self) -> Optional[str]:
        return self.before.get("status")

    @property
    def status_after(self) -> Optional[str]:
        return self.after.get("status")


def snapshot_order(order: Order) -> Dict[str, Any]:
    return order.to_document()


def compute_changed_fields(old_fields: Dict[str, Any], new_fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Compute diff between old and new snapshots."""
    diff = {}
    all_keys = set(old_fields.keys()) | set(new_fields.keys())

    for key in all_keys:
        old_val = old_fields.get(key)
        new_val = new_fields.get(key)
        if old_val != new_val:
            diff[key] = {"old": old_val, "new": new_val}

    return diff if diff else None


def record_order_update(db: Session, before: Dict[str, Any], after: Dict[str, Any]) -> Optional[OrderUpdateEvent]:
    if not compute_changed_fields(before, after):
        return None
    event = OrderUpdateEvent(order_id=after.get("id") or before.get("id"), before=before, after=after)
    db.info.setdefault(_QUEUE_KEY, []).append(event)
    return event


def pop_order_updates(db: Session) -> List[OrderUpdateEvent]:
    return db.info.pop(_QUEUE_KEY, [])


def discard_order_updates(db: Session) -> None:
    db.info.pop(_QUEUE_KEY, None)
