from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.task import TaskCreate
from app.models_sqlalchemy.models import Task, TaskStatus, User, UserRole, as_utc
from app.services.errors import InvalidArgument, NotFound, PermissionDenied
from app.utils.logger import logger


def is_admin(user: User) -> bool:
    return str(getattr(user, "role", "")).lower() == UserRole.admin.value


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("[tasks] Failed to %s", what, exc_info=True)
        raise


def _get_task(db: Session, task_id: str) -> Task:
    task = db.query(Task).filter(Task.id == task_id).first()
    if task is None:
        raise NotFound(f"Task {task_id} not found")
    return task


def create_task(db: Session, actor: User, payload: TaskCreate) -> Task:
    if not is_admin(actor):
        raise PermissionDenied("Only administrators can create tasks")

    assigned_to = [uid for uid in payload.assigned_to if uid]
    if not payload.title.strip() or not assigned_to:
        raise InvalidArgument("title, type, assigned_to and due_date are required")

    due_date = payload.due_date
    if due_date.tzinfo is None:
        due_date = due_date.replace(tzinfo=timezone.utc)

    task = Task(
        title=payload.title.strip(),
        description=payload.description,
        type=payload.type.value,
        assigned_to=assigned_to,
        frequency=payload.frequency.model_dump(exclude_none=True),
        status=TaskStatus.pending.value,
        due_date=due_date.astimezone(timezone.utc),
        created_by=actor.id,
        created_at=datetime.now(timezone.utc),
    )
    db.add(task)
    _commit(db, "create task")
    db.refresh(task)
    logger.info("[tasks] Task %s created by %s for %s", task.id, actor.email, assigned_to)
    return task


def complete_task(db: Session, actor: User, task_id: str, attachment_url: Optional[str]) -> Task:
    if not task_id or not (attachment_url or "").strip():
        raise InvalidArgument("task_id and attachment_url are required")

    task = _get_task(db, task_id)
    if not is_admin(actor) and actor.id not in (task.assigned_to or []):
        raise PermissionDenied("You are not allowed to complete this task")

    task.status = TaskStatus.completed.value
    task.completed_at = datetime.now(timezone.utc)
    task.completed_by = actor.id
    task.attachment_url = attachment_url.strip()
    _commit(db, "complete task")
    db.refresh(task)
    logger.info("[tasks] Task %s completed by %s", task.id, actor.email)
    return task


def verify_task(db: Session, actor: User, task_id: str) -> Task:
    if not is_admin(actor):
        raise PermissionDenied("Only administrators can verify tasks")
    if not task_id:
        raise InvalidArgument("task_id is required")

    task = _get_task(db, task_id)
    task.verified_at = datetime.now(timezone.utc)
    task.verified_by = actor.id
    _commit(db, "verify task")
    db.refresh(task)
    logger.info("[tasks] Task %s verified by %s", task.id, actor.email)
    return task


def list_tasks(db: Session, actor: User, status: Optional[str] = None) -> List[Task]:
    query = db.query(Task)
    if status:
        query = query.filter(Task.status == status)
    tasks = query.order_by(Task.due_date.asc()).all()
    if is_admin(actor):
        return tasks
    return [t for t in tasks if actor.id in (t.assigned_to or [])]


def mark_overdue_tasks(db: Session, now: Optional[datetime] = None) -> int:
    """Move pending tasks whose due date has passed to ``overdue``."""
    now = now or datetime.now(timezone.utc)
    tasks = (
        db.query(Task)
        .filter(Task.status == TaskStatus.pending.value, Task.due_date < now)
        .all()
    )
    if not tasks:
        logger.info("[tasks] No pending tasks to mark overdue")
        return 0

    for task in tasks:
        logger.info("[tasks] Marking task %s overdue (due %s)", task.id, as_utc(task.due_date))
        task.status = TaskStatus.overdue.value
    _commit(db, "mark tasks overdue")
    logger.info("[tasks] Overdue sweep updated %d tasks", len(tasks))
    return len(tasks)
