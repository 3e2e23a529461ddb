from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.models.task import TaskComplete, TaskCreate
from app.models_sqlalchemy import get_db
from app.models_sqlalchemy.models import TaskStatus, User
from app.services.auth import get_current_active_user
from app.services import tasks as task_service


router = APIRouter(prefix="/api/tasks", tags=["tasks"])


@router.get("")
async def list_tasks(
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    tasks = task_service.list_tasks(db, current_user, status_filter.value if status_filter else None)
    return {"items": [t.to_document() for t in tasks]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: TaskCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    task = task_service.create_task(db, current_user, payload)
    return {"result": "Task created.", "task_id": task.id, "task": task.to_document()}


@router.post("/{task_id}/complete")
async def complete_task(
    task_id: str,
    payload: TaskComplete,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    task = task_service.complete_task(db, current_user, task_id, payload.attachment_url)
    return {"result": "Task completed.", "task": task.to_document()}


@router.post("/{task_id}/verify")
async def verify_task(
    task_id: str,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
):
    task = task_service.verify_task(db, current_user, task_id)
    return {"result": "Task verified.", "task": task.to_document()}
