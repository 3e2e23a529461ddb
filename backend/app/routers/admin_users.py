from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.models_sqlalchemy import get_db
from app.models_sqlalchemy.models import User as UserDB
from app.models.user import UserCreate, UserResponse
from app.services.auth import admin_required, create_user
from app.utils.logger import logger

router = APIRouter(prefix="/api/admin/users", tags=["admin-users"])


def _to_response(u: UserDB) -> UserResponse:
    return UserResponse(
        id=u.id,
        email=u.email,
        name=u.name,
        role=u.role,
        is_active=u.is_active,
        created_at=u.created_at,
    )


@router.get("", response_model=List[UserResponse])
async def list_users(_: UserDB = Depends(admin_required), db: Session = Depends(get_db)):
    users = db.query(UserDB).order_by(UserDB.created_at.asc()).all()
    return [_to_response(u) for u in users]


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user_admin(
    payload: UserCreate,
    admin: UserDB = Depends(admin_required),
    db: Session = Depends(get_db),
):
    """Create a dashboard user (name, email, password >= 6 chars, role)."""
    user = create_user(db, payload)
    logger.info(f"Admin {admin.email} created user {user.email} with role {user.role}")
    return {
        "result": f"User {user.email} created.",
        "user_id": user.id,
        "user": _to_response(user),
    }
