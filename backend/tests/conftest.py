import os

# Tests always run against in-memory SQLite, never the configured database.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["WORKERS_ENABLED"] = "false"

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models_sqlalchemy import Base
from app.models_sqlalchemy.models import Order, User
from app.services.auth import create_access_token, get_password_hash


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_user(db_session):
    def _make(role: str = "admin", email: Optional[str] = None, password: str = "secret123") -> User:
        user = User(
            email=email or f"{role}@example.com",
            name=role.title(),
            hashed_password=get_password_hash(password),
            role=role,
            is_active=True,
            created_at=datetime.now(timezone.utc),
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_order(db_session):
    def _make(
        order_id: str = "1001",
        *,
        ml_order_id: Optional[str] = None,
        status: str = "pending",
        tracking_number: Optional[str] = None,
        items: Optional[List[Dict[str, Any]]] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        bling_id: Optional[str] = None,
    ) -> Order:
        shipping = {"tracking_number": tracking_number} if tracking_number else {}
        now = datetime.now(timezone.utc)
        order = Order(
            id=order_id,
            ml_order_id=ml_order_id or order_id,
            status=status,
            customer={"name": "Ana Souza", "email": "N/A", "phone": "N/A"},
            items=items if items is not None else [
                {"external_item_id": "MLB1", "title": "Caneca", "quantity": 1, "unit_price": 10.0, "category": "MLB1234"}
            ],
            shipping=shipping,
            tracking_number=tracking_number,
            bling_id=bling_id,
            created_at=created_at or now,
            updated_at=updated_at or now,
        )
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make


@pytest.fixture
def auth_header():
    def _header(user: User) -> Dict[str, str]:
        token = create_access_token(data={"sub": user.id, "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _header
