from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from jose import JWTError, jwt
import hashlib
import hmac
import os
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from app.config import settings
from app.models.user import UserCreate, UserRole
from app.models_sqlalchemy import get_db
from app.models_sqlalchemy.models import User
from app.services.errors import AlreadyExists
from app.utils.logger import logger

security = HTTPBearer(auto_error=False)

# Dashboard passwords are stored as "pbkdf2_sha256$<iterations>$<salt hex>$<key hex>".
PASSWORD_SCHEME = "pbkdf2_sha256"
PASSWORD_ITERATIONS = 100_000
PASSWORD_SALT_BYTES = 16


def _derive_key(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def get_password_hash(password: str) -> str:
    if not isinstance(password, str):
        raise TypeError("password must be a string")

    salt = os.urandom(PASSWORD_SALT_BYTES)
    key = _derive_key(password, salt, PASSWORD_ITERATIONS)
    return "$".join([PASSWORD_SCHEME, str(PASSWORD_ITERATIONS), salt.hex(), key.hex()])


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Check ``plain_password`` against a stored hash; False when the hash is missing or malformed."""
    if not hashed_password:
        return False
    parts = hashed_password.split("$")
    if len(parts) != 4 or parts[0] != PASSWORD_SCHEME:
        return False
    try:
        iterations = int(parts[1])
        salt = bytes.fromhex(parts[2])
        expected = bytes.fromhex(parts[3])
    except ValueError:
        return False
    if iterations < 1:
        return False

    return hmac.compare_digest(_derive_key(plain_password, salt, iterations), expected)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.ALGORITHM)
    return encoded_jwt


def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user:
        logger.warning(f"Authentication failed: User not found - {email}")
        return None

    if not verify_password(password, user.hashed_password):
        logger.warning(f"Authentication failed: Invalid password - {email}")
        return None

    logger.info(f"User authenticated successfully: {email}")
    return user


def create_user(db: Session, user_data: UserCreate) -> User:
    email = user_data.email.strip().lower()
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        logger.warning(f"User creation failed: Email already exists - {email}")
        raise AlreadyExists("This email is already in use")

    user = User(
        email=email,
        name=user_data.name.strip(),
        hashed_password=get_password_hash(user_data.password),
        role=user_data.role.value,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise AlreadyExists("This email is already in use") from exc
    db.refresh(user)
    logger.info(f"User {email} created with role {user.role}")
    return user


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[settings.ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError as e:
        logger.error(f"JWT validation error: {str(e)}")
        raise credentials_exception

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        logger.error(f"User not found for token: {user_id}")
        raise credentials_exception

    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_active:
        logger.warning(f"Inactive user attempted access: {current_user.email}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive"
        )
    return current_user


def require_roles(*roles: UserRole) -> Callable:
    """Dependency factory allowing only the given roles (admins always pass)."""
    allowed = {r.value for r in roles} | {UserRole.ADMIN.value}

    async def _dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in allowed:
            logger.warning(f"User {current_user.email} with role {current_user.role} denied; needs {sorted(allowed)}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this action"
            )
        return current_user

    return _dependency


admin_required = require_roles()
