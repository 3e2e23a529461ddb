import pytest

from app.models.user import UserCreate, UserRole
from app.services.auth import authenticate_user, create_user, get_password_hash, verify_password
from app.services.errors import AlreadyExists


def test_password_hash_round_trip():
    hashed = get_password_hash("secret123")

    assert hashed.startswith("pbkdf2_sha256$")
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong", hashed)


@pytest.mark.parametrize("stored", [None, "", "plain-text", "bcrypt$1$aa$bb", "pbkdf2_sha256$x$zz$yy"])
def test_malformed_hashes_never_verify(stored):
    assert verify_password("secret123", stored) is False


def test_create_user_normalises_email_and_rejects_duplicates(db_session):
    user = create_user(
        db_session,
        UserCreate(name="Maria", email="Maria@Example.com", password="secret123", role=UserRole.SHIPPING),
    )

    assert user.email == "maria@example.com"
    assert user.role == "shipping"
    assert authenticate_user(db_session, "maria@example.com", "secret123").id == user.id

    with pytest.raises(AlreadyExists):
        create_user(
            db_session,
            UserCreate(name="Maria 2", email="maria@example.com", password="other123", role=UserRole.SALES),
        )


def test_authenticate_rejects_wrong_password(db_session, make_user):
    make_user("sales")

    assert authenticate_user(db_session, "sales@example.com", "nope") is None
    assert authenticate_user(db_session, "ghost@example.com", "secret123") is None
