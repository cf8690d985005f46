from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from config import Settings
from database import Base
from models import User
from schemas import LoginIn, PasswordChangeIn, ProfileUpdateIn, RegisterIn
from services import AuthError, ConflictError, UserService
from tokens import TokenExpired, TokenInvalid, generate_token, verify_token


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_settings(**overrides) -> Settings:
    values = {
        "database_url": "sqlite://",
        "environment": "test",
        "token_secret": "test-secret",
        "token_max_age_hours": 24,
        "revenue_source": "recorded",
        "revenue_estimate_multiplier": Decimal("1.5"),
        "report_months": 6,
        "log_level": "INFO",
    }
    values.update(overrides)
    return Settings(**values)


def register(service: UserService, email: str = "DJ@Example.com") -> tuple[User, str]:
    return service.register(
        RegisterIn(name="DJ Rumba", email=email, password="s3cret-pass")
    )


def test_register_hashes_password_and_issues_token() -> None:
    session = make_session()
    service = UserService(session, make_settings())

    user, token = register(service)

    assert user.email == "dj@example.com"
    assert user.password_hash != "s3cret-pass"
    assert user.last_login is None
    claims = verify_token(token, secret="test-secret")
    assert claims.user_id == user.id
    assert claims.role == "user"


def test_register_rejects_duplicate_email() -> None:
    session = make_session()
    service = UserService(session, make_settings())
    register(service)

    with pytest.raises(ConflictError):
        register(service, email="dj@example.com")


def test_login_with_wrong_password_leaves_last_login_unchanged() -> None:
    session = make_session()
    service = UserService(session, make_settings())
    user, _ = register(service)

    with pytest.raises(AuthError) as excinfo:
        service.login(LoginIn(email="dj@example.com", password="wrong"))

    assert excinfo.value.kind == "credentials"
    assert str(excinfo.value) == "Invalid email or password"
    session.refresh(user)
    assert user.last_login is None


def test_login_with_unknown_email_fails_the_same_way() -> None:
    session = make_session()
    service = UserService(session, make_settings())

    with pytest.raises(AuthError) as excinfo:
        service.login(LoginIn(email="nobody@example.com", password="whatever"))
    assert str(excinfo.value) == "Invalid email or password"


def test_login_records_last_login() -> None:
    session = make_session()
    service = UserService(session, make_settings())
    register(service)

    user, token = service.login(LoginIn(email=" DJ@example.com ", password="s3cret-pass"))

    assert user.last_login is not None
    assert service.user_for_token(token).id == user.id


def test_user_for_token_failures() -> None:
    session = make_session()
    service = UserService(session, make_settings())
    user, token = register(service)

    cases = [
        (None, "missing", "Authentication required. Please log in."),
        ("not-a-token", "invalid", "Invalid authentication token."),
        (
            generate_token(user.id, "user", secret="another-secret"),
            "invalid",
            "Invalid authentication token.",
        ),
        (
            generate_token(user.id + 100, "user", secret="test-secret"),
            "unknown_user",
            "User not found. Please log in again.",
        ),
    ]
    for raw, kind, message in cases:
        with pytest.raises(AuthError) as excinfo:
            service.user_for_token(raw)
        assert excinfo.value.kind == kind
        assert str(excinfo.value) == message

    expired = UserService(session, make_settings(token_max_age_hours=-1))
    with pytest.raises(AuthError) as excinfo:
        expired.user_for_token(token)
    assert excinfo.value.kind == "expired"
    assert str(excinfo.value) == "Your session has expired. Please log in again."


def test_verify_token_distinguishes_expiry_from_tampering() -> None:
    token = generate_token(7, "admin", secret="k")

    assert verify_token(token, max_age_hours=1, secret="k").role == "admin"
    with pytest.raises(TokenExpired):
        verify_token(token, max_age_hours=-1, secret="k")
    with pytest.raises(TokenInvalid):
        verify_token(token + "x", max_age_hours=1, secret="k")


def test_update_profile_rejects_taken_email() -> None:
    session = make_session()
    service = UserService(session, make_settings())
    first, _ = register(service)
    register(service, email="other@example.com")

    with pytest.raises(ConflictError):
        service.update_profile(first.id, ProfileUpdateIn(email="Other@example.com"))

    updated = service.update_profile(first.id, ProfileUpdateIn(name="  DJ Salsa "))
    assert updated.name == "DJ Salsa"
    assert updated.email == "dj@example.com"


def test_change_password() -> None:
    session = make_session()
    service = UserService(session, make_settings())
    user, _ = register(service)

    with pytest.raises(AuthError):
        service.change_password(
            user.id,
            PasswordChangeIn(current_password="nope", new_password="brand-new-pass"),
        )

    service.change_password(
        user.id,
        PasswordChangeIn(current_password="s3cret-pass", new_password="brand-new-pass"),
    )
    with pytest.raises(AuthError):
        service.login(LoginIn(email="dj@example.com", password="s3cret-pass"))
    assert service.login(LoginIn(email="dj@example.com", password="brand-new-pass"))


def test_failed_password_commit_keeps_old_hash(monkeypatch) -> None:
    session = make_session()
    service = UserService(session, make_settings())
    user, _ = register(service)

    def failing_commit():
        raise RuntimeError("disk full")

    monkeypatch.setattr(session, "commit", failing_commit)
    with pytest.raises(RuntimeError):
        service.change_password(
            user.id,
            PasswordChangeIn(current_password="s3cret-pass", new_password="brand-new-pass"),
        )
    monkeypatch.undo()

    assert service.login(LoginIn(email="dj@example.com", password="s3cret-pass"))
