from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_current_actor
from app.core.auth import ActorUser
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _token(sub: str, role: str, secret: str | None = None) -> str:
    settings = get_settings()
    return jwt.encode({"sub": sub, "role": role}, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


def test_health_is_public(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["service"] == get_settings().app_name
    assert body["environment"] == get_settings().app_env


def test_missing_token_returns_unauthenticated_envelope(client: TestClient) -> None:
    response = client.get("/api/pipelines", headers={"X-Correlation-Id": "auth-corr-1"})
    assert response.status_code == 401
    assert response.json() == {
        "code": "unauthenticated",
        "message": "Authentication required",
        "details": None,
        "correlation_id": "auth-corr-1",
    }


def test_invalid_tokens_are_rejected(client: TestClient) -> None:
    forged = _token("someone", "ADMIN", secret="not-the-secret")
    response = client.get("/me", headers={"Authorization": f"Bearer {forged}"})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or expired token"

    unknown_role = _token("someone", "OWNER")
    assert client.get("/me", headers={"Authorization": f"Bearer {unknown_role}"}).status_code == 401

    assert client.get("/me", headers={"Authorization": "Basic abc"}).status_code == 401


def test_me_reads_bearer_and_cookie_tokens(client: TestClient) -> None:
    user_id = str(uuid.uuid4())
    response = client.get("/me", headers={"Authorization": f"Bearer {_token(user_id, 'manager')}"})
    assert response.status_code == 200
    assert response.json() == {"sub": user_id, "role": "MANAGER"}

    client.cookies.set(get_settings().auth_cookie_name, _token(user_id, "EMPLOYEE"))
    cookie_response = client.get("/me")
    client.cookies.clear()
    assert cookie_response.status_code == 200
    assert cookie_response.json()["role"] == "EMPLOYEE"


def test_token_subject_becomes_actor(client: TestClient) -> None:
    user_id = str(uuid.uuid4())
    response = client.get("/api/users", headers={"Authorization": f"Bearer {_token(user_id, 'EMPLOYEE')}"})
    assert response.status_code == 200
    assert response.json() == []


def test_unexpected_errors_return_internal_error_envelope(db_session: Session) -> None:
    def exploding_actor() -> ActorUser:
        raise RuntimeError("boom")

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = exploding_actor
    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            response = test_client.get("/api/pipelines")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "internal_error"
    assert body["message"] == "Internal server error"
    assert "boom" not in response.text
