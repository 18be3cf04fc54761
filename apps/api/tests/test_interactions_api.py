from __future__ import annotations

import uuid
from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.api.deps import get_current_actor
from app.core.auth import ActorUser
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.users.models import User


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
def clear_stubs(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def users(db_session: Session) -> dict[str, uuid.UUID]:
    seeded = {
        "admin": User(username="admin", full_name="Ada Admin", role="ADMIN"),
        "manager": User(username="manager", full_name="Max Manager", role="MANAGER"),
        "agent": User(username="agent", full_name="Avery Agent", role="EMPLOYEE"),
        "outsider": User(username="outsider", full_name="Oakley Outsider", role="EMPLOYEE"),
    }
    db_session.add_all(seeded.values())
    db_session.commit()
    return {name: user.id for name, user in seeded.items()}


@pytest.fixture()
def client(
    db_session: Session,
    users: dict[str, uuid.UUID],
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    roles = {"admin": "ADMIN", "manager": "MANAGER", "agent": "EMPLOYEE", "outsider": "EMPLOYEE"}
    state = {"current": "admin"}

    def override_get_current_actor() -> ActorUser:
        name = state["current"]
        return ActorUser(user_id=users[name], role=roles[name], correlation_id="corr-interaction")

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


@pytest.fixture()
def lead(client: tuple[TestClient, Callable[[str], None]], users: dict[str, uuid.UUID]) -> dict:
    test_client, _ = client
    pipeline = test_client.post(
        "/api/pipelines",
        json={"name": "Buyer Journey", "type": "BUYER", "stages": [{"name": "New"}]},
    ).json()
    campaign = test_client.post(
        "/api/campaigns",
        json={"name": "Open House", "pipeline_id": pipeline["id"], "assigned_to_ids": [str(users["agent"])]},
    ).json()
    response = test_client.post(
        "/api/leads",
        json={
            "first_name": "Jamie",
            "last_name": "Smith",
            "campaign_id": campaign["id"],
            "current_stage_id": pipeline["stages"][0]["id"],
        },
    )
    assert response.status_code == 201
    return response.json()


def test_logging_an_interaction_updates_last_contacted(
    client: tuple[TestClient, Callable[[str], None]],
    lead: dict,
) -> None:
    test_client, set_actor = client
    set_actor("agent")

    call = test_client.post(
        f"/api/interactions/leads/{lead['id']}",
        json={
            "type": "CALL",
            "direction": "INBOUND",
            "duration": 420,
            "phone_number": "+1-555-0100",
            "content": "Asked about school districts",
            "occurred_at": "2026-03-02T15:00:00Z",
        },
    )
    assert call.status_code == 201
    assert call.json()["direction"] == "INBOUND"
    assert call.json()["duration"] == 420

    detail = test_client.get(f"/api/leads/{lead['id']}").json()
    assert detail["last_contacted_at"].startswith("2026-03-02T15:00:00")

    email = test_client.post(
        "/api/interactions",
        json={"lead_id": lead["id"], "type": "EMAIL", "subject": "Listings", "email_to": "jamie@example.com"},
    )
    assert email.status_code == 201
    assert email.json()["direction"] == "OUTBOUND"
    assert email.json()["email_to"] == "jamie@example.com"
    assert any(entry["entity_type"] == "crm.interaction" for entry in audit.audit_entries)


def test_interaction_validation(client: tuple[TestClient, Callable[[str], None]], lead: dict) -> None:
    test_client, _ = client
    unknown_type = test_client.post(f"/api/interactions/leads/{lead['id']}", json={"type": "TELEGRAM"})
    assert unknown_type.status_code == 400

    missing_lead = test_client.post(f"/api/interactions/leads/{uuid.uuid4()}", json={"type": "CALL"})
    assert missing_lead.status_code == 404
    assert missing_lead.json()["code"] == "not_found"


def test_list_filters_and_stats(client: tuple[TestClient, Callable[[str], None]], lead: dict) -> None:
    test_client, _ = client
    for interaction_type, occurred_at in (
        ("CALL", "2026-01-10T10:00:00Z"),
        ("CALL", "2026-02-10T10:00:00Z"),
        ("SMS", "2026-02-11T10:00:00Z"),
        ("EMAIL", "2026-03-10T10:00:00Z"),
    ):
        test_client.post(
            f"/api/interactions/leads/{lead['id']}",
            json={"type": interaction_type, "occurred_at": occurred_at},
        )

    calls = test_client.get("/api/interactions", params={"type": "CALL"}).json()
    assert [item["occurred_at"][:10] for item in calls] == ["2026-02-10", "2026-01-10"]

    february = test_client.get(
        "/api/interactions",
        params={"from": "2026-02-01T00:00:00Z", "to": "2026-02-28T23:59:59Z"},
    ).json()
    assert {item["type"] for item in february} == {"CALL", "SMS"}

    page = test_client.get("/api/interactions", params={"lead_id": lead["id"], "limit": 2, "cursor": "2"}).json()
    assert [item["occurred_at"][:10] for item in page] == ["2026-02-10", "2026-01-10"]

    stats = test_client.get("/api/interactions/stats", params={"lead_id": lead["id"]}).json()
    assert stats == {"total": 4, "by_type": {"CALL": 2, "SMS": 1, "EMAIL": 1}}


def test_interactions_are_scoped_to_visible_campaigns(
    client: tuple[TestClient, Callable[[str], None]],
    lead: dict,
) -> None:
    test_client, set_actor = client
    created = test_client.post(f"/api/interactions/leads/{lead['id']}", json={"type": "CALL"}).json()

    set_actor("agent")
    assert len(test_client.get("/api/interactions").json()) == 1
    assert test_client.get(f"/api/interactions/{created['id']}").status_code == 200

    set_actor("outsider")
    assert test_client.get("/api/interactions").json() == []
    assert test_client.get("/api/interactions/stats").json() == {"total": 0, "by_type": {}}
    assert test_client.get(f"/api/interactions/{created['id']}").status_code == 403
    assert test_client.post(f"/api/interactions/leads/{lead['id']}", json={"type": "CALL"}).status_code == 403


def test_only_author_or_admin_can_delete(client: tuple[TestClient, Callable[[str], None]], lead: dict) -> None:
    test_client, set_actor = client
    set_actor("agent")
    mine = test_client.post(f"/api/interactions/leads/{lead['id']}", json={"type": "NOTE", "content": "Left voicemail"})
    theirs = test_client.post(f"/api/interactions/leads/{lead['id']}", json={"type": "SMS"})

    set_actor("manager")
    denied = test_client.delete(f"/api/interactions/{mine.json()['id']}")
    assert denied.status_code == 403
    assert denied.json()["message"] == "Only the author or an administrator can delete this interaction"

    set_actor("agent")
    assert test_client.delete(f"/api/interactions/{mine.json()['id']}").status_code == 204

    set_actor("admin")
    assert test_client.delete(f"/api/interactions/{theirs.json()['id']}").status_code == 204
    assert test_client.get(f"/api/interactions/{theirs.json()['id']}").status_code == 404
    assert test_client.get("/api/interactions").json() == []
