from __future__ import annotations

import uuid
from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit
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
    reset_rate_limiter()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    reset_rate_limiter()
    get_settings.cache_clear()


@pytest.fixture()
def users(db_session: Session) -> dict[str, uuid.UUID]:
    seeded = {
        "manager": User(username="manager", full_name="Max Manager", role="MANAGER"),
        "agent": User(username="agent", full_name="Avery Agent", role="EMPLOYEE"),
        "colleague": User(username="colleague", full_name="Cam Colleague", role="EMPLOYEE"),
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

    roles = {"manager": "MANAGER", "agent": "EMPLOYEE", "colleague": "EMPLOYEE", "outsider": "EMPLOYEE"}
    state = {"current": "agent"}

    def override_get_current_actor() -> ActorUser:
        name = state["current"]
        return ActorUser(user_id=users[name], role=roles[name], correlation_id="corr-meeting")

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def _create_meeting(test_client: TestClient, title: str, start: str, end: str, attendee_ids: list[str]) -> dict:
    response = test_client.post(
        "/api/meetings",
        json={"title": title, "start_time": start, "end_time": end, "attendee_ids": attendee_ids},
    )
    assert response.status_code == 201
    return response.json()


def test_create_meeting_excludes_organizer_from_attendees(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, uuid.UUID],
) -> None:
    test_client, _ = client
    meeting = _create_meeting(
        test_client,
        "  Listing presentation ",
        "2026-06-01T15:00:00Z",
        "2026-06-01T16:00:00Z",
        [str(users["colleague"]), str(users["agent"]), str(users["colleague"])],
    )
    assert meeting["title"] == "Listing presentation"
    assert meeting["organizer_id"] == str(users["agent"])
    assert meeting["status"] == "SCHEDULED"
    assert [(item["user_id"], item["status"]) for item in meeting["attendees"]] == [
        (str(users["colleague"]), "PENDING")
    ]


def test_meeting_validation(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, uuid.UUID],
) -> None:
    test_client, _ = client
    backwards = test_client.post(
        "/api/meetings",
        json={"title": "Backwards", "start_time": "2026-06-01T16:00:00Z", "end_time": "2026-06-01T15:00:00Z"},
    )
    assert backwards.status_code == 400

    ghost = str(uuid.uuid4())
    unknown = test_client.post(
        "/api/meetings",
        json={
            "title": "Ghost",
            "start_time": "2026-06-01T15:00:00Z",
            "end_time": "2026-06-01T16:00:00Z",
            "attendee_ids": [ghost],
        },
    )
    assert unknown.status_code == 400
    assert unknown.json()["details"] == {"missing_user_ids": [ghost]}

    missing_lead = test_client.post(
        "/api/meetings",
        json={
            "title": "Lead call",
            "start_time": "2026-06-01T15:00:00Z",
            "end_time": "2026-06-01T16:00:00Z",
            "lead_id": str(uuid.uuid4()),
        },
    )
    assert missing_lead.status_code == 404

    meeting = _create_meeting(test_client, "Sync", "2026-06-01T15:00:00Z", "2026-06-01T16:00:00Z", [])
    shortened = test_client.patch(f"/api/meetings/{meeting['id']}", json={"end_time": "2026-06-01T14:00:00Z"})
    assert shortened.status_code == 400
    assert shortened.json()["message"] == "end_time must be after start_time"


def test_invites_and_responses(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, uuid.UUID],
) -> None:
    test_client, set_actor = client
    meeting = _create_meeting(
        test_client,
        "Open house prep",
        "2026-06-02T15:00:00Z",
        "2026-06-02T16:00:00Z",
        [str(users["colleague"])],
    )

    again = test_client.post(f"/api/meetings/{meeting['id']}/invite", json={"user_ids": [str(users["colleague"])]})
    assert again.status_code == 400
    assert again.json()["code"] == "conflict"

    invited = test_client.post(
        f"/api/meetings/{meeting['id']}/invite",
        json={"user_ids": [str(users["colleague"]), str(users["manager"])]},
    )
    assert invited.status_code == 200
    assert {item["user_id"] for item in invited.json()["attendees"]} == {
        str(users["colleague"]),
        str(users["manager"]),
    }

    set_actor("colleague")
    assert [item["id"] for item in test_client.get("/api/meetings/invites").json()] == [meeting["id"]]
    accepted = test_client.patch(f"/api/meetings/{meeting['id']}/respond", json={"status": "ACCEPTED"})
    assert accepted.status_code == 200
    colleague = next(item for item in accepted.json()["attendees"] if item["user_id"] == str(users["colleague"]))
    assert colleague["status"] == "ACCEPTED"
    assert colleague["responded_at"] is not None
    assert test_client.get("/api/meetings/invites").json() == []
    assert [item["id"] for item in test_client.get("/api/meetings").json()] == [meeting["id"]]

    bad_status = test_client.patch(f"/api/meetings/{meeting['id']}/respond", json={"status": "MAYBE"})
    assert bad_status.status_code == 400

    set_actor("outsider")
    assert test_client.get("/api/meetings").json() == []
    not_invited = test_client.patch(f"/api/meetings/{meeting['id']}/respond", json={"status": "DECLINED"})
    assert not_invited.status_code == 403


def test_only_organizer_or_manager_can_change_meeting(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, uuid.UUID],
) -> None:
    test_client, set_actor = client
    meeting = _create_meeting(
        test_client,
        "Buyer consult",
        "2026-06-03T15:00:00Z",
        "2026-06-03T16:00:00Z",
        [str(users["colleague"])],
    )

    set_actor("colleague")
    assert test_client.patch(f"/api/meetings/{meeting['id']}", json={"title": "Hijacked"}).status_code == 403
    assert test_client.delete(f"/api/meetings/{meeting['id']}").status_code == 403

    set_actor("manager")
    moved = test_client.patch(
        f"/api/meetings/{meeting['id']}",
        json={"start_time": "2026-06-03T17:00:00Z", "end_time": "2026-06-03T18:00:00Z", "location": "Office"},
    )
    assert moved.status_code == 200
    assert moved.json()["location"] == "Office"
    assert moved.json()["start_time"].startswith("2026-06-03T17:00:00")

    set_actor("agent")
    cancelled = test_client.patch(f"/api/meetings/{meeting['id']}", json={"status": "CANCELLED"})
    assert cancelled.json()["status"] == "CANCELLED"
    assert test_client.delete(f"/api/meetings/{meeting['id']}").status_code == 204
    assert test_client.patch(f"/api/meetings/{meeting['id']}", json={"title": "Gone"}).status_code == 404
    actions = [entry["action"] for entry in audit.audit_entries if entry["entity_type"] == "meeting"]
    assert actions == ["create", "delete"]


def test_meeting_list_is_ordered_by_start(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, uuid.UUID],
) -> None:
    test_client, set_actor = client
    later = _create_meeting(test_client, "Later", "2026-07-01T15:00:00Z", "2026-07-01T16:00:00Z", [])
    sooner = _create_meeting(test_client, "Sooner", "2026-06-01T15:00:00Z", "2026-06-01T16:00:00Z", [])
    set_actor("colleague")
    theirs = _create_meeting(test_client, "Theirs", "2026-05-01T15:00:00Z", "2026-05-01T16:00:00Z", [])

    set_actor("agent")
    assert [item["id"] for item in test_client.get("/api/meetings").json()] == [sooner["id"], later["id"]]
    set_actor("manager")
    assert [item["id"] for item in test_client.get("/api/meetings").json()] == [
        theirs["id"],
        sooner["id"],
        later["id"],
    ]
