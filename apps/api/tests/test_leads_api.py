from __future__ import annotations

import uuid
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.api.deps import get_current_actor
from app.core.auth import ActorUser
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import Task
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

    roles = {"admin": "ADMIN", "agent": "EMPLOYEE", "outsider": "EMPLOYEE"}
    state = {"current": "admin"}

    def override_get_current_actor() -> ActorUser:
        name = state["current"]
        return ActorUser(user_id=users[name], role=roles[name], correlation_id="corr-lead")

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


@pytest.fixture()
def campaign(client: tuple[TestClient, Callable[[str], None]], users: dict[str, uuid.UUID]) -> dict:
    test_client, _ = client
    pipeline = test_client.post(
        "/api/pipelines",
        json={"name": "Buyer Journey", "type": "BUYER", "stages": [{"name": "New"}, {"name": "Touring"}]},
    )
    assert pipeline.status_code == 201
    created = test_client.post(
        "/api/campaigns",
        json={
            "name": "Downtown Condos",
            "pipeline_id": pipeline.json()["id"],
            "assigned_to_ids": [str(users["agent"])],
        },
    )
    assert created.status_code == 201
    return {**created.json(), "stages": pipeline.json()["stages"]}


def _lead_payload(campaign: dict, **overrides: object) -> dict:
    payload = {
        "first_name": "Jamie",
        "last_name": "Smith",
        "email": "jamie@example.com",
        "mobile": "+1-555-0100",
        "lead_type": "BUYER",
        "property_type_preference": ["CONDO"],
        "budget_min": 250000,
        "budget_max": 400000,
        "location_preference": ["Austin"],
        "campaign_id": campaign["id"],
        "current_stage_id": campaign["stages"][0]["id"],
    }
    payload.update(overrides)
    return payload


def _open_follow_ups(db_session: Session, lead_id: str) -> list[Task]:
    return list(
        db_session.scalars(
            select(Task).where(
                Task.lead_id == uuid.UUID(lead_id),
                Task.type == "FOLLOW_UP",
                Task.is_completed.is_(False),
            )
        )
    )


def test_create_lead_defaults_assignee_and_writes_initial_note(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
    users: dict[str, uuid.UUID],
) -> None:
    test_client, _ = client
    response = test_client.post("/api/leads", json=_lead_payload(campaign, initial_notes="Met at open house"))
    assert response.status_code == 201
    lead = response.json()
    assert lead["assigned_to_id"] == str(users["admin"])
    assert lead["created_by_id"] == str(users["admin"])
    assert lead["is_archived"] is False
    assert lead["priority"] == "MEDIUM"
    assert lead["row_version"] == 1

    detail = test_client.get(f"/api/leads/{lead['id']}").json()
    assert [note["content"] for note in detail["notes"]] == ["Met at open house"]

    created = [item for item in events.published_events if item.get("event_type") == "crm.lead.created"]
    assert created[-1]["correlation_id"] == "corr-lead"
    assert audit.entries_for("crm.lead", lead["id"])[0]["action"] == "create"


def test_create_lead_with_stage_from_other_pipeline_is_rejected(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
) -> None:
    test_client, _ = client
    other = test_client.post(
        "/api/pipelines",
        json={"name": "Seller Journey", "type": "SELLER", "stages": [{"name": "Valuation"}]},
    ).json()

    response = test_client.post(
        "/api/leads",
        json=_lead_payload(campaign, current_stage_id=other["stages"][0]["id"]),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "invalid_stage"


def test_create_lead_validates_required_fields(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
) -> None:
    test_client, _ = client
    response = test_client.post("/api/leads", json={"first_name": "Jamie", "campaign_id": campaign["id"]})
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "validation_error"
    assert body["correlation_id"]


def test_follow_up_date_keeps_a_single_open_task(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
    db_session: Session,
) -> None:
    test_client, _ = client
    first_due = datetime.now(timezone.utc) + timedelta(days=2)
    lead = test_client.post(
        "/api/leads",
        json=_lead_payload(campaign, next_follow_up_at=first_due.isoformat()),
    ).json()

    tasks = _open_follow_ups(db_session, lead["id"])
    assert len(tasks) == 1
    assert tasks[0].title == "Follow up with Jamie Smith"

    second_due = first_due + timedelta(days=5)
    moved = test_client.put(f"/api/leads/{lead['id']}", json={"next_follow_up_at": second_due.isoformat()})
    assert moved.status_code == 200
    db_session.expire_all()
    tasks = _open_follow_ups(db_session, lead["id"])
    assert len(tasks) == 1
    assert tasks[0].due_date.replace(tzinfo=None) == second_due.replace(tzinfo=None)

    cleared = test_client.put(f"/api/leads/{lead['id']}", json={"next_follow_up_at": None})
    assert cleared.status_code == 200
    db_session.expire_all()
    assert _open_follow_ups(db_session, lead["id"]) == []
    total = db_session.scalar(select(func.count(Task.id)).where(Task.lead_id == uuid.UUID(lead["id"])))
    assert total == 1


def test_update_lead_rejects_unknown_fields_and_bumps_version(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
) -> None:
    test_client, _ = client
    lead = test_client.post("/api/leads", json=_lead_payload(campaign)).json()

    unknown = test_client.put(f"/api/leads/{lead['id']}", json={"campaign_id": str(uuid.uuid4())})
    assert unknown.status_code == 400

    updated = test_client.put(
        f"/api/leads/{lead['id']}",
        json={"score": 80, "tags": ["hot", "pre-approved"], "email": ""},
    )
    assert updated.status_code == 200
    body = updated.json()
    assert body["score"] == 80
    assert body["tags"] == ["hot", "pre-approved"]
    assert body["email"] is None
    assert body["row_version"] == lead["row_version"] + 1


def test_update_lead_archive_flag_logs_note(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
) -> None:
    test_client, _ = client
    lead = test_client.post("/api/leads", json=_lead_payload(campaign)).json()

    response = test_client.put(
        f"/api/leads/{lead['id']}",
        json={"is_archived": True, "archived_reason": "Bought elsewhere"},
    )
    assert response.status_code == 200
    assert response.json()["is_archived"] is True
    assert response.json()["current_stage_id"] == lead["current_stage_id"]

    detail = test_client.get(f"/api/leads/{lead['id']}").json()
    assert [item["content"] for item in detail["interactions"]] == ["Lead archived: Bought elsewhere"]


def test_lead_detail_includes_activity(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
) -> None:
    test_client, _ = client
    lead = test_client.post("/api/leads", json=_lead_payload(campaign)).json()

    note = test_client.post(f"/api/leads/{lead['id']}/notes", json={"content": "Prefers weekends", "is_pinned": True})
    assert note.status_code == 201
    call = test_client.post(
        f"/api/interactions/leads/{lead['id']}",
        json={"type": "CALL", "direction": "OUTBOUND", "duration": 300, "content": "Intro call"},
    )
    assert call.status_code == 201

    detail = test_client.get(f"/api/leads/{lead['id']}")
    assert detail.status_code == 200
    body = detail.json()
    assert [item["type"] for item in body["interactions"]] == ["CALL"]
    assert body["notes"][0]["is_pinned"] is True
    assert body["last_contacted_at"] is not None
    assert body["tasks"] == []
    assert body["property_interests"] == []

    notes = test_client.get(f"/api/leads/{lead['id']}/notes").json()
    assert [item["content"] for item in notes] == ["Prefers weekends"]


def test_property_interest_tour_logs_showing(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
) -> None:
    test_client, _ = client
    lead = test_client.post("/api/leads", json=_lead_payload(campaign)).json()
    listing = test_client.post(
        "/api/properties",
        json={
            "address": "100 Congress Ave",
            "city": "Austin",
            "state": "TX",
            "zip_code": "78701",
            "property_type": "CONDO",
            "price": 350000,
        },
    ).json()

    interest = test_client.post(
        f"/api/leads/{lead['id']}/properties",
        json={"property_id": listing["id"], "status": "INTERESTED"},
    )
    assert interest.status_code == 201

    duplicate = test_client.post(f"/api/leads/{lead['id']}/properties", json={"property_id": listing["id"]})
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "conflict"

    toured = test_client.put(
        f"/api/leads/{lead['id']}/properties/{interest.json()['id']}",
        json={"status": "TOURED", "rating": 4},
    )
    assert toured.status_code == 200
    assert toured.json()["status"] == "TOURED"
    assert toured.json()["rating"] == 4

    detail = test_client.get(f"/api/leads/{lead['id']}").json()
    showings = [item for item in detail["interactions"] if item["type"] == "PROPERTY_SHOWING"]
    assert len(showings) == 1
    assert showings[0]["content"] == "Property showing at 100 Congress Ave, Austin"
    assert len(detail["property_interests"]) == 1


def test_list_leads_is_scoped_to_assigned_campaigns(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
) -> None:
    test_client, set_actor = client
    created = test_client.post("/api/leads", json=_lead_payload(campaign))
    assert created.status_code == 201

    set_actor("agent")
    assert [lead["id"] for lead in test_client.get("/api/leads").json()] == [created.json()["id"]]
    searched = test_client.get("/api/leads", params={"search": "jamie"}).json()
    assert len(searched) == 1

    set_actor("outsider")
    assert test_client.get("/api/leads").json() == []
    denied = test_client.get(f"/api/leads/{created.json()['id']}")
    assert denied.status_code == 403


def test_lead_stats_count_active_leads(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
) -> None:
    test_client, _ = client
    soon = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
    test_client.post("/api/leads", json=_lead_payload(campaign, next_follow_up_at=soon, priority="HIGH"))
    test_client.post("/api/leads", json=_lead_payload(campaign, first_name="Riley", lead_type="SELLER"))

    stats = test_client.get("/api/leads/stats")
    assert stats.status_code == 200
    body = stats.json()
    assert body["total"] == 2
    assert body["by_type"] == {"BUYER": 1, "SELLER": 1}
    assert body["by_priority"] == {"HIGH": 1, "MEDIUM": 1}
    assert body["upcoming_follow_ups"] == 1


def test_only_admin_can_delete_lead(
    client: tuple[TestClient, Callable[[str], None]],
    campaign: dict,
) -> None:
    test_client, set_actor = client
    lead = test_client.post("/api/leads", json=_lead_payload(campaign)).json()

    set_actor("agent")
    denied = test_client.delete(f"/api/leads/{lead['id']}")
    assert denied.status_code == 403

    set_actor("admin")
    deleted = test_client.delete(f"/api/leads/{lead['id']}")
    assert deleted.status_code == 204
    assert test_client.get(f"/api/leads/{lead['id']}").status_code == 404
