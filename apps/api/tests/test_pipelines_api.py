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
        "employee": User(username="employee", full_name="Eli Employee", role="EMPLOYEE"),
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

    roles = {"admin": "ADMIN", "employee": "EMPLOYEE"}
    state = {"current": "admin"}

    def override_get_current_actor() -> ActorUser:
        name = state["current"]
        return ActorUser(user_id=users[name], role=roles[name], correlation_id="corr-pipeline")

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


def _create_pipeline(test_client: TestClient, names: list[str] | None = None) -> dict:
    response = test_client.post(
        "/api/pipelines",
        json={
            "name": "Buyer Journey",
            "type": "BUYER",
            "stages": [{"name": name} for name in (names or ["New", "Contacted", "Qualified"])],
        },
    )
    assert response.status_code == 201
    return response.json()


def _stage_names(pipeline: dict) -> list[str]:
    return [stage["name"] for stage in pipeline["stages"]]


def _assert_contiguous(pipeline: dict) -> None:
    orders = [stage["order"] for stage in pipeline["stages"]]
    assert orders == list(range(len(orders)))
    finals = [stage["is_final"] for stage in pipeline["stages"]]
    assert finals[-2:] == [True, True]
    assert not any(finals[:-2])


def test_create_pipeline_appends_terminal_stages(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    pipeline = _create_pipeline(test_client)

    assert _stage_names(pipeline) == ["New", "Contacted", "Qualified", "Closed Won", "Closed Lost"]
    _assert_contiguous(pipeline)
    assert [stage["is_default"] for stage in pipeline["stages"]] == [True, False, False, False, False]

    created = [item for item in events.published_events if item.get("event_type") == "crm.pipeline.created"]
    assert created
    assert created[-1]["correlation_id"] == "corr-pipeline"
    assert any(entry["entity_type"] == "crm.pipeline" and entry["action"] == "create" for entry in audit.audit_entries)


def test_create_pipeline_requires_at_least_one_stage(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    response = test_client.post("/api/pipelines", json={"name": "Empty", "type": "SELLER", "stages": []})
    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


def test_employee_cannot_create_pipeline(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, set_actor = client
    set_actor("employee")
    response = test_client.post(
        "/api/pipelines",
        json={"name": "Not Mine", "type": "BUYER", "stages": [{"name": "New"}]},
    )
    assert response.status_code == 403
    assert response.json()["code"] == "access_denied"


def test_insert_stage_shifts_following_stages(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    pipeline = _create_pipeline(test_client)

    inserted = test_client.post(f"/api/pipelines/{pipeline['id']}/stages", json={"name": "Showing", "order": 1})
    assert inserted.status_code == 201
    assert inserted.json()["order"] == 1
    assert inserted.json()["is_final"] is False

    refreshed = test_client.get(f"/api/pipelines/{pipeline['id']}").json()
    assert _stage_names(refreshed) == ["New", "Showing", "Contacted", "Qualified", "Closed Won", "Closed Lost"]
    _assert_contiguous(refreshed)


def test_insert_stage_past_terminal_block_is_clamped(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    pipeline = _create_pipeline(test_client)

    inserted = test_client.post(f"/api/pipelines/{pipeline['id']}/stages", json={"name": "Negotiation", "order": 99})
    assert inserted.status_code == 201
    assert inserted.json()["order"] == 3

    appended = test_client.post(f"/api/pipelines/{pipeline['id']}/stages", json={"name": "Offer"})
    assert appended.status_code == 201

    refreshed = test_client.get(f"/api/pipelines/{pipeline['id']}").json()
    assert _stage_names(refreshed) == [
        "New",
        "Contacted",
        "Qualified",
        "Negotiation",
        "Offer",
        "Closed Won",
        "Closed Lost",
    ]
    _assert_contiguous(refreshed)


def test_reorder_stage_keeps_sequence_contiguous(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    pipeline = _create_pipeline(test_client)
    stages = {stage["name"]: stage for stage in pipeline["stages"]}

    moved = test_client.patch(
        f"/api/pipelines/{pipeline['id']}/stages/{stages['Qualified']['id']}",
        json={"order": 0},
    )
    assert moved.status_code == 200
    refreshed = test_client.get(f"/api/pipelines/{pipeline['id']}").json()
    assert _stage_names(refreshed) == ["Qualified", "New", "Contacted", "Closed Won", "Closed Lost"]
    _assert_contiguous(refreshed)

    pushed = test_client.patch(
        f"/api/pipelines/{pipeline['id']}/stages/{stages['Qualified']['id']}",
        json={"order": 10, "color": "#111111"},
    )
    assert pushed.status_code == 200
    assert pushed.json()["order"] == 2
    assert pushed.json()["color"] == "#111111"
    refreshed = test_client.get(f"/api/pipelines/{pipeline['id']}").json()
    assert _stage_names(refreshed) == ["New", "Contacted", "Qualified", "Closed Won", "Closed Lost"]
    _assert_contiguous(refreshed)


def test_terminal_stage_cannot_be_reordered_or_deleted(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    pipeline = _create_pipeline(test_client)
    won = next(stage for stage in pipeline["stages"] if stage["name"] == "Closed Won")

    reorder = test_client.patch(f"/api/pipelines/{pipeline['id']}/stages/{won['id']}", json={"order": 0})
    assert reorder.status_code == 400
    assert reorder.json()["code"] == "conflict"

    delete = test_client.delete(f"/api/pipelines/{pipeline['id']}/stages/{won['id']}")
    assert delete.status_code == 400
    assert delete.json()["code"] == "conflict"


def test_delete_stage_closes_gap_and_moves_default(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    pipeline = _create_pipeline(test_client)
    new_stage = pipeline["stages"][0]

    response = test_client.delete(f"/api/pipelines/{pipeline['id']}/stages/{new_stage['id']}")
    assert response.status_code == 204

    refreshed = test_client.get(f"/api/pipelines/{pipeline['id']}").json()
    assert _stage_names(refreshed) == ["Contacted", "Qualified", "Closed Won", "Closed Lost"]
    _assert_contiguous(refreshed)
    assert refreshed["stages"][0]["is_default"] is True


def test_delete_stage_with_leads_is_rejected(
    client: tuple[TestClient, Callable[[str], None]],
    users: dict[str, uuid.UUID],
) -> None:
    test_client, _ = client
    pipeline = _create_pipeline(test_client)
    contacted = pipeline["stages"][1]

    campaign = test_client.post(
        "/api/campaigns",
        json={"name": "Spring Open House", "pipeline_id": pipeline["id"], "assigned_to_ids": [str(users["employee"])]},
    )
    assert campaign.status_code == 201
    for first_name in ("Jamie", "Riley"):
        lead = test_client.post(
            "/api/leads",
            json={
                "first_name": first_name,
                "last_name": "Smith",
                "campaign_id": campaign.json()["id"],
                "current_stage_id": contacted["id"],
            },
        )
        assert lead.status_code == 201

    response = test_client.delete(f"/api/pipelines/{pipeline['id']}/stages/{contacted['id']}")
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "conflict"
    assert body["details"]["leads_count"] == 2

    detail = test_client.get(f"/api/pipelines/{pipeline['id']}").json()
    assert len(detail["stages"]) == 5
    assert detail["campaign_count"] == 1
    assert next(stage for stage in detail["stages"] if stage["id"] == contacted["id"])["lead_count"] == 2


def test_unknown_pipeline_returns_not_found(client: tuple[TestClient, Callable[[str], None]]) -> None:
    test_client, _ = client
    response = test_client.get(f"/api/pipelines/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_stage_update_through_another_pipeline_returns_not_found(
    client: tuple[TestClient, Callable[[str], None]],
) -> None:
    test_client, _ = client
    pipeline = _create_pipeline(test_client)
    other = _create_pipeline(test_client, ["Listed", "Showing"])
    foreign_stage = other["stages"][0]

    response = test_client.patch(
        f"/api/pipelines/{pipeline['id']}/stages/{foreign_stage['id']}",
        json={"name": "Hijacked", "order": 0},
    )
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"
    assert response.json()["details"] == {"stage_id": foreign_stage["id"]}

    untouched = test_client.get(f"/api/pipelines/{other['id']}").json()
    assert _stage_names(untouched) == ["Listed", "Showing", "Closed Won", "Closed Lost"]
    assert _stage_names(test_client.get(f"/api/pipelines/{pipeline['id']}").json())[0] == "New"
