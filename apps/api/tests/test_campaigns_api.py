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

    roles = {"admin": "ADMIN", "manager": "MANAGER", "agent": "EMPLOYEE"}
    state = {"current": "admin"}

    def override_get_current_actor() -> ActorUser:
        name = state["current"]
        return ActorUser(user_id=users[name], role=roles[name], correlation_id="corr-campaign")

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


@pytest.fixture()
def pipeline(client: tuple[TestClient, Callable[[str], None]]) -> dict:
    test_client, _ = client
    response = test_client.post(
        "/api/pipelines",
        json={"name": "Seller Journey", "type": "SELLER", "stages": [{"name": "Valuation"}, {"name": "Listed"}]},
    )
    assert response.status_code == 201
    return response.json()


def _create_property(test_client: TestClient, address: str, **overrides: object) -> dict:
    payload = {
        "address": address,
        "city": "Austin",
        "state": "TX",
        "zip_code": "78701",
        "property_type": "CONDO",
        "price": 425000,
        **overrides,
    }
    response = test_client.post("/api/properties", json=payload)
    assert response.status_code == 201
    return response.json()


def test_campaign_lifecycle(
    client: tuple[TestClient, Callable[[str], None]],
    pipeline: dict,
    users: dict[str, uuid.UUID],
) -> None:
    test_client, _ = client
    created = test_client.post(
        "/api/campaigns",
        json={
            "name": "  Zillow Premier  ",
            "pipeline_id": pipeline["id"],
            "budget": 1200,
            "source": "Zillow",
            "assigned_to_ids": [str(users["agent"]), str(users["agent"])],
        },
    )
    assert created.status_code == 201
    body = created.json()
    assert body["name"] == "Zillow Premier"
    assert body["status"] == "ACTIVE"
    assert body["start_date"] is not None
    assert body["assigned_to_ids"] == [str(users["agent"])]
    assert body["lead_count"] == 0
    assert any(item.get("event_type") == "crm.campaign.created" for item in events.published_events)

    updated = test_client.put(
        f"/api/campaigns/{body['id']}",
        json={"status": "PAUSED", "actual_spend": 900, "assigned_to_ids": [str(users["manager"])]},
    )
    assert updated.status_code == 200
    assert updated.json()["status"] == "PAUSED"
    assert updated.json()["actual_spend"] == 900
    assert updated.json()["assigned_to_ids"] == [str(users["manager"])]

    paused = test_client.get("/api/campaigns", params={"status": "PAUSED"}).json()
    assert [item["id"] for item in paused] == [body["id"]]
    assert test_client.get("/api/campaigns", params={"status": "ACTIVE"}).json() == []

    deleted = test_client.delete(f"/api/campaigns/{body['id']}")
    assert deleted.status_code == 204
    assert test_client.get(f"/api/campaigns/{body['id']}").status_code == 404
    actions = [entry["action"] for entry in audit.audit_entries if entry["entity_type"] == "crm.campaign"]
    assert actions == ["create", "update", "delete"]


def test_campaign_rejects_unknown_assignee_and_pipeline(
    client: tuple[TestClient, Callable[[str], None]],
    pipeline: dict,
) -> None:
    test_client, _ = client
    unknown_user = str(uuid.uuid4())
    response = test_client.post(
        "/api/campaigns",
        json={"name": "Ghost Team", "pipeline_id": pipeline["id"], "assigned_to_ids": [unknown_user]},
    )
    assert response.status_code == 400
    assert response.json()["details"] == {"missing_user_ids": [unknown_user]}

    missing_pipeline = test_client.post("/api/campaigns", json={"name": "Orphan", "pipeline_id": str(uuid.uuid4())})
    assert missing_pipeline.status_code == 404

    bad_dates = test_client.post(
        "/api/campaigns",
        json={
            "name": "Backwards",
            "pipeline_id": pipeline["id"],
            "start_date": "2026-05-01T00:00:00Z",
            "end_date": "2026-04-01T00:00:00Z",
        },
    )
    assert bad_dates.status_code == 400


def test_employee_cannot_manage_campaigns(
    client: tuple[TestClient, Callable[[str], None]],
    pipeline: dict,
    users: dict[str, uuid.UUID],
) -> None:
    test_client, set_actor = client
    campaign = test_client.post(
        "/api/campaigns",
        json={"name": "Agent Team", "pipeline_id": pipeline["id"], "assigned_to_ids": [str(users["agent"])]},
    ).json()

    set_actor("agent")
    assert test_client.post("/api/campaigns", json={"name": "Mine", "pipeline_id": pipeline["id"]}).status_code == 403
    assert test_client.put(f"/api/campaigns/{campaign['id']}", json={"status": "PAUSED"}).status_code == 403
    assert test_client.get(f"/api/campaigns/{campaign['id']}").status_code == 200

    set_actor("manager")
    assert test_client.put(f"/api/campaigns/{campaign['id']}", json={"status": "PAUSED"}).status_code == 200
    delete = test_client.delete(f"/api/campaigns/{campaign['id']}")
    assert delete.status_code == 403
    assert delete.json()["code"] == "access_denied"


def test_campaign_with_leads_cannot_be_deleted(
    client: tuple[TestClient, Callable[[str], None]],
    pipeline: dict,
) -> None:
    test_client, _ = client
    campaign = test_client.post("/api/campaigns", json={"name": "Busy", "pipeline_id": pipeline["id"]}).json()
    test_client.post(
        "/api/leads",
        json={
            "first_name": "Jamie",
            "last_name": "Smith",
            "lead_type": "SELLER",
            "campaign_id": campaign["id"],
            "current_stage_id": pipeline["stages"][0]["id"],
        },
    )

    response = test_client.delete(f"/api/campaigns/{campaign['id']}")
    assert response.status_code == 400
    assert response.json()["code"] == "conflict"
    assert response.json()["details"] == {"leads_count": 1}


def test_campaign_stats_and_board(
    client: tuple[TestClient, Callable[[str], None]],
    pipeline: dict,
) -> None:
    test_client, _ = client
    campaign = test_client.post(
        "/api/campaigns",
        json={"name": "Postcards", "pipeline_id": pipeline["id"], "budget": 2000},
    ).json()
    valuation, listed, won = pipeline["stages"][0], pipeline["stages"][1], pipeline["stages"][2]

    lead_ids = []
    for first_name, stage in (("Jamie", valuation), ("Riley", valuation), ("Quinn", listed), ("Casey", won)):
        lead = test_client.post(
            "/api/leads",
            json={
                "first_name": first_name,
                "last_name": "Smith",
                "campaign_id": campaign["id"],
                "current_stage_id": stage["id"],
            },
        )
        lead_ids.append(lead.json()["id"])
    test_client.put(f"/api/campaigns/{campaign['id']}/leads/{lead_ids[1]}/archive", json={"is_archived": True})

    stats = test_client.get(f"/api/campaigns/{campaign['id']}/stats").json()
    assert stats["total_leads"] == 4
    assert stats["active_leads"] == 3
    assert stats["cost_per_lead"] == 500.0
    assert stats["conversion_rate"] == 0.25
    distribution = {entry["stage_name"]: entry["count"] for entry in stats["stage_distribution"]}
    assert distribution == {"Valuation": 1, "Listed": 1, "Closed Won": 1, "Closed Lost": 0}

    test_client.put(f"/api/campaigns/{campaign['id']}", json={"actual_spend": 1000})
    assert test_client.get(f"/api/campaigns/{campaign['id']}/stats").json()["cost_per_lead"] == 250.0

    board = test_client.get(f"/api/campaigns/{campaign['id']}/board").json()
    assert [column["stage"]["name"] for column in board["columns"]] == [
        "Valuation",
        "Listed",
        "Closed Won",
        "Closed Lost",
    ]
    assert [column["count"] for column in board["columns"]] == [1, 1, 1, 0]
    assert board["columns"][0]["leads"][0]["id"] == lead_ids[0]

    active_only = test_client.get(
        f"/api/campaigns/{campaign['id']}/leads", params={"include_archived": "false"}
    ).json()
    assert len(active_only) == 3
    by_stage = test_client.get(f"/api/campaigns/{campaign['id']}/leads", params={"stage_id": valuation["id"]}).json()
    assert {lead["first_name"] for lead in by_stage} == {"Jamie", "Riley"}


def test_campaign_properties(
    client: tuple[TestClient, Callable[[str], None]],
    pipeline: dict,
) -> None:
    test_client, _ = client
    campaign = test_client.post("/api/campaigns", json={"name": "Condo Launch", "pipeline_id": pipeline["id"]}).json()
    first = _create_property(test_client, "100 Congress Ave")
    second = _create_property(test_client, "200 Lamar Blvd")
    third = _create_property(test_client, "300 Rainey St")

    added = test_client.post(
        f"/api/campaigns/{campaign['id']}/properties",
        json={"property_id": first["id"], "is_featured": True, "notes": "Corner unit"},
    )
    assert added.status_code == 201
    assert added.json()["order"] == 0
    assert added.json()["property"]["address"] == "100 Congress Ave"

    duplicate = test_client.post(f"/api/campaigns/{campaign['id']}/properties", json={"property_id": first["id"]})
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "conflict"

    bulk = test_client.post(
        f"/api/campaigns/{campaign['id']}/properties/bulk",
        json={"property_ids": [first["id"], second["id"], third["id"]]},
    )
    assert bulk.status_code == 201
    assert bulk.json() == {"added": 2, "skipped": 1}

    listing = test_client.get(f"/api/campaigns/{campaign['id']}/properties").json()
    assert [link["property"]["address"] for link in listing] == ["100 Congress Ave", "200 Lamar Blvd", "300 Rainey St"]
    assert [link["order"] for link in listing] == [0, 1, 2]

    again = test_client.post(
        f"/api/campaigns/{campaign['id']}/properties/bulk",
        json={"property_ids": [second["id"], third["id"]]},
    )
    assert again.status_code == 400
    assert again.json()["message"] == "All properties already added to this campaign"

    moved = test_client.put(
        f"/api/campaigns/{campaign['id']}/properties/{third['id']}",
        json={"order": 0, "is_featured": True},
    )
    assert moved.status_code == 200
    assert moved.json()["is_featured"] is True

    removed = test_client.delete(f"/api/campaigns/{campaign['id']}/properties/{second['id']}")
    assert removed.status_code == 204
    assert len(test_client.get(f"/api/campaigns/{campaign['id']}/properties").json()) == 2

    missing = test_client.delete(f"/api/campaigns/{campaign['id']}/properties/{second['id']}")
    assert missing.status_code == 404


def test_bulk_add_reports_unknown_properties(
    client: tuple[TestClient, Callable[[str], None]],
    pipeline: dict,
) -> None:
    test_client, _ = client
    campaign = test_client.post("/api/campaigns", json={"name": "Lofts", "pipeline_id": pipeline["id"]}).json()
    unknown = str(uuid.uuid4())

    response = test_client.post(f"/api/campaigns/{campaign['id']}/properties/bulk", json={"property_ids": [unknown]})
    assert response.status_code == 404
    assert response.json()["details"] == {"missing_property_ids": [unknown]}
