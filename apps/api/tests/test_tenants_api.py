from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.auth import create_access_token, decode_access_token
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.identity.models import AgentAssignment, User
from app.main import app
from app.platform.security import UserRole


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
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _headers(session: Session, role: UserRole, *, tenant_id: uuid.UUID | None = None) -> dict[str, str]:
    user = User(email=f"{uuid.uuid4().hex[:8]}@example.com", name=role.label, role=role.value, tenant_id=tenant_id)
    session.add(user)
    session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


def _user_id(headers: dict[str, str]) -> uuid.UUID:
    return uuid.UUID(decode_access_token(headers["Authorization"].removeprefix("Bearer ")).sub)


def _create_tenant(client: TestClient, headers: dict[str, str], registration_number: str = "REG123") -> dict:
    response = client.post(
        "/api/tenants",
        json={
            "name": "Acme GmbH",
            "registration_number": registration_number,
            "contact_email": "x@acme.de",
            "bank_account_iban": "DE89370400440532013000",
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_requests_without_token_are_rejected(client: TestClient) -> None:
    response = client.get("/api/tenants")

    assert response.status_code == 401


def test_token_for_unknown_user_is_rejected(client: TestClient) -> None:
    token = create_access_token(str(uuid.uuid4()))

    response = client.get("/api/tenants", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_me_reports_role_and_scope(client: TestClient, db_session: Session) -> None:
    admin = _headers(db_session, UserRole.ADMIN)

    response = client.get("/api/me", headers=admin)

    assert response.status_code == 200
    body = response.json()
    assert body["role"] == "ADMIN"
    assert body["role_label"] == "Admin"
    assert body["scope_universal"] is True


def test_create_and_duplicate_tenant(client: TestClient, db_session: Session) -> None:
    admin = _headers(db_session, UserRole.ADMIN)
    created = _create_tenant(client, admin)

    assert created["created_at"] == created["updated_at"]
    assert created["total_cases"] == 0

    duplicate = client.post(
        "/api/tenants",
        json={
            "name": "Other",
            "registration_number": "REG123",
            "contact_email": "y@acme.de",
            "bank_account_iban": "DE89370400440532013000",
        },
        headers=admin,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "conflict"
    assert duplicate.json()["message"] == "A tenant with this registration number already exists"


def test_invalid_iban_is_rejected(client: TestClient, db_session: Session) -> None:
    admin = _headers(db_session, UserRole.ADMIN)

    response = client.post(
        "/api/tenants",
        json={
            "name": "Broken",
            "registration_number": "REG-X",
            "contact_email": "x@acme.de",
            "bank_account_iban": "not-an-iban",
        },
        headers=admin,
    )

    assert response.status_code == 422


def test_agent_cannot_create_tenant(client: TestClient, db_session: Session) -> None:
    agent = _headers(db_session, UserRole.AGENT)

    response = client.post(
        "/api/tenants",
        json={
            "name": "Nope",
            "registration_number": "REG-N",
            "contact_email": "x@acme.de",
            "bank_account_iban": "DE89370400440532013000",
        },
        headers=agent,
    )

    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


def test_foreign_and_missing_tenant_look_identical(client: TestClient, db_session: Session) -> None:
    admin = _headers(db_session, UserRole.ADMIN)
    t1 = _create_tenant(client, admin, "REG-1")
    t2 = _create_tenant(client, admin, "REG-2")
    agent = _headers(db_session, UserRole.AGENT)
    db_session.add(AgentAssignment(agent_id=_user_id(agent), tenant_id=uuid.UUID(t1["id"])))
    db_session.commit()

    fixed = {**agent, "X-Correlation-Id": "same-corr"}
    foreign = client.get(f"/api/tenants/{t2['id']}", headers=fixed)
    missing = client.get(f"/api/tenants/{uuid.uuid4()}", headers=fixed)

    assert foreign.status_code == missing.status_code == 404
    assert foreign.json() == missing.json()
    assert client.get(f"/api/tenants/{t1['id']}", headers=agent).status_code == 200


def test_client_without_tenant_is_forbidden(client: TestClient, db_session: Session) -> None:
    tenantless = _headers(db_session, UserRole.CLIENT)

    response = client.get("/api/tenants", headers=tenantless)

    assert response.status_code == 403
    assert response.json()["message"] == "Client user has no assigned tenant"


def test_update_with_stale_version(client: TestClient, db_session: Session) -> None:
    admin = _headers(db_session, UserRole.ADMIN)
    tenant = _create_tenant(client, admin)

    first = client.patch(f"/api/tenants/{tenant['id']}", json={"name": "Renamed", "row_version": 1}, headers=admin)
    assert first.status_code == 200
    assert first.json()["row_version"] == 2

    stale = client.patch(f"/api/tenants/{tenant['id']}", json={"name": "Again", "row_version": 1}, headers=admin)
    assert stale.status_code == 409
    assert stale.json()["code"] == "stale_state"


def test_delete_guard_and_delete(client: TestClient, db_session: Session) -> None:
    admin = _headers(db_session, UserRole.ADMIN)
    tenant = _create_tenant(client, admin)
    debtor = client.post(
        "/api/debtors",
        json={"tenant_id": tenant["id"], "first_name": "Max", "last_name": "Mustermann"},
        headers=admin,
    )
    assert debtor.status_code == 201

    blocked = client.delete(f"/api/tenants/{tenant['id']}", headers=admin)
    assert blocked.status_code == 409
    assert blocked.json()["message"] == "Cannot delete tenant with existing debtors or cases"
    assert blocked.json()["details"] == {"debtors": 1, "cases": 0}

    empty = _create_tenant(client, admin, "REG-EMPTY")
    deleted = client.delete(f"/api/tenants/{empty['id']}", headers=admin)
    assert deleted.status_code == 200
    assert client.get(f"/api/tenants/{empty['id']}", headers=admin).status_code == 404


def test_agent_assignment_routes(client: TestClient, db_session: Session) -> None:
    admin = _headers(db_session, UserRole.ADMIN)
    tenant = _create_tenant(client, admin)
    agent = _headers(db_session, UserRole.AGENT)
    agent_id = _user_id(agent)

    assert client.get("/api/tenants", headers=agent).json() == []

    assigned = client.post(f"/api/tenants/{tenant['id']}/agents", json={"agent_id": str(agent_id)}, headers=admin)
    assert assigned.status_code == 201
    assert [row["id"] for row in client.get("/api/tenants", headers=agent).json()] == [tenant["id"]]

    listed = client.get(f"/api/tenants/{tenant['id']}/agents", headers=agent)
    assert [row["agent_id"] for row in listed.json()] == [str(agent_id)]

    removed = client.delete(f"/api/tenants/{tenant['id']}/agents/{agent_id}", headers=admin)
    assert removed.status_code == 200
    assert client.get("/api/tenants", headers=agent).json() == []


def test_admin_mine_filter(client: TestClient, db_session: Session) -> None:
    admin = _headers(db_session, UserRole.ADMIN)
    t1 = _create_tenant(client, admin, "REG-1")
    _create_tenant(client, admin, "REG-2")
    client.post(f"/api/tenants/{t1['id']}/agents", json={"agent_id": str(_user_id(admin))}, headers=admin)

    assert len(client.get("/api/tenants", headers=admin).json()) == 2
    assert [row["id"] for row in client.get("/api/tenants?mine=true", headers=admin).json()] == [t1["id"]]


def test_me_for_client_without_tenant_is_forbidden(client: TestClient, db_session: Session) -> None:
    tenantless = _headers(db_session, UserRole.CLIENT)

    response = client.get("/api/me", headers=tenantless)

    assert response.status_code == 403
    assert response.json()["message"] == "Client user has no assigned tenant"
