from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import create_access_token
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.identity.models import User
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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _headers(session: Session, role: UserRole) -> dict[str, str]:
    user = User(email=f"{uuid.uuid4().hex[:8]}@example.com", name=role.label, role=role.value)
    session.add(user)
    session.commit()
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


def test_metrics_endpoint_exposes_http_and_domain_metrics(client: TestClient, db_session: Session) -> None:
    admin = _headers(db_session, UserRole.ADMIN)
    agent = _headers(db_session, UserRole.AGENT)

    assert client.get("/health").status_code == 200
    tenant = client.post(
        "/api/tenants",
        json={
            "name": "Metrics GmbH",
            "registration_number": "REG-M",
            "contact_email": "metrics@acme.de",
            "bank_account_iban": "DE89370400440532013000",
        },
        headers=admin,
    )
    assert tenant.status_code == 201
    assert client.get(f"/api/tenants/{tenant.json()['id']}", headers=agent).status_code == 404

    metrics = client.get("/metrics", headers=admin)
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "tenant_mutations_total" in body
    assert "scope_denied_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/tenants/{id}"' in body
    assert (REGISTRY.get_sample_value("tenant_mutations_total", {"action": "create", "outcome": "success"}) or 0) >= 1
    assert (REGISTRY.get_sample_value("scope_denied_total", {"resource": "tenant", "reason": "access_denied"}) or 0) >= 1


def test_metrics_require_admin(client: TestClient, db_session: Session) -> None:
    agent = _headers(db_session, UserRole.AGENT)

    assert client.get("/metrics", headers=agent).status_code == 403
    assert client.get("/metrics").status_code == 401


def test_metrics_disabled_returns_404(
    client: TestClient,
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()
    admin = _headers(db_session, UserRole.ADMIN)

    assert client.get("/metrics", headers=admin).status_code == 404
