from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.database import Base
from app.identity.models import User
from app.identity.schemas import AgentAssignmentCreate
from app.identity.service import ADMIN_ONLY_MESSAGE, AssignmentService, IdentityService
from app.platform.security import (
    AccessDeniedError,
    Actor,
    AuthorizationError,
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    UserRole,
)
from app.platform.security.scope import resolve_tenant_scope
from app.tenants.models import Tenant


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
    yield
    audit.audit_entries.clear()
    events.published_events.clear()


def _tenant(session: Session, registration_number: str = "HRB-1") -> Tenant:
    tenant = Tenant(
        name=f"Tenant {registration_number}",
        registration_number=registration_number,
        contact_email="office@example.com",
        bank_account_iban="DE89370400440532013000",
    )
    session.add(tenant)
    session.commit()
    return tenant


def _user(session: Session, role: UserRole, *, tenant_id: uuid.UUID | None = None, active: bool = True) -> User:
    user = User(
        email=f"{uuid.uuid4().hex[:8]}@example.com",
        name=f"{role.label} User",
        role=role.value,
        tenant_id=tenant_id,
        is_active=active,
    )
    session.add(user)
    session.commit()
    return user


def _actor(user: User) -> Actor:
    return Actor(user_id=user.id, role=UserRole(user.role), email=user.email, tenant_id=user.tenant_id)


def test_assign_and_unassign_changes_scope(db_session: Session) -> None:
    service = AssignmentService()
    tenant = _tenant(db_session)
    admin = _actor(_user(db_session, UserRole.ADMIN))
    agent_user = _user(db_session, UserRole.AGENT)

    created = service.assign(db_session, admin, tenant.id, AgentAssignmentCreate(agent_id=agent_user.id))

    assert created.agent_email == agent_user.email
    assert created.assigned_by == admin.user_id
    assert tenant.id in resolve_tenant_scope(db_session, _actor(agent_user))
    assert events.published_events[-1]["event_type"] == "identity.agent_assigned"

    service.unassign(db_session, admin, tenant.id, agent_user.id)

    assert resolve_tenant_scope(db_session, _actor(agent_user)).is_empty
    assert [entry["action"] for entry in audit.entries_for("identity.agent_assignment")] == ["assign", "unassign"]


def test_duplicate_assignment_conflicts(db_session: Session) -> None:
    service = AssignmentService()
    tenant = _tenant(db_session)
    admin = _actor(_user(db_session, UserRole.ADMIN))
    agent_user = _user(db_session, UserRole.AGENT)
    service.assign(db_session, admin, tenant.id, AgentAssignmentCreate(agent_id=agent_user.id))

    with pytest.raises(ConflictError):
        service.assign(db_session, admin, tenant.id, AgentAssignmentCreate(agent_id=agent_user.id))


def test_only_staff_can_be_assigned(db_session: Session) -> None:
    service = AssignmentService()
    tenant = _tenant(db_session)
    admin = _actor(_user(db_session, UserRole.ADMIN))
    client_user = _user(db_session, UserRole.CLIENT, tenant_id=tenant.id)
    inactive_agent = _user(db_session, UserRole.AGENT, active=False)

    with pytest.raises(InvalidArgumentError):
        service.assign(db_session, admin, tenant.id, AgentAssignmentCreate(agent_id=client_user.id))
    with pytest.raises(InvalidArgumentError):
        service.assign(db_session, admin, tenant.id, AgentAssignmentCreate(agent_id=inactive_agent.id))
    with pytest.raises(NotFoundError):
        service.assign(db_session, admin, uuid.uuid4(), AgentAssignmentCreate(agent_id=client_user.id))


def test_agents_cannot_manage_assignments(db_session: Session) -> None:
    service = AssignmentService()
    tenant = _tenant(db_session)
    agent = _actor(_user(db_session, UserRole.AGENT))

    with pytest.raises(ForbiddenError) as exc_info:
        service.assign(db_session, agent, tenant.id, AgentAssignmentCreate(agent_id=agent.user_id))
    assert exc_info.value.message == ADMIN_ONLY_MESSAGE


def test_list_for_tenant_is_scoped(db_session: Session) -> None:
    service = AssignmentService()
    t1 = _tenant(db_session, "HRB-1")
    t2 = _tenant(db_session, "HRB-2")
    admin = _actor(_user(db_session, UserRole.ADMIN))
    agent_user = _user(db_session, UserRole.AGENT)
    service.assign(db_session, admin, t1.id, AgentAssignmentCreate(agent_id=agent_user.id))
    client = _actor(_user(db_session, UserRole.CLIENT, tenant_id=t1.id))

    assert [row.agent_id for row in service.list_for_tenant(db_session, client, t1.id)] == [agent_user.id]
    with pytest.raises(AccessDeniedError):
        service.list_for_tenant(db_session, client, t2.id)


def test_load_actor_rejects_unknown_and_inactive(db_session: Session) -> None:
    identity = IdentityService()
    inactive = _user(db_session, UserRole.AGENT, active=False)

    with pytest.raises(AuthorizationError):
        identity.load_actor(db_session, uuid.uuid4())
    with pytest.raises(AuthorizationError):
        identity.load_actor(db_session, inactive.id)


def test_describe_debtor_has_empty_scope(db_session: Session) -> None:
    identity = IdentityService()
    tenant = _tenant(db_session)
    debtor_user = _user(db_session, UserRole.DEBTOR, tenant_id=tenant.id)

    profile = identity.describe(db_session, identity.load_actor(db_session, debtor_user.id))

    assert profile.role is UserRole.DEBTOR
    assert profile.role_label == "Debtor"
    assert profile.scope_universal is False
    assert profile.scope_tenant_ids == []


def test_describe_refuses_client_without_tenant(db_session: Session) -> None:
    identity = IdentityService()
    client_user = _user(db_session, UserRole.CLIENT)

    with pytest.raises(AuthorizationError) as exc_info:
        identity.describe(db_session, identity.load_actor(db_session, client_user.id))
    assert exc_info.value.message == "Client user has no assigned tenant"
