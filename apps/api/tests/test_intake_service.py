from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from datetime import date, timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.cases.intake import (
    DEBTOR_CONFLICT_MESSAGE,
    DUPLICATE_INVOICE_MESSAGE,
    TENANT_MISMATCH_MESSAGE,
    IntakeService,
)
from app.cases.models import Case, CaseHistory, Debtor
from app.cases.schemas import CaseCreate, DebtorCreate
from app.cases.workflow import CaseStatus
from app.core.config import get_settings
from app.core.database import Base
from app.identity.models import AgentAssignment, User
from app.platform.security import (
    AccessDeniedError,
    Actor,
    ConflictError,
    ForbiddenError,
    IntegrityViolationError,
    InvalidArgumentError,
    NotFoundError,
    UserRole,
)
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
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def service() -> IntakeService:
    return IntakeService()


def _tenant(session: Session, registration_number: str) -> Tenant:
    tenant = Tenant(
        name=f"Tenant {registration_number}",
        registration_number=registration_number,
        contact_email="office@example.com",
        bank_account_iban="DE89370400440532013000",
    )
    session.add(tenant)
    session.commit()
    return tenant


def _actor(session: Session, role: UserRole, *, tenant_id: uuid.UUID | None = None) -> Actor:
    user = User(email=f"{uuid.uuid4().hex[:8]}@example.com", name=role.label, role=role.value, tenant_id=tenant_id)
    session.add(user)
    session.commit()
    return Actor(user_id=user.id, role=role, email=user.email, tenant_id=tenant_id)


def _debtor_payload(tenant_id: uuid.UUID) -> DebtorCreate:
    return DebtorCreate(tenant_id=tenant_id, first_name="Erika", last_name="Musterfrau", email="erika@example.com")


def _case_payload(debtor_id: uuid.UUID, **overrides: object) -> CaseCreate:
    values: dict[str, object] = {
        "debtor_id": debtor_id,
        "invoice_number": "INV-2026-001",
        "invoice_date": date.today() - timedelta(days=30),
        "due_date": date.today() - timedelta(days=16),
        "principal_amount": Decimal("1200.00"),
        "costs": Decimal("40.00"),
        "interest": Decimal("12.35"),
    }
    values.update(overrides)
    return CaseCreate(**values)


def test_admin_registers_debtor_and_case(db_session: Session, service: IntakeService) -> None:
    tenant = _tenant(db_session, "HRB-1")
    admin = _actor(db_session, UserRole.ADMIN)

    debtor = service.register_debtor(db_session, admin, _debtor_payload(tenant.id))
    case = service.register_case(db_session, admin, _case_payload(debtor.id))

    assert case.tenant_id == tenant.id
    assert case.status is CaseStatus.NEW
    assert case.total_amount == Decimal("1252.35")
    assert case.currency == "EUR"
    assert case.competent_court == get_settings().competent_court_default
    assert case.next_action_date == date.today() + timedelta(days=7)
    assert case.row_version == 1

    history = db_session.scalars(select(CaseHistory).where(CaseHistory.case_id == case.id)).all()
    assert [(entry.action, entry.previous_status, entry.new_status) for entry in history] == [
        ("CREATED", None, "NEW")
    ]
    assert [event["event_type"] for event in events.published_events] == ["debtor.created", "case.created"]


def test_assigned_agent_registers_into_assigned_tenant_only(db_session: Session, service: IntakeService) -> None:
    t1 = _tenant(db_session, "HRB-1")
    t2 = _tenant(db_session, "HRB-2")
    agent = _actor(db_session, UserRole.AGENT)
    db_session.add(AgentAssignment(agent_id=agent.user_id, tenant_id=t1.id))
    db_session.commit()

    assert service.register_debtor(db_session, agent, _debtor_payload(t1.id)).tenant_id == t1.id
    with pytest.raises(AccessDeniedError):
        service.register_debtor(db_session, agent, _debtor_payload(t2.id))


def test_client_cannot_register(db_session: Session, service: IntakeService) -> None:
    tenant = _tenant(db_session, "HRB-1")
    client = _actor(db_session, UserRole.CLIENT, tenant_id=tenant.id)

    with pytest.raises(ForbiddenError):
        service.register_debtor(db_session, client, _debtor_payload(tenant.id))


def test_debtor_for_missing_tenant(db_session: Session, service: IntakeService) -> None:
    admin = _actor(db_session, UserRole.ADMIN)

    with pytest.raises(NotFoundError):
        service.register_debtor(db_session, admin, _debtor_payload(uuid.uuid4()))


def test_case_tenant_mismatch_is_integrity_violation(
    db_session: Session,
    service: IntakeService,
    caplog: pytest.LogCaptureFixture,
) -> None:
    t1 = _tenant(db_session, "HRB-1")
    t2 = _tenant(db_session, "HRB-2")
    admin = _actor(db_session, UserRole.ADMIN)
    debtor = service.register_debtor(db_session, admin, _debtor_payload(t1.id))

    with caplog.at_level(logging.ERROR, logger="app.cases.intake"):
        with pytest.raises(IntegrityViolationError) as exc_info:
            service.register_case(db_session, admin, _case_payload(debtor.id, tenant_id=t2.id))

    assert exc_info.value.message == TENANT_MISMATCH_MESSAGE
    assert any(record.message == "case.tenant_mismatch" for record in caplog.records)
    assert db_session.scalars(select(Case)).all() == []


def test_storage_rejects_case_under_foreign_tenant(db_session: Session) -> None:
    t1 = _tenant(db_session, "HRB-1")
    t2 = _tenant(db_session, "HRB-2")
    debtor = Debtor(tenant_id=t1.id, first_name="Max", last_name="Muster")
    db_session.add(debtor)
    db_session.commit()

    db_session.add(
        Case(
            tenant_id=t2.id,
            debtor_id=debtor.id,
            invoice_number="INV-X",
            invoice_date=date(2026, 1, 1),
            due_date=date(2026, 1, 31),
            principal_amount=Decimal("10.00"),
            costs=Decimal("0"),
            interest=Decimal("0"),
        )
    )
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_duplicate_invoice_number_per_tenant(db_session: Session, service: IntakeService) -> None:
    tenant = _tenant(db_session, "HRB-1")
    admin = _actor(db_session, UserRole.ADMIN)
    debtor = service.register_debtor(db_session, admin, _debtor_payload(tenant.id))
    service.register_case(db_session, admin, _case_payload(debtor.id))

    with pytest.raises(ConflictError) as exc_info:
        service.register_case(db_session, admin, _case_payload(debtor.id))

    assert exc_info.value.message == DUPLICATE_INVOICE_MESSAGE


def test_case_intake_status_is_draft_or_new(db_session: Session, service: IntakeService) -> None:
    tenant = _tenant(db_session, "HRB-1")
    admin = _actor(db_session, UserRole.ADMIN)
    debtor = service.register_debtor(db_session, admin, _debtor_payload(tenant.id))

    draft = service.register_case(db_session, admin, _case_payload(debtor.id, status="draft"))
    assert draft.status is CaseStatus.DRAFT

    with pytest.raises(InvalidArgumentError):
        service.register_case(
            db_session,
            admin,
            _case_payload(debtor.id, invoice_number="INV-2", status="MB_ISSUED"),
        )


def test_case_agent_must_have_agent_role(db_session: Session, service: IntakeService) -> None:
    tenant = _tenant(db_session, "HRB-1")
    admin = _actor(db_session, UserRole.ADMIN)
    debtor = service.register_debtor(db_session, admin, _debtor_payload(tenant.id))

    with pytest.raises(InvalidArgumentError) as exc_info:
        service.register_case(db_session, admin, _case_payload(debtor.id, agent_id=admin.user_id))
    assert exc_info.value.message == "Invalid agent ID"

    agent = _actor(db_session, UserRole.AGENT)
    case = service.register_case(db_session, admin, _case_payload(debtor.id, agent_id=agent.user_id))
    assert case.agent_id == agent.user_id


def test_get_debtor_reports_open_debt(db_session: Session, service: IntakeService) -> None:
    tenant = _tenant(db_session, "HRB-1")
    admin = _actor(db_session, UserRole.ADMIN)
    debtor = service.register_debtor(db_session, admin, _debtor_payload(tenant.id))
    service.register_case(db_session, admin, _case_payload(debtor.id))

    read = service.get_debtor(db_session, admin, debtor.id)

    assert read.open_cases == 1
    assert read.total_debt == Decimal("1252.35")


def test_case_payload_validation() -> None:
    debtor_id = uuid.uuid4()
    with pytest.raises(ValidationError):
        _case_payload(debtor_id, invoice_date=date.today() + timedelta(days=1), due_date=date.today() + timedelta(days=5))
    with pytest.raises(ValidationError):
        _case_payload(debtor_id, due_date=date.today() - timedelta(days=60))
    with pytest.raises(ValidationError):
        _case_payload(debtor_id, principal_amount=Decimal("0"))
    with pytest.raises(ValidationError):
        DebtorCreate(tenant_id=uuid.uuid4(), entity_type="LEGAL_ENTITY")


def test_debtor_storage_conflict_is_not_reported_as_missing_tenant(
    db_session: Session,
    service: IntakeService,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    tenant = _tenant(db_session, "HRB-1")
    admin = _actor(db_session, UserRole.ADMIN)

    def failing_commit() -> None:
        raise IntegrityError("INSERT INTO debtor", {}, Exception("UNIQUE constraint failed: debtor.id"))

    monkeypatch.setattr(db_session, "commit", failing_commit)

    with pytest.raises(ConflictError) as exc_info:
        service.register_debtor(db_session, admin, _debtor_payload(tenant.id))
    assert exc_info.value.message == DEBTOR_CONFLICT_MESSAGE
