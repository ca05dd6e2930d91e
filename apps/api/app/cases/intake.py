from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit, events
from app.cases.models import Case, CaseHistory, Debtor, utcnow
from app.cases.repository import CaseRepository, DebtorRepository
from app.cases.schemas import CaseCreate, CaseRead, DebtorCreate, DebtorRead
from app.cases.workflow import INTAKE_STATUSES, TERMINAL_STATUSES, next_action_date, parse_status
from app.core.config import get_settings
from app.identity.models import User
from app.platform.security.context import Actor
from app.platform.security.errors import (
    ConflictError,
    DomainError,
    ForbiddenError,
    IntegrityViolationError,
    InvalidArgumentError,
    NotFoundError,
)
from app.platform.security.roles import STAFF_ROLES, UserRole
from app.tenants.models import Tenant
from app.tenants.repository import TenantRepository


logger = logging.getLogger("app.cases.intake")

DUPLICATE_INVOICE_MESSAGE = "A case with this invoice number already exists for this tenant"
TENANT_MISMATCH_MESSAGE = "Debtor does not belong to the specified tenant"
DEBTOR_CONFLICT_MESSAGE = "Debtor conflicts with an existing record"


@dataclass(slots=True)
class IntakeService:
    """Registers debtors and cases under a tenant.

    A case always inherits its debtor's tenant. A request naming a different
    tenant is rejected as an integrity violation instead of being corrected.
    """

    tenant_repository: TenantRepository = TenantRepository()
    debtor_repository: DebtorRepository = DebtorRepository()
    case_repository: CaseRepository = CaseRepository()

    def register_debtor(self, session: Session, actor: Actor, dto: DebtorCreate) -> DebtorRead:
        self._require_staff(actor)
        self._lock_tenant(session, actor, dto.tenant_id)

        now = utcnow()
        debtor = Debtor(**dto.model_dump(mode="python"), created_at=now, updated_at=now)
        session.add(debtor)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            # The only foreign key is the tenant; anything else is a storage conflict.
            if session.get(Tenant, dto.tenant_id) is None:
                raise NotFoundError("tenant", dto.tenant_id)
            raise ConflictError(DEBTOR_CONFLICT_MESSAGE)
        session.refresh(debtor)

        created = DebtorRead.model_validate(debtor)
        audit.record(
            actor_user_id=actor.audit_id,
            entity_type="debtor",
            entity_id=str(debtor.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
            correlation_id=actor.correlation_id,
            tenant_id=str(debtor.tenant_id),
        )
        self._publish("debtor.created", actor, debtor.tenant_id, {"debtor_id": str(debtor.id)})
        logger.info(
            "debtor.registered",
            extra={"actor_id": actor.audit_id, "tenant_id": str(debtor.tenant_id), "debtor_id": str(debtor.id)},
        )
        return created

    def get_debtor(self, session: Session, actor: Actor, debtor_id: uuid.UUID) -> DebtorRead:
        debtor = self.debtor_repository.get_authorized(session, actor, debtor_id)

        terminal_values = [status.value for status in TERMINAL_STATUSES]
        open_count, open_volume = session.execute(
            select(
                func.count(Case.id),
                func.coalesce(func.sum(Case.principal_amount + Case.costs + Case.interest), 0),
            ).where(Case.debtor_id == debtor.id, Case.status.not_in(terminal_values))
        ).one()
        return DebtorRead.model_validate(debtor).model_copy(
            update={
                "open_cases": int(open_count),
                "total_debt": Decimal(str(open_volume or 0)).quantize(Decimal("0.01")),
            }
        )

    def register_case(self, session: Session, actor: Actor, dto: CaseCreate) -> CaseRead:
        self._require_staff(actor)

        debtor = self.debtor_repository.get_authorized(session, actor, dto.debtor_id, action="intake")

        if dto.tenant_id is not None and dto.tenant_id != debtor.tenant_id:
            logger.error(
                "case.tenant_mismatch",
                extra={
                    "actor_id": actor.audit_id,
                    "tenant_id": str(dto.tenant_id),
                    "debtor_id": str(debtor.id),
                    "reason": TENANT_MISMATCH_MESSAGE,
                },
            )
            raise IntegrityViolationError(
                TENANT_MISMATCH_MESSAGE,
                details={"requested_tenant_id": str(dto.tenant_id), "debtor_tenant_id": str(debtor.tenant_id)},
            )

        tenant_id = debtor.tenant_id
        status = parse_status(dto.status)
        if status not in INTAKE_STATUSES:
            raise InvalidArgumentError(
                "Cases can only be created in DRAFT or NEW status",
                details={"status": status.value},
            )
        if dto.agent_id is not None:
            agent = session.get(User, dto.agent_id)
            if agent is None or agent.role != UserRole.AGENT.value:
                raise InvalidArgumentError("Invalid agent ID", details={"agent_id": str(dto.agent_id)})

        self._lock_tenant(session, actor, tenant_id)
        duplicate = session.scalar(
            select(Case.id).where(Case.tenant_id == tenant_id, Case.invoice_number == dto.invoice_number).limit(1)
        )
        if duplicate is not None:
            session.rollback()
            raise ConflictError(DUPLICATE_INVOICE_MESSAGE)

        settings = get_settings()
        now = utcnow()
        case = Case(
            tenant_id=tenant_id,
            debtor_id=debtor.id,
            agent_id=dto.agent_id,
            invoice_number=dto.invoice_number,
            invoice_date=dto.invoice_date,
            due_date=dto.due_date,
            principal_amount=dto.principal_amount,
            costs=dto.costs,
            interest=dto.interest,
            currency=(dto.currency or settings.default_currency).upper(),
            status=status.value,
            next_action_date=next_action_date(status, now.date()),
            competent_court=dto.competent_court or settings.competent_court_default,
            court_file_number=dto.court_file_number,
            created_at=now,
            updated_at=now,
            row_version=1,
        )
        session.add(case)
        try:
            session.flush()
            session.add(
                CaseHistory(
                    case_id=case.id,
                    action="CREATED",
                    previous_status=None,
                    new_status=status.value,
                    actor_user_id=actor.user_id,
                    actor_role=actor.role_label,
                    note=f"Case created for invoice {dto.invoice_number}",
                    is_override=False,
                    created_at=now,
                )
            )
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError(DUPLICATE_INVOICE_MESSAGE)
        session.refresh(case)

        created = CaseRead.model_validate(case)
        audit.record(
            actor_user_id=actor.audit_id,
            entity_type="case",
            entity_id=str(case.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
            correlation_id=actor.correlation_id,
            tenant_id=str(tenant_id),
        )
        self._publish("case.created", actor, tenant_id, {"case_id": str(case.id), "status": status.value})
        logger.info(
            "case.registered",
            extra={
                "actor_id": actor.audit_id,
                "tenant_id": str(tenant_id),
                "case_id": str(case.id),
                "to_status": status.value,
            },
        )
        return created

    def _lock_tenant(self, session: Session, actor: Actor, tenant_id: uuid.UUID) -> Tenant:
        # Shared lock: concurrent intakes proceed, a concurrent tenant delete waits.
        try:
            return self.tenant_repository.get_authorized(session, actor, tenant_id, action="intake", shared_lock=True)
        except DomainError:
            session.rollback()
            raise

    @staticmethod
    def _require_staff(actor: Actor) -> None:
        if actor.role not in STAFF_ROLES:
            raise ForbiddenError("Only administrators and agents can register debtors and cases")

    @staticmethod
    def _publish(event_type: str, actor: Actor, tenant_id: uuid.UUID, payload: dict) -> None:
        events.publish(
            events.build_envelope(
                event_type,
                actor_user_id=actor.audit_id,
                tenant_id=str(tenant_id),
                payload=payload,
                correlation_id=actor.correlation_id,
            )
        )


intake_service = IntakeService()
