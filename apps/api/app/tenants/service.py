from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal

from opentelemetry import trace
from sqlalchemy import case as sql_case
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit, events
from app.cases.models import Case, Debtor
from app.cases.workflow import TERMINAL_STATUSES
from app.metrics import observe_tenant_mutation
from app.otel import set_span_attributes
from app.platform.security.context import Actor
from app.platform.security.errors import ConflictError, ForbiddenError, NotFoundError, StaleStateError
from app.platform.security.scope import assigned_tenant_ids
from app.tenants.models import Tenant, utcnow
from app.tenants.repository import TenantRepository
from app.tenants.schemas import TenantCreate, TenantRead, TenantSummary, TenantUpdate


logger = logging.getLogger("app.tenants")
tracer = trace.get_tracer("app.tenants")

DUPLICATE_REGISTRATION_MESSAGE = "A tenant with this registration number already exists"
DELETE_GUARD_MESSAGE = "Cannot delete tenant with existing debtors or cases"
_CENT = Decimal("0.01")


@dataclass(slots=True)
class TenantService:
    repository: TenantRepository = TenantRepository()
    entity_type: str = "tenant"

    def list_tenants(self, session: Session, actor: Actor, *, mine: bool = False) -> list[TenantRead]:
        scope = self.repository.resolve_scope(session, actor)
        if mine and actor.is_admin:
            scope = scope.intersect(assigned_tenant_ids(session, actor.user_id))

        stmt = self.repository.apply_scope_query(select(Tenant), scope)
        tenants = session.scalars(stmt.order_by(Tenant.name.asc(), Tenant.id.asc())).all()
        summaries = self._summaries(session, [tenant.id for tenant in tenants])
        return [self._to_read(tenant, summaries.get(tenant.id)) for tenant in tenants]

    def get_tenant(self, session: Session, actor: Actor, tenant_id: uuid.UUID) -> TenantRead:
        tenant = self.repository.get_authorized(session, actor, tenant_id)
        return self._to_read(tenant, self._summaries(session, [tenant.id]).get(tenant.id))

    def create_tenant(self, session: Session, actor: Actor, dto: TenantCreate) -> TenantRead:
        if not actor.is_admin:
            observe_tenant_mutation("create", "forbidden")
            raise ForbiddenError("Only administrators can create tenants")

        self._ensure_registration_available(session, dto.registration_number, action="create")

        now = utcnow()
        tenant = Tenant(**dto.model_dump(mode="python"), created_at=now, updated_at=now, row_version=1)
        session.add(tenant)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise self._conflict("create", DUPLICATE_REGISTRATION_MESSAGE)
        session.refresh(tenant)

        created = self._to_read(tenant, TenantSummary())
        audit.record(
            actor_user_id=actor.audit_id,
            entity_type=self.entity_type,
            entity_id=str(tenant.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
            correlation_id=actor.correlation_id,
            tenant_id=str(tenant.id),
        )
        self._publish("tenant.created", actor, tenant.id, {"registration_number": tenant.registration_number})
        observe_tenant_mutation("create", "success")
        logger.info("tenant.created", extra={"actor_id": actor.audit_id, "tenant_id": str(tenant.id)})
        return created

    def update_tenant(
        self,
        session: Session,
        actor: Actor,
        tenant_id: uuid.UUID,
        dto: TenantUpdate,
    ) -> TenantRead:
        if not actor.is_admin:
            observe_tenant_mutation("update", "forbidden")
            raise ForbiddenError("Only administrators can update tenants")

        tenant = session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError(self.entity_type, tenant_id)

        changes = {
            key: value
            for key, value in dto.model_dump(mode="python", exclude_unset=True, exclude={"row_version"}).items()
            if value is not None
        }
        if "registration_number" in changes:
            self._ensure_registration_available(
                session,
                changes["registration_number"],
                exclude_id=tenant.id,
                action="update",
            )

        before = self._to_read(tenant).model_dump(mode="json")
        expected_version = dto.row_version if dto.row_version is not None else tenant.row_version
        try:
            result = session.execute(
                update(Tenant)
                .where(Tenant.id == tenant.id, Tenant.row_version == expected_version)
                .values(**changes, updated_at=utcnow(), row_version=Tenant.row_version + 1)
            )
            if result.rowcount == 0:
                session.rollback()
                observe_tenant_mutation("update", "stale")
                raise StaleStateError("Tenant was modified concurrently", details={"row_version": expected_version})
            session.commit()
        except IntegrityError:
            session.rollback()
            raise self._conflict("update", DUPLICATE_REGISTRATION_MESSAGE)
        session.refresh(tenant)

        updated = self._to_read(tenant, self._summaries(session, [tenant.id]).get(tenant.id))
        audit.record(
            actor_user_id=actor.audit_id,
            entity_type=self.entity_type,
            entity_id=str(tenant.id),
            action="update",
            before=before,
            after=updated.model_dump(mode="json"),
            correlation_id=actor.correlation_id,
            tenant_id=str(tenant.id),
        )
        self._publish("tenant.updated", actor, tenant.id, {"changed_fields": sorted(changes)})
        observe_tenant_mutation("update", "success")
        logger.info("tenant.updated", extra={"actor_id": actor.audit_id, "tenant_id": str(tenant.id)})
        return updated

    def delete_tenant(self, session: Session, actor: Actor, tenant_id: uuid.UUID) -> None:
        """Hard-delete a tenant that owns no debtors and no cases.

        The tenant row is locked for the guard and the delete; intake holds a
        shared lock on the same row, and RESTRICT foreign keys reject any
        dependent row that slips past the guard.
        """

        if not actor.is_admin:
            observe_tenant_mutation("delete", "forbidden")
            raise ForbiddenError("Only administrators can delete tenants")

        with tracer.start_as_current_span("tenant.delete") as span:
            set_span_attributes(span, tenant_id=tenant_id, actor_id=actor.user_id, correlation_id=actor.correlation_id)

            tenant = session.scalar(
                select(Tenant)
                .where(Tenant.id == tenant_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            if tenant is None:
                session.rollback()
                raise NotFoundError(self.entity_type, tenant_id)

            debtor_count, case_count = self._count_dependents(session, tenant.id)
            if debtor_count or case_count:
                session.rollback()
                span.set_attribute("outcome", "blocked")
                raise self._conflict(
                    "delete",
                    DELETE_GUARD_MESSAGE,
                    details={"debtors": debtor_count, "cases": case_count},
                )

            before = self._to_read(tenant, TenantSummary()).model_dump(mode="json")
            session.delete(tenant)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                span.set_attribute("outcome", "blocked")
                raise self._conflict("delete", DELETE_GUARD_MESSAGE)
            span.set_attribute("outcome", "deleted")

        audit.record(
            actor_user_id=actor.audit_id,
            entity_type=self.entity_type,
            entity_id=str(tenant_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor.correlation_id,
            tenant_id=str(tenant_id),
        )
        self._publish("tenant.deleted", actor, tenant_id, {})
        observe_tenant_mutation("delete", "success")
        logger.info("tenant.deleted", extra={"actor_id": actor.audit_id, "tenant_id": str(tenant_id)})

    def _ensure_registration_available(
        self,
        session: Session,
        registration_number: str,
        *,
        action: str,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        stmt = select(Tenant.id).where(Tenant.registration_number == registration_number)
        if exclude_id is not None:
            stmt = stmt.where(Tenant.id != exclude_id)
        if session.scalar(stmt.limit(1)) is not None:
            raise self._conflict(action, DUPLICATE_REGISTRATION_MESSAGE)

    @staticmethod
    def _conflict(action: str, message: str, *, details: dict | None = None) -> ConflictError:
        observe_tenant_mutation(action, "conflict")
        logger.info("tenant.conflict", extra={"action": action, "reason": message})
        return ConflictError(message, details=details)

    @staticmethod
    def _count_dependents(session: Session, tenant_id: uuid.UUID) -> tuple[int, int]:
        debtor_count = session.scalar(select(func.count(Debtor.id)).where(Debtor.tenant_id == tenant_id)) or 0
        case_count = session.scalar(select(func.count(Case.id)).where(Case.tenant_id == tenant_id)) or 0
        return int(debtor_count), int(case_count)

    @staticmethod
    def _summaries(session: Session, tenant_ids: list[uuid.UUID]) -> dict[uuid.UUID, TenantSummary]:
        if not tenant_ids:
            return {}

        debtor_counts: dict[uuid.UUID, int] = {
            tenant_id: int(count)
            for tenant_id, count in session.execute(
                select(Debtor.tenant_id, func.count(Debtor.id))
                .where(Debtor.tenant_id.in_(tenant_ids))
                .group_by(Debtor.tenant_id)
            ).all()
        }

        terminal_values = [status.value for status in TERMINAL_STATUSES]
        open_flag = sql_case((Case.status.not_in(terminal_values), 1), else_=0)
        case_rows = session.execute(
            select(
                Case.tenant_id,
                func.count(Case.id),
                func.coalesce(func.sum(open_flag), 0),
                func.coalesce(func.sum(Case.principal_amount + Case.costs + Case.interest), 0),
            )
            .where(Case.tenant_id.in_(tenant_ids))
            .group_by(Case.tenant_id)
        ).all()

        summaries = {tenant_id: TenantSummary(total_debtors=count) for tenant_id, count in debtor_counts.items()}
        for tenant_id, total_cases, open_cases, volume in case_rows:
            summary = summaries.setdefault(tenant_id, TenantSummary())
            summary.total_cases = int(total_cases)
            summary.open_cases = int(open_cases or 0)
            summary.total_volume = Decimal(str(volume or 0)).quantize(_CENT)
        return summaries

    @staticmethod
    def _to_read(tenant: Tenant, summary: TenantSummary | None = None) -> TenantRead:
        read = TenantRead.model_validate(tenant)
        if summary is not None:
            read = read.model_copy(update=summary.model_dump())
        return read

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


tenant_service = TenantService()
