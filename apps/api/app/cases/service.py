from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from opentelemetry import trace
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from app import audit, events
from app.cases.models import Case, CaseHistory, utcnow
from app.cases.repository import CaseRepository
from app.cases.schemas import CaseFilter, CaseHistoryRead, CasePage, CaseRead, CaseTransitionsRead
from app.cases.workflow import (
    CaseStatus,
    TransitionKind,
    allowed_targets,
    check_transition,
    next_action_date,
    parse_status,
)
from app.core.config import get_settings
from app.metrics import observe_case_conflict, observe_case_transition
from app.otel import set_span_attributes
from app.platform.security.context import Actor
from app.platform.security.errors import ConflictError, InvalidArgumentError, StaleStateError


logger = logging.getLogger("app.cases")
tracer = trace.get_tracer("app.cases")

CASE_CLOSED_MESSAGE = "Case is closed"
STALE_CASE_MESSAGE = "Case was modified concurrently"


@dataclass(slots=True)
class CaseService:
    repository: CaseRepository = CaseRepository()
    entity_type: str = "case"

    def get_case(self, session: Session, actor: Actor, case_id: uuid.UUID) -> CaseRead:
        return CaseRead.model_validate(self._get_authorized_case(session, actor, case_id))

    def list_cases(
        self,
        session: Session,
        actor: Actor,
        filters: CaseFilter,
        *,
        page: int = 1,
        page_size: int | None = None,
    ) -> CasePage:
        settings = get_settings()
        size = page_size or settings.default_page_size
        if page < 1 or size < 1 or size > settings.max_page_size:
            raise InvalidArgumentError(
                f"page must be >= 1 and page_size between 1 and {settings.max_page_size}",
                details={"page": page, "page_size": size},
            )

        scope = self.repository.resolve_scope(session, actor)
        stmt = self.repository.apply_scope_query(select(Case), scope)
        if filters.tenant_id is not None:
            stmt = stmt.where(Case.tenant_id == filters.tenant_id)
        if filters.debtor_id is not None:
            stmt = stmt.where(Case.debtor_id == filters.debtor_id)
        if filters.agent_id is not None:
            stmt = stmt.where(Case.agent_id == filters.agent_id)
        if filters.status is not None:
            stmt = stmt.where(Case.status == filters.status.value)

        total = session.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        rows = session.scalars(
            stmt.order_by(Case.created_at.desc(), Case.id.asc()).offset((page - 1) * size).limit(size)
        ).all()
        return CasePage(
            items=[CaseRead.model_validate(row) for row in rows],
            total=int(total),
            page=page,
            page_size=size,
        )

    def get_history(self, session: Session, actor: Actor, case_id: uuid.UUID) -> list[CaseHistoryRead]:
        case = self._get_authorized_case(session, actor, case_id)
        rows = session.scalars(
            select(CaseHistory)
            .where(CaseHistory.case_id == case.id)
            .order_by(CaseHistory.created_at.desc(), CaseHistory.id.asc())
        ).all()
        return [CaseHistoryRead.model_validate(row) for row in rows]

    def allowed_transitions(self, session: Session, actor: Actor, case_id: uuid.UUID) -> CaseTransitionsRead:
        case = self._get_authorized_case(session, actor, case_id)
        current = CaseStatus(case.status)
        return CaseTransitionsRead(
            case_id=case.id,
            current_status=current,
            is_terminal=current.is_terminal,
            allowed=allowed_targets(current, actor.role),
        )

    def advance(
        self,
        session: Session,
        actor: Actor,
        case_id: uuid.UUID,
        target_status: str | CaseStatus,
        note: str | None = None,
        *,
        expected_row_version: int | None = None,
    ) -> CaseRead:
        """Move a case to ``target_status`` and append a history entry.

        Writes use a compare-and-set on ``row_version``; losing a race raises
        :class:`StaleStateError`. Moving to the current status records a note
        without changing the status. Admin moves outside the transition table
        are applied and flagged as overrides.
        """

        with tracer.start_as_current_span("case.advance") as span:
            set_span_attributes(span, case_id=case_id, actor_id=actor.user_id, correlation_id=actor.correlation_id)

            case = self._get_authorized_case(session, actor, case_id, action="advance")
            target = parse_status(target_status)
            current = CaseStatus(case.status)
            set_span_attributes(span, tenant_id=case.tenant_id, from_status=current.value, to_status=target.value)

            check = check_transition(current, target, actor.role)
            if check.closed:
                self._reject(actor, case, current, target, reason="closed")
                raise ConflictError(CASE_CLOSED_MESSAGE, details={"status": current.value})
            if not check.allowed:
                self._reject(actor, case, current, target, reason="illegal_transition")
                raise InvalidArgumentError(
                    f"Transition from {current.value} to {target.value} is not allowed",
                    details={"from_status": current.value, "to_status": target.value},
                )

            version = expected_row_version if expected_row_version is not None else case.row_version
            before = CaseRead.model_validate(case).model_dump(mode="json")
            now = utcnow()
            values: dict[str, object] = {"updated_at": now, "row_version": Case.row_version + 1}
            if check.kind is not TransitionKind.NOTE:
                values["status"] = target.value
                values["next_action_date"] = next_action_date(target, now.date())

            result = session.execute(
                update(Case).where(Case.id == case.id, Case.row_version == version).values(**values)
            )
            if result.rowcount == 0:
                session.rollback()
                self._reject(actor, case, current, target, reason="stale")
                raise StaleStateError(STALE_CASE_MESSAGE, details={"row_version": version})

            session.add(
                CaseHistory(
                    case_id=case.id,
                    action="NOTE" if check.kind is TransitionKind.NOTE else "STATUS_CHANGE",
                    previous_status=current.value,
                    new_status=target.value,
                    actor_user_id=actor.user_id,
                    actor_role=actor.role_label,
                    note=note,
                    is_override=check.is_override,
                    created_at=now,
                )
            )
            session.commit()
            session.refresh(case)
            span.set_attribute("is_override", check.is_override)

        updated = CaseRead.model_validate(case)
        audit.record(
            actor_user_id=actor.audit_id,
            entity_type=self.entity_type,
            entity_id=str(case.id),
            action="note" if check.kind is TransitionKind.NOTE else "advance",
            before=before,
            after={**updated.model_dump(mode="json"), "is_override": check.is_override, "note": note},
            correlation_id=actor.correlation_id,
            tenant_id=str(case.tenant_id),
        )
        if check.kind is not TransitionKind.NOTE:
            observe_case_transition(target.value, check.is_override)
            events.publish(
                events.build_envelope(
                    "case.status_changed",
                    actor_user_id=actor.audit_id,
                    tenant_id=str(case.tenant_id),
                    payload={
                        "case_id": str(case.id),
                        "from_status": current.value,
                        "to_status": target.value,
                        "is_override": check.is_override,
                        "actor_role": actor.role_label,
                    },
                    correlation_id=actor.correlation_id,
                )
            )
        logger.info(
            "case.advanced",
            extra={
                "actor_id": actor.audit_id,
                "role": actor.role.value,
                "tenant_id": str(case.tenant_id),
                "case_id": str(case.id),
                "from_status": current.value,
                "to_status": target.value,
                "is_override": check.is_override,
            },
        )
        return updated

    def add_note(
        self,
        session: Session,
        actor: Actor,
        case_id: uuid.UUID,
        note: str,
        *,
        expected_row_version: int | None = None,
    ) -> CaseRead:
        case = self._get_authorized_case(session, actor, case_id, action="note")
        return self.advance(
            session,
            actor,
            case_id,
            CaseStatus(case.status),
            note,
            expected_row_version=expected_row_version,
        )

    def _get_authorized_case(
        self,
        session: Session,
        actor: Actor,
        case_id: uuid.UUID,
        *,
        action: str = "read",
    ) -> Case:
        return self.repository.get_authorized(session, actor, case_id, action=action)

    @staticmethod
    def _reject(actor: Actor, case: Case, current: CaseStatus, target: CaseStatus, *, reason: str) -> None:
        observe_case_conflict(reason)
        logger.info(
            "case.advance_rejected",
            extra={
                "actor_id": actor.audit_id,
                "role": actor.role.value,
                "tenant_id": str(case.tenant_id),
                "case_id": str(case.id),
                "from_status": current.value,
                "to_status": target.value,
                "reason": reason,
            },
        )


case_service = CaseService()
