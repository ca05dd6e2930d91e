from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit, events
from app.identity.models import AgentAssignment, User
from app.identity.schemas import ActorRead, AgentAssignmentCreate, AgentAssignmentRead
from app.platform.security.context import Actor
from app.platform.security.errors import (
    AuthorizationError,
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
)
from app.platform.security.roles import STAFF_ROLES, UserRole
from app.platform.security.scope import TenantScope, resolve_tenant_scope
from app.tenants.models import Tenant
from app.tenants.repository import TenantRepository


logger = logging.getLogger("app.identity")

ALREADY_ASSIGNED_MESSAGE = "Agent is already assigned to this tenant"
ADMIN_ONLY_MESSAGE = "Only administrators can manage agent assignments"


@dataclass(slots=True)
class IdentityService:
    def load_actor(self, session: Session, user_id: uuid.UUID, *, correlation_id: str | None = None) -> Actor:
        user = session.get(User, user_id)
        if user is None or not user.is_active:
            raise AuthorizationError("Unknown or inactive user")
        return Actor(
            user_id=user.id,
            role=UserRole(user.role),
            email=user.email,
            tenant_id=user.tenant_id,
            correlation_id=correlation_id,
        )

    def describe(self, session: Session, actor: Actor) -> ActorRead:
        # Debtors get a profile with an empty scope; a client without a tenant is refused.
        if actor.role is UserRole.DEBTOR:
            scope = TenantScope.of(())
        else:
            scope = resolve_tenant_scope(session, actor)
        return ActorRead(
            user_id=actor.user_id,
            email=actor.email,
            role=actor.role,
            role_label=actor.role_label,
            tenant_id=actor.tenant_id,
            scope_universal=scope.universal,
            scope_tenant_ids=sorted(scope.tenant_ids, key=str),
        )


@dataclass(slots=True)
class AssignmentService:
    tenant_repository: TenantRepository = TenantRepository()

    def assign(
        self,
        session: Session,
        actor: Actor,
        tenant_id: uuid.UUID,
        dto: AgentAssignmentCreate,
    ) -> AgentAssignmentRead:
        if not actor.is_admin:
            raise ForbiddenError(ADMIN_ONLY_MESSAGE)

        if session.get(Tenant, tenant_id) is None:
            raise NotFoundError("tenant", tenant_id)

        agent = session.get(User, dto.agent_id)
        if agent is None or not agent.is_active or UserRole(agent.role) not in STAFF_ROLES:
            raise InvalidArgumentError(
                "Assignee must be an active agent or administrator",
                details={"agent_id": str(dto.agent_id)},
            )

        if session.get(AgentAssignment, (dto.agent_id, tenant_id)) is not None:
            raise ConflictError(ALREADY_ASSIGNED_MESSAGE)

        assignment = AgentAssignment(agent_id=dto.agent_id, tenant_id=tenant_id, assigned_by=actor.user_id)
        session.add(assignment)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError(ALREADY_ASSIGNED_MESSAGE)
        session.refresh(assignment)

        result = self._to_read(assignment, agent)
        audit.record(
            actor_user_id=actor.audit_id,
            entity_type="identity.agent_assignment",
            entity_id=f"{dto.agent_id}:{tenant_id}",
            action="assign",
            before=None,
            after=result.model_dump(mode="json"),
            correlation_id=actor.correlation_id,
            tenant_id=str(tenant_id),
        )
        events.publish(
            events.build_envelope(
                "identity.agent_assigned",
                actor_user_id=actor.audit_id,
                tenant_id=str(tenant_id),
                payload={"agent_id": str(dto.agent_id)},
                correlation_id=actor.correlation_id,
            )
        )
        logger.info(
            "assignment.created",
            extra={"actor_id": actor.audit_id, "agent_id": str(dto.agent_id), "tenant_id": str(tenant_id)},
        )
        return result

    def unassign(self, session: Session, actor: Actor, tenant_id: uuid.UUID, agent_id: uuid.UUID) -> None:
        if not actor.is_admin:
            raise ForbiddenError(ADMIN_ONLY_MESSAGE)

        assignment = session.get(AgentAssignment, (agent_id, tenant_id))
        if assignment is None:
            raise NotFoundError("agent assignment", f"{agent_id}:{tenant_id}")

        session.delete(assignment)
        session.commit()

        audit.record(
            actor_user_id=actor.audit_id,
            entity_type="identity.agent_assignment",
            entity_id=f"{agent_id}:{tenant_id}",
            action="unassign",
            before={"agent_id": str(agent_id), "tenant_id": str(tenant_id)},
            after=None,
            correlation_id=actor.correlation_id,
            tenant_id=str(tenant_id),
        )
        events.publish(
            events.build_envelope(
                "identity.agent_unassigned",
                actor_user_id=actor.audit_id,
                tenant_id=str(tenant_id),
                payload={"agent_id": str(agent_id)},
                correlation_id=actor.correlation_id,
            )
        )
        logger.info(
            "assignment.removed",
            extra={"actor_id": actor.audit_id, "agent_id": str(agent_id), "tenant_id": str(tenant_id)},
        )

    def list_for_tenant(self, session: Session, actor: Actor, tenant_id: uuid.UUID) -> list[AgentAssignmentRead]:
        tenant = session.get(Tenant, tenant_id)
        self.tenant_repository.validate_access(
            session,
            actor,
            tenant.id if tenant is not None else None,
            entity_id=tenant_id,
        )

        rows = session.execute(
            select(AgentAssignment, User)
            .join(User, User.id == AgentAssignment.agent_id)
            .where(AgentAssignment.tenant_id == tenant_id)
            .order_by(User.email.asc())
        ).all()
        return [self._to_read(assignment, agent) for assignment, agent in rows]

    @staticmethod
    def _to_read(assignment: AgentAssignment, agent: User) -> AgentAssignmentRead:
        return AgentAssignmentRead(
            agent_id=assignment.agent_id,
            tenant_id=assignment.tenant_id,
            agent_email=agent.email,
            agent_name=agent.name,
            agent_role=UserRole(agent.role),
            assigned_by=assignment.assigned_by,
            created_at=assignment.created_at,
        )


identity_service = IdentityService()
assignment_service = AssignmentService()
