from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, assert_never

from sqlalchemy import false, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from app import audit
from app.identity.models import AgentAssignment
from app.metrics import observe_scope_denied, observe_scope_resolution_failure
from app.platform.security.context import Actor
from app.platform.security.errors import AccessDeniedError, AuthorizationError, NotFoundError
from app.platform.security.roles import UserRole


logger = logging.getLogger("app.security.scope")

CLIENT_WITHOUT_TENANT_MESSAGE = "Client user has no assigned tenant"
DEBTOR_SCOPE_MESSAGE = "Debtor users cannot access tenant-scoped data"


@dataclass(frozen=True, slots=True)
class TenantScope:
    """Set of tenant ids an actor may read or act upon; ``universal`` means no filtering."""

    tenant_ids: frozenset[uuid.UUID] = frozenset()
    universal: bool = False

    @classmethod
    def everything(cls) -> TenantScope:
        return cls(universal=True)

    @classmethod
    def of(cls, tenant_ids: Iterable[uuid.UUID]) -> TenantScope:
        return cls(tenant_ids=frozenset(tenant_ids))

    def __contains__(self, tenant_id: object) -> bool:
        if self.universal:
            return True
        return tenant_id in self.tenant_ids

    @property
    def is_empty(self) -> bool:
        return not self.universal and not self.tenant_ids

    def intersect(self, tenant_ids: Iterable[uuid.UUID]) -> TenantScope:
        other = frozenset(tenant_ids)
        if self.universal:
            return TenantScope.of(other)
        return TenantScope.of(self.tenant_ids & other)


class DenialReason(StrEnum):
    NOT_FOUND = "not_found"
    ACCESS_DENIED = "access_denied"


@dataclass(frozen=True, slots=True)
class ScopeDecision:
    allowed: bool
    reason: DenialReason | None = None

    @classmethod
    def allow(cls) -> ScopeDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenialReason) -> ScopeDecision:
        return cls(allowed=False, reason=reason)


def assigned_tenant_ids(session: Session, user_id: uuid.UUID) -> frozenset[uuid.UUID]:
    rows = session.scalars(select(AgentAssignment.tenant_id).where(AgentAssignment.agent_id == user_id)).all()
    return frozenset(rows)


def resolve_tenant_scope(session: Session, actor: Actor) -> TenantScope:
    """Compute the tenant scope for ``actor``.

    Re-derived on every call from the assignment table; callers must not cache
    the result beyond a single operation. An agent without assignments gets an
    empty scope, which is a valid "no visible data" answer. A client without a
    home tenant, and every debtor user, raise :class:`AuthorizationError`.
    """

    role = actor.role
    if role is UserRole.ADMIN:
        return TenantScope.everything()
    if role is UserRole.AGENT:
        return TenantScope.of(assigned_tenant_ids(session, actor.user_id))
    if role is UserRole.CLIENT:
        if actor.tenant_id is None:
            _emit_resolution_failure(actor, CLIENT_WITHOUT_TENANT_MESSAGE)
            raise AuthorizationError(CLIENT_WITHOUT_TENANT_MESSAGE)
        return TenantScope.of([actor.tenant_id])
    if role is UserRole.DEBTOR:
        _emit_resolution_failure(actor, DEBTOR_SCOPE_MESSAGE)
        raise AuthorizationError(DEBTOR_SCOPE_MESSAGE)
    assert_never(role)


def authorize_entity(
    session: Session,
    actor: Actor,
    tenant_id: uuid.UUID | None,
    *,
    resource: str,
    entity_id: Any = None,
    action: str = "read",
    scope: TenantScope | None = None,
) -> ScopeDecision:
    """Decide whether ``actor`` may touch an entity owned by ``tenant_id``.

    ``tenant_id`` is ``None`` when the entity does not exist. Scope is resolved
    first so a client without a tenant fails even for absent entities.
    """

    resolved = scope if scope is not None else resolve_tenant_scope(session, actor)
    if tenant_id is None:
        decision = ScopeDecision.deny(DenialReason.NOT_FOUND)
    elif tenant_id in resolved:
        decision = ScopeDecision.allow()
    else:
        decision = ScopeDecision.deny(DenialReason.ACCESS_DENIED)

    if decision.reason is not None:
        _emit_scope_denied(
            actor,
            resource=resource,
            action=action,
            reason=decision.reason,
            tenant_id=tenant_id,
            entity_id=entity_id,
        )
    return decision


def require_entity_access(
    session: Session,
    actor: Actor,
    tenant_id: uuid.UUID | None,
    *,
    resource: str,
    entity_id: Any = None,
    action: str = "read",
    scope: TenantScope | None = None,
) -> None:
    decision = authorize_entity(
        session,
        actor,
        tenant_id,
        resource=resource,
        entity_id=entity_id,
        action=action,
        scope=scope,
    )
    if decision.reason is DenialReason.NOT_FOUND:
        raise NotFoundError(resource, entity_id)
    if decision.reason is DenialReason.ACCESS_DENIED:
        raise AccessDeniedError(resource, entity_id)


def apply_tenant_scope(query: Select[Any], column: Any, scope: TenantScope) -> Select[Any]:
    if scope.universal:
        return query
    if not scope.tenant_ids:
        return query.where(false())
    return query.where(column.in_(sorted(scope.tenant_ids, key=str)))


def _emit_resolution_failure(actor: Actor, message: str) -> None:
    observe_scope_resolution_failure(role=actor.role.value)
    logger.warning(
        "scope.unresolvable",
        extra={
            "actor_id": str(actor.user_id),
            "role": actor.role.value,
            "reason": message,
        },
    )


def _emit_scope_denied(
    actor: Actor,
    *,
    resource: str,
    action: str,
    reason: DenialReason,
    tenant_id: uuid.UUID | None,
    entity_id: Any,
) -> None:
    observe_scope_denied(resource=resource, reason=reason.value)
    logger.info(
        "scope.denied",
        extra={
            "actor_id": str(actor.user_id),
            "role": actor.role.value,
            "resource": resource,
            "action": action,
            "reason": reason.value,
            "tenant_id": str(tenant_id) if tenant_id is not None else None,
        },
    )
    audit.record(
        actor_user_id=actor.audit_id,
        entity_type="security.scope",
        entity_id=str(entity_id) if entity_id is not None else "scope",
        action="scope.denied",
        before=None,
        after={
            "resource": resource,
            "action": action,
            "reason": reason.value,
            "tenant_id": str(tenant_id) if tenant_id is not None else None,
            "role": actor.role.value,
        },
        correlation_id=actor.correlation_id,
    )
