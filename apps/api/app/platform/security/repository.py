from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from app.platform.security.context import Actor
from app.platform.security.errors import NotFoundError
from app.platform.security.scope import TenantScope, apply_tenant_scope, require_entity_access, resolve_tenant_scope


class BaseRepository:
    """Binds scope checks to a named resource and the column holding its tenant id.

    Subclasses set ``model`` and ``tenant_column`` to mapped attributes. Those are
    descriptors, so they are always read from the class and never through ``self``.
    """

    resource = ""
    model: Any = None
    tenant_column: Any = None

    @classmethod
    def scope_column(cls) -> Any:
        return cls.tenant_column

    @classmethod
    def tenant_id_of(cls, entity: Any) -> uuid.UUID:
        return getattr(entity, cls.tenant_column.key)

    def resolve_scope(self, session: Session, actor: Actor) -> TenantScope:
        return resolve_tenant_scope(session, actor)

    def apply_scope_query(self, query: Select[Any], scope: TenantScope) -> Select[Any]:
        return apply_tenant_scope(query, self.scope_column(), scope)

    def validate_access(
        self,
        session: Session,
        actor: Actor,
        tenant_id: uuid.UUID | None,
        *,
        entity_id: Any = None,
        action: str = "read",
        scope: TenantScope | None = None,
    ) -> None:
        require_entity_access(
            session,
            actor,
            tenant_id,
            resource=self.resource,
            entity_id=entity_id,
            action=action,
            scope=scope,
        )

    def get_authorized(
        self,
        session: Session,
        actor: Actor,
        entity_id: uuid.UUID,
        *,
        action: str = "read",
        shared_lock: bool = False,
    ) -> Any:
        """Load an entity and check it against the actor's scope.

        Missing and out-of-scope entities raise the same way ``require_entity_access`` does.
        """
        entity = session.get(
            type(self).model,
            entity_id,
            with_for_update={"read": True} if shared_lock else None,
        )
        self.validate_access(
            session,
            actor,
            self.tenant_id_of(entity) if entity is not None else None,
            entity_id=entity_id,
            action=action,
        )
        if entity is None:
            raise NotFoundError(self.resource, entity_id)
        return entity
