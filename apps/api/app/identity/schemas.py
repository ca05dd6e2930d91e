from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from app.platform.security.roles import UserRole


class ActorRead(BaseModel):
    user_id: UUID
    email: str
    role: UserRole
    role_label: str
    tenant_id: UUID | None
    scope_universal: bool
    scope_tenant_ids: list[UUID]


class AgentAssignmentCreate(BaseModel):
    agent_id: UUID


class AgentAssignmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    agent_id: UUID
    tenant_id: UUID
    agent_email: str
    agent_name: str
    agent_role: UserRole
    assigned_by: UUID | None
    created_at: datetime
