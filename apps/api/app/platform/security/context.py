from __future__ import annotations

import uuid
from dataclasses import dataclass

from app.platform.security.roles import UserRole


@dataclass(frozen=True, slots=True)
class Actor:
    """Authenticated identity handed to every core operation."""

    user_id: uuid.UUID
    role: UserRole
    email: str = ""
    tenant_id: uuid.UUID | None = None
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN

    @property
    def role_label(self) -> str:
        return self.role.label

    @property
    def audit_id(self) -> str:
        return str(self.user_id)
