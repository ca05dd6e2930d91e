from app.platform.security.context import Actor
from app.platform.security.errors import (
    AccessDeniedError,
    AuthorizationError,
    ConflictError,
    DomainError,
    ForbiddenError,
    IntegrityViolationError,
    InvalidArgumentError,
    NotFoundError,
    StaleStateError,
)
from app.platform.security.roles import STAFF_ROLES, UserRole

__all__ = [
    "Actor",
    "UserRole",
    "STAFF_ROLES",
    "DomainError",
    "AuthorizationError",
    "ForbiddenError",
    "NotFoundError",
    "AccessDeniedError",
    "ConflictError",
    "StaleStateError",
    "InvalidArgumentError",
    "IntegrityViolationError",
]
