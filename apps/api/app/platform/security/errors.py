from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base for typed failures raised by the tenant and case services."""

    code = "domain_error"

    def __init__(self, message: str, *, details: Any = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class AuthorizationError(DomainError):
    """Actor has no usable tenant scope."""

    code = "authorization_error"


class ForbiddenError(AuthorizationError):
    """Actor's role does not allow the operation."""

    code = "forbidden"


class NotFoundError(DomainError):
    code = "not_found"

    def __init__(self, resource: str, entity_id: Any = None) -> None:
        self.resource = resource
        self.entity_id = entity_id
        super().__init__(f"{resource} not found", details={"resource": resource})


class AccessDeniedError(DomainError):
    """Entity exists but lies outside the actor's tenant scope."""

    code = "access_denied"

    def __init__(self, resource: str, entity_id: Any = None) -> None:
        self.resource = resource
        self.entity_id = entity_id
        super().__init__(f"Access denied to {resource}", details={"resource": resource})


class ConflictError(DomainError):
    code = "conflict"


class StaleStateError(ConflictError):
    """Lost an optimistic concurrency race; re-fetch and retry."""

    code = "stale_state"


class InvalidArgumentError(DomainError):
    code = "invalid_argument"


class IntegrityViolationError(DomainError):
    """A cross-entity consistency check failed (e.g. case and debtor tenants differ)."""

    code = "integrity_violation"
