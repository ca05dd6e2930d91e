from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import domain_error_response
from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.database import get_db
from app.identity.schemas import ActorRead, AgentAssignmentCreate, AgentAssignmentRead
from app.identity.service import assignment_service, identity_service
from app.platform.security.context import Actor
from app.platform.security.errors import AuthorizationError, DomainError

router = APIRouter(prefix="/api", tags=["identity"])
agents_router = APIRouter(prefix="/api/tenants", tags=["identity.agents"])


def get_current_actor(
    request: Request,
    db: Session = Depends(get_db),
    auth_user: AuthUser = Depends(get_auth_user),
) -> Actor:
    if auth_user.is_anonymous:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        user_id = uuid.UUID(auth_user.sub)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject")

    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    try:
        return identity_service.load_actor(db, user_id, correlation_id=correlation_id)
    except AuthorizationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message)


@router.get("/me", response_model=ActorRead)
def me(
    request: Request,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> ActorRead | JSONResponse:
    try:
        return identity_service.describe(db, actor)
    except DomainError as exc:
        return domain_error_response(request, exc)


@agents_router.get("/{tenant_id}/agents", response_model=list[AgentAssignmentRead])
def list_agents(
    request: Request,
    tenant_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[AgentAssignmentRead] | JSONResponse:
    try:
        return assignment_service.list_for_tenant(db, actor, tenant_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@agents_router.post("/{tenant_id}/agents", response_model=AgentAssignmentRead, status_code=status.HTTP_201_CREATED)
def assign_agent(
    request: Request,
    tenant_id: uuid.UUID,
    dto: AgentAssignmentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> AgentAssignmentRead | JSONResponse:
    try:
        return assignment_service.assign(db, actor, tenant_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@agents_router.delete("/{tenant_id}/agents/{agent_id}", status_code=status.HTTP_200_OK, response_model=None)
def unassign_agent(
    request: Request,
    tenant_id: uuid.UUID,
    agent_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    try:
        assignment_service.unassign(db, actor, tenant_id, agent_id)
        return {"status": "unassigned"}
    except DomainError as exc:
        return domain_error_response(request, exc)

