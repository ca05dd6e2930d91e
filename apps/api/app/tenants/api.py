from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import domain_error_response
from app.core.database import get_db
from app.identity.api import get_current_actor
from app.platform.security.context import Actor
from app.platform.security.errors import DomainError
from app.tenants.schemas import TenantCreate, TenantRead, TenantUpdate
from app.tenants.service import tenant_service

router = APIRouter(prefix="/api/tenants", tags=["tenants"])


@router.get("", response_model=list[TenantRead])
def list_tenants(
    request: Request,
    mine: bool = Query(default=False),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[TenantRead] | JSONResponse:
    try:
        return tenant_service.list_tenants(db, actor, mine=mine)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
def create_tenant(
    request: Request,
    dto: TenantCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> TenantRead | JSONResponse:
    try:
        return tenant_service.create_tenant(db, actor, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{tenant_id}", response_model=TenantRead)
def get_tenant(
    request: Request,
    tenant_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> TenantRead | JSONResponse:
    try:
        return tenant_service.get_tenant(db, actor, tenant_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.patch("/{tenant_id}", response_model=TenantRead)
def update_tenant(
    request: Request,
    tenant_id: uuid.UUID,
    dto: TenantUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> TenantRead | JSONResponse:
    try:
        return tenant_service.update_tenant(db, actor, tenant_id, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.delete("/{tenant_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_tenant(
    request: Request,
    tenant_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> Any:
    try:
        tenant_service.delete_tenant(db, actor, tenant_id)
        return {"status": "deleted"}
    except DomainError as exc:
        return domain_error_response(request, exc)
