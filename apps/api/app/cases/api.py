from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.errors import domain_error_response
from app.cases.intake import intake_service
from app.cases.schemas import (
    CaseAdvanceRequest,
    CaseCreate,
    CaseFilter,
    CaseHistoryRead,
    CaseNoteCreate,
    CasePage,
    CaseRead,
    CaseTransitionsRead,
    DebtorCreate,
    DebtorRead,
)
from app.cases.service import case_service
from app.cases.workflow import CaseStatus
from app.core.database import get_db
from app.identity.api import get_current_actor
from app.platform.security.context import Actor
from app.platform.security.errors import DomainError

router = APIRouter(prefix="/api/cases", tags=["cases"])
debtors_router = APIRouter(prefix="/api/debtors", tags=["cases.debtors"])


@debtors_router.post("", response_model=DebtorRead, status_code=status.HTTP_201_CREATED)
def create_debtor(
    request: Request,
    dto: DebtorCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> DebtorRead | JSONResponse:
    try:
        return intake_service.register_debtor(db, actor, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@debtors_router.get("/{debtor_id}", response_model=DebtorRead)
def get_debtor(
    request: Request,
    debtor_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> DebtorRead | JSONResponse:
    try:
        return intake_service.get_debtor(db, actor, debtor_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("", response_model=CaseRead, status_code=status.HTTP_201_CREATED)
def create_case(
    request: Request,
    dto: CaseCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CaseRead | JSONResponse:
    try:
        return intake_service.register_case(db, actor, dto)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("", response_model=CasePage)
def list_cases(
    request: Request,
    tenant_id: uuid.UUID | None = Query(default=None),
    debtor_id: uuid.UUID | None = Query(default=None),
    agent_id: uuid.UUID | None = Query(default=None),
    status_filter: CaseStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1),
    page_size: int | None = Query(default=None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CasePage | JSONResponse:
    try:
        filters = CaseFilter(tenant_id=tenant_id, debtor_id=debtor_id, agent_id=agent_id, status=status_filter)
        return case_service.list_cases(db, actor, filters, page=page, page_size=page_size)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{case_id}", response_model=CaseRead)
def get_case(
    request: Request,
    case_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CaseRead | JSONResponse:
    try:
        return case_service.get_case(db, actor, case_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("/{case_id}/advance", response_model=CaseRead)
def advance_case(
    request: Request,
    case_id: uuid.UUID,
    dto: CaseAdvanceRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CaseRead | JSONResponse:
    try:
        return case_service.advance(
            db,
            actor,
            case_id,
            dto.target_status,
            dto.note,
            expected_row_version=dto.row_version,
        )
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.post("/{case_id}/notes", response_model=CaseRead)
def add_case_note(
    request: Request,
    case_id: uuid.UUID,
    dto: CaseNoteCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CaseRead | JSONResponse:
    try:
        return case_service.add_note(db, actor, case_id, dto.note, expected_row_version=dto.row_version)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{case_id}/history", response_model=list[CaseHistoryRead])
def get_case_history(
    request: Request,
    case_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> list[CaseHistoryRead] | JSONResponse:
    try:
        return case_service.get_history(db, actor, case_id)
    except DomainError as exc:
        return domain_error_response(request, exc)


@router.get("/{case_id}/transitions", response_model=CaseTransitionsRead)
def get_case_transitions(
    request: Request,
    case_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> CaseTransitionsRead | JSONResponse:
    try:
        return case_service.allowed_transitions(db, actor, case_id)
    except DomainError as exc:
        return domain_error_response(request, exc)
