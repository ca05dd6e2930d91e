from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from app.cases.workflow import CaseStatus


DebtorEntityType = Literal["NATURAL_PERSON", "LEGAL_ENTITY"]
RiskScore = Literal["A", "B", "C", "D", "E"]
HistoryAction = Literal["CREATED", "STATUS_CHANGE", "NOTE"]


class DebtorCreate(BaseModel):
    tenant_id: UUID
    entity_type: DebtorEntityType = "NATURAL_PERSON"
    company_name: str | None = Field(default=None, max_length=200)
    first_name: str | None = Field(default=None, max_length=100)
    last_name: str | None = Field(default=None, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)
    street: str | None = Field(default=None, max_length=200)
    zip_code: str | None = Field(default=None, max_length=20)
    city: str | None = Field(default=None, max_length=100)
    country: str = Field(default="DE", min_length=1, max_length=100)
    risk_score: RiskScore = "C"
    notes: str | None = None

    @model_validator(mode="after")
    def _require_names(self) -> DebtorCreate:
        if self.entity_type == "LEGAL_ENTITY":
            if not (self.company_name or "").strip():
                raise ValueError("Company name is required for companies")
        elif not (self.first_name or "").strip() or not (self.last_name or "").strip():
            raise ValueError("First and last name are required for individuals")
        return self


class DebtorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    entity_type: DebtorEntityType
    company_name: str | None
    first_name: str | None
    last_name: str | None
    email: str | None
    phone: str | None
    street: str | None
    zip_code: str | None
    city: str | None
    country: str
    risk_score: RiskScore
    notes: str | None
    created_at: datetime
    updated_at: datetime
    open_cases: int = 0
    total_debt: Decimal = Decimal("0")


class CaseCreate(BaseModel):
    debtor_id: UUID
    tenant_id: UUID | None = None
    agent_id: UUID | None = None
    invoice_number: str = Field(min_length=1, max_length=100)
    invoice_date: date
    due_date: date
    principal_amount: Decimal = Field(gt=0, max_digits=18, decimal_places=2)
    costs: Decimal = Field(default=Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    interest: Decimal = Field(default=Decimal("0"), ge=0, max_digits=18, decimal_places=2)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    status: str = CaseStatus.NEW.value
    competent_court: str | None = Field(default=None, max_length=200)
    court_file_number: str | None = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def _check_dates(self) -> CaseCreate:
        if self.invoice_date > date.today():
            raise ValueError("Invoice date cannot be in the future")
        if self.due_date < self.invoice_date:
            raise ValueError("Due date must be after or equal to invoice date")
        return self


class CaseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    debtor_id: UUID
    agent_id: UUID | None
    invoice_number: str
    invoice_date: date
    due_date: date
    principal_amount: Decimal
    costs: Decimal
    interest: Decimal
    total_amount: Decimal
    currency: str
    status: CaseStatus
    next_action_date: date | None
    competent_court: str | None
    court_file_number: str | None
    created_at: datetime
    updated_at: datetime
    row_version: int


class CaseFilter(BaseModel):
    tenant_id: UUID | None = None
    debtor_id: UUID | None = None
    agent_id: UUID | None = None
    status: CaseStatus | None = None


class CasePage(BaseModel):
    items: list[CaseRead]
    total: int
    page: int
    page_size: int


class CaseAdvanceRequest(BaseModel):
    target_status: str = Field(min_length=1, max_length=32)
    note: str | None = Field(default=None, max_length=2000)
    row_version: int | None = Field(default=None, ge=1)


class CaseNoteCreate(BaseModel):
    note: str = Field(min_length=1, max_length=2000)
    row_version: int | None = Field(default=None, ge=1)


class CaseHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    case_id: UUID
    action: HistoryAction
    previous_status: CaseStatus | None
    new_status: CaseStatus
    actor_user_id: UUID
    actor_role: str
    note: str | None
    is_override: bool
    created_at: datetime


class CaseTransitionsRead(BaseModel):
    case_id: UUID
    current_status: CaseStatus
    is_terminal: bool
    allowed: list[CaseStatus]
