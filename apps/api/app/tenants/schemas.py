from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

IBAN_PATTERN = r"^[A-Z]{2}[0-9]{2}[A-Z0-9]{1,30}$"


def _normalize_iban(value: str | None) -> str | None:
    if value is None:
        return None
    return value.replace(" ", "").upper()


class TenantCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    registration_number: str = Field(min_length=1, max_length=50)
    contact_email: EmailStr
    bank_account_iban: str = Field(pattern=IBAN_PATTERN, max_length=34)

    @field_validator("name", "registration_number", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("bank_account_iban", mode="before")
    @classmethod
    def _iban(cls, value: object) -> object:
        return _normalize_iban(value) if isinstance(value, str) else value


class TenantUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    registration_number: str | None = Field(default=None, min_length=1, max_length=50)
    contact_email: EmailStr | None = None
    bank_account_iban: str | None = Field(default=None, pattern=IBAN_PATTERN, max_length=34)
    row_version: int | None = Field(default=None, ge=1)

    @field_validator("name", "registration_number", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("bank_account_iban", mode="before")
    @classmethod
    def _iban(cls, value: object) -> object:
        return _normalize_iban(value) if isinstance(value, str) else value


class TenantSummary(BaseModel):
    total_debtors: int = 0
    total_cases: int = 0
    open_cases: int = 0
    total_volume: Decimal = Decimal("0")


class TenantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    registration_number: str
    contact_email: str
    bank_account_iban: str
    created_at: datetime
    updated_at: datetime
    row_version: int
    total_debtors: int = 0
    total_cases: int = 0
    open_cases: int = 0
    total_volume: Decimal = Decimal("0")
