from __future__ import annotations

from app.cases.models import Case, Debtor
from app.platform.security.repository import BaseRepository


class DebtorRepository(BaseRepository):
    resource = "debtor"
    model = Debtor
    tenant_column = Debtor.tenant_id


class CaseRepository(BaseRepository):
    resource = "case"
    model = Case
    tenant_column = Case.tenant_id
