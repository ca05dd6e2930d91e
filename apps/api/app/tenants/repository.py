from __future__ import annotations

from app.platform.security.repository import BaseRepository
from app.tenants.models import Tenant


class TenantRepository(BaseRepository):
    resource = "tenant"
    model = Tenant
    tenant_column = Tenant.id
