from app.cases.models import Case, CaseHistory, Debtor
from app.identity.models import AgentAssignment, User
from app.tenants.models import Tenant

__all__ = [
	"Tenant",
	"User",
	"AgentAssignment",
	"Debtor",
	"Case",
	"CaseHistory",
]
