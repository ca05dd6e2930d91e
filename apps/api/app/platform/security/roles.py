from __future__ import annotations

from enum import StrEnum


class UserRole(StrEnum):
    ADMIN = "ADMIN"
    AGENT = "AGENT"
    CLIENT = "CLIENT"
    DEBTOR = "DEBTOR"

    @property
    def label(self) -> str:
        return self.value.capitalize()


# Roles allowed to hold agent assignments and to run intake.
STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.AGENT})
