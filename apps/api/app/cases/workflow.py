"""Collection-process status machine for cases.

The adjacency table below lists the legal non-terminal moves. Terminal
outcomes (paid, settled, insolvency, uncollectible) can be reached from any
non-terminal status and are not listed per row. Administrators may force any
move; such moves are reported as overrides.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from enum import StrEnum

from app.platform.security.errors import InvalidArgumentError
from app.platform.security.roles import UserRole


class CaseStatus(StrEnum):
    DRAFT = "DRAFT"
    NEW = "NEW"
    REMINDER_1 = "REMINDER_1"
    REMINDER_2 = "REMINDER_2"
    ADDRESS_RESEARCH = "ADDRESS_RESEARCH"
    PREPARE_MB = "PREPARE_MB"
    MB_REQUESTED = "MB_REQUESTED"
    MB_ISSUED = "MB_ISSUED"
    MB_OBJECTION = "MB_OBJECTION"
    PREPARE_VB = "PREPARE_VB"
    VB_REQUESTED = "VB_REQUESTED"
    VB_ISSUED = "VB_ISSUED"
    TITLE_OBTAINED = "TITLE_OBTAINED"
    ENFORCEMENT_PREP = "ENFORCEMENT_PREP"
    GV_MANDATED = "GV_MANDATED"
    EV_TAKEN = "EV_TAKEN"
    PAID = "PAID"
    SETTLED = "SETTLED"
    INSOLVENCY = "INSOLVENCY"
    UNCOLLECTIBLE = "UNCOLLECTIBLE"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[CaseStatus] = frozenset(
    {CaseStatus.PAID, CaseStatus.SETTLED, CaseStatus.INSOLVENCY, CaseStatus.UNCOLLECTIBLE}
)

INTAKE_STATUSES: frozenset[CaseStatus] = frozenset({CaseStatus.DRAFT, CaseStatus.NEW})

TRANSITIONS: dict[CaseStatus, frozenset[CaseStatus]] = {
    CaseStatus.DRAFT: frozenset({CaseStatus.NEW}),
    CaseStatus.NEW: frozenset({CaseStatus.REMINDER_1, CaseStatus.ADDRESS_RESEARCH}),
    CaseStatus.REMINDER_1: frozenset({CaseStatus.REMINDER_2, CaseStatus.ADDRESS_RESEARCH}),
    CaseStatus.REMINDER_2: frozenset({CaseStatus.PREPARE_MB, CaseStatus.ADDRESS_RESEARCH}),
    CaseStatus.ADDRESS_RESEARCH: frozenset(
        {CaseStatus.REMINDER_1, CaseStatus.REMINDER_2, CaseStatus.PREPARE_MB}
    ),
    CaseStatus.PREPARE_MB: frozenset({CaseStatus.MB_REQUESTED}),
    CaseStatus.MB_REQUESTED: frozenset({CaseStatus.MB_ISSUED, CaseStatus.MB_OBJECTION}),
    CaseStatus.MB_ISSUED: frozenset({CaseStatus.PREPARE_VB, CaseStatus.MB_OBJECTION}),
    CaseStatus.MB_OBJECTION: frozenset({CaseStatus.PREPARE_VB}),
    CaseStatus.PREPARE_VB: frozenset({CaseStatus.VB_REQUESTED}),
    CaseStatus.VB_REQUESTED: frozenset({CaseStatus.VB_ISSUED}),
    CaseStatus.VB_ISSUED: frozenset({CaseStatus.TITLE_OBTAINED}),
    CaseStatus.TITLE_OBTAINED: frozenset({CaseStatus.ENFORCEMENT_PREP}),
    CaseStatus.ENFORCEMENT_PREP: frozenset({CaseStatus.GV_MANDATED}),
    CaseStatus.GV_MANDATED: frozenset({CaseStatus.EV_TAKEN}),
    CaseStatus.EV_TAKEN: frozenset(),
    CaseStatus.PAID: frozenset(),
    CaseStatus.SETTLED: frozenset(),
    CaseStatus.INSOLVENCY: frozenset(),
    CaseStatus.UNCOLLECTIBLE: frozenset(),
}

# Days until the next follow-up once a case enters a status.
NEXT_ACTION_DAYS: dict[CaseStatus, int] = {
    CaseStatus.DRAFT: 7,
    CaseStatus.NEW: 7,
    CaseStatus.REMINDER_1: 14,
    CaseStatus.REMINDER_2: 14,
    CaseStatus.ADDRESS_RESEARCH: 30,
    CaseStatus.PREPARE_MB: 3,
    CaseStatus.MB_REQUESTED: 21,
    CaseStatus.MB_ISSUED: 14,
    CaseStatus.MB_OBJECTION: 14,
    CaseStatus.PREPARE_VB: 3,
    CaseStatus.VB_REQUESTED: 14,
    CaseStatus.VB_ISSUED: 7,
    CaseStatus.TITLE_OBTAINED: 7,
    CaseStatus.ENFORCEMENT_PREP: 7,
    CaseStatus.GV_MANDATED: 30,
    CaseStatus.EV_TAKEN: 60,
}


class TransitionKind(StrEnum):
    NOTE = "NOTE"
    FORWARD = "FORWARD"
    TERMINAL = "TERMINAL"
    OVERRIDE = "OVERRIDE"


@dataclass(frozen=True, slots=True)
class TransitionCheck:
    allowed: bool
    kind: TransitionKind | None = None
    closed: bool = False

    @property
    def is_override(self) -> bool:
        return self.kind is TransitionKind.OVERRIDE


def parse_status(raw: str | CaseStatus) -> CaseStatus:
    if isinstance(raw, CaseStatus):
        return raw
    try:
        return CaseStatus(str(raw).strip().upper())
    except ValueError:
        raise InvalidArgumentError(f"Unknown case status '{raw}'", details={"status": str(raw)}) from None


def is_graph_transition(current: CaseStatus, target: CaseStatus) -> bool:
    if current.is_terminal:
        return False
    if target.is_terminal:
        return True
    return target in TRANSITIONS[current]


def check_transition(current: CaseStatus, target: CaseStatus, role: UserRole) -> TransitionCheck:
    """Classify a requested move for ``role``.

    ``closed`` is set when a non-admin targets a case that already reached a
    terminal status; callers report that as a conflict rather than a bad move.
    """

    is_admin = role is UserRole.ADMIN
    if current.is_terminal and not is_admin:
        return TransitionCheck(allowed=False, closed=True)
    if current == target:
        return TransitionCheck(allowed=True, kind=TransitionKind.NOTE)
    if is_graph_transition(current, target):
        kind = TransitionKind.TERMINAL if target.is_terminal else TransitionKind.FORWARD
        return TransitionCheck(allowed=True, kind=kind)
    if is_admin:
        return TransitionCheck(allowed=True, kind=TransitionKind.OVERRIDE)
    return TransitionCheck(allowed=False)


def allowed_targets(current: CaseStatus, role: UserRole) -> list[CaseStatus]:
    if role is UserRole.ADMIN:
        return [status for status in CaseStatus if status != current]
    if current.is_terminal:
        return []
    targets = set(TRANSITIONS[current]) | set(TERMINAL_STATUSES)
    return [status for status in CaseStatus if status in targets]


def next_action_date(status: CaseStatus, today: date | None = None) -> date | None:
    if status.is_terminal:
        return None
    base = today or date.today()
    return base + timedelta(days=NEXT_ACTION_DAYS.get(status, 7))
