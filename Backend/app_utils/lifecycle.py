"""
Ticket Lifecycle

    Pending    -> InProgress, Resolved     (admin)
    InProgress -> Resolved                 (admin)
    Resolved   -> Disputed                 (anyone)
    Disputed   -> InProgress, Resolved     (admin)

Admin moves tickets forward. Anyone may dispute a Resolved ticket,
which puts it back in the active pool.

Merge rule: a ticket absorbs duplicate reports unless it is Resolved.
"""

from app_utils.constants import (
    Category, TicketStatus, Role, CATEGORY_ALIASES, STATUS_ALIASES, ROLE_ALIASES, normalize_key,
)
from errors import InvalidInput, InvalidTransition

ANYONE = frozenset(Role)
ADMIN_ONLY = frozenset({Role.ADMIN})

# (from, to) -> roles allowed to make the move
TRANSITIONS = {
    (TicketStatus.PENDING, TicketStatus.IN_PROGRESS): ADMIN_ONLY,
    (TicketStatus.PENDING, TicketStatus.RESOLVED): ADMIN_ONLY,
    (TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED): ADMIN_ONLY,
    (TicketStatus.RESOLVED, TicketStatus.DISPUTED): ANYONE,
    (TicketStatus.DISPUTED, TicketStatus.IN_PROGRESS): ADMIN_ONLY,
    (TicketStatus.DISPUTED, TicketStatus.RESOLVED): ADMIN_ONLY,
}

NON_MERGEABLE_STATUSES = frozenset({TicketStatus.RESOLVED})
MERGEABLE_STATUSES = frozenset(TicketStatus) - NON_MERGEABLE_STATUSES


def parse_status(value):
    if isinstance(value, TicketStatus):
        return value
    if not isinstance(value, str):
        raise InvalidInput(f"Unknown status: {value!r}")
    status = STATUS_ALIASES.get(normalize_key(value))
    if status is None:
        raise InvalidInput(f"Unknown status: {value!r}")
    return status


def parse_role(value):
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        raise InvalidInput(f"Unknown role: {value!r}")
    role = ROLE_ALIASES.get(normalize_key(value))
    if role is None:
        raise InvalidInput(f"Unknown role: {value!r}")
    return role


def is_mergeable(status):
    return parse_status(status) not in NON_MERGEABLE_STATUSES


def allowed_targets(current, role=Role.ADMIN):
    current = parse_status(current)
    role = parse_role(role)
    return {to for (frm, to), roles in TRANSITIONS.items() if frm == current and role in roles}


def check_transition(current, target, role=Role.ADMIN):
    """Raise InvalidTransition unless `role` may move a ticket from `current` to `target`."""
    current = parse_status(current)
    target = parse_status(target)
    role = parse_role(role)

    roles = TRANSITIONS.get((current, target))
    if roles is None:
        raise InvalidTransition(current, target)
    if role not in roles:
        raise InvalidTransition(current, target, reason=f"{role.value} may not make this change")
    return target


def parse_category(value):
    if isinstance(value, Category):
        return value
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"Unknown category: {value!r}")
    category = CATEGORY_ALIASES.get(normalize_key(value))
    if category is None:
        raise InvalidInput(f"Unknown category: {value!r}")
    return category
