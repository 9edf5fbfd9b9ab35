"""Role capability table.

Access decisions are made once, at the boundary where a user action enters
the system, by looking the role up in :data:`CAPABILITIES`.
"""

from __future__ import annotations

from typing import FrozenSet, Mapping, Tuple

from . import log
from .constants import Action, ContactType, UserRole
from .models import PermissionDenied

_ALL_ACTIONS: FrozenSet[Action] = frozenset(Action)

CAPABILITIES: Mapping[UserRole, FrozenSet[Action]] = {
    UserRole.SUPER_ADMIN: _ALL_ACTIONS,
    UserRole.ADMIN: _ALL_ACTIONS,
    UserRole.PURCHASE: frozenset(
        {
            Action.VIEW_INVENTORY,
            Action.EDIT_PRODUCTS,
            Action.VIEW_COSTS,
            Action.MANAGE_CONTACTS,
            Action.RECORD_PURCHASE,
            Action.MANAGE_EXPENSES,
        }
    ),
    UserRole.SALES: frozenset(
        {
            Action.VIEW_INVENTORY,
            Action.MANAGE_CONTACTS,
            Action.RECORD_SALE,
        }
    ),
}


def can_perform(role: UserRole, action: Action) -> bool:
    return Action(action) in CAPABILITIES.get(UserRole(role), frozenset())


def require_permission(role: UserRole, action: Action) -> None:
    """Raise :class:`PermissionDenied` unless ``role`` may perform ``action``."""

    if not can_perform(role, action):
        log.warning("Permission denied: role '%s' attempted '%s'", UserRole(role).value, Action(action).value)
        raise PermissionDenied(f"Role '{UserRole(role).value}' may not perform '{Action(action).value}'")


def visible_contact_types(role: UserRole) -> Tuple[ContactType, ...]:
    """Contact kinds shown to ``role``: buyers see suppliers, sellers see customers."""

    role = UserRole(role)
    if role is UserRole.PURCHASE:
        return (ContactType.SUPPLIER,)
    if role is UserRole.SALES:
        return (ContactType.CUSTOMER,)
    return (ContactType.CUSTOMER, ContactType.SUPPLIER)
