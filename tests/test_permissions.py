"""Unit tests for the role capability table."""

from __future__ import annotations

import pytest

from voltflow_erp import permissions
from voltflow_erp.constants import Action, ContactType, UserRole
from voltflow_erp.models import PermissionDenied


@pytest.mark.parametrize("role", [UserRole.SUPER_ADMIN, UserRole.ADMIN])
def test_admins_can_do_everything(role):
    assert all(permissions.can_perform(role, action) for action in Action)


@pytest.mark.parametrize(
    ("role", "action", "allowed"),
    [
        (UserRole.PURCHASE, Action.RECORD_PURCHASE, True),
        (UserRole.PURCHASE, Action.VIEW_COSTS, True),
        (UserRole.PURCHASE, Action.RECORD_SALE, False),
        (UserRole.PURCHASE, Action.VIEW_FINANCIALS, False),
        (UserRole.SALES, Action.RECORD_SALE, True),
        (UserRole.SALES, Action.VIEW_INVENTORY, True),
        (UserRole.SALES, Action.VIEW_COSTS, False),
        (UserRole.SALES, Action.EDIT_PRODUCTS, False),
        (UserRole.SALES, Action.MANAGE_SETTINGS, False),
    ],
)
def test_operational_roles(role, action, allowed):
    assert permissions.can_perform(role, action) is allowed


def test_can_perform_accepts_raw_values():
    assert permissions.can_perform("SALES", "RECORD_SALE")


def test_require_permission_raises_for_denied_action():
    with pytest.raises(PermissionDenied):
        permissions.require_permission(UserRole.SALES, Action.VIEW_FINANCIALS)


def test_require_permission_passes_silently_when_allowed():
    permissions.require_permission(UserRole.PURCHASE, Action.MANAGE_EXPENSES)


def test_visible_contact_types():
    assert permissions.visible_contact_types(UserRole.PURCHASE) == (ContactType.SUPPLIER,)
    assert permissions.visible_contact_types(UserRole.SALES) == (ContactType.CUSTOMER,)
    assert set(permissions.visible_contact_types(UserRole.ADMIN)) == set(ContactType)
