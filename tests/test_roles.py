import pytest

from pbms.services.roles import (
    Action,
    Role,
    accessible_menu_items,
    can_analyze,
    can_manage,
    effective_permissions,
    has_permission,
    is_admin,
    parse_role,
    role_display_name,
)


def test_levels_are_cumulative():
    user = effective_permissions("user")
    analyst = effective_permissions("analyst")
    manager = effective_permissions("manager")
    admin = effective_permissions("admin")
    assert user < analyst < manager < admin


def test_analyst_inherits_user_grants():
    assert has_permission("analyst", "dashboard", Action.READ)
    assert has_permission("analyst", "analytics", Action.READ)
    assert not has_permission("user", "analytics", Action.READ)


def test_manager_write_grants():
    assert has_permission("manager", "approvals", Action.WRITE)
    assert has_permission("manager", "budget-planning", Action.WRITE)
    assert not has_permission("analyst", "approvals", Action.WRITE)
    assert not has_permission("manager", "audit", Action.ADMIN)


def test_write_grant_does_not_imply_read():
    # business-units is granted to managers for write only
    assert has_permission("manager", "business-units", Action.WRITE)
    assert not has_permission("manager", "business-units", Action.READ)


def test_admin_passes_every_check():
    assert has_permission("admin", "anything-at-all", Action.DELETE)
    assert has_permission(Role.ADMIN, "expenses", "write")


@pytest.mark.parametrize("role", [None, "", "superuser", "root"])
def test_unknown_roles_pass_nothing(role):
    assert effective_permissions(role) == frozenset()
    assert not has_permission(role, "dashboard", Action.READ)
    assert accessible_menu_items(role) == []


def test_role_parsing_is_exact():
    assert parse_role("manager") is Role.MANAGER
    assert parse_role("nope") is None
    assert parse_role("Admin") is None
    assert parse_role(" manager ") is None


@pytest.mark.parametrize("role", ["Admin", "ADMIN", " admin"])
def test_miscased_admin_is_denied(role):
    assert not is_admin(role)
    assert not has_permission(role, "audit", Action.ADMIN)
    assert not has_permission(role, "dashboard", Action.READ)


def test_helpers():
    assert is_admin("admin") and not is_admin("manager")
    assert can_manage("manager") and can_manage("admin") and not can_manage("analyst")
    assert can_analyze("analyst") and not can_analyze("user")


def test_menu_items_follow_read_grants():
    user_menu = accessible_menu_items("user")
    assert user_menu[0] == "overview"
    assert "expenses" in user_menu
    assert "analytics" not in user_menu
    assert "analytics" in accessible_menu_items("analyst")
    assert "user-management" in accessible_menu_items("admin")


def test_display_names():
    assert role_display_name("admin") == "Administrator"
    assert role_display_name("analyst") == "Analyst"
    assert role_display_name("bogus") == "User"
