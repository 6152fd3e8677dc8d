"""
Role/permission resolver.

Each role owns a fixed list of (resource, action) grants. A role holds the
grants of every role at or below its level in the hierarchy, and a grant with
action ``admin`` satisfies any action on the same resource. Unknown roles are
denied everything.
"""
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple


class Role(str, Enum):
    USER = "user"
    ANALYST = "analyst"
    MANAGER = "manager"
    ADMIN = "admin"


class Action(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    ADMIN = "admin"


ROLE_HIERARCHY: Dict[Role, int] = {
    Role.USER: 1,
    Role.ANALYST: 2,
    Role.MANAGER: 3,
    Role.ADMIN: 4,
}

Permission = Tuple[str, Action]

ROLE_PERMISSIONS: Dict[Role, List[Permission]] = {
    Role.USER: [
        ("dashboard", Action.READ),
        ("budget-planning", Action.READ),
        ("budget-allocation", Action.READ),
        ("budget-tracking", Action.READ),
        ("milestones", Action.READ),
        ("reporting", Action.READ),
        ("expenses", Action.READ),
        ("profile", Action.WRITE),
        ("notifications", Action.READ),
    ],
    Role.ANALYST: [
        ("analytics", Action.READ),
        ("realtime", Action.READ),
        ("ai-optimizer", Action.READ),
        ("reporting", Action.WRITE),
        ("expenses", Action.WRITE),
    ],
    Role.MANAGER: [
        ("business-units", Action.WRITE),
        ("project-teams", Action.WRITE),
        ("project-admin", Action.WRITE),
        ("budget-versions", Action.WRITE),
        ("approvals", Action.WRITE),
        ("budget-planning", Action.WRITE),
        ("budget-allocation", Action.WRITE),
        ("milestones", Action.WRITE),
    ],
    Role.ADMIN: [
        ("admin", Action.ADMIN),
        ("user-management", Action.ADMIN),
        ("user-registration", Action.ADMIN),
        ("project-admin", Action.ADMIN),
        ("audit", Action.ADMIN),
        ("system-settings", Action.ADMIN),
    ],
}

# Sidebar entries of the dashboard, in display order: (menu id, resource)
MENU_ITEMS: List[Tuple[str, str]] = [
    ("overview", "dashboard"),
    ("planning", "budget-planning"),
    ("allocation", "budget-allocation"),
    ("tracking", "budget-tracking"),
    ("milestones", "milestones"),
    ("reporting", "reporting"),
    ("audit", "audit"),
    ("expenses", "expenses"),
    ("business-units", "business-units"),
    ("project-teams", "project-teams"),
    ("project-admin", "project-admin"),
    ("budget-versions", "budget-versions"),
    ("approvals", "approvals"),
    ("notifications", "notifications"),
    ("analytics", "analytics"),
    ("realtime", "realtime"),
    ("ai-optimizer", "ai-optimizer"),
    ("admin", "admin"),
    ("user-management", "user-management"),
    ("user-registration", "user-registration"),
]

_DISPLAY_NAMES = {
    Role.ADMIN: "Administrator",
    Role.MANAGER: "Manager",
    Role.ANALYST: "Analyst",
    Role.USER: "User",
}


def parse_role(value) -> Optional[Role]:
    if isinstance(value, Role):
        return value
    if not value:
        return None
    try:
        return Role(value)
    except ValueError:
        return None


def effective_permissions(role) -> FrozenSet[Permission]:
    """All grants of the roles at or below ``role``'s level. Empty for unknown roles."""
    parsed = parse_role(role)
    if parsed is None:
        return frozenset()
    level = ROLE_HIERARCHY[parsed]
    granted = set()
    for other, other_level in ROLE_HIERARCHY.items():
        if other_level <= level:
            granted.update(ROLE_PERMISSIONS[other])
    return frozenset(granted)


def has_permission(role, resource: str, action=Action.READ) -> bool:
    parsed = parse_role(role)
    if parsed is None:
        return False
    if parsed is Role.ADMIN:
        return True
    try:
        wanted = Action(action)
    except ValueError:
        return False
    for granted_resource, granted_action in effective_permissions(parsed):
        if granted_resource != resource:
            continue
        if granted_action is wanted or granted_action is Action.ADMIN:
            return True
    return False


def is_admin(role) -> bool:
    return parse_role(role) is Role.ADMIN


def can_manage(role) -> bool:
    return parse_role(role) in (Role.MANAGER, Role.ADMIN)


def can_analyze(role) -> bool:
    return parse_role(role) in (Role.ANALYST, Role.MANAGER, Role.ADMIN)


def accessible_menu_items(role) -> List[str]:
    return [menu_id for menu_id, resource in MENU_ITEMS if has_permission(role, resource, Action.READ)]


def role_display_name(role) -> str:
    return _DISPLAY_NAMES.get(parse_role(role), "User")
