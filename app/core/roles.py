from enum import Enum
from typing import Iterable


class Role(str, Enum):
    ADMIN = "admin"
    HIRING_MANAGER = "hiring_manager"
    VIEWER = "viewer"


ROLE_HIERARCHY = {
    Role.ADMIN: {Role.ADMIN, Role.HIRING_MANAGER, Role.VIEWER},
    Role.HIRING_MANAGER: {Role.HIRING_MANAGER, Role.VIEWER},
    Role.VIEWER: {Role.VIEWER},
}


def expand_roles(user_roles: Iterable[Role]) -> set[Role]:
    expanded: set[Role] = set()
    for role in user_roles:
        expanded |= ROLE_HIERARCHY.get(Role(role), {Role(role)})
    return expanded


def has_required_role(user_roles: Iterable[Role], required: Iterable[Role]) -> bool:
    required_set = {Role(r) for r in required}
    return bool(expand_roles(user_roles) & required_set)
