from __future__ import annotations

from typing import Iterable

from fastapi import Depends, Request

from app.core.errors import AuthenticationFailure, PermissionDenied
from app.core.roles import Role, has_required_role
from app.schemas.user import UserContext


async def get_current_user(request: Request) -> UserContext:
    # Identity is established by the upstream session layer, which forwards:
    # - X-User-Id: stable user id
    # - X-User-Email: user@company.com
    # - X-User-Roles: admin,hiring_manager
    email = (request.headers.get("x-user-email") or "").strip().lower()
    if not email:
        raise AuthenticationFailure("Missing user identity")
    user_id = (request.headers.get("x-user-id") or "").strip() or email
    full_name = request.headers.get("x-user-name") or _derive_name_from_email(email)

    roles: list[Role] = []
    for raw in (request.headers.get("x-user-roles") or "").split(","):
        raw = raw.strip().lower()
        if not raw:
            continue
        try:
            roles.append(Role(raw))
        except ValueError:
            continue
    if not roles:
        roles = [Role.VIEWER]

    return UserContext(user_id=user_id, email=email, roles=roles, full_name=full_name)


def require_roles(required: Iterable[Role]):
    required_roles = tuple(required)

    async def _dependency(user: UserContext = Depends(get_current_user)) -> UserContext:
        if not has_required_role(user.roles, required_roles):
            raise PermissionDenied("Insufficient role")
        return user

    return _dependency


def _derive_name_from_email(email: str) -> str:
    local = email.split("@", 1)[0]
    parts = [p for p in local.replace("_", ".").replace("-", ".").split(".") if p]
    return " ".join(p.capitalize() for p in parts) or email
