"""Who may read workspace context, talk to the assistant and apply its actions."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, FrozenSet, Set

from fastapi import Depends, HTTPException, status

from .auth import User, get_current_user


LOG = logging.getLogger("projectline.security")


class Permission(str, Enum):
    WORKSPACE_READ = "workspace:read"
    # conversations, messages and the caller's own AI settings
    ASSISTANT_USE = "assistant:use"
    # confirming or cancelling proposed actions, which write to the workspace
    ASSISTANT_APPLY = "assistant:apply"
    ADMIN = "admin:*"


_VIEWER = frozenset({Permission.WORKSPACE_READ, Permission.ASSISTANT_USE})

ROLE_PERMISSIONS: Dict[str, FrozenSet[Permission]] = {
    "viewer": _VIEWER,
    "contributor": _VIEWER | {Permission.ASSISTANT_APPLY},
    "admin": frozenset({Permission.ADMIN}),
}


def permissions_for(user: User) -> FrozenSet[Permission]:
    granted: Set[Permission] = set()
    for role in user.roles:
        granted |= ROLE_PERMISSIONS.get(role, frozenset())
    if Permission.ADMIN in granted:
        return frozenset(Permission)
    return frozenset(granted)


def is_authorized(user: User, required: Permission) -> bool:
    return required in permissions_for(user)


def require_permission(required: Permission) -> Callable[[User], User]:
    """FastAPI dependency that rejects callers lacking ``required``."""

    def dependency(user: User = Depends(get_current_user)) -> User:
        if not is_authorized(user, required):
            LOG.info("permission_denied", extra={"user_id": user.user_id, "permission": required.value})
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {required.value}")
        return user

    return dependency
