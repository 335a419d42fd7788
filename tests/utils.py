from __future__ import annotations

from typing import Dict, List, Optional

from src.projectline.security.auth import User, create_access_token


def make_user(
    user_id: str = "user-1",
    email: str = "dana@example.com",
    name: str = "Dana",
    roles: Optional[List[str]] = None,
) -> User:
    return User(user_id=user_id, email=email, name=name, roles=roles or ["contributor"])


def headers_for(user: User) -> Dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


def contrib_headers(user_id: str = "user-1", email: str = "dana@example.com", name: str = "Dana") -> Dict[str, str]:
    return headers_for(make_user(user_id, email, name))


def viewer_headers(user_id: str = "viewer-1") -> Dict[str, str]:
    return headers_for(make_user(user_id, "viewer@example.com", "Vic", roles=["viewer"]))
