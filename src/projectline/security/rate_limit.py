"""Per-user budgets for calls that reach an AI provider.

Each (scope, user) pair gets a fixed window that opens on its first request.
Chat turns and connection checks spend from the same ``ai`` scope.
"""

from __future__ import annotations

import logging
import math
import os
import time
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Tuple


LOG = logging.getLogger("projectline.security")


@dataclass(frozen=True)
class RateLimitPolicy:
    scope: str
    limit: int
    window_seconds: int

    @classmethod
    def from_env(
        cls,
        scope: str,
        *,
        limit_env: str,
        window_env: str,
        default_limit: int,
        default_window_seconds: int,
    ) -> "RateLimitPolicy":
        return cls(
            scope=scope,
            limit=_env_int(limit_env, default_limit),
            window_seconds=_env_int(window_env, default_window_seconds),
        )


def ai_request_policy() -> RateLimitPolicy:
    return RateLimitPolicy.from_env(
        "ai",
        limit_env="PROJECTLINE_AI_RATE_LIMIT",
        window_env="PROJECTLINE_AI_RATE_WINDOW",
        default_limit=30,
        default_window_seconds=60,
    )


class RateLimitExceeded(Exception):
    def __init__(self, scope: str, retry_after_seconds: int) -> None:
        super().__init__(f"Too many {scope.upper()} requests. Try again in {retry_after_seconds}s.")
        self.scope = scope
        self.retry_after_seconds = retry_after_seconds


@dataclass
class _Window:
    opened_at: float
    used: int = 0


_WINDOWS: Dict[Tuple[str, str], _Window] = {}
_LOCK = Lock()


def consume(policy: RateLimitPolicy, user_id: str) -> int:
    """Spend one request from ``user_id``'s budget and return how many remain.

    Raises ``RateLimitExceeded`` once the window's budget is used up.
    """
    if _rate_limiting_disabled():
        return policy.limit

    now = time.monotonic()
    key = (policy.scope, user_id)
    with _LOCK:
        window = _WINDOWS.get(key)
        if window is None or now - window.opened_at >= policy.window_seconds:
            window = _WINDOWS[key] = _Window(opened_at=now)
        if window.used >= policy.limit:
            retry_after = max(1, math.ceil(policy.window_seconds - (now - window.opened_at)))
            LOG.warning(
                "rate_limited",
                extra={"scope": policy.scope, "user_id": user_id, "retry_after_s": retry_after},
            )
            raise RateLimitExceeded(policy.scope, retry_after)
        window.used += 1
        return policy.limit - window.used


def limit_ai_request(user_id: str) -> int:
    return consume(ai_request_policy(), user_id)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name) if name else None
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _rate_limiting_disabled() -> bool:
    flag = (os.getenv("PROJECTLINE_RATE_LIMIT_DISABLED") or "").lower()
    if flag in {"1", "true", "yes", "on"}:
        return True
    return bool(os.getenv("PYTEST_CURRENT_TEST"))


def reset_rate_limits() -> None:
    with _LOCK:
        _WINDOWS.clear()
