from __future__ import annotations

from dataclasses import dataclass
import os


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class ChatConfig:
    max_suggestions: int = 3
    history_limit: int = 20
    max_tokens: int = 8192
    temperature: float = 0.7
    connect_timeout: float = 10.0
    read_timeout: float = 120.0

    @staticmethod
    def from_env() -> "ChatConfig":
        return ChatConfig(
            max_suggestions=max(0, _int_env("PROJECTLINE_MAX_SUGGESTIONS", 3)),
            history_limit=max(1, _int_env("PROJECTLINE_CHAT_HISTORY_LIMIT", 20)),
            max_tokens=_int_env("PROJECTLINE_LLM_MAX_TOKENS", 8192),
            temperature=_float_env("PROJECTLINE_LLM_TEMPERATURE", 0.7),
            connect_timeout=_float_env("PROJECTLINE_LLM_CONNECT_TIMEOUT", 10.0),
            read_timeout=_float_env("PROJECTLINE_LLM_READ_TIMEOUT", 120.0),
        )
