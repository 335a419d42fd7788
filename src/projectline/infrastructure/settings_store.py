from __future__ import annotations

from threading import RLock
from typing import Dict, Optional, Protocol

from ..domain.chat_models import AISettings, AISettingsUpdate, AISettingsView


class SettingsStore(Protocol):
    def get(self, user_id: str) -> Optional[AISettings]: ...

    def update(self, user_id: str, patch: AISettingsUpdate) -> AISettings: ...


def mask_api_key(api_key: Optional[str]) -> Optional[str]:
    if not api_key:
        return None
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:3]}...{api_key[-4:]}"


def settings_view(settings: Optional[AISettings]) -> AISettingsView:
    if settings is None:
        return AISettingsView()
    return AISettingsView(
        ai_provider=settings.ai_provider,
        ai_model_preference=settings.ai_model_preference,
        api_key_hint=mask_api_key(settings.ai_api_key),
        configured=bool(settings.ai_provider and settings.ai_api_key),
    )


class InMemorySettingsStore:
    """Per-user AI provider settings.

    An empty string in an update clears the stored value; ``None`` leaves
    it unchanged.
    """

    def __init__(self) -> None:
        self._settings: Dict[str, AISettings] = {}
        self._lock = RLock()

    def get(self, user_id: str) -> Optional[AISettings]:
        with self._lock:
            current = self._settings.get(user_id)
            return current.model_copy() if current else None

    def update(self, user_id: str, patch: AISettingsUpdate) -> AISettings:
        with self._lock:
            current = self._settings.get(user_id) or AISettings(user_id=user_id)
            changes = {}
            for key, value in patch.model_dump(exclude_unset=True).items():
                if value is None:
                    continue
                changes[key] = value.strip() or None
            updated = current.model_copy(update=changes)
            self._settings[user_id] = updated
            return updated.model_copy()


_store: InMemorySettingsStore | None = None


def get_settings_store() -> InMemorySettingsStore:
    global _store
    if _store is None:
        _store = InMemorySettingsStore()
    return _store
