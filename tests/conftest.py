import sys
from pathlib import Path
from typing import List

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


_PROVIDER_KEYS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
    "GROQ_API_KEY",
    "MISTRAL_API_KEY",
    "XAI_API_KEY",
    "DEEPSEEK_API_KEY",
    "OPENROUTER_API_KEY",
    "PROJECTLINE_MODEL_PROVIDER",
)


@pytest.fixture(autouse=True)
def _fresh_state(monkeypatch):
    """Start every test with empty stores and no provider keys from the host."""
    from src.projectline.infrastructure import conversation_store, settings_store, workspace_store
    from src.projectline.security.rate_limit import reset_rate_limits
    from src.projectline.services import chat_providers
    from src.projectline.services.chat_session import reset_chat_session_service

    for key in _PROVIDER_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("PROJECTLINE_PUBLIC_MODE", raising=False)
    monkeypatch.setattr(workspace_store, "_store", None)
    monkeypatch.setattr(conversation_store, "_store", None)
    monkeypatch.setattr(settings_store, "_store", None)
    reset_chat_session_service()
    reset_rate_limits()
    chat_providers.reset_breakers()
    yield
    reset_chat_session_service()


class FakeProvider:
    """Scripted stand-in for ``chat_providers.generate``."""

    def __init__(self) -> None:
        self.replies: List[str] = []
        self.calls: List[dict] = []
        self.error: Exception | None = None

    def queue(self, *replies: str) -> "FakeProvider":
        self.replies.extend(replies)
        return self

    async def __call__(self, selection, system_prompt, history, *, config=None):
        from src.projectline.services.chat_providers import GenerationResult

        self.calls.append({"selection": selection, "system_prompt": system_prompt, "history": list(history)})
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if self.replies else "Sure."
        return GenerationResult(text=text, model=selection.model, tokens_used=42)


@pytest.fixture
def fake_provider(monkeypatch):
    from src.projectline.services import chat_providers

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key")
    provider = FakeProvider()
    monkeypatch.setattr(chat_providers, "generate", provider)
    return provider


@pytest.fixture
def workspace():
    from src.projectline.infrastructure.workspace_store import get_workspace_store

    return get_workspace_store()
