from src.projectline.domain.chat_models import AISettingsUpdate
from src.projectline.infrastructure.settings_store import InMemorySettingsStore, mask_api_key, settings_view


def test_mask_api_key():
    assert mask_api_key(None) is None
    assert mask_api_key("short") == "*****"
    assert mask_api_key("sk-abcdefghijklmnop") == "sk-...mnop"


def test_update_merges_and_empty_string_clears():
    store = InMemorySettingsStore()
    assert store.get("u1") is None

    store.update("u1", AISettingsUpdate(ai_provider="openai", ai_api_key="sk-abcdefghijkl"))
    store.update("u1", AISettingsUpdate(ai_model_preference="gpt-4o"))
    current = store.get("u1")
    assert current.ai_provider == "openai"
    assert current.ai_model_preference == "gpt-4o"

    store.update("u1", AISettingsUpdate(ai_api_key=""))
    assert store.get("u1").ai_api_key is None
    assert store.get("u1").ai_provider == "openai"


def test_view_never_exposes_key():
    store = InMemorySettingsStore()
    saved = store.update("u1", AISettingsUpdate(ai_provider="anthropic", ai_api_key="sk-ant-1234567890"))
    view = settings_view(saved)
    assert view.configured is True
    assert view.api_key_hint == "sk-...7890"
    assert "sk-ant-1234567890" not in view.model_dump_json()
    assert settings_view(None).configured is False
