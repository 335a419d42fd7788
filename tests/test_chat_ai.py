import pytest

from src.projectline.domain.chat_models import AISettings
from src.projectline.services.chat_ai import CONNECTION_CHECK_PROMPT, check_ai_connection, history_turns
from src.projectline.services.chat_providers import ProviderError
from src.projectline.services.model_router import PROVIDER_NOT_CONFIGURED, ProviderConfigError


def _alternating(pairs, trailing_user=True):
    turns = []
    for i in range(pairs):
        turns.append({"role": "user", "content": f"u{i}"})
        turns.append({"role": "assistant", "content": f"a{i}"})
    if trailing_user:
        turns.append({"role": "user", "content": f"u{pairs}"})
    return turns


def test_history_window_never_opens_with_assistant_turn():
    turns = history_turns(_alternating(10), limit=20)
    assert turns[0] == {"role": "user", "content": "u1"}
    assert turns[-1] == {"role": "user", "content": "u10"}
    assert len(turns) == 19


def test_history_within_limit_is_kept_whole():
    messages = _alternating(2)
    assert history_turns(messages, limit=20) == messages


def test_history_drops_blank_and_system_turns():
    messages = [
        {"role": "assistant", "content": "Hi, how can I help?"},
        {"role": "system", "content": "ignored"},
        {"role": "user", "content": "   "},
        {"role": "user", "content": "plan my week"},
    ]
    assert history_turns(messages, limit=20) == [{"role": "user", "content": "plan my week"}]


@pytest.mark.asyncio
async def test_connection_check_succeeds(fake_provider):
    fake_provider.queue("Connection successful!")
    check = await check_ai_connection(user_id="user-1")

    assert check.success is True
    assert (check.provider, check.model) == ("openai", "gpt-4o-mini")
    assert fake_provider.calls[0]["history"] == [{"role": "user", "content": CONNECTION_CHECK_PROMPT}]


@pytest.mark.asyncio
async def test_connection_check_with_unexpected_reply(fake_provider):
    fake_provider.queue("I can't help with that.")
    check = await check_ai_connection(user_id="user-1")
    assert check.success is False


@pytest.mark.asyncio
async def test_connection_check_uses_user_settings(fake_provider):
    fake_provider.queue("connection successful")
    settings = AISettings(user_id="user-1", ai_provider="anthropic", ai_api_key="sk-ant-1234567890")
    check = await check_ai_connection(user_id="user-1", settings=settings)
    assert check.provider == "anthropic"
    assert fake_provider.calls[0]["selection"].api_key == "sk-ant-1234567890"


@pytest.mark.asyncio
async def test_connection_check_errors_propagate(fake_provider):
    fake_provider.error = ProviderError("Invalid API key")
    with pytest.raises(ProviderError):
        await check_ai_connection(user_id="user-1")


@pytest.mark.asyncio
async def test_connection_check_without_provider():
    with pytest.raises(ProviderConfigError) as exc:
        await check_ai_connection(user_id="user-1")
    assert str(exc.value) == PROVIDER_NOT_CONFIGURED
