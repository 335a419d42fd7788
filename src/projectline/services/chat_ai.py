from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence

from ..domain.chat_models import AISettings, ChatResponse
from ..domain.context_models import ChatContext
from ..security.rate_limit import limit_ai_request
from . import chat_providers
from .chat_config import ChatConfig
from .model_router import ModelRouter, ProviderSelection
from .prompt_builder import build_chat_system_prompt
from .response_parser import parse_chat_response


logger = logging.getLogger(__name__)
LOG = logging.getLogger("projectline.llm")


@dataclass
class ChatReply:
    response: ChatResponse
    provider: str
    model: str
    tokens_used: Optional[int] = None


def history_turns(messages: Sequence[Dict[str, str]], limit: int) -> List[Dict[str, str]]:
    """Keep the most recent ``limit`` user/assistant turns with non-empty content.

    The result always opens with a user turn: an assistant reply whose
    question fell outside the window is dropped too.
    """
    turns = [
        {"role": m["role"], "content": m["content"]}
        for m in messages
        if m.get("role") in ("user", "assistant") and (m.get("content") or "").strip()
    ]
    if limit > 0:
        turns = turns[-limit:]
    start = 0
    while start < len(turns) and turns[start]["role"] != "user":
        start += 1
    return turns[start:]


async def send_chat_message(
    context: ChatContext,
    messages: Sequence[Dict[str, str]],
    *,
    user_id: str,
    settings: Optional[AISettings] = None,
    router: Optional[ModelRouter] = None,
    config: Optional[ChatConfig] = None,
) -> ChatReply:
    """Run one assistant turn: pick the provider, call it, parse the reply.

    ``messages`` ends with the user's new message. Raises
    ``ProviderConfigError``, ``RateLimitExceeded`` or ``ProviderError``.
    """
    cfg = config or ChatConfig.from_env()
    selection: ProviderSelection = (router or ModelRouter()).select_provider(settings)

    limit_ai_request(user_id)

    system_prompt = build_chat_system_prompt(context)
    turns = history_turns(messages, cfg.history_limit)
    LOG.debug(
        "llm_chat_request",
        extra={"provider": selection.name, "model": selection.model, "turns": len(turns), "prompt_chars": len(system_prompt)},
    )
    result = await chat_providers.generate(selection, system_prompt, turns, config=cfg)
    parsed = parse_chat_response(result.text)
    logger.info(
        "chat_reply_parsed",
        extra={
            "provider": selection.name,
            "has_action": parsed.action is not None,
            "actions": len(parsed.actions or []),
            "suggestions": len(parsed.suggested_actions or []),
        },
    )
    return ChatReply(response=parsed, provider=selection.name, model=result.model, tokens_used=result.tokens_used)


CONNECTION_CHECK_SYSTEM = "You are a test assistant. Follow instructions exactly."
CONNECTION_CHECK_PROMPT = "Say 'Connection successful!' in exactly those words."


@dataclass
class ConnectionCheck:
    success: bool
    provider: str
    model: str


async def check_ai_connection(
    *,
    user_id: str,
    settings: Optional[AISettings] = None,
    router: Optional[ModelRouter] = None,
    config: Optional[ChatConfig] = None,
) -> ConnectionCheck:
    """Make one tiny completion with the provider a chat turn would use.

    ``success`` is False when the provider answered but not with the
    expected phrase. Raises ``ProviderConfigError``, ``RateLimitExceeded``
    or ``ProviderError``.
    """
    cfg = replace(config or ChatConfig.from_env(), max_tokens=50)
    selection = (router or ModelRouter()).select_provider(settings)
    limit_ai_request(user_id)

    result = await chat_providers.generate(
        selection,
        CONNECTION_CHECK_SYSTEM,
        [{"role": "user", "content": CONNECTION_CHECK_PROMPT}],
        config=cfg,
    )
    ok = "connection successful" in result.text.lower()
    logger.info("ai_connection_checked", extra={"provider": selection.name, "model": result.model, "success": ok})
    return ConnectionCheck(success=ok, provider=selection.name, model=result.model)
