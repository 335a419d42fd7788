"""Provider adapter: one chat completion per call, normalised to GenerationResult.

OpenAI-compatible providers (OpenAI, Groq, Mistral, xAI, DeepSeek,
OpenRouter) go through ``langchain_openai.ChatOpenAI``; Anthropic and
Gemini use their REST APIs through a retrying ``requests`` session that
runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import requests
from langchain_openai import ChatOpenAI
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..observability.metrics import record_llm_call
from .chat_config import ChatConfig
from .model_router import ModelRouter, ProviderSelection


LOG = logging.getLogger("projectline.llm")

ANTHROPIC_VERSION = "2023-06-01"

_BREAKER_STATE: Dict[str, Dict[str, float]] = {}
_BREAKER_THRESHOLD = int(os.getenv("PROJECTLINE_LLM_BREAKER_THRESHOLD", "3"))
_BREAKER_COOLDOWN = float(os.getenv("PROJECTLINE_LLM_BREAKER_COOLDOWN", "60.0"))


class ProviderError(Exception):
    """Provider call failed; the message is safe to show to the user."""


@dataclass(frozen=True)
class GenerationResult:
    text: str
    model: str
    tokens_used: Optional[int] = None


def _breaker_open(provider: str) -> bool:
    state = _BREAKER_STATE.get(provider)
    if not state or state["opened_at"] == 0.0:
        return False
    if time.time() - state["opened_at"] < _BREAKER_COOLDOWN:
        return True
    _BREAKER_STATE.pop(provider, None)
    return False


def _record_fail(provider: str) -> None:
    state = _BREAKER_STATE.setdefault(provider, {"fails": 0, "opened_at": 0.0})
    state["fails"] += 1
    if state["fails"] >= _BREAKER_THRESHOLD and state["opened_at"] == 0.0:
        state["opened_at"] = time.time()
        LOG.warning(
            "llm_breaker_opened",
            extra={"provider": provider, "fails": state["fails"], "cooldown_s": _BREAKER_COOLDOWN},
        )


def _record_success(provider: str) -> None:
    if _BREAKER_STATE.pop(provider, None):
        LOG.info("llm_breaker_closed", extra={"provider": provider})


def reset_breakers() -> None:
    _BREAKER_STATE.clear()


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(502, 503, 504),
        allowed_methods=frozenset(["POST"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


_session: requests.Session | None = None


def _get_session() -> requests.Session:
    global _session
    if _session is None:
        _session = _build_session()
    return _session


def _provider_label(selection: ProviderSelection) -> str:
    return ModelRouter.PROVIDER_CONFIG.get(selection.name, {}).get("label", selection.name)


def _error_message(resp: requests.Response, fallback: str) -> str:
    try:
        body = resp.json()
    except ValueError:
        return fallback
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    if isinstance(err, str) and err:
        return err
    return fallback


def _post_json(url: str, payload: Dict[str, Any], headers: Dict[str, str], config: ChatConfig, fallback: str) -> Dict[str, Any]:
    resp = _get_session().post(
        url,
        json=payload,
        headers={"Content-Type": "application/json", **headers},
        timeout=(config.connect_timeout, config.read_timeout),
    )
    if not resp.ok:
        raise ProviderError(_error_message(resp, fallback))
    return resp.json()


def _call_anthropic(selection: ProviderSelection, system_prompt: str, history: Sequence[Dict[str, str]], config: ChatConfig) -> GenerationResult:
    data = _post_json(
        f"{selection.base_url}/messages",
        {
            "model": selection.model,
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
            "system": system_prompt,
            "messages": list(history),
        },
        {"x-api-key": selection.api_key, "anthropic-version": ANTHROPIC_VERSION},
        config,
        "Anthropic API error",
    )
    blocks = data.get("content") or []
    text = blocks[0].get("text", "") if blocks else ""
    usage = data.get("usage") or {}
    tokens = None
    if "input_tokens" in usage or "output_tokens" in usage:
        tokens = int(usage.get("input_tokens", 0)) + int(usage.get("output_tokens", 0))
    return GenerationResult(text=text or "", model=selection.model, tokens_used=tokens)


def _call_gemini(selection: ProviderSelection, system_prompt: str, history: Sequence[Dict[str, str]], config: ChatConfig) -> GenerationResult:
    contents = [
        {"role": "user" if turn["role"] == "user" else "model", "parts": [{"text": turn["content"]}]}
        for turn in history
    ]
    data = _post_json(
        f"{selection.base_url}/models/{selection.model}:generateContent?key={selection.api_key}",
        {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": contents,
            "generationConfig": {"maxOutputTokens": config.max_tokens, "temperature": config.temperature},
        },
        {},
        config,
        "Gemini API error",
    )
    candidates = data.get("candidates") or []
    parts = ((candidates[0].get("content") or {}).get("parts") or []) if candidates else []
    text = parts[0].get("text", "") if parts else ""
    tokens = (data.get("usageMetadata") or {}).get("totalTokenCount")
    return GenerationResult(text=text or "", model=selection.model, tokens_used=tokens)


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks: List[str] = []
        for part in content:
            if isinstance(part, str):
                chunks.append(part)
            elif isinstance(part, dict) and part.get("type") == "text":
                chunks.append(str(part.get("text", "")))
        return "".join(chunks)
    return str(content or "")


async def _call_openai_compatible(selection: ProviderSelection, system_prompt: str, history: Sequence[Dict[str, str]], config: ChatConfig) -> GenerationResult:
    client = ChatOpenAI(
        api_key=selection.api_key,
        base_url=selection.base_url,
        model=selection.model,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout=config.read_timeout,
        max_retries=1,
    )
    messages = [("system", system_prompt)] + [
        ("human" if turn["role"] == "user" else "ai", turn["content"]) for turn in history
    ]
    res = await client.ainvoke(messages)
    usage = getattr(res, "usage_metadata", None) or {}
    return GenerationResult(
        text=_content_text(getattr(res, "content", res)),
        model=selection.model,
        tokens_used=usage.get("total_tokens"),
    )


async def generate(
    selection: ProviderSelection,
    system_prompt: str,
    history: Sequence[Dict[str, str]],
    *,
    config: Optional[ChatConfig] = None,
) -> GenerationResult:
    """Run one chat completion.

    ``history`` is the ordered list of prior turns, each ``{"role", "content"}``
    with role ``user`` or ``assistant``. Raises ``ProviderError``; cancellation
    of the awaiting task propagates unchanged.
    """

    cfg = config or ChatConfig.from_env()
    if _breaker_open(selection.name):
        record_llm_call(selection.name, "skipped")
        raise ProviderError("AI provider is temporarily unavailable. Please try again shortly.")

    started = time.perf_counter()
    try:
        if selection.transport == "anthropic":
            result = await asyncio.to_thread(_call_anthropic, selection, system_prompt, history, cfg)
        elif selection.transport == "google":
            result = await asyncio.to_thread(_call_gemini, selection, system_prompt, history, cfg)
        else:
            result = await _call_openai_compatible(selection, system_prompt, history, cfg)
    except ProviderError as exc:
        _record_fail(selection.name)
        record_llm_call(selection.name, "error")
        LOG.warning("llm_call_failed", extra={"provider": selection.name, "model": selection.model, "err": str(exc)})
        raise
    except asyncio.CancelledError:
        record_llm_call(selection.name, "cancelled")
        LOG.info("llm_call_cancelled", extra={"provider": selection.name})
        raise
    except Exception as exc:
        _record_fail(selection.name)
        record_llm_call(selection.name, "error")
        LOG.warning("llm_call_failed", extra={"provider": selection.name, "model": selection.model, "err": str(exc)})
        raise ProviderError(f"Failed to call {_provider_label(selection)}: {str(exc) or 'Unknown error'}") from exc

    _record_success(selection.name)
    record_llm_call(selection.name, "success")
    LOG.info(
        "llm_call_completed",
        extra={
            "provider": selection.name,
            "model": result.model,
            "tokens": result.tokens_used,
            "elapsed_ms": int((time.perf_counter() - started) * 1000),
        },
    )
    return result
