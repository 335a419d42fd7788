"""Extract trailing directives from an assistant reply.

The model ends its prose with up to two marker lines::

    SUGGESTED_ACTIONS: [{"label": "...", "prompt": "..."}]
    ACTIONS_JSON: [{"type": "...", "data": {...}}, ...]   (or)
    ACTION_JSON: {"type": "...", "data": {...}}

A payload only counts when it is the last thing on its line. Parsing never
raises: malformed payloads are dropped and the prose is returned as-is.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, List, Optional, Tuple

from ..domain.actions import ProposedAction, SuggestedAction
from ..domain.chat_models import ChatResponse


logger = logging.getLogger(__name__)

_LINE_END = r"(?=\s*$|\s*\n|$)"
SUGGESTIONS_RE = re.compile(r"SUGGESTED_ACTIONS:\s*(\[[\s\S]*?\])" + _LINE_END, re.MULTILINE)
ACTIONS_RE = re.compile(r"ACTIONS_JSON:\s*(\[[\s\S]*?\])" + _LINE_END, re.MULTILINE)
ACTION_RE = re.compile(r"ACTION_JSON:\s*(\{[\s\S]*?\})" + _LINE_END, re.MULTILINE)

_DECODER = json.JSONDecoder()
_INVALID = object()


def _decode(text: str, match: re.Match) -> Tuple[Any, int]:
    """Return ``(value, end)`` for the payload starting at the match's group.

    The lazy pattern can stop at a bracket that closes a nested value, so a
    failed parse retries with a full JSON scan from the opening bracket; the
    scanned value must still end its line.
    """
    try:
        return json.loads(match.group(1)), match.end()
    except ValueError:
        pass
    start = match.start(1)
    try:
        value, end = _DECODER.raw_decode(text, start)
    except ValueError:
        return _INVALID, match.end()
    newline = text.find("\n", end)
    rest = text[end:] if newline == -1 else text[end:newline]
    if rest.strip():
        return _INVALID, match.end()
    return value, end


def _strip(text: str, start: int, end: int) -> str:
    return (text[:start] + text[end:]).strip()


def _to_actions(raw: Any) -> List[ProposedAction]:
    out: List[ProposedAction] = []
    for item in raw if isinstance(raw, list) else []:
        action = _to_action(item)
        if action is not None:
            out.append(action)
    return out


def _to_action(raw: Any) -> Optional[ProposedAction]:
    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        return None
    data = raw.get("data")
    if data is not None and not isinstance(data, dict):
        return None
    return ProposedAction(type=raw["type"], data=data or {})


def _to_suggestions(raw: Any) -> List[SuggestedAction]:
    out: List[SuggestedAction] = []
    for item in raw if isinstance(raw, list) else []:
        if isinstance(item, dict) and isinstance(item.get("label"), str) and isinstance(item.get("prompt"), str):
            out.append(SuggestedAction(label=item["label"], prompt=item["prompt"]))
    return out


def parse_chat_response(text: str) -> ChatResponse:
    content = text or ""
    suggestions: Optional[List[SuggestedAction]] = None

    match = SUGGESTIONS_RE.search(content)
    if match:
        value, end = _decode(content, match)
        if value is _INVALID:
            logger.debug("suggestions_parse_failed")
        else:
            suggestions = _to_suggestions(value)
            content = _strip(content, match.start(), end)

    match = ACTIONS_RE.search(content)
    if match:
        value, end = _decode(content, match)
        if value is not _INVALID:
            return ChatResponse(
                content=_strip(content, match.start(), end),
                actions=_to_actions(value),
                suggested_actions=suggestions,
            )
        logger.debug("actions_parse_failed")

    match = ACTION_RE.search(content)
    if match:
        value, end = _decode(content, match)
        stripped = _strip(content, match.start(), end)
        if value is _INVALID:
            logger.debug("action_parse_failed")
            return ChatResponse(content=stripped, suggested_actions=suggestions)
        return ChatResponse(content=stripped, action=_to_action(value), suggested_actions=suggestions)

    return ChatResponse(content=content, suggested_actions=suggestions)
