"""Run a list of actions in order, threading ids created earlier into later ones.

Later actions may reference entities created earlier in the same batch via
placeholder tokens (``$NEW_PROJECT_ID`` and friends). Each entity type has a
single slot holding the id of its most recent successful creation, so two
creations of the same type in one batch leave only the later id reachable.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..domain.actions import (
    ActionExecutionResult,
    ORG_SCOPED_ACTIONS,
    PLACEHOLDERS,
    ProposedAction,
)
from ..infrastructure.workspace_store import WorkspaceMutations
from .action_executor import ClientSideCallbacks, execute_action


LOG = logging.getLogger("projectline.actions")

CANCELLED_ERROR = "Cancelled before execution"

# on_progress(index, phase, result): phase is "started" (result None) or "finished".
ProgressHook = Callable[[int, str, Optional[ActionExecutionResult]], Union[None, Awaitable[None]]]


def resolve_placeholders(data: Dict[str, Any], created_ids: Dict[str, str]) -> Dict[str, Any]:
    """Return a copy of ``data`` with placeholder-valued fields replaced.

    Only top-level string values exactly equal to a token are substituted;
    tokens with no recorded id are left as-is for the data layer to reject.
    """
    resolved: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str) and value in PLACEHOLDERS:
            resolved[key] = created_ids.get(PLACEHOLDERS[value], value)
        else:
            resolved[key] = value
    return resolved


def prepare_action(action: ProposedAction, created_ids: Dict[str, str], org_id: Optional[str]) -> ProposedAction:
    data = resolve_placeholders(action.data, created_ids)
    if org_id and action.type in ORG_SCOPED_ACTIONS and not data.get("orgId"):
        data["orgId"] = org_id
    return ProposedAction(type=action.type, data=data)


async def _notify(hook: Optional[ProgressHook], index: int, phase: str, result: Optional[ActionExecutionResult]) -> None:
    if hook is None:
        return
    try:
        outcome = hook(index, phase, result)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception:
        LOG.exception("batch_progress_hook_failed", extra={"index": index, "phase": phase})


async def execute_batch(
    actions: Sequence[ProposedAction],
    store: WorkspaceMutations,
    callbacks: Optional[ClientSideCallbacks] = None,
    *,
    org_id: Optional[str] = None,
    on_progress: Optional[ProgressHook] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> List[ActionExecutionResult]:
    """Execute ``actions`` strictly in order; one result per action, same order.

    A failed action does not stop the batch. When ``cancel_event`` is set,
    the action in flight finishes and every remaining one is reported as
    cancelled without being executed.
    """
    created_ids: Dict[str, str] = {}
    results: List[ActionExecutionResult] = []

    for index, action in enumerate(actions):
        if cancel_event is not None and cancel_event.is_set():
            result = ActionExecutionResult(success=False, error=CANCELLED_ERROR)
            results.append(result)
            await _notify(on_progress, index, "finished", result)
            continue

        await _notify(on_progress, index, "started", None)
        result = await execute_action(prepare_action(action, created_ids, org_id), store, callbacks)
        if result.success and result.created_entity is not None:
            created_ids[result.created_entity.type] = result.created_entity.id
        results.append(result)
        await _notify(on_progress, index, "finished", result)

    LOG.info(
        "batch_executed",
        extra={
            "total": len(results),
            "succeeded": sum(1 for r in results if r.success),
            "cancelled": sum(1 for r in results if r.error == CANCELLED_ERROR),
        },
    )
    return results
