from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ...domain.chat_models import AIConnectionResult, AISettingsUpdate, AISettingsView, ChatModelOption
from ...infrastructure.settings_store import get_settings_store, settings_view
from ...security.auth import User
from ...security.rate_limit import RateLimitExceeded
from ...security.rbac import Permission, require_permission
from ...services.chat_ai import check_ai_connection
from ...services.chat_providers import ProviderError
from ...services.model_router import ModelRouter, ProviderConfigError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


@router.get("/settings", response_model=AISettingsView)
def get_ai_settings(user: User = Depends(require_permission(Permission.ASSISTANT_USE))) -> AISettingsView:
    return settings_view(get_settings_store().get(user.user_id))


@router.put("/settings", response_model=AISettingsView)
def update_ai_settings(
    req: AISettingsUpdate,
    user: User = Depends(require_permission(Permission.ASSISTANT_USE)),
) -> AISettingsView:
    provider = (req.ai_provider or "").strip()
    if provider and not ModelRouter.is_supported(provider):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unsupported AI provider: {provider}")
    return settings_view(get_settings_store().update(user.user_id, req))


@router.post("/settings/test", response_model=AIConnectionResult)
async def verify_ai_settings(user: User = Depends(require_permission(Permission.ASSISTANT_USE))) -> AIConnectionResult:
    """Check that the provider and key a chat turn would use actually answer."""
    try:
        check = await check_ai_connection(user_id=user.user_id, settings=get_settings_store().get(user.user_id))
    except ProviderConfigError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )
    except ProviderError as exc:
        logger.warning("ai_connection_failed", extra={"user_id": user.user_id, "err": str(exc)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return AIConnectionResult(success=check.success, provider=check.provider, model=check.model)


@router.get("/models", response_model=List[ChatModelOption])
def list_models(user: User = Depends(require_permission(Permission.ASSISTANT_USE))) -> List[ChatModelOption]:
    return ModelRouter().list_models(get_settings_store().get(user.user_id))
