from __future__ import annotations

from fastapi import APIRouter

from worktime.core.config import settings
from worktime.services.work_service import resolve_default_slots

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_config() -> dict:
    # Read-only: secrets are reported as configured/not configured only.
    return {
        "env": settings.app_env,
        "storage": settings.work_storage,
        "supabaseConfigured": bool(settings.supabase_url and settings.supabase_service_role_key),
        "ai": {
            "url": settings.ai_url,
            "model": settings.ai_model,
            "configured": settings.is_ai_configured(),
            "timeoutSeconds": settings.ai_timeout_seconds,
            "maxTokens": settings.ai_max_tokens,
        },
        "work": {
            "timezone": settings.work_timezone,
            "defaultSlots": [
                {"start": start, "end": end}
                for start, end in resolve_default_slots(settings.work_default_slots)
            ],
        },
    }
