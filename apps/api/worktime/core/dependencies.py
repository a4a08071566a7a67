from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from worktime.core.config import settings
from worktime.services.events import WorkEventBus
from worktime.services.memory_repository import InMemoryWorkRepository
from worktime.services.openai_service import OpenAIChatClient
from worktime.services.repository import WorkRepository
from worktime.services.supabase_repository import SupabaseWorkRepository
from worktime.services.supabase_rest import SupabaseRest
from worktime.services.work_service import WorkService

_event_bus: WorkEventBus | None = None
_repository: WorkRepository | None = None


def get_event_bus() -> WorkEventBus:
    global _event_bus
    if _event_bus is None:
        _event_bus = WorkEventBus()
    return _event_bus


def get_repository() -> WorkRepository:
    global _repository
    if _repository is None:
        if settings.work_storage == "memory":
            _repository = InMemoryWorkRepository()
        else:
            _repository = SupabaseWorkRepository(
                SupabaseRest(str(settings.supabase_url), settings.supabase_service_role_key or "")
            )
    return _repository


def build_work_service(repo: WorkRepository, events: WorkEventBus) -> WorkService:
    llm = (
        OpenAIChatClient(
            url=settings.ai_url,
            api_key=settings.ai_key,
            model=settings.ai_model,
            max_tokens=settings.ai_max_tokens,
        )
        if settings.is_ai_configured()
        else None
    )
    return WorkService(
        repo,
        events=events,
        llm=llm,
        default_slots=settings.work_default_slots,
        timezone_name=settings.work_timezone,
        ai_timeout_seconds=settings.ai_timeout_seconds,
        holiday_sync_attempts=settings.holiday_sync_attempts,
        holiday_sync_backoff_seconds=settings.holiday_sync_backoff_seconds,
    )


def get_work_service(
    repo: Annotated[WorkRepository, Depends(get_repository)],
    events: Annotated[WorkEventBus, Depends(get_event_bus)],
) -> WorkService:
    return build_work_service(repo, events)


WorkServiceDep = Annotated[WorkService, Depends(get_work_service)]
EventBusDep = Annotated[WorkEventBus, Depends(get_event_bus)]
