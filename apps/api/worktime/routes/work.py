from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Query, Request
from fastapi.responses import StreamingResponse

from worktime.core.config import settings
from worktime.core.dependencies import EventBusDep, WorkServiceDep
from worktime.core.rate_limit import consume
from worktime.schemas.work import (
    BatchCreateInput,
    BatchCreateResult,
    BatchTasksResult,
    CreateItemInput,
    DayView,
    HolidayMonthOverview,
    HolidaySyncResult,
    MonthlyReport,
    MonthOverview,
    MonthSummary,
    NormalizedWorkList,
    NormalizeWorkInput,
    RecordItem,
    TimeSlotInput,
    UpdateItemInput,
    WorkSlot,
)
from worktime.services.events import WorkEventBus

router = APIRouter(prefix="/work", tags=["work"])

PING_INTERVAL_SECONDS = 25.0


def _sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


async def work_event_stream(
    bus: WorkEventBus,
    *,
    is_disconnected: Callable[[], Awaitable[bool]],
    ping_seconds: float = PING_INTERVAL_SECONDS,
) -> AsyncIterator[str]:
    async with bus.subscribe() as queue:
        while not await is_disconnected():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=ping_seconds)
            except asyncio.TimeoutError:
                yield _sse("ping", {"at": datetime.now(timezone.utc).isoformat()})
                continue
            yield _sse("work_changed", event.to_dict())


@router.get("/day", response_model=DayView)
async def get_day(service: WorkServiceDep, date: str = Query(default="")) -> DayView:
    return await service.get_day(date)


@router.put("/day/{date}/slots", response_model=list[WorkSlot])
async def save_slots(
    date: str,
    service: WorkServiceDep,
    slots: list[TimeSlotInput] | None = Body(default=None),
) -> list[WorkSlot]:
    return await service.save_slots(date, slots)  # type: ignore[arg-type]


@router.post("/day/{date}/items", response_model=RecordItem)
async def create_item(
    date: str,
    service: WorkServiceDep,
    payload: CreateItemInput | None = Body(default=None),
    source: str | None = Query(default=None),
) -> RecordItem:
    return await service.create_item(date, payload, source=source)


@router.put("/items/{item_id}", response_model=RecordItem)
async def update_item(
    item_id: int,
    service: WorkServiceDep,
    payload: UpdateItemInput | None = Body(default=None),
    source: str | None = Query(default=None),
) -> RecordItem:
    return await service.update_item(item_id, payload, source=source)


@router.delete("/items/{item_id}")
async def delete_item(
    item_id: int,
    service: WorkServiceDep,
    source: str | None = Query(default=None),
) -> dict:
    await service.delete_item(item_id, source=source)
    return {"ok": True}


@router.post("/batch-items", response_model=BatchCreateResult)
async def create_items_batch(
    service: WorkServiceDep,
    payload: BatchCreateInput | None = Body(default=None),
    source: str | None = Query(default=None),
) -> BatchCreateResult:
    return await service.create_items_batch(payload, source=source)


@router.post("/batch-tasks", response_model=BatchTasksResult)
async def batch_tasks(
    service: WorkServiceDep,
    payload: dict[str, Any] | None = Body(default=None),
    source: str = Query(default="mcp"),
) -> BatchTasksResult:
    return await service.batch_add_tasks(payload, source=source)


@router.post("/normalize", response_model=NormalizedWorkList)
async def normalize(
    request: Request,
    service: WorkServiceDep,
    payload: NormalizeWorkInput | None = Body(default=None),
) -> NormalizedWorkList:
    client = request.client.host if request.client else "local"
    await consume(
        key=f"normalize:{client}",
        limit=settings.normalize_per_minute_limit,
        window_seconds=60,
    )
    return await service.normalize_work(payload)


@router.get("/month", response_model=MonthlyReport)
async def get_month_report(service: WorkServiceDep, month: str = Query(default="")) -> MonthlyReport:
    return await service.get_month_report(month)


@router.get("/month-overview", response_model=MonthOverview)
async def get_month_overview(service: WorkServiceDep, month: str = Query(default="")) -> MonthOverview:
    return await service.get_month_overview(month)


@router.get("/month-summary", response_model=MonthSummary)
async def get_month_summary(service: WorkServiceDep, month: str = Query(default="")) -> MonthSummary:
    return await service.get_month_summary(month)


@router.get("/holidays", response_model=HolidayMonthOverview)
async def get_holidays(
    service: WorkServiceDep, month: str = Query(default="")
) -> HolidayMonthOverview:
    return await service.get_holiday_month_overview(month)


@router.post("/holidays/sync", response_model=HolidaySyncResult)
async def sync_holidays(service: WorkServiceDep) -> HolidaySyncResult:
    return await service.sync_holiday_calendar_for_today()


@router.get("/events")
async def stream_events(request: Request, bus: EventBusDep) -> StreamingResponse:
    return StreamingResponse(
        work_event_stream(bus, is_disconnected=request.is_disconnected),
        media_type="text/event-stream",
        headers={"cache-control": "no-cache", "x-accel-buffering": "no"},
    )
