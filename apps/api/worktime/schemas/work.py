from __future__ import annotations

from enum import IntEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ItemType(IntEnum):
    TEXT = 0
    REF = 1


class ItemStatus(IntEnum):
    PENDING = 0
    PARTIAL = 1
    DONE = 2


HolidayDayType = Literal["statutory_holiday", "makeup_workday"]
ChangeAction = Literal["create_item", "update_item", "delete_item", "batch_create_items"]
ChangeSource = Literal["api", "mcp"]


class _CamelModel(BaseModel):
    # Report payloads keep the camelCase keys the web client reads.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Stored rows ────────────────────────────────────────────────────────────────


class RecordItem(BaseModel):
    id: int = 0
    record_id: int
    item_type: int
    status: int
    text_value: str | None = None
    ref_uid: int | None = None
    progress_start: int | None = None
    progress_end: int | None = None
    sort: int = 0
    created_at: str = ""
    updated_at: str = ""


class DailyRecord(BaseModel):
    id: int
    date: str
    created_at: str
    updated_at: str
    items: list[RecordItem] = Field(default_factory=list)


class WorkSlot(BaseModel):
    # id is None for configured defaults that were never persisted.
    id: int | None = None
    date: str
    start_time: str
    end_time: str
    sort: int = 0
    created_at: str = ""
    updated_at: str = ""


class HolidayCalendarDay(BaseModel):
    date: str
    type: HolidayDayType
    label: str
    name: str
    source_year: int
    created_at: str = ""
    updated_at: str = ""


# ── Inputs ─────────────────────────────────────────────────────────────────────


class NormalizedWorkDay(BaseModel):
    date: str
    items: list[str] = Field(default_factory=list)


class NormalizedWorkList(BaseModel):
    days: list[NormalizedWorkDay] = Field(default_factory=list)


class TimeSlotInput(BaseModel):
    start_time: Any = None
    end_time: Any = None
    sort: Any = None


class CreateItemInput(BaseModel):
    item_type: Any = None
    status: Any = None
    text_value: str | None = None
    ref_uid: Any = None
    progress_start: Any = None
    progress_end: Any = None
    sort: Any = None


class UpdateItemInput(BaseModel):
    # Only fields present in the payload are merged; explicit nulls clear.
    status: Any = None
    text_value: str | None = None
    ref_uid: Any = None
    progress_start: Any = None
    progress_end: Any = None
    sort: Any = None


class BatchCreateDay(BaseModel):
    date: Any = None
    items: list[Any] | None = None


class BatchCreateInput(BaseModel):
    days: list[BatchCreateDay] | None = None


class NormalizeWorkInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Any = None
    selected_date: Any = Field(default=None, alias="selectedDate")


class BatchTaskDay(NormalizedWorkDay):
    date: str = Field(pattern=r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")


class BatchTasksInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    days: list[BatchTaskDay] = Field(min_length=1)
    dry_run: bool = Field(default=False, alias="dryRun")


# ── Outputs ────────────────────────────────────────────────────────────────────


class DayView(_CamelModel):
    time_slots: list[WorkSlot]
    record: DailyRecord


class BatchDaySummary(BaseModel):
    date: str
    count: int


class BatchCreateResult(BaseModel):
    ok: bool = True
    total: int
    days: list[BatchDaySummary]


class BatchTasksResult(_CamelModel):
    ok: bool = True
    dry_run: bool
    parsed: NormalizedWorkList
    write_result: BatchCreateResult | None = None


class MonthlyReportDay(_CamelModel):
    date: str
    time_slots: list[WorkSlot]
    items: list[str]
    hours: float


class WeeklyReportBlock(_CamelModel):
    start_date: str
    end_date: str
    hours: float
    days: list[MonthlyReportDay]


class MonthlyReport(_CamelModel):
    month: str
    total_hours: float
    weeks: list[WeeklyReportBlock]
    text: str


class DayOverview(BaseModel):
    date: str
    total: int = 0
    completed: int = 0
    pending: int = 0


class MonthOverview(BaseModel):
    month: str
    days: list[DayOverview]


class HolidayOverviewDay(BaseModel):
    date: str
    type: HolidayDayType
    label: str
    name: str


class HolidayMonthOverview(BaseModel):
    month: str
    days: list[HolidayOverviewDay]


class HolidaySyncResult(_CamelModel):
    ok: bool = True
    years: list[int]
    written_years: list[int]


class MonthSummary(_CamelModel):
    month: str
    total_hours: float
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    completion_rate: float
    days: list[DayOverview]
    weeks: list[WeeklyReportBlock]
    report_text: str

