from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date as Date
from datetime import datetime, timezone
from typing import Any, TypeVar
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from worktime.core.config import DefaultSlotConfig
from worktime.core.errors import (
    NotFoundError,
    StorageError,
    UpstreamError,
    WorkValidationError,
)
from worktime.schemas.work import (
    BatchCreateDay,
    BatchCreateInput,
    BatchCreateResult,
    BatchDaySummary,
    BatchTasksInput,
    BatchTasksResult,
    ChangeAction,
    ChangeSource,
    CreateItemInput,
    DailyRecord,
    DayOverview,
    DayView,
    HolidayMonthOverview,
    HolidayOverviewDay,
    HolidaySyncResult,
    ItemStatus,
    ItemType,
    MonthlyReport,
    MonthlyReportDay,
    MonthOverview,
    MonthSummary,
    NormalizedWorkList,
    NormalizeWorkInput,
    RecordItem,
    TimeSlotInput,
    UpdateItemInput,
    WeeklyReportBlock,
    WorkSlot,
)
from worktime.services.events import ChangeNotifier, WorkChangedEvent
from worktime.services.holiday_calendar import (
    build_holiday_days_for_year,
    has_holiday_schedule_for_year,
)
from worktime.services.normalizer import (
    NORMALIZE_SCHEMA,
    NORMALIZE_SCHEMA_NAME,
    build_normalize_system_prompt,
    build_normalize_user_prompt,
    collapse_to_selected_date,
    count_items,
    normalize_days_payload,
)
from worktime.services.openai_service import StructuredLLM
from worktime.services.repository import WorkRepository
from worktime.services.time_range import (
    ensure_date,
    format_hours,
    hours_between,
    month_day_short,
    month_range,
    normalize_time,
    round_hours,
    time_to_seconds,
    week_start,
    weekday_label,
)
from worktime.services.validation import (
    parse_optional_int,
    parse_required_int,
    validate_item,
    validate_slot,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

FALLBACK_DEFAULT_SLOTS: tuple[tuple[str, str], ...] = (
    ("09:30:00", "12:00:00"),
    ("13:30:00", "19:00:00"),
)

_UPDATABLE_INT_FIELDS = ("ref_uid", "progress_start", "progress_end")


def normalize_source(source: str | None) -> ChangeSource:
    return "mcp" if source == "mcp" else "api"


def resolve_default_slots(configured: list[DefaultSlotConfig]) -> list[tuple[str, str]]:
    """Normalize configured defaults; invalid or inverted entries are skipped."""
    resolved: list[tuple[str, str]] = []
    for slot in configured:
        try:
            start = normalize_time(slot.start, "work.defaultSlots.start")
            end = normalize_time(slot.end, "work.defaultSlots.end")
        except WorkValidationError:
            continue
        if time_to_seconds(start) >= time_to_seconds(end):
            continue
        resolved.append((start, end))
    return resolved or list(FALLBACK_DEFAULT_SLOTS)


def _utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def _parse_input(model: type[ModelT], payload: Any, *, empty_message: str = "请求体不能为空") -> ModelT:
    if isinstance(payload, model):
        return payload
    if payload is None:
        raise WorkValidationError(empty_message)
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ())) or "body"
        raise WorkValidationError(f"请求体格式错误: {loc} {first.get('msg', '')}".strip()) from exc


def _sort_items(items: list[RecordItem]) -> list[RecordItem]:
    return sorted(items, key=lambda i: (i.sort, i.id))


def _sort_slots(slots: list[WorkSlot]) -> list[WorkSlot]:
    return sorted(slots, key=lambda s: (s.sort, s.id or 0))


def _slots_hours(slots: list[WorkSlot]) -> float:
    return sum(hours_between(s.start_time, s.end_time) for s in slots)


def _is_lock_contention(exc: BaseException) -> bool:
    return isinstance(exc, StorageError) and exc.lock_contention


def _log_holiday_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Holiday calendar write hit lock contention (code=%s), retrying (attempt %s)",
        getattr(exc, "storage_code", None),
        retry_state.attempt_number,
    )


def build_monthly_report_text(weeks: list[WeeklyReportBlock], total_hours: float) -> str:
    lines: list[str] = [f"总共{format_hours(total_hours)}", ""]

    for index, week in enumerate(weeks):
        start_text = month_day_short(week.start_date)
        end_text = month_day_short(week.end_date)
        week_range = f"**{start_text}**" if start_text == end_text else f"**{start_text} ~ {end_text}**"
        lines.append(f"{week_range}   {format_hours(week.hours)}")
        lines.append("")
        for day in week.days:
            ranges = (
                " ".join(f"{s.start_time[:5]} ~ {s.end_time[:5]}" for s in day.time_slots)
                if day.time_slots
                else "无"
            )
            lines.append(
                f"{month_day_short(day.date)} {weekday_label(day.date)} {ranges} **{format_hours(day.hours)}**"
            )
            if day.items:
                lines.extend(day.items)
            else:
                lines.append("（无）")
            lines.append("")
        if index < len(weeks) - 1:
            lines.extend(["", "", ""])

    return "\n".join(lines)


class WorkService:
    """Day records, items, slots, month views, holiday overlay and normalization."""

    def __init__(
        self,
        repo: WorkRepository,
        *,
        events: ChangeNotifier | None = None,
        llm: StructuredLLM | None = None,
        default_slots: list[DefaultSlotConfig] | None = None,
        timezone_name: str = "UTC",
        ai_timeout_seconds: float = 60.0,
        holiday_sync_attempts: int = 3,
        holiday_sync_backoff_seconds: float = 0.2,
        today: Callable[[], Date] | None = None,
    ) -> None:
        self._repo = repo
        self._events = events
        self._llm = llm
        self._default_slots = resolve_default_slots(default_slots or [])
        self._timezone_name = timezone_name
        self._ai_timeout_seconds = ai_timeout_seconds
        self._holiday_sync_attempts = holiday_sync_attempts
        self._holiday_sync_backoff_seconds = holiday_sync_backoff_seconds
        self._today = today or (lambda: datetime.now(ZoneInfo(self._timezone_name)).date())

    # ── Day ────────────────────────────────────────────────────────────────────

    async def get_day(self, date: str) -> DayView:
        ensure_date(date)
        record = await self._ensure_record(date)
        time_slots = await self._slots_or_default(date)
        return DayView(time_slots=time_slots, record=record)

    async def save_slots(self, date: str, slots: list[Any]) -> list[WorkSlot]:
        ensure_date(date)
        if not isinstance(slots, list):
            raise WorkValidationError("slots 必须是数组")

        now = _utc_now()
        normalized: list[WorkSlot] = []
        for index, raw in enumerate(slots):
            slot = validate_slot(_parse_input(TimeSlotInput, raw, empty_message="slot 不能为空"))
            normalized.append(
                WorkSlot(
                    date=date,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    sort=parse_optional_int(slot.sort, "sort", index),
                    created_at=now,
                    updated_at=now,
                )
            )

        await self._repo.replace_slots(date, normalized)
        record = await self._repo.find_record_by_date(date)
        if record is not None:
            await self._repo.touch_record(record.id, now)
        return _sort_slots(await self._repo.get_slots_by_date(date))

    # ── Items ──────────────────────────────────────────────────────────────────

    async def create_item(self, date: str, payload: Any, source: str | None = None) -> RecordItem:
        ensure_date(date)
        record = await self._ensure_record(date)
        data = _parse_input(CreateItemInput, payload)

        item_type = parse_required_int(data.item_type, "item_type")
        status = parse_required_int(data.status, "status")
        if item_type not in (ItemType.TEXT, ItemType.REF):
            raise WorkValidationError("item_type 必须为 0 或 1")

        now = _utc_now()
        next_sort = await self._repo.get_next_item_sort(record.id)
        item = RecordItem(
            record_id=record.id,
            item_type=item_type,
            status=status,
            text_value=data.text_value,
            ref_uid=parse_optional_int(data.ref_uid, "ref_uid"),
            progress_start=parse_optional_int(data.progress_start, "progress_start"),
            progress_end=parse_optional_int(data.progress_end, "progress_end"),
            sort=parse_optional_int(data.sort, "sort", next_sort),
            created_at=now,
            updated_at=now,
        )
        validate_item(item)

        created = await self._repo.insert_item(item)
        await self._repo.touch_record(record.id, now)
        self._notify("create_item", date, source)
        return created

    async def update_item(self, item_id: Any, payload: Any, source: str | None = None) -> RecordItem:
        item = await self._find_item(item_id)
        data = _parse_input(UpdateItemInput, payload)
        provided = data.model_fields_set

        changes: dict[str, Any] = {"updated_at": _utc_now()}
        if "status" in provided and data.status is not None:
            changes["status"] = parse_required_int(data.status, "status")
        if "text_value" in provided:
            changes["text_value"] = data.text_value
        for field in _UPDATABLE_INT_FIELDS:
            if field in provided:
                changes[field] = parse_optional_int(getattr(data, field), field)
        changes["sort"] = parse_optional_int(data.sort, "sort", item.sort)

        # item_type is never part of the merge; the stored type decides the rules.
        updated = item.model_copy(update=changes)
        validate_item(updated)

        await self._repo.update_item(updated)
        await self._repo.touch_record(updated.record_id, updated.updated_at)
        record = await self._repo.find_record_by_id(updated.record_id)
        self._notify("update_item", record.date if record else None, source)
        return updated

    async def delete_item(self, item_id: Any, source: str | None = None) -> None:
        item = await self._find_item(item_id)
        await self._repo.delete_item(item.id)
        await self._repo.touch_record(item.record_id, _utc_now())
        record = await self._repo.find_record_by_id(item.record_id)
        self._notify("delete_item", record.date if record else None, source)

    async def create_items_batch(self, payload: Any, source: str | None = None) -> BatchCreateResult:
        data = _parse_input(BatchCreateInput, payload)
        if not data.days:
            raise WorkValidationError("days 必须为非空数组")

        summaries: list[BatchDaySummary] = []
        total = 0
        # A failing day aborts the batch; earlier days stay written.
        for day in data.days:
            if not isinstance(day.date, str):
                raise WorkValidationError("date 必须为字符串")
            ensure_date(day.date)
            if not isinstance(day.items, list):
                raise WorkValidationError("items 必须为数组")
            texts = [i.strip() if isinstance(i, str) else "" for i in day.items]
            if not texts or any(not t for t in texts):
                raise WorkValidationError("items 不能为空")

            record = await self._ensure_record(day.date)
            next_sort = await self._repo.get_next_item_sort(record.id)
            now = _utc_now()
            for text in texts:
                item = RecordItem(
                    record_id=record.id,
                    item_type=ItemType.TEXT,
                    status=ItemStatus.DONE,
                    text_value=text,
                    sort=next_sort,
                    created_at=now,
                    updated_at=now,
                )
                validate_item(item)
                await self._repo.insert_item(item)
                next_sort += 1

            await self._repo.touch_record(record.id, now)
            summaries.append(BatchDaySummary(date=day.date, count=len(texts)))
            total += len(texts)
            self._notify("batch_create_items", day.date, source)

        return BatchCreateResult(total=total, days=summaries)

    async def batch_add_tasks(self, payload: Any, source: str | None = "mcp") -> BatchTasksResult:
        data = _parse_input(BatchTasksInput, payload)
        merged = normalize_days_payload(data.days)
        if count_items(merged) == 0:
            return BatchTasksResult(dry_run=True, parsed=merged, write_result=None)

        write_result: BatchCreateResult | None = None
        if not data.dry_run:
            batch = BatchCreateInput(
                days=[BatchCreateDay(date=d.date, items=list(d.items)) for d in merged.days]
            )
            write_result = await self.create_items_batch(batch, source=source)
        return BatchTasksResult(dry_run=data.dry_run, parsed=merged, write_result=write_result)

    # ── Month views ────────────────────────────────────────────────────────────

    async def get_month_report(self, month: str) -> MonthlyReport:
        start_date, end_date = month_range(month)
        records = await self._repo.get_records_by_date_range(start_date, end_date)
        items = await self._repo.get_items_by_record_ids([r.id for r in records])
        slots = await self._repo.get_slots_by_date_range(start_date, end_date)

        items_by_record: dict[int, list[RecordItem]] = {}
        for item in items:
            items_by_record.setdefault(item.record_id, []).append(item)
        record_by_date = {r.date: r for r in records}
        slots_by_date: dict[str, list[WorkSlot]] = {}
        for slot in slots:
            slots_by_date.setdefault(slot.date, []).append(slot)

        days: list[MonthlyReportDay] = []
        for date in sorted(set(record_by_date) | set(slots_by_date)):
            record = record_by_date.get(date)
            record_items = _sort_items(items_by_record.get(record.id, [])) if record else []
            texts = [
                i.text_value.strip()
                for i in record_items
                if i.item_type == ItemType.TEXT and i.text_value and i.text_value.strip()
            ]
            # Days without any text item (slots only, or REF only) are not reported.
            if not texts:
                continue
            day_slots = _sort_slots(slots_by_date[date]) if date in slots_by_date else self._default_slots_for(date)
            days.append(
                MonthlyReportDay(
                    date=date, time_slots=day_slots, items=texts, hours=_slots_hours(day_slots)
                )
            )

        weeks = self._group_by_week(days)
        total_hours = sum(w.hours for w in weeks)
        text = build_monthly_report_text(weeks, total_hours)

        return MonthlyReport(
            month=month,
            total_hours=round_hours(total_hours),
            weeks=[
                w.model_copy(
                    update={
                        "hours": round_hours(w.hours),
                        "days": [
                            d.model_copy(update={"hours": round_hours(d.hours)}) for d in w.days
                        ],
                    }
                )
                for w in weeks
            ],
            text=text,
        )

    async def get_month_overview(self, month: str) -> MonthOverview:
        start_date, end_date = month_range(month)
        records = await self._repo.get_records_by_date_range(start_date, end_date)
        items = await self._repo.get_items_by_record_ids([r.id for r in records])

        overview = {r.date: DayOverview(date=r.date) for r in records}
        date_by_record = {r.id: r.date for r in records}
        for item in items:
            if item.item_type != ItemType.TEXT:
                continue
            date = date_by_record.get(item.record_id)
            if date is None:
                continue
            day = overview[date]
            day.total += 1
            if item.status == ItemStatus.DONE:
                day.completed += 1
            else:
                day.pending += 1

        return MonthOverview(month=month, days=[overview[d] for d in sorted(overview)])

    async def get_month_summary(self, month: str) -> MonthSummary:
        overview = await self.get_month_overview(month)
        report = await self.get_month_report(month)

        total = sum(d.total for d in overview.days)
        completed = sum(d.completed for d in overview.days)
        pending = sum(d.pending for d in overview.days)
        completion_rate = round_hours(completed / total * 100) if total else 0.0

        return MonthSummary(
            month=month,
            total_hours=report.total_hours,
            total_tasks=total,
            completed_tasks=completed,
            pending_tasks=pending,
            completion_rate=completion_rate,
            days=overview.days,
            weeks=report.weeks,
            report_text=report.text,
        )

    # ── Holiday calendar ───────────────────────────────────────────────────────

    async def get_holiday_month_overview(self, month: str) -> HolidayMonthOverview:
        start_date, end_date = month_range(month)
        await self._ensure_holiday_year_synced(int(month[:4]))
        rows = await self._repo.get_holiday_days_by_date_range(start_date, end_date)
        return HolidayMonthOverview(
            month=month,
            days=[
                HolidayOverviewDay(date=r.date, type=r.type, label=r.label, name=r.name)
                for r in sorted(rows, key=lambda r: r.date)
            ],
        )

    async def sync_holiday_calendar_for_today(self) -> HolidaySyncResult:
        current_year = self._today().year
        years: list[int] = []
        written: list[int] = []
        for year in (current_year, current_year + 1):
            if not has_holiday_schedule_for_year(year):
                continue
            if await self._ensure_holiday_year_synced(year):
                written.append(year)
            years.append(year)
        return HolidaySyncResult(years=years, written_years=written)

    async def _ensure_holiday_year_synced(self, year: int) -> bool:
        if not has_holiday_schedule_for_year(year):
            return False
        if await self._repo.count_holiday_days_by_year(year) > 0:
            return False
        return await self._sync_holiday_year(year)

    async def _sync_holiday_year(self, year: int) -> bool:
        now = _utc_now()
        rows = [
            d.model_copy(update={"created_at": now, "updated_at": now})
            for d in build_holiday_days_for_year(year)
        ]
        if not rows:
            return False

        backoff = self._holiday_sync_backoff_seconds
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._holiday_sync_attempts),
                wait=wait_incrementing(start=backoff, increment=backoff),
                retry=retry_if_exception(_is_lock_contention),
                reraise=True,
                before_sleep=_log_holiday_retry,
            ):
                with attempt:
                    await self._repo.replace_holiday_days_by_year(year, rows)
        except StorageError as exc:
            if not exc.lock_contention:
                raise
            logger.error(
                "Holiday calendar sync for %s gave up after %s attempts (code=%s)",
                year,
                self._holiday_sync_attempts,
                exc.storage_code,
            )
            raise StorageError(
                "节假日数据同步失败，请稍后重试", storage_code=exc.storage_code
            ) from exc

        logger.info("Holiday calendar synced for %s (%s days)", year, len(rows))
        return True

    # ── Natural language ───────────────────────────────────────────────────────

    async def normalize_work(self, payload: Any) -> NormalizedWorkList:
        data = _parse_input(NormalizeWorkInput, payload)
        if not isinstance(data.text, str) or not data.text.strip():
            raise WorkValidationError("text 不能为空")
        selected_date = data.selected_date
        if not isinstance(selected_date, str) or not selected_date.strip():
            raise WorkValidationError("selectedDate 不能为空")
        ensure_date(selected_date, "selectedDate 格式必须为 YYYY-MM-DD")

        if self._llm is None:
            raise UpstreamError("AI 配置不完整，请先在设置页填写", kind="not_configured")

        today = self._today().isoformat()
        logger.info(
            "normalize start: today=%s, selected_date=%s, timezone=%s, input_length=%s",
            today,
            selected_date,
            self._timezone_name,
            len(data.text.strip()),
        )
        try:
            raw = await self._llm.complete_json(
                system_prompt=build_normalize_system_prompt(
                    today=today, selected_date=selected_date, timezone=self._timezone_name
                ),
                user_prompt=build_normalize_user_prompt(data.text),
                schema=NORMALIZE_SCHEMA,
                schema_name=NORMALIZE_SCHEMA_NAME,
                timeout=self._ai_timeout_seconds,
            )
        except UpstreamError as exc:
            logger.warning("normalize failed: kind=%s, message=%s", exc.kind, exc.message)
            raise

        result = collapse_to_selected_date(raw, selected_date)
        raw_days = raw.get("days")
        logger.info(
            "normalize success: model_days=%s, items=%s",
            len(raw_days) if isinstance(raw_days, list) else 0,
            count_items(result),
        )
        return result

    # ── Helpers ────────────────────────────────────────────────────────────────

    async def _ensure_record(self, date: str) -> DailyRecord:
        existing = await self._repo.find_record_by_date(date)
        if existing is not None:
            items = await self._repo.get_items_by_record_id(existing.id)
            return existing.model_copy(update={"items": _sort_items(items)})
        record = await self._repo.create_record(date, _utc_now())
        return record.model_copy(update={"items": []})

    async def _find_item(self, item_id: Any) -> RecordItem:
        item = await self._repo.find_item_by_id(parse_required_int(item_id, "itemId"))
        if item is None:
            raise NotFoundError("记录项不存在")
        return item

    async def _slots_or_default(self, date: str) -> list[WorkSlot]:
        slots = await self._repo.get_slots_by_date(date)
        return _sort_slots(slots) if slots else self._default_slots_for(date)

    def _default_slots_for(self, date: str) -> list[WorkSlot]:
        return [
            WorkSlot(date=date, start_time=start, end_time=end, sort=index)
            for index, (start, end) in enumerate(self._default_slots)
        ]

    @staticmethod
    def _group_by_week(days: list[MonthlyReportDay]) -> list[WeeklyReportBlock]:
        groups: dict[Date, list[MonthlyReportDay]] = {}
        for day in days:
            groups.setdefault(week_start(day.date), []).append(day)

        weeks: list[WeeklyReportBlock] = []
        for key in sorted(groups):
            members = sorted(groups[key], key=lambda d: d.date)
            weeks.append(
                WeeklyReportBlock(
                    start_date=members[0].date,
                    end_date=members[-1].date,
                    hours=sum(d.hours for d in members),
                    days=members,
                )
            )
        return weeks

    def _notify(self, action: ChangeAction, date: str | None, source: str | None) -> None:
        if self._events is None:
            return
        event = WorkChangedEvent(action=action, source=normalize_source(source), date=date)
        try:
            self._events.publish(event)
        except Exception:
            # Delivery is best-effort; the write already happened.
            logger.warning("Failed to publish %s change notification", action, exc_info=True)

