from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx

from worktime.core.errors import StorageError
from worktime.schemas.work import DailyRecord, HolidayCalendarDay, RecordItem, WorkSlot
from worktime.services.supabase_rest import SupabaseRest, SupabaseRestError

RECORD_TABLE = "work_daily_record"
ITEM_TABLE = "work_record_item"
SLOT_TABLE = "work_time_slot"
HOLIDAY_TABLE = "work_holiday_calendar"

_UNIQUE_VIOLATION = "23505"


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except SupabaseRestError as exc:
        raise StorageError(
            f"{action}失败：{exc}", storage_code=exc.code, hint=exc.hint
        ) from exc
    except httpx.TransportError as exc:
        raise StorageError(f"{action}失败：数据库连接异常") from exc


def _range(column: str, start_date: str, end_date: str) -> str:
    return f"({column}.gte.{start_date},{column}.lte.{end_date})"


def _record_from_row(row: dict[str, Any]) -> DailyRecord:
    return DailyRecord(
        id=int(row["id"]),
        date=str(row["work_date"]),
        created_at=str(row.get("created_at") or ""),
        updated_at=str(row.get("updated_at") or ""),
    )


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _item_from_row(row: dict[str, Any]) -> RecordItem:
    return RecordItem(
        id=int(row["id"]),
        record_id=int(row["record_id"]),
        item_type=int(row["item_type"]),
        status=int(row["status"]),
        text_value=row.get("text_value"),
        ref_uid=_optional_int(row.get("ref_uid")),
        progress_start=_optional_int(row.get("progress_start")),
        progress_end=_optional_int(row.get("progress_end")),
        sort=int(row.get("sort") or 0),
        created_at=str(row.get("created_at") or ""),
        updated_at=str(row.get("updated_at") or ""),
    )


def _slot_from_row(row: dict[str, Any]) -> WorkSlot:
    return WorkSlot(
        id=int(row["id"]),
        date=str(row["work_date"]),
        start_time=str(row["start_time"]),
        end_time=str(row["end_time"]),
        sort=int(row.get("sort") or 0),
        created_at=str(row.get("created_at") or ""),
        updated_at=str(row.get("updated_at") or ""),
    )


def _holiday_from_row(row: dict[str, Any]) -> HolidayCalendarDay:
    return HolidayCalendarDay(
        date=str(row["holiday_date"]),
        type=row["day_type"],
        label=str(row["day_label"]),
        name=str(row["day_name"]),
        source_year=int(row["source_year"]),
        created_at=str(row.get("created_at") or ""),
        updated_at=str(row.get("updated_at") or ""),
    )


class SupabaseWorkRepository:
    """WorkRepository over PostgREST. See supabase/schema.sql for the RPCs."""

    def __init__(self, rest: SupabaseRest) -> None:
        self._rest = rest

    # ── Slots ──────────────────────────────────────────────────────────────────

    async def get_slots_by_date(self, date: str) -> list[WorkSlot]:
        with _storage_errors("读取时间段"):
            rows = await self._rest.select(
                SLOT_TABLE,
                params={"select": "*", "work_date": f"eq.{date}", "order": "sort.asc,id.asc"},
            )
        return [_slot_from_row(r) for r in rows]

    async def get_slots_by_date_range(self, start_date: str, end_date: str) -> list[WorkSlot]:
        with _storage_errors("读取时间段"):
            rows = await self._rest.select(
                SLOT_TABLE,
                params={
                    "select": "*",
                    "and": _range("work_date", start_date, end_date),
                    "order": "work_date.asc,sort.asc,id.asc",
                },
            )
        return [_slot_from_row(r) for r in rows]

    async def replace_slots(self, date: str, slots: list[WorkSlot]) -> None:
        payload = [
            {
                "start_time": s.start_time,
                "end_time": s.end_time,
                "sort": s.sort,
                "created_at": s.created_at,
                "updated_at": s.updated_at,
            }
            for s in slots
        ]
        with _storage_errors("保存时间段"):
            await self._rest.rpc(
                "replace_work_slots", params={"p_work_date": date, "p_slots": payload}
            )

    # ── Records ────────────────────────────────────────────────────────────────

    async def find_record_by_date(self, date: str) -> DailyRecord | None:
        with _storage_errors("读取工作记录"):
            rows = await self._rest.select(
                RECORD_TABLE, params={"select": "*", "work_date": f"eq.{date}", "limit": 1}
            )
        return _record_from_row(rows[0]) if rows else None

    async def find_record_by_id(self, record_id: int) -> DailyRecord | None:
        with _storage_errors("读取工作记录"):
            rows = await self._rest.select(
                RECORD_TABLE, params={"select": "*", "id": f"eq.{record_id}", "limit": 1}
            )
        return _record_from_row(rows[0]) if rows else None

    async def create_record(self, date: str, now: str) -> DailyRecord:
        try:
            with _storage_errors("创建工作记录"):
                row = await self._rest.insert_one(
                    RECORD_TABLE,
                    row={"work_date": date, "created_at": now, "updated_at": now},
                )
        except StorageError as exc:
            # Lost a race with a concurrent first touch of the same date.
            if exc.storage_code != _UNIQUE_VIOLATION:
                raise
            existing = await self.find_record_by_date(date)
            if existing is None:
                raise
            return existing
        return _record_from_row(row)

    async def touch_record(self, record_id: int, updated_at: str) -> None:
        with _storage_errors("更新工作记录"):
            await self._rest.update(
                RECORD_TABLE,
                params={"id": f"eq.{record_id}"},
                values={"updated_at": updated_at},
            )

    async def get_records_by_date_range(self, start_date: str, end_date: str) -> list[DailyRecord]:
        with _storage_errors("读取工作记录"):
            rows = await self._rest.select(
                RECORD_TABLE,
                params={
                    "select": "*",
                    "and": _range("work_date", start_date, end_date),
                    "order": "work_date.asc,id.asc",
                },
            )
        return [_record_from_row(r) for r in rows]

    # ── Items ──────────────────────────────────────────────────────────────────

    async def get_items_by_record_id(self, record_id: int) -> list[RecordItem]:
        return await self.get_items_by_record_ids([record_id])

    async def get_items_by_record_ids(self, record_ids: list[int]) -> list[RecordItem]:
        if not record_ids:
            return []
        ids = ",".join(str(i) for i in record_ids)
        with _storage_errors("读取记录项"):
            rows = await self._rest.select(
                ITEM_TABLE,
                params={
                    "select": "*",
                    "record_id": f"in.({ids})",
                    "order": "record_id.asc,sort.asc,id.asc",
                },
            )
        return [_item_from_row(r) for r in rows]

    async def get_next_item_sort(self, record_id: int) -> int:
        with _storage_errors("读取记录项"):
            rows = await self._rest.select(
                ITEM_TABLE,
                params={
                    "select": "sort",
                    "record_id": f"eq.{record_id}",
                    "order": "sort.desc",
                    "limit": 1,
                },
            )
        if not rows or rows[0].get("sort") is None:
            return 0
        return int(rows[0]["sort"]) + 1

    async def insert_item(self, item: RecordItem) -> RecordItem:
        with _storage_errors("创建记录项"):
            row = await self._rest.insert_one(
                ITEM_TABLE, row=item.model_dump(exclude={"id"})
            )
        return _item_from_row(row) if row else item

    async def find_item_by_id(self, item_id: int) -> RecordItem | None:
        with _storage_errors("读取记录项"):
            rows = await self._rest.select(
                ITEM_TABLE, params={"select": "*", "id": f"eq.{item_id}", "limit": 1}
            )
        return _item_from_row(rows[0]) if rows else None

    async def update_item(self, item: RecordItem) -> None:
        with _storage_errors("更新记录项"):
            await self._rest.update(
                ITEM_TABLE,
                params={"id": f"eq.{item.id}"},
                values=item.model_dump(
                    include={
                        "status",
                        "text_value",
                        "ref_uid",
                        "progress_start",
                        "progress_end",
                        "sort",
                        "updated_at",
                    }
                ),
            )

    async def delete_item(self, item_id: int) -> None:
        with _storage_errors("删除记录项"):
            await self._rest.delete(ITEM_TABLE, params={"id": f"eq.{item_id}"})

    # ── Holiday calendar ───────────────────────────────────────────────────────

    async def get_holiday_days_by_date_range(
        self, start_date: str, end_date: str
    ) -> list[HolidayCalendarDay]:
        with _storage_errors("读取节假日"):
            rows = await self._rest.select(
                HOLIDAY_TABLE,
                params={
                    "select": "*",
                    "and": _range("holiday_date", start_date, end_date),
                    "order": "holiday_date.asc",
                },
            )
        return [_holiday_from_row(r) for r in rows]

    async def count_holiday_days_by_year(self, year: int) -> int:
        with _storage_errors("读取节假日"):
            rows = await self._rest.select(
                HOLIDAY_TABLE, params={"select": "id", "source_year": f"eq.{year}"}
            )
        return len(rows)

    async def replace_holiday_days_by_year(
        self, year: int, days: list[HolidayCalendarDay]
    ) -> None:
        payload = [
            {
                "holiday_date": d.date,
                "day_type": d.type,
                "day_label": d.label,
                "day_name": d.name,
                "created_at": d.created_at,
                "updated_at": d.updated_at,
            }
            for d in days
        ]
        with _storage_errors("同步节假日"):
            await self._rest.rpc(
                "replace_holiday_days", params={"p_source_year": year, "p_days": payload}
            )
