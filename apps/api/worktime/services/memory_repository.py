from __future__ import annotations

from worktime.core.errors import StorageError
from worktime.schemas.work import DailyRecord, HolidayCalendarDay, RecordItem, WorkSlot


class InMemoryWorkRepository:
    """Process-local WorkRepository for tests and WORK_STORAGE=memory runs."""

    def __init__(self) -> None:
        self._next_record_id = 1
        self._next_item_id = 1
        self._next_slot_id = 1
        self._records: dict[int, DailyRecord] = {}
        self._items: dict[int, RecordItem] = {}
        self._slots: dict[str, list[WorkSlot]] = {}
        self._holidays: dict[str, HolidayCalendarDay] = {}
        self._holiday_failures: list[str] = []
        self.holiday_replace_calls = 0

    def fail_next_holiday_replaces(self, count: int, *, storage_code: str) -> None:
        self._holiday_failures.extend([storage_code] * count)

    # ── Slots ──────────────────────────────────────────────────────────────────

    async def get_slots_by_date(self, date: str) -> list[WorkSlot]:
        return [s.model_copy() for s in self._slots.get(date, [])]

    async def get_slots_by_date_range(self, start_date: str, end_date: str) -> list[WorkSlot]:
        out: list[WorkSlot] = []
        for date in sorted(self._slots):
            if start_date <= date <= end_date:
                out.extend(s.model_copy() for s in self._slots[date])
        return out

    async def replace_slots(self, date: str, slots: list[WorkSlot]) -> None:
        stored: list[WorkSlot] = []
        for slot in slots:
            stored.append(slot.model_copy(update={"id": self._next_slot_id, "date": date}))
            self._next_slot_id += 1
        if stored:
            self._slots[date] = sorted(stored, key=lambda s: (s.sort, s.id or 0))
        else:
            self._slots.pop(date, None)

    # ── Records ────────────────────────────────────────────────────────────────

    async def find_record_by_date(self, date: str) -> DailyRecord | None:
        for record in self._records.values():
            if record.date == date:
                return record.model_copy(update={"items": []})
        return None

    async def find_record_by_id(self, record_id: int) -> DailyRecord | None:
        record = self._records.get(record_id)
        return record.model_copy(update={"items": []}) if record else None

    async def create_record(self, date: str, now: str) -> DailyRecord:
        existing = await self.find_record_by_date(date)
        if existing is not None:
            return existing
        record = DailyRecord(id=self._next_record_id, date=date, created_at=now, updated_at=now)
        self._records[record.id] = record
        self._next_record_id += 1
        return record.model_copy()

    async def touch_record(self, record_id: int, updated_at: str) -> None:
        record = self._records.get(record_id)
        if record is not None:
            record.updated_at = updated_at

    async def get_records_by_date_range(self, start_date: str, end_date: str) -> list[DailyRecord]:
        rows = [
            r.model_copy(update={"items": []})
            for r in self._records.values()
            if start_date <= r.date <= end_date
        ]
        return sorted(rows, key=lambda r: (r.date, r.id))

    # ── Items ──────────────────────────────────────────────────────────────────

    async def get_items_by_record_id(self, record_id: int) -> list[RecordItem]:
        return await self.get_items_by_record_ids([record_id])

    async def get_items_by_record_ids(self, record_ids: list[int]) -> list[RecordItem]:
        wanted = set(record_ids)
        rows = [i.model_copy() for i in self._items.values() if i.record_id in wanted]
        return sorted(rows, key=lambda i: (i.record_id, i.sort, i.id))

    async def get_next_item_sort(self, record_id: int) -> int:
        sorts = [i.sort for i in self._items.values() if i.record_id == record_id]
        return max(sorts) + 1 if sorts else 0

    async def insert_item(self, item: RecordItem) -> RecordItem:
        created = item.model_copy(update={"id": self._next_item_id})
        self._next_item_id += 1
        self._items[created.id] = created
        return created.model_copy()

    async def find_item_by_id(self, item_id: int) -> RecordItem | None:
        item = self._items.get(item_id)
        return item.model_copy() if item else None

    async def update_item(self, item: RecordItem) -> None:
        if item.id in self._items:
            self._items[item.id] = item.model_copy()

    async def delete_item(self, item_id: int) -> None:
        self._items.pop(item_id, None)

    # ── Holiday calendar ───────────────────────────────────────────────────────

    async def get_holiday_days_by_date_range(
        self, start_date: str, end_date: str
    ) -> list[HolidayCalendarDay]:
        return [
            self._holidays[d].model_copy()
            for d in sorted(self._holidays)
            if start_date <= d <= end_date
        ]

    async def count_holiday_days_by_year(self, year: int) -> int:
        return sum(1 for d in self._holidays.values() if d.source_year == year)

    async def replace_holiday_days_by_year(
        self, year: int, days: list[HolidayCalendarDay]
    ) -> None:
        self.holiday_replace_calls += 1
        if self._holiday_failures:
            code = self._holiday_failures.pop(0)
            raise StorageError("holiday calendar write failed", storage_code=code)
        kept = {d: row for d, row in self._holidays.items() if row.source_year != year}
        for day in days:
            kept[day.date] = day.model_copy()
        self._holidays = kept
