from __future__ import annotations

from typing import Protocol

from worktime.schemas.work import DailyRecord, HolidayCalendarDay, RecordItem, WorkSlot


class WorkRepository(Protocol):
    """Storage capability the work service depends on.

    Dates and times travel as plain strings (YYYY-MM-DD, HH:MM:SS).
    replace_slots and replace_holiday_days_by_year must be atomic:
    readers never observe a half-cleared set.
    """

    async def get_slots_by_date(self, date: str) -> list[WorkSlot]: ...

    async def get_slots_by_date_range(self, start_date: str, end_date: str) -> list[WorkSlot]: ...

    async def replace_slots(self, date: str, slots: list[WorkSlot]) -> None: ...

    async def find_record_by_date(self, date: str) -> DailyRecord | None: ...

    async def find_record_by_id(self, record_id: int) -> DailyRecord | None: ...

    async def create_record(self, date: str, now: str) -> DailyRecord: ...

    async def touch_record(self, record_id: int, updated_at: str) -> None: ...

    async def get_records_by_date_range(self, start_date: str, end_date: str) -> list[DailyRecord]: ...

    async def get_items_by_record_id(self, record_id: int) -> list[RecordItem]: ...

    async def get_items_by_record_ids(self, record_ids: list[int]) -> list[RecordItem]: ...

    async def get_next_item_sort(self, record_id: int) -> int: ...

    async def insert_item(self, item: RecordItem) -> RecordItem: ...

    async def find_item_by_id(self, item_id: int) -> RecordItem | None: ...

    async def update_item(self, item: RecordItem) -> None: ...

    async def delete_item(self, item_id: int) -> None: ...

    async def get_holiday_days_by_date_range(
        self, start_date: str, end_date: str
    ) -> list[HolidayCalendarDay]: ...

    async def count_holiday_days_by_year(self, year: int) -> int: ...

    async def replace_holiday_days_by_year(
        self, year: int, days: list[HolidayCalendarDay]
    ) -> None: ...
