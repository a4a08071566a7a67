from __future__ import annotations

from dataclasses import dataclass
from datetime import date as Date
from datetime import timedelta

from worktime.schemas.work import HolidayCalendarDay


@dataclass(frozen=True)
class HolidayRange:
    name: str
    start: str
    end: str
    first_day_label: str | None = None


@dataclass(frozen=True)
class MakeupWorkday:
    date: str
    name: str


@dataclass(frozen=True)
class HolidaySchedule:
    holidays: tuple[HolidayRange, ...]
    makeup_workdays: tuple[MakeupWorkday, ...]


# Published State Council schedules. Add a year here once it is announced.
HOLIDAY_SCHEDULE: dict[int, HolidaySchedule] = {
    2025: HolidaySchedule(
        holidays=(
            HolidayRange("元旦", "2025-01-01", "2025-01-01"),
            HolidayRange("春节", "2025-01-28", "2025-02-04"),
            HolidayRange("清明节", "2025-04-04", "2025-04-06", "清明"),
            HolidayRange("劳动节", "2025-05-01", "2025-05-05", "劳动"),
            HolidayRange("端午节", "2025-05-31", "2025-06-02", "端午"),
            HolidayRange("国庆节、中秋节", "2025-10-01", "2025-10-08", "国庆"),
        ),
        makeup_workdays=(
            MakeupWorkday("2025-01-26", "春节前补班"),
            MakeupWorkday("2025-02-08", "春节后补班"),
            MakeupWorkday("2025-04-27", "劳动节前补班"),
            MakeupWorkday("2025-09-28", "国庆节、中秋节前补班"),
            MakeupWorkday("2025-10-11", "国庆节、中秋节后补班"),
        ),
    ),
    2026: HolidaySchedule(
        holidays=(
            HolidayRange("元旦", "2026-01-01", "2026-01-03"),
            HolidayRange("春节", "2026-02-15", "2026-02-23"),
            HolidayRange("清明节", "2026-04-04", "2026-04-06", "清明"),
            HolidayRange("劳动节", "2026-05-01", "2026-05-05", "劳动"),
            HolidayRange("端午节", "2026-06-19", "2026-06-21", "端午"),
            HolidayRange("中秋节", "2026-09-25", "2026-09-27", "中秋"),
            HolidayRange("国庆节", "2026-10-01", "2026-10-07", "国庆"),
        ),
        makeup_workdays=(
            MakeupWorkday("2026-01-04", "元旦后补班"),
            MakeupWorkday("2026-02-14", "春节前补班"),
            MakeupWorkday("2026-02-28", "春节后补班"),
            MakeupWorkday("2026-05-09", "劳动节后补班"),
            MakeupWorkday("2026-09-20", "国庆节前补班"),
            MakeupWorkday("2026-10-10", "国庆节后补班"),
        ),
    ),
}

REST_DAY_LABEL = "休"
MAKEUP_DAY_LABEL = "班"


def _iter_dates(start: str, end: str):
    cursor = Date.fromisoformat(start)
    last = Date.fromisoformat(end)
    while cursor <= last:
        yield cursor.isoformat()
        cursor += timedelta(days=1)


def has_holiday_schedule_for_year(year: int) -> bool:
    return year in HOLIDAY_SCHEDULE


def build_holiday_days_for_year(year: int) -> list[HolidayCalendarDay]:
    schedule = HOLIDAY_SCHEDULE.get(year)
    if schedule is None:
        return []

    days: list[HolidayCalendarDay] = []
    for holiday in schedule.holidays:
        for index, day in enumerate(_iter_dates(holiday.start, holiday.end)):
            label = (holiday.first_day_label or holiday.name) if index == 0 else REST_DAY_LABEL
            days.append(
                HolidayCalendarDay(
                    date=day,
                    type="statutory_holiday",
                    label=label,
                    name=f"{holiday.name}（法定节假日）",
                    source_year=year,
                )
            )
    for workday in schedule.makeup_workdays:
        days.append(
            HolidayCalendarDay(
                date=workday.date,
                type="makeup_workday",
                label=MAKEUP_DAY_LABEL,
                name=f"{workday.name}（调休补班）",
                source_year=year,
            )
        )

    return sorted(days, key=lambda d: d.date)
