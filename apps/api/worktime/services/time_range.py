from __future__ import annotations

import calendar
import re
from datetime import date as Date
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

from worktime.core.errors import WorkValidationError

DATE_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
MONTH_RE = re.compile(r"^[0-9]{4}-[0-9]{2}$")
TIME_RE = re.compile(r"^([0-9]{1,2}):([0-9]{2})(?::([0-9]{2}))?$")

_WEEKDAY_LABELS = ("周一", "周二", "周三", "周四", "周五", "周六", "周日")


def normalize_time(value: object, field: str) -> str:
    if not isinstance(value, str):
        raise WorkValidationError(f"{field} 格式必须为 HH:mm 或 HH:mm:ss")
    match = TIME_RE.fullmatch(value.strip())
    if match is None:
        raise WorkValidationError(f"{field} 格式必须为 HH:mm 或 HH:mm:ss")
    h = int(match.group(1))
    m = int(match.group(2))
    s = int(match.group(3) or "0")
    if h > 23 or m > 59 or s > 59:
        raise WorkValidationError(f"{field} 必须为合法时间")
    return f"{h:02d}:{m:02d}:{s:02d}"


def time_to_seconds(value: str) -> int:
    h_s, m_s, *rest = value.split(":")
    s_s = rest[0] if rest else "0"
    return int(h_s) * 3600 + int(m_s) * 60 + int(s_s)


def hours_between(start: str, end: str) -> float:
    start_seconds = time_to_seconds(start)
    end_seconds = time_to_seconds(end)
    if end_seconds <= start_seconds:
        return 0.0
    return (end_seconds - start_seconds) / 3600


def round_hours(value: float) -> float:
    # Half-up on the decimal text so 0.125 -> 0.13, not banker's rounding.
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def format_hours(value: float, unit: str = "h") -> str:
    rounded = round_hours(value)
    if rounded == int(rounded):
        return f"{int(rounded)}{unit}"
    return f"{rounded:.2f}".rstrip("0") + unit


def ensure_date(value: object, message: str = "日期格式必须为 YYYY-MM-DD") -> Date:
    if not isinstance(value, str) or not DATE_RE.fullmatch(value):
        raise WorkValidationError(message)
    try:
        return Date.fromisoformat(value)
    except ValueError as exc:
        raise WorkValidationError(message) from exc


def month_range(month: object) -> tuple[str, str]:
    if not isinstance(month, str) or not MONTH_RE.fullmatch(month):
        raise WorkValidationError("月份格式必须为 YYYY-MM")
    year = int(month[:4])
    month_index = int(month[5:])
    if not (1 <= month_index <= 12):
        raise WorkValidationError("月份格式必须为 YYYY-MM")
    last_day = calendar.monthrange(year, month_index)[1]
    return f"{month}-01", f"{month}-{last_day:02d}"


def week_start(value: Date | str) -> Date:
    day = Date.fromisoformat(value) if isinstance(value, str) else value
    return day - timedelta(days=day.weekday())


def weekday_label(value: str) -> str:
    return _WEEKDAY_LABELS[Date.fromisoformat(value).weekday()]


def month_day_short(value: str) -> str:
    day = Date.fromisoformat(value)
    return f"{day.month}/{day.day}"
