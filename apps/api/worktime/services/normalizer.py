from __future__ import annotations

from typing import Any

from worktime.schemas.work import NormalizedWorkDay, NormalizedWorkList
from worktime.services.time_range import DATE_RE

NORMALIZE_SCHEMA_NAME = "work_list"

NORMALIZE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["days"],
    "properties": {
        "days": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["date", "items"],
                "properties": {
                    "date": {"type": "string", "pattern": r"^\d{4}-\d{2}-\d{2}$"},
                    "items": {
                        "type": "array",
                        "items": {"type": "string", "minLength": 1},
                    },
                },
            },
        }
    },
}


def build_normalize_system_prompt(*, today: str, selected_date: str, timezone: str) -> str:
    lines = [
        "你是一个结构化信息抽取器。",
        "任务：从用户的自然语言描述中，解析出特定时间区间内的每日工作清单。",
        "输出必须严格符合给定 JSON schema，不要输出多余文本。",
        "只允许输出文本列表，items 为字符串数组。",
        "日期格式：YYYY-MM-DD。",
        f"今日日期（以时区 {timezone} 计算）：{today}。",
        f"当前选择日期（本次默认解析单日范围）：{selected_date}。",
        "只使用服务端默认的日期范围，不要在输出中包含范围字段。",
        "默认范围为单日（服务端提供的日期），必须覆盖范围内每一天（没有事项也要给空数组）。",
        "如果存在相对时间（如'下周三'），以提供的今天/时区为基准。",
        "保持条目原始顺序；文本中不要包含任何时间信息。",
        "如果自然语言中出现进度百分比或区间，只保留结束进度并以百分比追加到文本末尾，例如“完成 REF 1001 40%”。",
        "只有当自然语言明确包含进度时才追加百分比。",
    ]
    return "\n".join(lines)


def build_normalize_user_prompt(text: str) -> str:
    return f"原始输入：\n{text.strip()}"


def _clean_items(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [s.strip() for s in raw if isinstance(s, str) and s.strip()]


def collapse_to_selected_date(payload: dict[str, Any], selected_date: str) -> NormalizedWorkList:
    """Keep only what the model said about `selected_date`.

    Entries for other dates are discarded. Several entries for the selected
    date are concatenated in order. The result always holds exactly one day.
    """
    days = payload.get("days")
    items: list[str] = []
    if isinstance(days, list):
        for day in days:
            if isinstance(day, dict) and day.get("date") == selected_date:
                items.extend(_clean_items(day.get("items")))
    return NormalizedWorkList(days=[NormalizedWorkDay(date=selected_date, items=items)])


def normalize_days_payload(days: list[NormalizedWorkDay]) -> NormalizedWorkList:
    """Merge a prepared `{date, items}` list by date.

    Items are trimmed and blanks dropped; dates that end up empty or do not
    look like YYYY-MM-DD are dropped; output is sorted by date. Applying it
    to its own output returns the same value.
    """
    bucket: dict[str, list[str]] = {}
    for day in days:
        if not DATE_RE.fullmatch(day.date):
            continue
        items = _clean_items(day.items)
        if not items:
            continue
        bucket.setdefault(day.date, []).extend(items)

    return NormalizedWorkList(
        days=[NormalizedWorkDay(date=d, items=bucket[d]) for d in sorted(bucket)]
    )


def count_items(payload: NormalizedWorkList) -> int:
    return sum(len(day.items) for day in payload.days)
