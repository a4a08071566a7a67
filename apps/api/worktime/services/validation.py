from __future__ import annotations

from typing import Any

from worktime.core.errors import WorkValidationError
from worktime.schemas.work import ItemStatus, ItemType, RecordItem, TimeSlotInput
from worktime.services.time_range import normalize_time, time_to_seconds

TEXT_STATUSES = frozenset({ItemStatus.PENDING, ItemStatus.DONE})
REF_STATUSES = frozenset(ItemStatus)


def _to_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise WorkValidationError(f"{field} 必须为整数")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise WorkValidationError(f"{field} 必须为整数")


def parse_required_int(value: Any, field: str) -> int:
    if value is None or value == "":
        raise WorkValidationError(f"{field} 必须有值")
    return _to_int(value, field)


def parse_optional_int(value: Any, field: str, fallback: int | None = None) -> int | None:
    if value is None or value == "":
        return fallback
    return _to_int(value, field)


def validate_item(item: RecordItem) -> None:
    match item.item_type:
        case ItemType.TEXT:
            if item.status not in TEXT_STATUSES:
                raise WorkValidationError("TEXT 状态只能为 0 或 2")
            if not isinstance(item.text_value, str) or not item.text_value.strip():
                raise WorkValidationError("TEXT text_value 必须有值")
            if (
                item.ref_uid is not None
                or item.progress_start is not None
                or item.progress_end is not None
            ):
                raise WorkValidationError("TEXT 不允许 ref 字段")
        case ItemType.REF:
            if item.status not in REF_STATUSES:
                raise WorkValidationError("REF 状态只能为 0/1/2")
            if item.ref_uid is None:
                raise WorkValidationError("REF ref_uid 必须有值")
            if item.text_value is not None:
                raise WorkValidationError("REF 不允许 text_value")
            start = parse_required_int(item.progress_start, "progress_start")
            end = parse_required_int(item.progress_end, "progress_end")
            if not (0 <= start <= 99):
                raise WorkValidationError("progress_start 必须在 0-99")
            if not (1 <= end <= 100):
                raise WorkValidationError("progress_end 必须在 1-100")
            if start >= end:
                raise WorkValidationError("progress_start 必须小于 progress_end")
        case _:
            raise WorkValidationError("item_type 必须为 0 或 1")


def validate_slot(raw: TimeSlotInput) -> TimeSlotInput:
    start = normalize_time(raw.start_time, "start_time")
    end = normalize_time(raw.end_time, "end_time")
    if time_to_seconds(start) >= time_to_seconds(end):
        raise WorkValidationError("start_time 必须早于 end_time")
    return raw.model_copy(update={"start_time": start, "end_time": end})
