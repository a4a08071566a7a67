from __future__ import annotations

import pytest

from worktime.core.errors import WorkValidationError
from worktime.schemas.work import RecordItem, TimeSlotInput
from worktime.services.validation import (
    parse_optional_int,
    parse_required_int,
    validate_item,
    validate_slot,
)


def _text(**overrides) -> RecordItem:
    fields = {"record_id": 1, "item_type": 0, "status": 0, "text_value": "write report"}
    fields.update(overrides)
    return RecordItem(**fields)


def _ref(**overrides) -> RecordItem:
    fields = {
        "record_id": 1,
        "item_type": 1,
        "status": 1,
        "ref_uid": 1001,
        "progress_start": 10,
        "progress_end": 40,
    }
    fields.update(overrides)
    return RecordItem(**fields)


def _message(item: RecordItem) -> str:
    with pytest.raises(WorkValidationError) as exc:
        validate_item(item)
    return exc.value.message


def test_valid_items_pass() -> None:
    validate_item(_text())
    validate_item(_text(status=2))
    validate_item(_ref(status=0))
    validate_item(_ref(progress_start=0, progress_end=100))


def test_text_contract_violations() -> None:
    assert _message(_text(status=1)) == "TEXT 状态只能为 0 或 2"
    assert _message(_text(text_value="   ")) == "TEXT text_value 必须有值"
    assert _message(_text(text_value=None)) == "TEXT text_value 必须有值"
    assert _message(_text(ref_uid=7)) == "TEXT 不允许 ref 字段"
    assert _message(_text(progress_end=50)) == "TEXT 不允许 ref 字段"


def test_ref_contract_violations() -> None:
    assert _message(_ref(status=3)) == "REF 状态只能为 0/1/2"
    assert _message(_ref(ref_uid=None)) == "REF ref_uid 必须有值"
    assert _message(_ref(text_value="")) == "REF 不允许 text_value"
    assert _message(_ref(progress_start=None)) == "progress_start 必须有值"
    assert _message(_ref(progress_start=100, progress_end=100)) == "progress_start 必须在 0-99"
    assert _message(_ref(progress_start=0, progress_end=0)) == "progress_end 必须在 1-100"
    assert _message(_ref(progress_start=0, progress_end=101)) == "progress_end 必须在 1-100"
    assert _message(_ref(progress_start=40, progress_end=40)) == "progress_start 必须小于 progress_end"


def test_unknown_item_type() -> None:
    assert _message(_text(item_type=2)) == "item_type 必须为 0 或 1"


def test_validate_slot_normalizes_and_orders() -> None:
    slot = validate_slot(TimeSlotInput(start_time="8:00", end_time="10:00", sort=3))
    assert (slot.start_time, slot.end_time, slot.sort) == ("08:00:00", "10:00:00", 3)

    with pytest.raises(WorkValidationError) as exc:
        validate_slot(TimeSlotInput(start_time="12:00", end_time="11:00"))
    assert exc.value.message == "start_time 必须早于 end_time"

    with pytest.raises(WorkValidationError) as exc:
        validate_slot(TimeSlotInput(start_time="10:00", end_time="10:00:00"))
    assert exc.value.message == "start_time 必须早于 end_time"


def test_int_parsing() -> None:
    assert parse_required_int("12", "sort") == 12
    assert parse_required_int(3.0, "sort") == 3
    assert parse_optional_int(None, "sort", 5) == 5
    assert parse_optional_int("", "sort") is None

    with pytest.raises(WorkValidationError) as exc:
        parse_required_int(None, "status")
    assert exc.value.message == "status 必须有值"

    for bad in ("abc", 1.5, True):
        with pytest.raises(WorkValidationError) as exc:
            parse_optional_int(bad, "sort")
        assert exc.value.message == "sort 必须为整数"
