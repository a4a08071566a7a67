from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

from worktime.core.errors import StorageError
from worktime.schemas.work import HolidayCalendarDay, RecordItem, WorkSlot
from worktime.services.supabase_repository import SupabaseWorkRepository
from worktime.services.supabase_rest import SupabaseRest, SupabaseRestError


def _record_row(record_id: int = 1, date: str = "2026-02-02") -> dict:
    return {
        "id": record_id,
        "work_date": date,
        "created_at": "2026-02-02T01:00:00+00:00",
        "updated_at": "2026-02-02T01:00:00+00:00",
    }


def _repo() -> tuple[SupabaseWorkRepository, AsyncMock]:
    rest = AsyncMock(spec=SupabaseRest)
    return SupabaseWorkRepository(rest), rest


@pytest.mark.asyncio
async def test_find_record_by_date_maps_row() -> None:
    repo, rest = _repo()
    rest.select.return_value = [_record_row()]

    record = await repo.find_record_by_date("2026-02-02")

    assert record is not None
    assert (record.id, record.date) == (1, "2026-02-02")
    rest.select.assert_awaited_once_with(
        "work_daily_record",
        params={"select": "*", "work_date": "eq.2026-02-02", "limit": 1},
    )


@pytest.mark.asyncio
async def test_create_record_rereads_after_unique_violation() -> None:
    repo, rest = _repo()
    rest.insert_one.side_effect = SupabaseRestError(
        status_code=409, code="23505", message="duplicate key value"
    )
    rest.select.return_value = [_record_row(record_id=9)]

    record = await repo.create_record("2026-02-02", "2026-02-02 01:00:00")

    assert record.id == 9


@pytest.mark.asyncio
async def test_create_record_other_errors_become_storage_errors() -> None:
    repo, rest = _repo()
    rest.insert_one.side_effect = SupabaseRestError(
        status_code=403, code="42501", message="permission denied", hint="check key"
    )

    with pytest.raises(StorageError) as exc:
        await repo.create_record("2026-02-02", "2026-02-02 01:00:00")

    assert exc.value.storage_code == "42501"
    assert exc.value.hint == "check key"
    rest.select.assert_not_awaited()


@pytest.mark.asyncio
async def test_transport_errors_become_storage_errors() -> None:
    repo, rest = _repo()
    rest.select.side_effect = httpx.ConnectError("refused")

    with pytest.raises(StorageError) as exc:
        await repo.get_slots_by_date("2026-02-02")

    assert exc.value.storage_code is None
    assert exc.value.status_code == 503


@pytest.mark.asyncio
async def test_items_lookup_by_many_records() -> None:
    repo, rest = _repo()
    assert await repo.get_items_by_record_ids([]) == []
    rest.select.assert_not_awaited()

    rest.select.return_value = [
        {
            "id": 3,
            "record_id": 1,
            "item_type": 1,
            "status": 1,
            "text_value": None,
            "ref_uid": 1001,
            "progress_start": 0,
            "progress_end": 40,
            "sort": 0,
        }
    ]
    items = await repo.get_items_by_record_ids([1, 2])

    assert items[0].ref_uid == 1001
    assert rest.select.await_args.kwargs["params"]["record_id"] == "in.(1,2)"


@pytest.mark.asyncio
async def test_next_item_sort() -> None:
    repo, rest = _repo()
    rest.select.return_value = []
    assert await repo.get_next_item_sort(1) == 0

    rest.select.return_value = [{"sort": 4}]
    assert await repo.get_next_item_sort(1) == 5
    assert rest.select.await_args.kwargs["params"]["order"] == "sort.desc"


@pytest.mark.asyncio
async def test_insert_item_omits_id() -> None:
    repo, rest = _repo()
    rest.insert_one.return_value = {
        "id": 11,
        "record_id": 1,
        "item_type": 0,
        "status": 2,
        "text_value": "a",
        "sort": 0,
    }

    created = await repo.insert_item(RecordItem(record_id=1, item_type=0, status=2, text_value="a"))

    assert created.id == 11
    assert "id" not in rest.insert_one.await_args.kwargs["row"]


@pytest.mark.asyncio
async def test_replace_slots_uses_atomic_rpc() -> None:
    repo, rest = _repo()
    rest.rpc.return_value = []

    await repo.replace_slots(
        "2026-02-02",
        [WorkSlot(date="2026-02-02", start_time="08:00:00", end_time="10:00:00", sort=0)],
    )

    rest.rpc.assert_awaited_once()
    args = rest.rpc.await_args
    assert args.args == ("replace_work_slots",)
    assert args.kwargs["params"]["p_work_date"] == "2026-02-02"
    assert args.kwargs["params"]["p_slots"][0]["start_time"] == "08:00:00"


@pytest.mark.asyncio
async def test_holiday_replace_reports_lock_contention() -> None:
    repo, rest = _repo()
    rest.rpc.side_effect = SupabaseRestError(
        status_code=500, code="55P03", message="canceling statement due to lock timeout"
    )
    day = HolidayCalendarDay(
        date="2026-02-15",
        type="statutory_holiday",
        label="春节",
        name="春节（法定节假日）",
        source_year=2026,
    )

    with pytest.raises(StorageError) as exc:
        await repo.replace_holiday_days_by_year(2026, [day])

    assert exc.value.lock_contention is True
    params = rest.rpc.await_args.kwargs["params"]
    assert params["p_source_year"] == 2026
    assert params["p_days"][0]["day_label"] == "春节"


@pytest.mark.asyncio
async def test_count_holiday_days_by_year() -> None:
    repo, rest = _repo()
    rest.select.return_value = [{"id": 1}, {"id": 2}]

    assert await repo.count_holiday_days_by_year(2026) == 2
    assert rest.select.await_args.kwargs["params"]["source_year"] == "eq.2026"
