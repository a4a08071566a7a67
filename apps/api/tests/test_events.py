from __future__ import annotations

import asyncio
import json

import pytest

from worktime.routes.work import work_event_stream
from worktime.services.events import WorkChangedEvent, WorkEventBus


def _parse_sse(chunk: str) -> tuple[str, dict]:
    event_line, data_line = chunk.strip().split("\n")
    assert event_line.startswith("event: ")
    assert data_line.startswith("data: ")
    return event_line[len("event: "):], json.loads(data_line[len("data: "):])


async def _connected() -> bool:
    return False


def test_event_payload_shape() -> None:
    event = WorkChangedEvent(action="create_item", source="api", date="2026-02-02")

    payload = event.to_dict()

    assert payload["type"] == "task_changed"
    assert payload["action"] == "create_item"
    assert payload["source"] == "api"
    assert payload["date"] == "2026-02-02"
    assert payload["at"]


@pytest.mark.asyncio
async def test_bus_fans_out_to_every_subscriber() -> None:
    bus = WorkEventBus()
    event = WorkChangedEvent(action="delete_item", source="mcp", date="2026-02-02")

    async with bus.subscribe() as first, bus.subscribe() as second:
        assert bus.subscriber_count == 2
        bus.publish(event)
        assert first.get_nowait() is event
        assert second.get_nowait() is event

    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_bus_drops_events_for_full_queues() -> None:
    bus = WorkEventBus(queue_size=1)

    async with bus.subscribe() as queue:
        bus.publish(WorkChangedEvent(action="create_item", source="api"))
        bus.publish(WorkChangedEvent(action="update_item", source="api"))

        assert queue.qsize() == 1
        assert queue.get_nowait().action == "create_item"


def test_publish_without_subscribers_is_a_no_op() -> None:
    WorkEventBus().publish(WorkChangedEvent(action="create_item", source="api"))


@pytest.mark.asyncio
async def test_stream_emits_ping_when_idle() -> None:
    bus = WorkEventBus()
    stream = work_event_stream(bus, is_disconnected=_connected, ping_seconds=0.01)

    chunk = await stream.__anext__()
    await stream.aclose()

    name, data = _parse_sse(chunk)
    assert name == "ping"
    assert "at" in data
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_stream_forwards_published_changes() -> None:
    bus = WorkEventBus()
    stream = work_event_stream(bus, is_disconnected=_connected, ping_seconds=5.0)

    pending = asyncio.create_task(stream.__anext__())
    for _ in range(100):
        if bus.subscriber_count == 1:
            break
        await asyncio.sleep(0.01)
    bus.publish(WorkChangedEvent(action="batch_create_items", source="mcp", date="2026-02-03"))

    chunk = await asyncio.wait_for(pending, timeout=1.0)
    await stream.aclose()

    name, data = _parse_sse(chunk)
    assert name == "work_changed"
    assert data["type"] == "task_changed"
    assert data["action"] == "batch_create_items"
    assert data["source"] == "mcp"
    assert data["date"] == "2026-02-03"


@pytest.mark.asyncio
async def test_stream_stops_when_client_disconnects() -> None:
    bus = WorkEventBus()

    async def _disconnected() -> bool:
        return True

    chunks = [c async for c in work_event_stream(bus, is_disconnected=_disconnected)]

    assert chunks == []
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_service_writes_reach_bus_subscribers(repo) -> None:
    from worktime.services.work_service import WorkService

    bus = WorkEventBus()
    service = WorkService(repo, events=bus)

    async with bus.subscribe() as queue:
        await service.create_items_batch({"days": [{"date": "2026-02-02", "items": ["a"]}]})
        event = queue.get_nowait()

    assert event.action == "batch_create_items"
    assert event.source == "api"
    assert event.date == "2026-02-02"
