from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from worktime.schemas.work import ChangeAction, ChangeSource

logger = logging.getLogger(__name__)

_SUBSCRIBER_QUEUE_SIZE = 100


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class WorkChangedEvent:
    action: ChangeAction
    source: ChangeSource
    date: str | None = None
    at: str = field(default_factory=_utc_now_iso)
    type: str = "task_changed"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ChangeNotifier(Protocol):
    def publish(self, event: WorkChangedEvent) -> None: ...


class WorkEventBus:
    """In-process fan-out of change events to SSE subscribers."""

    def __init__(self, queue_size: int = _SUBSCRIBER_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscribers: set[asyncio.Queue[WorkChangedEvent]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: WorkChangedEvent) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Dropping %s event for a slow subscriber (queue full)", event.action
                )

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[asyncio.Queue[WorkChangedEvent]]:
        queue: asyncio.Queue[WorkChangedEvent] = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        try:
            yield queue
        finally:
            self._subscribers.discard(queue)
