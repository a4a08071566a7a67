from __future__ import annotations

import os
from datetime import date
from typing import Any

import pytest
from fastapi.testclient import TestClient

# Ensure CI can import settings without a local .env file.
_ENV_DEFAULTS = {
    "APP_ENV": "test",
    "FRONTEND_URL": "http://localhost:5173",
    "WORK_STORAGE": "memory",
    "AI_URL": "https://ai.example.test/v1/chat/completions",
    "AI_KEY": "test-ai-key",
    "AI_MODEL": "gpt-4o-mini",
    "WORK_TIMEZONE": "Asia/Shanghai",
}
for _key, _value in _ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _value)

import worktime.core.rate_limit as rate_limit
from worktime.core.config import DefaultSlotConfig
from worktime.core.dependencies import get_work_service
from worktime.main import app
from worktime.services.events import WorkChangedEvent
from worktime.services.memory_repository import InMemoryWorkRepository
from worktime.services.work_service import WorkService

TODAY = date(2026, 2, 2)


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[WorkChangedEvent] = []

    def publish(self, event: WorkChangedEvent) -> None:
        self.events.append(event)

    @property
    def actions(self) -> list[str]:
        return [e.action for e in self.events]


class FakeLLM:
    def __init__(self, payload: dict[str, Any] | None = None) -> None:
        self.payload = payload if payload is not None else {"days": []}
        self.error: Exception | None = None
        self.calls: list[dict[str, Any]] = []

    async def complete_json(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.payload


@pytest.fixture(autouse=True)
def reset_test_state() -> None:
    app.dependency_overrides.clear()
    rate_limit._counters.clear()  # type: ignore[attr-defined]


@pytest.fixture
def repo() -> InMemoryWorkRepository:
    return InMemoryWorkRepository()


@pytest.fixture
def events() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def service(repo: InMemoryWorkRepository, events: EventRecorder, fake_llm: FakeLLM) -> WorkService:
    return WorkService(
        repo,
        events=events,
        llm=fake_llm,
        default_slots=[
            DefaultSlotConfig(start="09:30", end="12:00"),
            DefaultSlotConfig(start="13:30", end="19:00"),
        ],
        timezone_name="Asia/Shanghai",
        holiday_sync_attempts=3,
        holiday_sync_backoff_seconds=0,
        today=lambda: TODAY,
    )


@pytest.fixture
def client(service: WorkService) -> TestClient:
    app.dependency_overrides[get_work_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
