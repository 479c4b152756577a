# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("COUNTER_STORE_BACKEND", "memory")
os.environ.setdefault("IDLENESS_STRATEGY", "poll")
os.environ.setdefault("RESET_SECRET", "test-reset-secret")
os.environ.setdefault("LOG_JSON", "false")

from idle_counter.core.settings import Settings, settings
from idle_counter.db.session import Base
from idle_counter.main import app as fastapi_app
from idle_counter.schemas.counter import CounterEvent
from idle_counter.services import runtime as runtime_module
from idle_counter.services.coordinator import ResetCoordinator
from idle_counter.services.counter_store import MemoryCounterStore, SqlCounterStore
from idle_counter.services.mutation import MutationService
from idle_counter.services.notifier import ChangeNotifier
from idle_counter.services.relay import EventCallback, EventRelay
from idle_counter.services.runtime import CounterRuntime, build_counter_runtime

TEST_DB_URL = "sqlite://"
IDLE_WINDOW = timedelta(minutes=20)
START = datetime(2026, 1, 5, 9, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def sql_store(session_factory: sessionmaker[Session], clock: FakeClock) -> SqlCounterStore:
    return SqlCounterStore(session_factory, clock=clock)


@pytest.fixture()
def store(clock: FakeClock) -> MemoryCounterStore:
    return MemoryCounterStore(clock=clock)


@pytest.fixture()
def notifier() -> ChangeNotifier:
    return ChangeNotifier(queue_size=16, reorder_window_seconds=0.05)


class LoopbackRelay(EventRelay):
    """Relay that hands every sent event to each started relay on the same hub."""

    def __init__(self, hub: list[LoopbackRelay]) -> None:
        self._hub = hub
        self._callback: EventCallback | None = None

    async def start(self, on_event: EventCallback) -> None:
        self._callback = on_event
        self._hub.append(self)

    async def stop(self) -> None:
        self._callback = None
        if self in self._hub:
            self._hub.remove(self)

    async def send(self, event: CounterEvent) -> None:
        for relay in list(self._hub):
            if relay._callback is not None:
                await relay._callback(event)


@pytest.fixture()
def relay_hub() -> list[LoopbackRelay]:
    return []


@pytest.fixture()
def make_relay(relay_hub: list[LoopbackRelay]) -> Callable[[], LoopbackRelay]:
    """Factory of relays wired to one shared in-memory channel."""
    return lambda: LoopbackRelay(relay_hub)


@pytest.fixture()
def coordinator(
    store: MemoryCounterStore, notifier: ChangeNotifier, clock: FakeClock
) -> ResetCoordinator:
    return ResetCoordinator(
        store, notifier, idle_window=IDLE_WINDOW, backoff_seconds=0.0, clock=clock
    )


@pytest.fixture()
def mutations(
    store: MemoryCounterStore, notifier: ChangeNotifier, clock: FakeClock
) -> MutationService:
    return MutationService(store, notifier, backoff_seconds=0.0, clock=clock)


@pytest.fixture()
def test_settings() -> Settings:
    """In-process settings: memory store, memory lease, no retry delays."""
    return settings.model_copy(
        update={
            "counter_store_backend": "memory",
            "idleness_strategy": "lease",
            "lease_backend": "memory",
            "counter_idle_window_seconds": int(IDLE_WINDOW.total_seconds()),
            "mutation_retry_backoff_seconds": 0.0,
        }
    )


@pytest.fixture()
def runtime(
    test_settings: Settings, clock: FakeClock, monkeypatch: pytest.MonkeyPatch
) -> CounterRuntime:
    """A fresh runtime installed as the process-wide singleton."""
    counter_runtime = build_counter_runtime(test_settings, clock=clock)
    monkeypatch.setattr(runtime_module._CounterRuntimeSingleton, "_instance", counter_runtime)
    return counter_runtime


@pytest.fixture()
def app(runtime: CounterRuntime) -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def trigger_headers() -> dict[str, str]:
    """Headers carrying the shared reset secret."""
    return {"X-Reset-Secret": settings.reset_secret or ""}
