"""Shared fixtures for courier-scheduler tests."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
import pytest_asyncio

from courier_scheduler.adapters.memory import (
    InMemoryKeyValueStore,
    ManualClock,
    RecordingDeliveryGateway,
)
from courier_scheduler.config import SchedulerConfig
from courier_scheduler.domain.results import DeliveryResult, DeliverySuccess
from courier_scheduler.persistence import TaskStore
from courier_scheduler.ports.delivery import IDeliveryGateway
from courier_scheduler.scheduling import DeliveryScheduler


class FlakyKeyValueStore(InMemoryKeyValueStore):
    """In-memory store whose reads / writes can be switched off."""

    def __init__(self, clock: Any = None) -> None:
        super().__init__(clock)
        self.fail_writes = False
        self.fail_listing = False

    async def set(self, key: str, value: str, ttl: int | None = None) -> None:
        if self.fail_writes:
            raise ConnectionError("store unavailable")
        await super().set(key, value, ttl)

    async def list_keys(self, prefix: str) -> list[str]:
        if self.fail_listing:
            raise ConnectionError("store unavailable")
        return await super().list_keys(prefix)


class BlockingDeliveryGateway(IDeliveryGateway):
    """Gateway that parks every send until the test releases it."""

    def __init__(self, result: DeliveryResult | None = None) -> None:
        self.result = result or DeliverySuccess(delivery_id="msg-1")
        self.started = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def send(self, destination: str, payload: Any) -> DeliveryResult:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.result


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def kv_store(clock: ManualClock) -> FlakyKeyValueStore:
    return FlakyKeyValueStore(clock)


@pytest.fixture
def task_store(kv_store: FlakyKeyValueStore) -> TaskStore:
    return TaskStore(kv_store)


@pytest.fixture
def gateway() -> RecordingDeliveryGateway:
    return RecordingDeliveryGateway()


@pytest.fixture
def config() -> SchedulerConfig:
    return SchedulerConfig()


@pytest_asyncio.fixture
async def make_scheduler(task_store, clock, config):
    """Factory for schedulers on virtual time; all are stopped after the test."""
    created: list[DeliveryScheduler] = []

    def factory(gateway: IDeliveryGateway, **kwargs: Any) -> DeliveryScheduler:
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("config", config)
        svc = DeliveryScheduler(kwargs.pop("store", task_store), gateway, **kwargs)
        created.append(svc)
        return svc

    yield factory
    for svc in created:
        await svc.stop()


@pytest_asyncio.fixture
async def scheduler(make_scheduler, gateway):
    """A started scheduler on virtual time; stopped after the test."""
    svc = make_scheduler(gateway)
    await svc.start()
    return svc


@pytest.fixture
def blocking_gateway() -> BlockingDeliveryGateway:
    return BlockingDeliveryGateway()
