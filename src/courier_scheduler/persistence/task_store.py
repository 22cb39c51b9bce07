"""TaskStore — durable representation of tasks and recurring schedules."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from courier_scheduler.domain.recurring import RecurringSchedule
from courier_scheduler.domain.task import ScheduledTask, TaskStatus
from courier_scheduler.exceptions import PersistenceError

if TYPE_CHECKING:
    from courier_scheduler.ports.store import IKeyValueStore

logger = logging.getLogger("courier_scheduler.persistence")

TASK_PREFIX = "scheduled:"
SCHEDULE_PREFIX = "recurring:"

_M = TypeVar("_M", bound=BaseModel)


def task_key(task_id: str) -> str:
    return f"{TASK_PREFIX}{task_id}"


def schedule_key(schedule_id: str) -> str:
    return f"{SCHEDULE_PREFIX}{schedule_id}"


class TaskStore:
    """Reads and writes scheduler records through an :class:`IKeyValueStore`.

    Key layout::

        scheduled:<task_id>      → ScheduledTask (JSON)
        recurring:<schedule_id>  → RecurringSchedule (JSON)

    Every store failure is re-raised as :class:`PersistenceError`.
    """

    def __init__(self, store: IKeyValueStore) -> None:
        self._store = store

    @property
    def backend(self) -> IKeyValueStore:
        return self._store

    # -- scheduled tasks --------------------------------------------------

    async def save_task(self, task: ScheduledTask) -> None:
        await self._write(task_key(task.id), task)

    async def get_task(self, task_id: str) -> ScheduledTask | None:
        return await self._read(task_key(task_id), ScheduledTask)

    async def delete_task(self, task_id: str) -> None:
        key = task_key(task_id)
        try:
            await self._store.delete(key)
        except Exception as e:
            raise PersistenceError(f"Failed to delete {key}: {e}") from e

    async def list_tasks(self, status: TaskStatus | None = None) -> list[ScheduledTask]:
        tasks = await self._read_all(TASK_PREFIX, ScheduledTask)
        if status is not None:
            tasks = [t for t in tasks if t.status is status]
        return sorted(tasks, key=lambda t: t.scheduled_at)

    # -- recurring schedules ----------------------------------------------

    async def save_schedule(self, schedule: RecurringSchedule) -> None:
        await self._write(schedule_key(schedule.id), schedule)

    async def get_schedule(self, schedule_id: str) -> RecurringSchedule | None:
        return await self._read(schedule_key(schedule_id), RecurringSchedule)

    async def list_schedules(self, active_only: bool = False) -> list[RecurringSchedule]:
        schedules = await self._read_all(SCHEDULE_PREFIX, RecurringSchedule)
        if active_only:
            schedules = [s for s in schedules if s.is_active]
        return sorted(schedules, key=lambda s: s.next_run)

    # -- internals --------------------------------------------------------

    async def _write(self, key: str, record: BaseModel) -> None:
        try:
            raw = record.model_dump_json()
        except Exception as e:
            raise PersistenceError(f"Cannot serialize {key}: {e}") from e
        try:
            await self._store.set(key, raw)
        except Exception as e:
            raise PersistenceError(f"Failed to write {key}: {e}") from e

    async def _read(self, key: str, model: type[_M]) -> _M | None:
        try:
            raw = await self._store.get(key)
        except Exception as e:
            raise PersistenceError(f"Failed to read {key}: {e}") from e
        if raw is None:
            return None
        try:
            return model.model_validate_json(raw)
        except PydanticValidationError as e:
            raise PersistenceError(f"Corrupt record at {key}: {e}") from e

    async def _read_all(self, prefix: str, model: type[_M]) -> list[_M]:
        try:
            keys = await self._store.list_keys(prefix)
        except Exception as e:
            raise PersistenceError(f"Failed to list keys under {prefix!r}: {e}") from e

        records: list[_M] = []
        for key in keys:
            try:
                record = await self._read(key, model)
            except PersistenceError as e:
                if isinstance(e.__cause__, PydanticValidationError):
                    logger.warning("Skipping corrupt record %s", key)
                    continue
                raise
            if record is not None:
                records.append(record)
        return records
