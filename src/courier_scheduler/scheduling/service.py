"""DeliveryScheduler — owns task lifecycle, timers, retries and reconciliation."""

from __future__ import annotations

import asyncio
import builtins
import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from courier_scheduler.adapters.clock import SystemClock
from courier_scheduler.adapters.memory.admission import AllowAllAdmissionControl
from courier_scheduler.adapters.task_registry import TimerRegistry
from courier_scheduler.adapters.timers import AsyncioTimerService
from courier_scheduler.config import SchedulerConfig
from courier_scheduler.domain.recurring import RecurringSchedule
from courier_scheduler.domain.results import (
    AdmissionDecision,
    AdmissionDenied,
    DeliveryFailure,
    DeliveryResult,
    DeliverySuccess,
    ScheduleStats,
)
from courier_scheduler.domain.task import UNSET, ScheduledTask, TaskStatus, ensure_utc
from courier_scheduler.exceptions import (
    InvalidPatternError,
    InvalidScheduleError,
    PersistenceError,
    SchedulerStartupError,
    ValidationError,
)
from courier_scheduler.patterns import PatternResolver
from courier_scheduler.retry import SteppedBackoffPolicy

from .worker import ReconciliationWorker

if TYPE_CHECKING:
    from courier_scheduler.persistence.task_store import TaskStore
    from courier_scheduler.ports.admission import IAdmissionControl
    from courier_scheduler.ports.clock import IClock
    from courier_scheduler.ports.delivery import IDeliveryGateway

logger = logging.getLogger("courier_scheduler.scheduling")

# Max fire/await rounds per run_due() call.
_MAX_RUN_DUE_ROUNDS = 100

# Lead time for a delivery created once a watched condition holds.
_CONDITION_DELIVERY_DELAY = timedelta(seconds=1)


class LifecycleState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class ScheduleRequest:
    """One entry of :meth:`DeliveryScheduler.schedule_bulk`."""

    destination: str
    payload: Any
    at: datetime
    max_retries: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class _ConditionWatch:
    """A delivery waiting for a caller-supplied predicate; held in memory only."""

    id: str
    destination: str
    payload: Any
    condition: Callable[[], Awaitable[bool]]
    check_interval: timedelta
    max_retries: int | None
    metadata: dict[str, Any]


def _task_key(task_id: str) -> str:
    return f"task:{task_id}"


def _schedule_key(schedule_id: str) -> str:
    return f"recurring:{schedule_id}"


def _watch_key(watch_id: str) -> str:
    return f"when:{watch_id}"


class _KeyedLocks:
    """One ``asyncio.Lock`` per entity key, dropped once nothing holds or awaits it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]


class DeliveryScheduler:
    """
    Scheduling core: accepts deliveries, arms timers and drives attempt cycles.

    All timer arming/disarming and state transitions happen inside this
    instance. A per-entity ``asyncio.Lock`` serialises the status re-check
    of an attempt cycle against ``cancel``/``reschedule``; cycles for
    different ids run concurrently up to ``max_concurrent_attempts``.

    Usage::

        scheduler = DeliveryScheduler(
            TaskStore(RedisKeyValueStore(redis)),
            gateway=WebhookGateway(),
        )
        await scheduler.start()
        task_id = await scheduler.schedule("https://hook", {"hi": 1}, at)
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        store: TaskStore,
        gateway: IDeliveryGateway,
        *,
        admission: IAdmissionControl | None = None,
        clock: IClock | None = None,
        config: SchedulerConfig | None = None,
        retry_policy: SteppedBackoffPolicy | None = None,
        resolver: PatternResolver | None = None,
    ) -> None:
        self._config = config or SchedulerConfig()
        self._store = store
        self._gateway = gateway
        self._admission = admission or AllowAllAdmissionControl()
        self._clock = clock or SystemClock()
        self._retry_policy = retry_policy or SteppedBackoffPolicy(
            base_delay=self._config.base_backoff,
            max_delay=self._config.max_backoff,
        )
        self._resolver = resolver or PatternResolver()

        self._timers = AsyncioTimerService(self._clock)
        self._registry = TimerRegistry()
        self._sweeper = ReconciliationWorker(
            self, self._clock, poll_interval=self._config.sweep_interval
        )
        self._semaphore = asyncio.Semaphore(self._config.max_concurrent_attempts)
        self._locks = _KeyedLocks()

        # Task ids whose attempt cycle has passed the status re-check.
        self._claimed: set[str] = set()
        # Cancellations that arrived while a delivery was in flight.
        self._cancel_requested: set[str] = set()
        # Keys whose timer fired while a cycle was already running.
        self._refire: set[str] = set()
        # Records whose write-back failed; flushed by the next sweep.
        self._unsynced_tasks: dict[str, ScheduledTask] = {}
        self._unsynced_schedules: dict[str, RecurringSchedule] = {}
        # Pending schedule_when() watches.
        self._watches: dict[str, _ConditionWatch] = {}

        self._state = LifecycleState.STOPPED

    # -- properties -------------------------------------------------------

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    @property
    def clock(self) -> IClock:
        return self._clock

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is LifecycleState.RUNNING

    @property
    def timers(self) -> AsyncioTimerService:
        return self._timers

    @property
    def registry(self) -> TimerRegistry:
        return self._registry

    @property
    def sweeper(self) -> ReconciliationWorker:
        return self._sweeper

    @property
    def unsynced_count(self) -> int:
        return len(self._unsynced_tasks) + len(self._unsynced_schedules)

    @property
    def watch_count(self) -> int:
        return len(self._watches)

    # -- lifecycle --------------------------------------------------------

    async def start(self) -> None:
        """Reconcile persisted work, then start the timer loop and the sweeper.

        Raises:
            SchedulerStartupError: if the store cannot be enumerated. The
                scheduler stays STOPPED (not ready).
        """
        if self._state in (LifecycleState.RUNNING, LifecycleState.STARTING):
            return
        self._state = LifecycleState.STARTING
        try:
            tasks, schedules = await self._reconcile_startup()
        except PersistenceError as e:
            self._registry.disarm_all()
            self._timers.cancel_all()
            self._state = LifecycleState.STOPPED
            logger.error("DeliveryScheduler startup reconciliation failed: %s", e)
            raise SchedulerStartupError(f"Startup reconciliation failed: {e}") from e

        await self._timers.start()
        await self._sweeper.start()
        self._state = LifecycleState.RUNNING
        logger.info(
            "DeliveryScheduler started (%d pending tasks, %d recurring schedules)",
            tasks,
            schedules,
        )

    async def stop(self) -> None:
        """Stop the sweeper and timer loop; every armed timer is disarmed on return.

        In-flight attempt cycles get ``shutdown_timeout`` seconds to finish and
        are cancelled afterwards.
        """
        if self._state in (LifecycleState.STOPPED, LifecycleState.STOPPING):
            return
        self._state = LifecycleState.STOPPING
        await self._sweeper.stop()
        await self._timers.stop()
        self._registry.disarm_all()

        in_flight = self._registry.in_flight_attempts()
        if in_flight:
            _, still_running = await asyncio.wait(
                in_flight, timeout=self._config.shutdown_timeout
            )
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                logger.warning(
                    "DeliveryScheduler cancelled %d in-flight attempts on stop",
                    len(still_running),
                )
        self._state = LifecycleState.STOPPED
        logger.info("DeliveryScheduler stopped")

    async def _reconcile_startup(self) -> tuple[int, int]:
        tasks = await self._store.list_tasks(TaskStatus.PENDING)
        schedules = await self._store.list_schedules(active_only=True)
        now = self._clock.now()
        overdue = 0
        for task in tasks:
            if task.scheduled_at <= now:
                overdue += 1
            self._arm_task(task)
        for schedule in schedules:
            self._arm_schedule(schedule)
        for watch in self._watches.values():
            self._arm_watch(watch)
        if overdue:
            logger.info("Startup: %d pending tasks are overdue, firing now", overdue)
        return len(tasks), len(schedules)

    # -- one-shot tasks ---------------------------------------------------

    async def schedule(
        self,
        destination: str,
        payload: Any,
        at: datetime,
        *,
        max_retries: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Persist a pending delivery for instant ``at`` and arm its timer.

        Raises:
            InvalidScheduleError: if ``at`` is not strictly in the future.
            PersistenceError: if the task cannot be stored.
        """
        due = self._validate_due(at)
        retries = self._config.max_retries if max_retries is None else max_retries
        if retries < 0:
            raise ValidationError({"max_retries": ["must be >= 0"]})

        now = self._clock.now()
        task = ScheduledTask(
            destination=destination,
            payload=payload,
            scheduled_at=due,
            max_retries=retries,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        await self._store.save_task(task)
        self._arm_task(task)
        logger.info(
            "Task %s scheduled for %s (destination=%s)",
            task.id,
            due.isoformat(),
            destination,
        )
        return task.id

    async def schedule_bulk(
        self, requests: Iterable[ScheduleRequest]
    ) -> builtins.list[str]:
        """Schedule many deliveries; invalid or unpersistable entries are skipped."""
        ids: builtins.list[str] = []
        for request in requests:
            try:
                ids.append(
                    await self.schedule(
                        request.destination,
                        request.payload,
                        request.at,
                        max_retries=request.max_retries,
                        metadata=dict(request.metadata),
                    )
                )
            except (ValidationError, PersistenceError) as e:
                logger.warning(
                    "Bulk schedule skipped entry for %s: %s", request.destination, e
                )
        return ids

    async def cancel(self, task_id: str) -> bool:
        """Cancel a pending task. Returns False if absent or already terminal.

        If a delivery for the task is already in flight it runs to completion;
        the cancellation then only prevents further retries.
        """
        key = _task_key(task_id)
        async with self._locks.hold(key):
            task = await self._get_task_for_caller(task_id)
            if task is None or not task.is_pending:
                return False

            if task_id in self._claimed:
                if task_id in self._cancel_requested:
                    return False
                self._cancel_requested.add(task_id)
                self._registry.disarm(key)
                logger.info("Task %s cancel requested during delivery", task_id)
                return True

            original = task.model_copy(deep=True)
            self._registry.disarm(key)
            task.cancel(self._clock.now())
            try:
                await self._store.save_task(task)
            except PersistenceError:
                self._arm_task(original)
                raise
            self._unsynced_tasks.pop(task_id, None)
            logger.info("Task %s cancelled", task_id)
            return True

    async def reschedule(
        self,
        task_id: str,
        *,
        scheduled_at: datetime | None = None,
        destination: str | None = None,
        payload: Any = UNSET,
        max_retries: int | None = None,
    ) -> bool:
        """Update a pending task; rearms the timer if ``scheduled_at`` moved.

        Returns False if the task is absent, terminal or mid-delivery.
        """
        due = self._validate_due(scheduled_at) if scheduled_at is not None else None
        if max_retries is not None and max_retries < 0:
            raise ValidationError({"max_retries": ["must be >= 0"]})

        key = _task_key(task_id)
        async with self._locks.hold(key):
            task = await self._get_task_for_caller(task_id)
            if task is None or not task.is_pending or task_id in self._claimed:
                return False
            moved = task.reschedule(
                scheduled_at=due,
                destination=destination,
                payload=payload,
                max_retries=max_retries,
                now=self._clock.now(),
            )
            await self._store.save_task(task)
            self._unsynced_tasks.pop(task_id, None)
            if moved:
                self._registry.disarm(key)
                self._arm_task(task)
            logger.info("Task %s updated (moved=%s)", task_id, moved)
            return True

    async def query(self, task_id: str) -> ScheduledTask | None:
        return await self._get_task_for_caller(task_id)

    async def list(
        self, status: TaskStatus | None = None
    ) -> builtins.list[ScheduledTask]:
        """All tasks, optionally filtered by status, ordered by ``scheduled_at``."""
        stored = {t.id: t for t in await self._store.list_tasks()}
        for task_id, task in self._unsynced_tasks.items():
            stored[task_id] = task.model_copy(deep=True)
        tasks = builtins.list(stored.values())
        if status is not None:
            tasks = [t for t in tasks if t.status is status]
        return sorted(tasks, key=lambda t: t.scheduled_at)

    # -- recurring schedules ----------------------------------------------

    async def schedule_recurring(
        self,
        destination: str,
        payload: Any,
        pattern: str,
        *,
        timezone: str = "UTC",
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Persist a recurring delivery and arm it for its first occurrence.

        Raises:
            InvalidPatternError: if ``pattern`` (or ``timezone``) is invalid.
        """
        parsed = self._resolver.parse(pattern, timezone)
        now = self._clock.now()
        schedule = RecurringSchedule(
            pattern=parsed.expression,
            destination=destination,
            payload=payload,
            next_run=self._resolver.next_occurrence(parsed, now),
            timezone=parsed.timezone,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        await self._store.save_schedule(schedule)
        self._arm_schedule(schedule)
        logger.info(
            "Recurring schedule %s created (pattern=%r, next_run=%s)",
            schedule.id,
            schedule.pattern,
            schedule.next_run.isoformat(),
        )
        return schedule.id

    async def cancel_recurring(self, schedule_id: str) -> bool:
        """Deactivate a schedule. Returns False if absent or already inactive."""
        key = _schedule_key(schedule_id)
        async with self._locks.hold(key):
            schedule = await self._get_schedule_for_caller(schedule_id)
            if schedule is None or not schedule.is_active:
                return False
            original = schedule.model_copy(deep=True)
            self._registry.disarm(key)
            schedule.deactivate(self._clock.now())
            try:
                await self._store.save_schedule(schedule)
            except PersistenceError:
                self._arm_schedule(original)
                raise
            self._unsynced_schedules.pop(schedule_id, None)
            logger.info("Recurring schedule %s cancelled", schedule_id)
            return True

    async def query_recurring(self, schedule_id: str) -> RecurringSchedule | None:
        return await self._get_schedule_for_caller(schedule_id)

    async def list_recurring(
        self, active_only: bool = False
    ) -> builtins.list[RecurringSchedule]:
        stored = {s.id: s for s in await self._store.list_schedules()}
        for schedule_id, schedule in self._unsynced_schedules.items():
            stored[schedule_id] = schedule.model_copy(deep=True)
        schedules = builtins.list(stored.values())
        if active_only:
            schedules = [s for s in schedules if s.is_active]
        return sorted(schedules, key=lambda s: s.next_run)

    # -- conditional deliveries -------------------------------------------

    async def schedule_when(
        self,
        destination: str,
        payload: Any,
        condition: Callable[[], Awaitable[bool]],
        *,
        check_interval: float = 60.0,
        max_retries: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Schedule a delivery once ``condition()`` returns True.

        The predicate is awaited every ``check_interval`` seconds. When it
        holds, a regular task is scheduled shortly after the check and the
        watch ends. Watches live in memory only and do not survive a restart
        of the process. Returns the watch id.
        """
        if check_interval <= 0:
            raise ValidationError({"check_interval": ["must be > 0"]})
        if max_retries is not None and max_retries < 0:
            raise ValidationError({"max_retries": ["must be >= 0"]})

        watch = _ConditionWatch(
            id=str(uuid.uuid4()),
            destination=destination,
            payload=payload,
            condition=condition,
            check_interval=timedelta(seconds=check_interval),
            max_retries=max_retries,
            metadata=metadata or {},
        )
        self._watches[watch.id] = watch
        self._arm_watch(watch)
        logger.info(
            "Watch %s created for %s (check every %.1fs)",
            watch.id,
            destination,
            check_interval,
        )
        return watch.id

    async def cancel_when(self, watch_id: str) -> bool:
        """Stop watching. Returns False if unknown or already resolved."""
        if self._watches.pop(watch_id, None) is None:
            return False
        self._registry.disarm(_watch_key(watch_id))
        logger.info("Watch %s cancelled", watch_id)
        return True

    async def get_stats(self) -> ScheduleStats:
        """Counters over all tasks; "today" is the current UTC day."""
        tasks = await self.list()
        schedules = await self.list_recurring(active_only=True)
        today = self._clock.now().date()
        todays = [t for t in tasks if t.scheduled_at.date() == today]
        return ScheduleStats(
            total_scheduled=len(tasks),
            pending=sum(1 for t in tasks if t.status is TaskStatus.PENDING),
            pending_today=sum(1 for t in todays if t.status is TaskStatus.PENDING),
            sent_today=sum(1 for t in todays if t.status is TaskStatus.SENT),
            failed_today=sum(1 for t in todays if t.status is TaskStatus.FAILED),
            recurring_schedules=len(schedules),
        )

    # -- reconciliation ---------------------------------------------------

    async def reconcile(self) -> int:
        """Sweep persisted work for items lacking a live timer or running cycle.

        Flushes unsynced records first. Returns the number of attempt cycles
        started for overdue items.
        """
        if self._state is not LifecycleState.RUNNING:
            return 0
        await self._flush_unsynced()

        now = self._clock.now()
        started = 0

        tasks = {t.id: t for t in await self._store.list_tasks(TaskStatus.PENDING)}
        for task_id, unsynced_task in self._unsynced_tasks.items():
            tasks[task_id] = unsynced_task
        for task in tasks.values():
            key = _task_key(task.id)
            if not task.is_pending or task.id in self._claimed:
                continue
            if self._registry.has_live_timer(key) or self._registry.is_in_flight(key):
                continue
            if task.is_due(now):
                if self._spawn_task_cycle(task.id):
                    started += 1
            else:
                logger.warning("Sweep: task %s had no live timer, re-arming", task.id)
                self._arm_task(task)

        for schedule in await self._store.list_schedules(active_only=True):
            if schedule.id in self._unsynced_schedules:
                schedule = self._unsynced_schedules[schedule.id]
            key = _schedule_key(schedule.id)
            if self._registry.has_live_timer(key) or self._registry.is_in_flight(key):
                continue
            if schedule.is_due(now):
                if self._spawn_schedule_cycle(schedule.id):
                    started += 1
            elif schedule.is_active:
                self._arm_schedule(schedule)

        for watch in builtins.list(self._watches.values()):
            key = _watch_key(watch.id)
            if not (
                self._registry.has_live_timer(key) or self._registry.is_in_flight(key)
            ):
                self._arm_watch(watch)

        return started

    async def run_due(self) -> int:
        """Fire every due timer and wait for the resulting attempt cycles.

        Repeats while cycles arm timers that are already due. Returns the
        number of timers fired.
        """
        fired_total = 0
        for _ in range(_MAX_RUN_DUE_ROUNDS):
            fired = self._timers.run_due()
            in_flight = self._registry.in_flight_attempts()
            if not fired and not in_flight:
                break
            fired_total += fired
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)
        return fired_total

    async def wait_idle(self) -> None:
        """Wait until no attempt cycle is running."""
        while in_flight := self._registry.in_flight_attempts():
            await asyncio.gather(*in_flight, return_exceptions=True)

    async def _flush_unsynced(self) -> None:
        for task_id, task in builtins.list(self._unsynced_tasks.items()):
            try:
                await self._store.save_task(task)
            except PersistenceError as e:
                logger.warning("Sweep: task %s still unsynced: %s", task_id, e)
                continue
            self._unsynced_tasks.pop(task_id, None)
        for schedule_id, schedule in builtins.list(self._unsynced_schedules.items()):
            try:
                await self._store.save_schedule(schedule)
            except PersistenceError as e:
                logger.warning("Sweep: schedule %s still unsynced: %s", schedule_id, e)
                continue
            self._unsynced_schedules.pop(schedule_id, None)

    # -- timers -----------------------------------------------------------

    @property
    def _arming(self) -> bool:
        return self._state in (LifecycleState.STARTING, LifecycleState.RUNNING)

    def _arm_task(self, task: ScheduledTask) -> None:
        if not self._arming:
            return
        key = _task_key(task.id)
        task_id = task.id

        def _fire() -> None:
            self._registry.forget_timer(key, handle)
            self._spawn_task_cycle(task_id)

        handle = self._timers.arm(task.scheduled_at, _fire, label=key)
        self._registry.register_timer(key, handle)

    def _arm_schedule(self, schedule: RecurringSchedule) -> None:
        if not self._arming or not schedule.is_active:
            return
        key = _schedule_key(schedule.id)
        schedule_id = schedule.id

        def _fire() -> None:
            self._registry.forget_timer(key, handle)
            self._spawn_schedule_cycle(schedule_id)

        handle = self._timers.arm(schedule.next_run, _fire, label=key)
        self._registry.register_timer(key, handle)

    def _arm_watch(self, watch: _ConditionWatch) -> None:
        if not self._arming:
            return
        key = _watch_key(watch.id)
        watch_id = watch.id

        def _fire() -> None:
            self._registry.forget_timer(key, handle)
            self._spawn(key, self._check_watch, watch_id)

        handle = self._timers.arm(
            self._clock.now() + watch.check_interval, _fire, label=key
        )
        self._registry.register_timer(key, handle)

    def _spawn_task_cycle(self, task_id: str) -> bool:
        return self._spawn(_task_key(task_id), self._attempt_task, task_id)

    def _spawn_schedule_cycle(self, schedule_id: str) -> bool:
        return self._spawn(_schedule_key(schedule_id), self._attempt_schedule, schedule_id)

    def _spawn(self, key: str, cycle: Any, entity_id: str) -> bool:
        if self._registry.is_in_flight(key):
            self._refire.add(key)
            return False
        task = asyncio.create_task(
            self._run_cycle(key, cycle, entity_id), name=f"courier-attempt:{key}"
        )
        self._registry.register_attempt(key, task)
        return True

    async def _run_cycle(self, key: str, cycle: Any, entity_id: str) -> None:
        try:
            async with self._semaphore:
                await cycle(entity_id)
        except Exception:
            logger.exception("Attempt cycle for %s crashed", key)
        finally:
            self._registry.unregister_attempt(key, asyncio.current_task())
            if key in self._refire:
                self._refire.discard(key)
                if self._state is LifecycleState.RUNNING:
                    self._spawn(key, cycle, entity_id)

    # -- attempt cycles ---------------------------------------------------

    async def _attempt_task(self, task_id: str) -> None:
        key = _task_key(task_id)
        async with self._locks.hold(key):
            task = await self._load_task(task_id)
            if task is None or not task.is_pending:
                self._registry.disarm(key)
                return
            now = self._clock.now()
            if task.scheduled_at > now:
                self._arm_task(task)
                return

            decision = await self._check_admission(task.destination)
            if isinstance(decision, AdmissionDenied):
                delay = self._admission_delay(decision)
                task.defer(delay, now)
                await self._persist_task(task)
                self._arm_task(task)
                logger.info(
                    "Task %s deferred %.1fs by admission control",
                    task_id,
                    delay.total_seconds(),
                )
                return
            self._claimed.add(task_id)

        try:
            result = await self._deliver(task.destination, task.payload)
            async with self._locks.hold(key):
                await self._settle_task(task, result)
        finally:
            self._claimed.discard(task_id)
            self._cancel_requested.discard(task_id)

    async def _settle_task(self, task: ScheduledTask, result: DeliveryResult) -> None:
        task_id = task.id
        key = _task_key(task_id)
        cancel_requested = task_id in self._cancel_requested
        now = self._clock.now()

        if isinstance(result, DeliverySuccess):
            task.mark_sent(result.delivery_id, now)
            self._registry.disarm(key)
            await self._persist_task(task)
            logger.info(
                "Task %s delivered (delivery_id=%s, retries=%d)",
                task_id,
                result.delivery_id,
                task.retry_count,
            )
            return

        if cancel_requested:
            task.cancel(now)
            await self._persist_task(task)
            logger.info("Task %s cancelled after failed delivery", task_id)
            return

        retry = self._retry_policy.decide(task.retry_count, task.max_retries)
        if retry.retry:
            task.schedule_retry(retry.delay, result.reason, now)
            await self._persist_task(task)
            self._arm_task(task)
            logger.warning(
                "Task %s delivery failed (%s); retry %d/%d at %s",
                task_id,
                result.reason,
                task.retry_count,
                task.max_retries,
                task.scheduled_at.isoformat(),
            )
        else:
            task.mark_failed(result.reason, now)
            await self._persist_task(task)
            logger.error(
                "Task %s failed after %d retries: %s",
                task_id,
                task.retry_count,
                result.reason,
            )

    async def _attempt_schedule(self, schedule_id: str) -> None:
        key = _schedule_key(schedule_id)
        async with self._locks.hold(key):
            schedule = await self._load_schedule(schedule_id)
            if schedule is None or not schedule.is_active:
                self._registry.disarm(key)
                return
            now = self._clock.now()
            if schedule.next_run > now:
                self._arm_schedule(schedule)
                return

            decision = await self._check_admission(schedule.destination)
            if isinstance(decision, AdmissionDenied):
                schedule.defer(self._admission_delay(decision), now)
                await self._persist_schedule(schedule)
                self._arm_schedule(schedule)
                return

        result = await self._deliver(schedule.destination, schedule.payload)

        async with self._locks.hold(key):
            now = self._clock.now()
            current = await self._load_schedule(schedule_id) or schedule
            if not current.is_active:
                logger.info(
                    "Recurring schedule %s cancelled during delivery", schedule_id
                )
                return
            try:
                parsed = self._resolver.parse(current.pattern, current.timezone)
                next_run = self._resolver.next_occurrence(
                    parsed, max(now, current.next_run)
                )
            except InvalidPatternError:
                logger.exception(
                    "Recurring schedule %s has an unusable pattern", schedule_id
                )
                return
            if isinstance(result, DeliverySuccess):
                current.record_run("ok", next_run, now)
            else:
                current.record_run("error", next_run, now, error=result.reason)
                logger.warning(
                    "Recurring schedule %s delivery failed: %s",
                    schedule_id,
                    result.reason,
                )
            await self._persist_schedule(current)
            self._arm_schedule(current)

    async def _check_watch(self, watch_id: str) -> None:
        watch = self._watches.get(watch_id)
        if watch is None:
            return
        try:
            ready = bool(await watch.condition())
        except Exception:
            logger.exception("Condition check for watch %s failed", watch_id)
            ready = False

        if self._watches.get(watch_id) is not watch:
            return
        if not ready:
            self._arm_watch(watch)
            return

        try:
            task_id = await self.schedule(
                watch.destination,
                watch.payload,
                self._clock.now() + _CONDITION_DELIVERY_DELAY,
                max_retries=watch.max_retries,
                metadata=dict(watch.metadata),
            )
        except PersistenceError as e:
            logger.warning("Watch %s could not schedule its delivery: %s", watch_id, e)
            self._arm_watch(watch)
            return
        self._watches.pop(watch_id, None)
        logger.info("Watch %s condition met, scheduled task %s", watch_id, task_id)

    # -- collaborators ----------------------------------------------------

    async def _check_admission(self, destination: str) -> AdmissionDecision:
        try:
            return await self._admission.check_and_consume(
                destination, self._config.admission_weight
            )
        except Exception:
            logger.exception("Admission control failed for %s; deferring", destination)
            return AdmissionDenied()

    def _admission_delay(self, decision: AdmissionDenied) -> timedelta:
        if decision.retry_after is not None:
            return decision.retry_after
        return timedelta(seconds=self._config.admission_retry_delay)

    async def _deliver(self, destination: str, payload: Any) -> DeliveryResult:
        try:
            result = await self._gateway.send(destination, payload)
        except Exception as e:
            logger.warning("Delivery to %s raised %s: %s", destination, type(e).__name__, e)
            return DeliveryFailure(f"{type(e).__name__}: {e}")
        if isinstance(result, (DeliverySuccess, DeliveryFailure)):
            return result
        return DeliveryFailure(f"Unexpected gateway result: {result!r}")

    # -- store access -----------------------------------------------------

    def _validate_due(self, at: Any) -> datetime:
        if not isinstance(at, datetime):
            raise InvalidScheduleError(
                f"Schedule time must be a datetime, got {type(at).__name__}"
            )
        due = ensure_utc(at)
        if due <= self._clock.now():
            raise InvalidScheduleError("Schedule time must be in the future")
        return due

    async def _get_task_for_caller(self, task_id: str) -> ScheduledTask | None:
        unsynced = self._unsynced_tasks.get(task_id)
        if unsynced is not None:
            return unsynced.model_copy(deep=True)
        return await self._store.get_task(task_id)

    async def _get_schedule_for_caller(
        self, schedule_id: str
    ) -> RecurringSchedule | None:
        unsynced = self._unsynced_schedules.get(schedule_id)
        if unsynced is not None:
            return unsynced.model_copy(deep=True)
        return await self._store.get_schedule(schedule_id)

    async def _load_task(self, task_id: str) -> ScheduledTask | None:
        try:
            return await self._get_task_for_caller(task_id)
        except PersistenceError as e:
            logger.warning("Attempt cycle could not load task %s: %s", task_id, e)
            return None

    async def _load_schedule(self, schedule_id: str) -> RecurringSchedule | None:
        try:
            return await self._get_schedule_for_caller(schedule_id)
        except PersistenceError as e:
            logger.warning(
                "Attempt cycle could not load schedule %s: %s", schedule_id, e
            )
            return None

    async def _persist_task(self, task: ScheduledTask) -> None:
        try:
            await self._store.save_task(task)
        except PersistenceError as e:
            logger.error("Write-back of task %s failed, keeping in memory: %s", task.id, e)
            self._unsynced_tasks[task.id] = task.model_copy(deep=True)
            return
        self._unsynced_tasks.pop(task.id, None)

    async def _persist_schedule(self, schedule: RecurringSchedule) -> None:
        try:
            await self._store.save_schedule(schedule)
        except PersistenceError as e:
            logger.error(
                "Write-back of schedule %s failed, keeping in memory: %s",
                schedule.id,
                e,
            )
            self._unsynced_schedules[schedule.id] = schedule.model_copy(deep=True)
            return
        self._unsynced_schedules.pop(schedule.id, None)
