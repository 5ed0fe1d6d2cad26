"""Work queue for the discovery pipeline.

Units of work (discover, analyze, generate, send, submit) are always
logged to background_jobs first, then executed by one of two backends:

- broker mode: a Dramatiq broker (Redis in production) delivers units to a
  pool of worker threads; failures go through Dramatiq's retry/backoff.
- fallback mode: without a broker, a single asyncio task drains an
  in-process FIFO one unit at a time. Failures are logged, recorded in
  ``failures`` and skipped. Units are lost if the process dies, so this
  mode is for development and tests.
"""

import asyncio
import enum
import inspect
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Union
from uuid import UUID, uuid4

import dramatiq
import structlog
from dramatiq import Broker
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from job_discovery.db.models import BackgroundJob

logger = structlog.get_logger()

WORK_UNIT_ACTOR = "work_unit"


class WorkUnitType(str, enum.Enum):
    DISCOVER = "discover"
    ANALYZE = "analyze"
    GENERATE = "generate"
    SEND = "send"
    SUBMIT = "submit"


@dataclass
class WorkUnit:
    type: WorkUnitType
    data: dict[str, Any] = field(default_factory=dict)
    owner_id: Optional[str] = None
    test_mode: bool = False
    log_id: Optional[UUID] = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "data": self.data,
            "owner_id": self.owner_id,
            "test_mode": self.test_mode,
            "log_id": str(self.log_id) if self.log_id else None,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "WorkUnit":
        log_id = payload.get("log_id")
        return cls(
            type=WorkUnitType(payload["type"]),
            data=dict(payload.get("data") or {}),
            owner_id=payload.get("owner_id"),
            test_mode=bool(payload.get("test_mode", False)),
            log_id=UUID(log_id) if log_id else None,
        )


@dataclass
class WorkUnitFailure:
    unit: WorkUnit
    error: Exception
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class UnhandledWorkUnitError(LookupError):
    def __init__(self, unit_type: WorkUnitType):
        self.unit_type = unit_type
        super().__init__(f"No handler registered for work unit type: {unit_type.value}")


Handler = Callable[[WorkUnit], Awaitable[None]]
FailureCallback = Callable[[WorkUnitFailure], Any]


class BackgroundLoop:
    """Event loop on a daemon thread for running coroutines from sync code.

    Dramatiq actors are synchronous; every worker thread hands its
    coroutine to this one loop, so loop-bound resources (HTTP clients,
    connection pools) are shared safely across messages.
    """

    def __init__(self):
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _ensure_started(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._loop.run_forever,
                    name="work-unit-loop",
                    daemon=True,
                )
                self._thread.start()
            return self._loop

    def run_async(self, coro):
        """Run a coroutine on the background loop and block for its result."""
        loop = self._ensure_started()
        return asyncio.run_coroutine_threadsafe(coro, loop).result()

    def stop(self) -> None:
        with self._lock:
            if self._loop is None:
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=5)
            self._loop.close()
            self._loop = None
            self._thread = None


class QueueService:
    """Durable-log work queue with a Dramatiq backend and an in-process fallback."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        broker: Optional[Broker] = None,
        concurrency: int = 5,
        max_retries: int = 3,
        min_backoff_ms: int = 15000,
        queue_name: str = "job_discovery",
        on_failure: Optional[FailureCallback] = None,
    ):
        self.session_factory = session_factory
        self.broker = broker
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.on_failure = on_failure

        self._handlers: dict[WorkUnitType, Handler] = {}
        self.failures: list[WorkUnitFailure] = []

        # Fallback mode state
        self._buffer: deque[WorkUnit] = deque()
        self._drain_task: Optional[asyncio.Task] = None
        self._delayed: set[asyncio.Task] = set()

        # Broker mode state
        self._actor = None
        self._worker: Optional[dramatiq.Worker] = None
        self._loop_runner = BackgroundLoop()

        if broker is not None:
            self._actor = dramatiq.actor(
                self._process_message,
                actor_name=WORK_UNIT_ACTOR,
                queue_name=queue_name,
                broker=broker,
                max_retries=max_retries,
                min_backoff=min_backoff_ms,
            )
            logger.info("Work queue using broker", queue=queue_name, broker=type(broker).__name__)
        else:
            logger.warning("No broker configured, work queue running in-process")

    @property
    def mode(self) -> str:
        return "broker" if self.broker is not None else "in-memory"

    def register_handler(self, unit_type: Union[WorkUnitType, str], handler: Handler) -> None:
        unit_type = WorkUnitType(unit_type)
        if unit_type in self._handlers:
            raise ValueError(f"Handler already registered for work unit type: {unit_type.value}")
        self._handlers[unit_type] = handler
        logger.debug("Registered work unit handler", type=unit_type.value)

    async def add_job(
        self,
        unit: Union[WorkUnit, dict[str, Any]],
        delay: Optional[float] = None,
        priority: Optional[int] = None,
    ) -> WorkUnit:
        """Log the unit, then hand it to the broker or the in-process buffer.

        delay is in seconds.
        """
        if not isinstance(unit, WorkUnit):
            unit = WorkUnit.from_payload(unit)

        now = datetime.now(timezone.utc)
        unit.log_id = uuid4()
        async with self.session_factory() as db:
            row = BackgroundJob(
                id=unit.log_id,
                type=unit.type.value,
                payload=unit.to_payload(),
                status="pending",
                priority=priority or 0,
                attempts=0,
                scheduled_at=now + timedelta(seconds=delay) if delay else now,
            )
            db.add(row)
            await db.commit()

        if self._actor is not None:
            self._actor.send_with_options(
                args=(unit.to_payload(),),
                delay=int(delay * 1000) if delay else None,
            )
        elif delay:
            task = asyncio.create_task(self._push_later(unit, delay))
            self._delayed.add(task)
            task.add_done_callback(self._delayed.discard)
        else:
            self._push(unit)

        logger.debug("Queued work unit", type=unit.type.value, log_id=str(unit.log_id), mode=self.mode)
        return unit

    def _push(self, unit: WorkUnit) -> None:
        self._buffer.append(unit)
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(self._drain())

    async def _push_later(self, unit: WorkUnit, delay: float) -> None:
        await asyncio.sleep(delay)
        self._push(unit)

    async def _drain(self) -> None:
        """Process buffered units in order, one at a time."""
        while self._buffer:
            unit = self._buffer.popleft()
            try:
                await self._execute(unit)
            except Exception as e:
                await self._record_failure(unit, e)

    async def _record_failure(self, unit: WorkUnit, error: Exception) -> None:
        logger.error(
            "Work unit failed",
            type=unit.type.value,
            log_id=str(unit.log_id),
            error=str(error),
        )
        failure = WorkUnitFailure(unit=unit, error=error)
        self.failures.append(failure)
        if self.on_failure is not None:
            try:
                result = self.on_failure(failure)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Work unit failure callback raised", log_id=str(unit.log_id))

    async def _execute(self, unit: WorkUnit) -> None:
        """Run the unit's handler, tracking status on its log row. Re-raises handler errors."""
        await self._update_row(
            unit,
            status="running",
            attempts=BackgroundJob.attempts + 1,
            error_message=None,
        )
        try:
            handler = self._handlers.get(unit.type)
            if handler is None:
                raise UnhandledWorkUnitError(unit.type)
            await handler(unit)
        except Exception as e:
            await self._update_row(
                unit,
                status="failed",
                error_message=str(e)[:1000],
                completed_at=datetime.now(timezone.utc),
            )
            raise

        await self._update_row(unit, status="completed", completed_at=datetime.now(timezone.utc))

    async def _update_row(self, unit: WorkUnit, **values) -> None:
        if unit.log_id is None:
            return
        async with self.session_factory() as db:
            await db.execute(
                update(BackgroundJob).where(BackgroundJob.id == unit.log_id).values(**values)
            )
            await db.commit()

    def _process_message(self, payload: dict[str, Any]) -> None:
        """Dramatiq entry point. Exceptions propagate to the Retries middleware."""
        unit = WorkUnit.from_payload(payload)
        logger.info("Processing work unit", type=unit.type.value, log_id=str(unit.log_id))
        self._loop_runner.run_async(self._execute(unit))

    def start_worker(self) -> dramatiq.Worker:
        """Start an in-process Dramatiq worker pool (broker mode only)."""
        if self.broker is None:
            raise RuntimeError("start_worker requires a broker")
        if self._worker is None:
            self._worker = dramatiq.Worker(self.broker, worker_threads=self.concurrency)
            self._worker.start()
            logger.info("Work queue worker started", threads=self.concurrency)
        return self._worker

    def stop_worker(self) -> None:
        if self._worker is not None:
            self._worker.stop()
            self._worker = None
            logger.info("Work queue worker stopped")
        self._loop_runner.stop()

    def run_async(self, coro):
        """Run a coroutine on the queue's background loop from sync code."""
        return self._loop_runner.run_async(coro)

    async def wait_until_idle(self) -> None:
        """Wait until delayed units are released and the fallback buffer is drained."""
        while self._delayed or (self._drain_task is not None and not self._drain_task.done()):
            if self._delayed:
                await asyncio.gather(*list(self._delayed))
            if self._drain_task is not None:
                await self._drain_task

    async def get_stats(self) -> dict[str, Any]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(BackgroundJob.status, func.count(BackgroundJob.id)).group_by(
                    BackgroundJob.status
                )
            )
            counts = {status: count for status, count in result.all()}

        return {
            "waiting": counts.get("pending", 0),
            "active": counts.get("running", 0),
            "completed": counts.get("completed", 0),
            "failed": counts.get("failed", 0),
            "mode": self.mode,
        }
