"""
in-process media job queue

each job type has its own processor and its own concurrency ceiling. jobs of
one type are admitted in fifo order whenever a slot of that type frees up,
independently of every other type. units of work inside a job run
sequentially inside the processor, so parallelism only exists across jobs.

listeners that touch the database or the network subscribe with
blocking=True. they run one at a time on a dedicated thread, in event order,
and a finished job stays in memory until they have seen its final state.
"""
import asyncio
import uuid
from concurrent.futures import ThreadPoolExecutor
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import BaseModel, ValidationError

from app.core.errors import (
    InvalidPayloadError,
    JobNotFoundError,
    JobTimeoutError,
    UnknownJobTypeError,
    handle_worker_error,
)
from app.core.logging_config import get_logger
from app.schemas.media import PAYLOAD_MODELS, JobStatus, JobType

logger = get_logger(__name__)

ProgressReporter = Callable[[int], None]
Processor = Callable[[BaseModel, ProgressReporter], Awaitable[dict]]
Listener = Callable[[dict], None]


def progress_percent(completed: int, total: int) -> int:
    """completed/total as a percentage, rounded half up (2/3 -> 67, 1/8 -> 13)"""
    if total <= 0:
        return 0
    return (completed * 200 + total) // (2 * total)


@dataclass
class QueuedJob:
    id: str
    job_type: JobType
    payload: BaseModel
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    result: Optional[dict] = None
    error: Optional[BaseException] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)
    # completes once blocking listeners have handled the latest snapshot
    notified: Optional[asyncio.Future] = field(default=None, repr=False)

    def snapshot(self) -> dict:
        data = {
            "id": self.id,
            "job_type": self.job_type.value,
            "status": self.status.value,
            "progress": self.progress,
            "payload": self.payload.model_dump(mode="json"),
            "result": None,
            "error": None,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
        # result only on success, error only on failure
        if self.status == JobStatus.SUCCEEDED:
            data["result"] = self.result
        elif self.status == JobStatus.FAILED and self.error is not None:
            data["error"] = {"type": type(self.error).__name__, "message": str(self.error)}
        return data


@dataclass
class _Registration:
    processor: Processor
    concurrency: int
    timeout: Optional[float] = None
    running: int = 0
    succeeded: int = 0
    failed: int = 0
    pending: deque = field(default_factory=deque)


class MediaJobQueue:
    def __init__(self, retention: int = 1000):
        # max finished jobs kept in memory, oldest evicted first
        self.retention = retention
        self._registrations: dict[JobType, _Registration] = {}
        self._jobs: "OrderedDict[str, QueuedJob]" = OrderedDict()
        self._finished: deque = deque()
        self._listeners: list[Listener] = []
        self._blocking_listeners: list[Listener] = []
        # single worker keeps blocking listeners ordered per event
        self._listener_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="job-listeners")
        self._last_notification: Optional[asyncio.Future] = None
        self._tasks: set[asyncio.Task] = set()
        self._stopping = False

    def register(self, job_type: Union[JobType, str], processor: Processor, concurrency: int,
                 timeout: Optional[float] = None):
        """register the processor for a job type with its concurrency ceiling"""
        if concurrency < 1:
            raise ValueError(f"concurrency for {job_type} must be >= 1")
        self._registrations[JobType(job_type)] = _Registration(processor, concurrency, timeout)

    def subscribe(self, listener: Listener, blocking: bool = False) -> Callable[[], None]:
        """
        listener gets a snapshot on every state or progress change

        plain listeners run inline on the event loop and must not block.
        blocking listeners (database writes, redis publishes) run off the loop.
        """
        listeners = self._blocking_listeners if blocking else self._listeners
        listeners.append(listener)
        return lambda: listeners.remove(listener)

    def _registration_for(self, job_type: Union[JobType, str]) -> _Registration:
        try:
            return self._registrations[JobType(job_type)]
        except (ValueError, KeyError):
            raise UnknownJobTypeError(str(getattr(job_type, "value", job_type))) from None

    def enqueue(self, job_type: Union[JobType, str], payload: Union[BaseModel, dict]) -> str:
        """
        validate and queue a job, returns its id

        must be called from the event loop the queue runs on. raises
        UnknownJobTypeError / InvalidPayloadError before any job exists.
        """
        registration = self._registration_for(job_type)
        job_type = JobType(job_type)
        model = PAYLOAD_MODELS[job_type]

        if not isinstance(payload, model):
            try:
                payload = model.model_validate(payload)
            except ValidationError as e:
                error = InvalidPayloadError(f"invalid payload for {job_type.value}: {e.error_count()} error(s)")
                error.errors = e.errors(include_url=False, include_context=False)
                raise error from e

        job = QueuedJob(id=uuid.uuid4().hex, job_type=job_type, payload=payload)
        self._jobs[job.id] = job
        registration.pending.append(job.id)
        logger.info(f"queued job {job.id} ({job_type.value})")
        self._notify(job)

        self._dispatch(job_type)
        return job.id

    def _dispatch(self, job_type: JobType):
        """admit queued jobs of one type while that type has free slots"""
        if self._stopping:
            return
        registration = self._registrations[job_type]
        loop = asyncio.get_running_loop()

        while registration.pending and registration.running < registration.concurrency:
            job = self._jobs[registration.pending.popleft()]
            registration.running += 1
            job.status = JobStatus.RUNNING
            job.started_at = datetime.utcnow()
            self._notify(job)

            task = loop.create_task(self._execute(job, registration), name=f"media-job-{job.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _run_processor(self, job: QueuedJob, registration: _Registration) -> dict:
        coro = registration.processor(job.payload, lambda percent: self._report_progress(job, percent))
        if registration.timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, registration.timeout)
        except asyncio.TimeoutError as e:
            raise JobTimeoutError(f"{job.job_type.value} job exceeded {registration.timeout:g}s") from e

    async def _execute(self, job: QueuedJob, registration: _Registration):
        try:
            result = await self._run_processor(job, registration)
        except asyncio.CancelledError as e:
            self._finish(job, registration, error=e)
            raise
        except Exception as e:
            handle_worker_error(job.id, job.job_type.value, e)
            self._finish(job, registration, error=e)
        else:
            self._finish(job, registration, result=result)
        finally:
            registration.running -= 1
            self._dispatch(job.job_type)

    def _report_progress(self, job: QueuedJob, percent: int):
        if job.status != JobStatus.RUNNING:
            return
        # non-decreasing, and 100 is reserved for success
        percent = min(max(int(percent), job.progress), 99)
        if percent == job.progress:
            return
        job.progress = percent
        self._notify(job)

    def _finish(self, job: QueuedJob, registration: _Registration, result: Optional[dict] = None,
                error: Optional[BaseException] = None):
        job.finished_at = datetime.utcnow()
        if error is None:
            job.status = JobStatus.SUCCEEDED
            job.progress = 100
            job.result = result
            registration.succeeded += 1
            logger.info(f"job {job.id} ({job.job_type.value}) succeeded")
        else:
            # progress stays frozen at its last value
            job.status = JobStatus.FAILED
            job.error = error
            registration.failed += 1

        self._notify(job)
        job.done.set()

        if job.notified is None or job.notified.done():
            self._retire(job)
        else:
            job.notified.add_done_callback(lambda _: self._retire(job))

    def _retire(self, job: QueuedJob):
        self._finished.append(job.id)
        while len(self._finished) > self.retention:
            self._jobs.pop(self._finished.popleft(), None)

    def _call_listeners(self, listeners: list[Listener], snapshot: dict):
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                # observers never change the outcome of a job
                logger.exception(f"job listener {listener!r} failed for job {snapshot['id']}")

    def _notify(self, job: QueuedJob):
        snapshot = job.snapshot()
        self._call_listeners(list(self._listeners), snapshot)

        if self._blocking_listeners:
            loop = asyncio.get_running_loop()
            job.notified = loop.run_in_executor(
                self._listener_executor, self._call_listeners, list(self._blocking_listeners), snapshot
            )
            self._last_notification = job.notified

    def get_job(self, job_id: str) -> QueuedJob:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise JobNotFoundError(f"job {job_id} not found") from None

    def get_status(self, job_id: str) -> dict:
        """{id, job_type, status, progress, result?, error?}"""
        return self.get_job(job_id).snapshot()

    async def wait(self, job_id: str) -> dict:
        """wait until the job succeeds or fails and return its final snapshot"""
        job = self.get_job(job_id)
        await job.done.wait()
        if job.notified is not None:
            await job.notified
        return job.snapshot()

    def active_job_ids(self) -> set[str]:
        """ids of jobs still queued or running in this process"""
        return {
            job_id for job_id, job in self._jobs.items()
            if job.status in (JobStatus.QUEUED, JobStatus.RUNNING)
        }

    def queue_status(self) -> dict[str, Any]:
        return {
            job_type.value: {
                "concurrency": reg.concurrency,
                "timeout_seconds": reg.timeout,
                "running": reg.running,
                "queued": len(reg.pending),
                "succeeded": reg.succeeded,
                "failed": reg.failed,
            }
            for job_type, reg in self._registrations.items()
        }

    def start(self):
        """(re)open the queue and admit anything left queued by a previous stop"""
        self._stopping = False
        self._last_notification = None
        for job_type in self._registrations:
            self._dispatch(job_type)

    async def stop(self):
        """
        cancel in-flight jobs on shutdown, queued jobs stay queued

        waits until blocking listeners have recorded every state change so
        far. jobs still queued when the process exits are failed by the
        startup sweep of the next process.
        """
        self._stopping = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._last_notification is not None:
            await self._last_notification
