"""
In-process job executor for background risk calculations.

Lifecycle:  queued -> running -> succeeded | failed

Each submitted job runs on its own worker thread. The registry
(job id -> execution) and the progress-stream map share one reader/writer
lock. Every transition is written to a JobRepository; the progress stream of
a job is closed only after its terminal state has been persisted, and then
removed from the map.
"""
import logging
import queue
import threading
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from time import monotonic
from typing import Any

from risk_analyzer.config import settings
from risk_analyzer.db import SessionLocal
from risk_analyzer.errors import NotFound
from risk_analyzer.models import JobRecord

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobType(str, Enum):
    VAR = "var"
    CVAR = "cvar"
    CORRELATION = "correlation"
    PCA = "pca"
    STRESS = "stress"
    BACKTEST = "backtest"
    RISK_CONTRIBUTION = "risk_contribution"


TERMINAL = (JobStatus.SUCCEEDED, JobStatus.FAILED)

_ALLOWED = {
    JobStatus.QUEUED: (JobStatus.RUNNING,),
    JobStatus.RUNNING: TERMINAL,
}


@dataclass
class Job:
    id: str
    type: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0
    result: Any = None
    error: str | None = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def finished(self) -> bool:
        return self.status in TERMINAL


# ---------------------------------------------------------------------------
# Progress stream
# ---------------------------------------------------------------------------

class ProgressStream:
    """
    Bounded stream of progress percentages for one job.

    push() never blocks the producer: when the buffer is full the oldest
    update is dropped. Iterating blocks until the stream is closed.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 100):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _put(self, item) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def push(self, value: float) -> bool:
        with self._lock:
            if self._closed:
                return False
            if self._queue.qsize() >= self._maxsize:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass
            self._put(max(0, min(100, int(value))))
            return True

    def close(self) -> bool:
        """Close the stream; returns False if it was already closed."""
        with self._lock:
            if self._closed:
                return False
            self._closed = True
            # One slot is reserved for the close marker.
            self._put(self._CLOSED)
            return True

    def get(self, timeout: float | None = None) -> int | None:
        """Next update, or None once the stream is closed and drained."""
        item = self._queue.get(timeout=timeout)
        if item is self._CLOSED:
            self._queue.put_nowait(item)  # let other consumers see the close
            return None
        return item

    def __iter__(self) -> Iterator[int]:
        while True:
            item = self.get()
            if item is None:
                return
            yield item


# ---------------------------------------------------------------------------
# Job repositories
# ---------------------------------------------------------------------------

class InMemoryJobRepository:
    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def persist_job(self, job: Job) -> None:
        with self._lock:
            self._jobs[job.id] = replace(job)

    def update_job_status(self, job_id: str, fields: dict) -> None:
        with self._lock:
            if job_id not in self._jobs:
                raise NotFound(f"Job {job_id} not found")
            self._jobs[job_id] = replace(self._jobs[job_id], **fields)

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None


class SqlJobRepository:
    """Durable job records; opens its own session per call (thread-safe)."""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def persist_job(self, job: Job) -> None:
        db = self._session_factory()
        try:
            db.add(
                JobRecord(
                    id=job.id,
                    type=job.type,
                    status=job.status.value,
                    progress=job.progress,
                    result=job.result,
                    error=job.error,
                    created_at=job.created_at,
                    updated_at=job.updated_at,
                )
            )
            db.commit()
        finally:
            db.close()

    def update_job_status(self, job_id: str, fields: dict) -> None:
        db = self._session_factory()
        try:
            record = db.get(JobRecord, job_id)
            if record is None:
                raise NotFound(f"Job {job_id} not found")
            for name, value in fields.items():
                setattr(record, name, value.value if isinstance(value, JobStatus) else value)
            db.commit()
        finally:
            db.close()

    def get(self, job_id: str) -> Job | None:
        db = self._session_factory()
        try:
            record = db.get(JobRecord, job_id)
            if record is None:
                return None
            return Job(
                id=record.id,
                type=record.type,
                status=JobStatus(record.status),
                progress=record.progress,
                result=record.result,
                error=record.error,
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
        finally:
            db.close()


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

# Computations receive the job id and a push-only progress callback.
Computation = Callable[[str, Callable[[float], bool]], Any]


class _ReadWriteLock:
    """Many readers or one writer."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass
class _Execution:
    job: Job
    computation: Computation
    thread: threading.Thread | None = None
    finished_at: float | None = None


class JobExecutor:
    def __init__(self, repository=None, buffer_size: int | None = None):
        self.repository = repository if repository is not None else InMemoryJobRepository()
        self._buffer_size = buffer_size or settings.progress_buffer_size
        self._lock = _ReadWriteLock()
        self._executions: dict[str, _Execution] = {}
        self._progress: dict[str, ProgressStream] = {}

    def submit(self, job_type: str, computation: Computation) -> Job:
        job = Job(id=str(uuid.uuid4()), type=str(getattr(job_type, "value", job_type)))
        self.repository.persist_job(job)

        stream = ProgressStream(self._buffer_size)
        execution = _Execution(job=job, computation=computation)
        execution.thread = threading.Thread(
            target=self._execute, args=(job.id,), name=f"risk-job-{job.id[:8]}", daemon=True
        )
        with self._lock.write():
            self._executions[job.id] = execution
            self._progress[job.id] = stream
        logger.info("Queued %s job %s", job.type, job.id)

        snapshot = replace(job)
        execution.thread.start()
        return snapshot

    def _transition(self, job_id: str, status: JobStatus, **fields) -> None:
        with self._lock.write():
            job = self._executions[job_id].job
            if status not in _ALLOWED.get(job.status, ()):
                raise RuntimeError(f"Illegal job transition {job.status.value} -> {status.value}")
            job.status = status
            job.updated_at = datetime.utcnow()
            for name, value in fields.items():
                setattr(job, name, value)
            try:
                self.repository.update_job_status(
                    job_id, {"status": status, "updated_at": job.updated_at, **fields}
                )
            except Exception:
                # Best-effort store: the in-memory state machine still advances.
                logger.exception("Could not persist %s for job %s", status.value, job_id)

    def _execute(self, job_id: str) -> None:
        with self._lock.read():
            execution = self._executions[job_id]
            stream = self._progress[job_id]

        self._transition(job_id, JobStatus.RUNNING)
        logger.info("Running %s job %s", execution.job.type, job_id)
        try:
            result = execution.computation(job_id, stream.push)
        except Exception as exc:
            logger.warning("Job %s failed: %s", job_id, exc, exc_info=True)
            message = str(exc) or exc.__class__.__name__
            self._transition(job_id, JobStatus.FAILED, progress=0, result=None, error=message)
        else:
            self._transition(job_id, JobStatus.SUCCEEDED, progress=100, result=result, error=None)
            logger.info("Job %s succeeded", job_id)

        # Terminal state is persisted; only now may the stream close.
        stream.close()
        with self._lock.write():
            self._progress.pop(job_id, None)
            execution.finished_at = monotonic()

    def get_job(self, job_id: str) -> Job:
        job = self.repository.get(job_id)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job

    def get_progress(self, job_id: str) -> ProgressStream:
        with self._lock.read():
            stream = self._progress.get(job_id)
        if stream is None:
            raise NotFound(f"Job {job_id} not found or completed")
        return stream

    def wait(self, job_id: str, timeout: float | None = None) -> Job:
        """Block until the job's worker thread exits, then return its snapshot."""
        with self._lock.read():
            execution = self._executions.get(job_id)
        if execution is not None and execution.thread is not None:
            execution.thread.join(timeout)
        return self.get_job(job_id)

    def purge_finished(self, ttl: float | None = None) -> int:
        """Drop finished executions older than *ttl* seconds from the registry."""
        ttl = settings.job_ttl_seconds if ttl is None else ttl
        now = monotonic()
        with self._lock.write():
            to_delete = [
                jid for jid, ex in self._executions.items()
                if ex.finished_at is not None and (now - ex.finished_at) >= ttl
            ]
            for jid in to_delete:
                del self._executions[jid]
        return len(to_delete)
