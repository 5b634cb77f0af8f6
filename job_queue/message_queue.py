"""
Delayed Queue — Abstract contract with Redis and in-memory backends.

The scheduling core consumes the broker only through this narrow contract:

  enqueue(key, category, payload, delay)  upsert on key; a second enqueue for
                                          the same key replaces the pending
                                          job's payload and due time
  cancel(key)                             True iff a pending (not yet
                                          executing) job existed and was removed
  consume(handler, on_exhausted)          at-least-once delivery of due jobs,
                                          bounded retries with exponential
                                          backoff, one exhaustion callback

Redis Topology (prefix "notify" by default):
  notify:jobs          hash   key    -> pending job JSON
  notify:delayed       zset   key    -> due timestamp
  notify:active        zset   job_id -> lease deadline
  notify:active_jobs   hash   job_id -> executing job JSON
  notify:history       hash   job_id -> completed/failed job JSON
  notify:completed     zset   job_id -> finished timestamp
  notify:failed        zset   job_id -> finished timestamp

`notify:jobs` and `notify:delayed` are only ever mutated together inside a
MULTI block, so a key has a pending record iff it has a due time. A claim
moves a job from the pending pair to the active pair in one transaction.
An expired lease counts as a failed attempt.
"""
from __future__ import annotations

import asyncio
import json
import uuid
import structlog
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

from models.schemas import JobStatus, family_of

logger = structlog.get_logger()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Errors
# ──────────────────────────────────────────────────────────────

class QueueError(Exception):
    """Base exception for delayed-queue operations."""


class QueueUnavailableError(QueueError):
    """The queue backend is not connected or cannot be reached."""


class LeaseExpiredError(QueueError):
    """An executing job outlived its lease without being settled."""


# ──────────────────────────────────────────────────────────────
#  Job Model
# ──────────────────────────────────────────────────────────────

@dataclass
class QueueJob:
    """A unit of work held by the broker."""
    key: str
    category: str
    payload: dict[str, Any] = field(default_factory=dict)
    family: str = ""
    due_at: str = ""
    attempt: int = 0                  # attempts already made before this delivery
    max_attempts: int = 3
    status: JobStatus = JobStatus.PENDING
    job_id: str = ""                  # new per enqueue, stable across retries
    created_at: str = ""
    finished_at: str = ""
    last_error: str = ""

    def __post_init__(self):
        if not self.job_id:
            self.job_id = f"job_{uuid.uuid4().hex[:12]}"
        if not self.created_at:
            self.created_at = utc_now().isoformat()
        if not self.due_at:
            self.due_at = self.created_at
        if not self.family:
            family = family_of(self.category)
            self.family = family.value if family else ""
        self.status = JobStatus(self.status)

    @property
    def entity_id(self) -> str:
        return str(self.payload.get("entity_id", ""))

    @property
    def fund_id(self) -> str:
        return str(self.payload.get("fund_id", ""))

    @property
    def due_timestamp(self) -> float:
        return datetime.fromisoformat(self.due_at).timestamp()

    def to_json(self) -> str:
        d = asdict(self)
        d["status"] = self.status.value
        return json.dumps(d)

    @classmethod
    def from_json(cls, raw: str) -> QueueJob:
        data = json.loads(raw)
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


# ──────────────────────────────────────────────────────────────
#  Policies
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_seconds: float = 60.0

    def backoff_for(self, attempts_made: int) -> timedelta:
        """Delay before the next attempt: base, 2*base, 4*base, ..."""
        return timedelta(seconds=self.backoff_base_seconds * (2 ** max(attempts_made - 1, 0)))


@dataclass(frozen=True)
class RetentionPolicy:
    completed_seconds: int = 7 * 24 * 60 * 60
    completed_count: int = 1000
    failed_seconds: int = 30 * 24 * 60 * 60


JobHandler = Callable[[QueueJob], Awaitable[Any]]
ExhaustedHook = Callable[[QueueJob, BaseException], Awaitable[None]]


# ──────────────────────────────────────────────────────────────
#  Abstract Interface
# ──────────────────────────────────────────────────────────────

class DelayedQueue(ABC):
    """
    Abstract delayed queue.

    Backends implement the storage primitives; delivery, retry and
    exhaustion handling are shared here so every backend behaves the same.
    """

    is_available = True

    def __init__(
        self,
        retry: RetryPolicy = None,
        retention: RetentionPolicy = None,
        lease_seconds: int = 300,
    ):
        self.retry = retry or RetryPolicy()
        self.retention = retention or RetentionPolicy()
        self.lease_seconds = lease_seconds
        self._running = False
        self._inflight: set[asyncio.Task] = set()

    # ── Storage primitives ────────────────────────────────────

    @abstractmethod
    async def connect(self):
        """Establish connection to the queue backend."""
        ...

    @abstractmethod
    async def close(self):
        """Gracefully shut down."""
        ...

    @abstractmethod
    async def _store_pending(self, job: QueueJob, replace: bool = True) -> bool:
        """Write a pending job and its due time. With replace=False keep an existing one."""
        ...

    @abstractmethod
    async def cancel(self, key: str) -> bool:
        """Remove a pending job. True iff one existed and was removed."""
        ...

    @abstractmethod
    async def get_job(self, key: str) -> Optional[QueueJob]:
        """Return the pending job for a key, if any."""
        ...

    @abstractmethod
    async def pending_count(self) -> int:
        ...

    @abstractmethod
    async def claim_due(self, limit: int, now: datetime = None) -> list[QueueJob]:
        """Atomically move up to `limit` due jobs from pending to executing."""
        ...

    @abstractmethod
    async def _finish(self, job: QueueJob):
        """Release the lease of an executing job and record it in history."""
        ...

    @abstractmethod
    async def _release(self, job: QueueJob):
        """Release the lease of an executing job without recording it."""
        ...

    @abstractmethod
    async def requeue_stalled(self, now: datetime = None, on_exhausted: ExhaustedHook = None) -> int:
        """
        Settle jobs whose lease expired as failed attempts: retried with
        backoff, or finished as failed once attempts run out.
        Returns the number of expired leases handled.
        """
        ...

    @abstractmethod
    async def purge_history(self, now: datetime = None) -> int:
        """Drop completed/failed records older than the retention window."""
        ...

    # ── Producer side ─────────────────────────────────────────

    async def enqueue(
        self,
        key: str,
        category: str,
        payload: dict[str, Any],
        delay: timedelta,
        now: datetime = None,
    ) -> QueueJob:
        """Schedule a job to run after `delay`. Replaces any pending job on the same key."""
        now = now or utc_now()
        job = QueueJob(
            key=key,
            category=category,
            payload=payload,
            due_at=(now + delay).isoformat(),
            max_attempts=self.retry.max_attempts,
        )
        await self._store_pending(job, replace=True)
        logger.debug("job_enqueued",
                     key=key,
                     job_id=job.job_id,
                     due_at=job.due_at)
        return job

    # ── Consumer side ─────────────────────────────────────────

    async def process_job(
        self,
        job: QueueJob,
        handler: JobHandler,
        on_exhausted: ExhaustedHook = None,
        now: datetime = None,
    ):
        """Run one delivery of a claimed job and settle it."""
        try:
            await handler(job)
        except Exception as e:
            await self._handle_failure(job, e, on_exhausted, now)
            return
        job.status = JobStatus.COMPLETED
        job.finished_at = (now or utc_now()).isoformat()
        await self._finish(job)

    async def _handle_failure(
        self,
        job: QueueJob,
        error: Exception,
        on_exhausted: Optional[ExhaustedHook],
        now: datetime = None,
    ):
        now = now or utc_now()
        attempts_made = job.attempt + 1
        job.last_error = str(error)

        if attempts_made >= job.max_attempts:
            job.attempt = attempts_made
            job.status = JobStatus.FAILED
            job.finished_at = now.isoformat()
            try:
                await self._finish(job)
            finally:
                logger.warning("job_attempts_exhausted",
                               key=job.key,
                               job_id=job.job_id,
                               attempts=attempts_made)
                if on_exhausted:
                    await on_exhausted(job, error)
            return

        retry_at = now + self.retry.backoff_for(attempts_made)
        retry_job = QueueJob(
            key=job.key,
            category=job.category,
            payload=job.payload,
            family=job.family,
            due_at=retry_at.isoformat(),
            attempt=attempts_made,
            max_attempts=job.max_attempts,
            job_id=job.job_id,            # same job_id across retries for tracing
            created_at=job.created_at,
            last_error=job.last_error,
        )
        # the retry is stored before the lease is released, so the job is always in one of the two sets
        stored = await self._store_pending(retry_job, replace=False)
        await self._release(job)
        if stored:
            logger.info("job_scheduled_for_retry",
                        key=job.key,
                        job_id=job.job_id,
                        attempt=attempts_made,
                        retry_at=retry_job.due_at)
        else:
            # a newer enqueue on the same key supersedes the retry
            logger.info("job_retry_superseded", key=job.key, job_id=job.job_id)

    async def run_once(
        self,
        handler: JobHandler,
        on_exhausted: ExhaustedHook = None,
        limit: int = 10,
        now: datetime = None,
    ) -> int:
        """Claim and process every due job (up to `limit`). Returns the number processed."""
        jobs = await self.claim_due(limit, now)
        if jobs:
            await asyncio.gather(*(self.process_job(j, handler, on_exhausted, now) for j in jobs))
        return len(jobs)

    async def consume(
        self,
        handler: JobHandler,
        on_exhausted: ExhaustedHook = None,
        batch_size: int = 10,
        poll_interval: float = 1.0,
        housekeeping_interval: float = 60.0,
    ):
        """
        Poll for due jobs until stop() is called.
        At most `batch_size` jobs are claimed and in flight at once.
        """
        self._running = True
        logger.info("consumer_started",
                    backend=type(self).__name__,
                    batch_size=batch_size)
        last_housekeeping = 0.0
        loop = asyncio.get_running_loop()

        while self._running:
            try:
                if loop.time() - last_housekeeping >= housekeeping_interval:
                    await self.requeue_stalled(on_exhausted=on_exhausted)
                    await self.purge_history()
                    last_housekeeping = loop.time()

                free = batch_size - len(self._inflight)
                if free > 0:
                    for job in await self.claim_due(free):
                        task = asyncio.create_task(self.process_job(job, handler, on_exhausted))
                        self._inflight.add(task)
                        task.add_done_callback(self._settled)
                await asyncio.sleep(poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("consumer_error", error=str(e))
                await asyncio.sleep(poll_interval)

    def _settled(self, task: asyncio.Task):
        self._inflight.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # the job stays leased and is redelivered when the lease expires
            logger.error("consumer_error", error=str(error), exc_info=error)

    async def stop(self, drain: bool = True):
        """Stop polling; optionally wait for in-flight jobs to settle."""
        self._running = False
        if drain and self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)


# ──────────────────────────────────────────────────────────────
#  Redis Implementation
# ──────────────────────────────────────────────────────────────

class RedisDelayedQueue(DelayedQueue):
    """
    Production queue backed by Redis sorted sets and hashes.

    Claiming is a WATCH/MULTI move from the pending set to the active set,
    so with several worker processes each due job is handed to exactly one
    of them.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "notify",
        client=None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._redis_url = redis_url
        self._prefix = key_prefix
        self._redis = client

    def _k(self, name: str) -> str:
        return f"{self._prefix}:{name}"

    @property
    def client(self):
        if self._redis is None:
            raise QueueUnavailableError("Redis queue is not connected")
        return self._redis

    async def connect(self):
        from redis.exceptions import RedisError

        if self._redis is None:
            import redis.asyncio as aioredis
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                max_connections=20,
            )
        try:
            await self._redis.ping()
        except (RedisError, OSError) as e:
            raise QueueUnavailableError(f"Redis unreachable: {e}") from e
        logger.info("redis_queue_connected", prefix=self._prefix)

    async def close(self):
        self._running = False
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def _execute(self, build: Callable[[Any], None]) -> list[Any]:
        """Run commands added by `build` in one MULTI/EXEC block."""
        from redis.exceptions import RedisError

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                build(pipe)
                return await pipe.execute()
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e

    async def _store_pending(self, job: QueueJob, replace: bool = True) -> bool:
        payload = job.to_json()
        score = job.due_timestamp

        def build(pipe):
            if replace:
                pipe.hset(self._k("jobs"), job.key, payload)
                pipe.zadd(self._k("delayed"), {job.key: score})
            else:
                pipe.hsetnx(self._k("jobs"), job.key, payload)
                pipe.zadd(self._k("delayed"), {job.key: score}, nx=True)

        results = await self._execute(build)
        return replace or bool(results[0])

    async def cancel(self, key: str) -> bool:
        results = await self._execute(lambda pipe: (
            pipe.zrem(self._k("delayed"), key),
            pipe.hdel(self._k("jobs"), key),
        ))
        return bool(results[0])

    async def get_job(self, key: str) -> Optional[QueueJob]:
        raw = await self.client.hget(self._k("jobs"), key)
        return QueueJob.from_json(raw) if raw else None

    async def pending_count(self) -> int:
        return await self.client.zcard(self._k("delayed"))

    async def claim_due(self, limit: int, now: datetime = None) -> list[QueueJob]:
        from redis.exceptions import RedisError

        now = now or utc_now()
        try:
            keys = await self.client.zrangebyscore(
                self._k("delayed"), "-inf", now.timestamp(), start=0, num=limit,
            )
            claimed = []
            for key in keys:
                job = await self._claim(key, now)
                if job is not None:
                    claimed.append(job)
            return claimed
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e

    async def _claim(self, key: str, now: datetime) -> Optional[QueueJob]:
        """
        Move one pending job to the active set under WATCH, so the record
        is either still pending or leased, never neither.
        """
        from redis.exceptions import WatchError

        async with self.client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(self._k("jobs"), self._k("delayed"))
                raw = await pipe.hget(self._k("jobs"), key)
                if raw is None:
                    return None  # cancelled or claimed meanwhile
                job = QueueJob.from_json(raw)
                job.status = JobStatus.EXECUTING
                pipe.multi()
                pipe.zrem(self._k("delayed"), key)
                pipe.hdel(self._k("jobs"), key)
                pipe.hset(self._k("active_jobs"), job.job_id, job.to_json())
                pipe.zadd(self._k("active"), {job.job_id: now.timestamp() + self.lease_seconds})
                await pipe.execute()
            except WatchError:
                # the pending set changed under us; the key is picked up on the next poll
                return None
        return job

    async def _finish(self, job: QueueJob):
        bucket = "completed" if job.status == JobStatus.COMPLETED else "failed"
        finished = datetime.fromisoformat(job.finished_at).timestamp()
        await self._execute(lambda pipe: (
            pipe.zrem(self._k("active"), job.job_id),
            pipe.hdel(self._k("active_jobs"), job.job_id),
            pipe.hset(self._k("history"), job.job_id, job.to_json()),
            pipe.zadd(self._k(bucket), {job.job_id: finished}),
        ))

    async def _release(self, job: QueueJob):
        await self._execute(lambda pipe: (
            pipe.zrem(self._k("active"), job.job_id),
            pipe.hdel(self._k("active_jobs"), job.job_id),
        ))

    async def get_history(self, job_id: str) -> Optional[QueueJob]:
        raw = await self.client.hget(self._k("history"), job_id)
        return QueueJob.from_json(raw) if raw else None

    async def requeue_stalled(self, now: datetime = None, on_exhausted: ExhaustedHook = None) -> int:
        from redis.exceptions import RedisError

        now = now or utc_now()
        try:
            job_ids = await self.client.zrangebyscore(self._k("active"), "-inf", now.timestamp())
            expired = []
            for job_id in job_ids:
                job = await self._take_expired(job_id, now)
                if job is not None:
                    expired.append(job)
        except RedisError as e:
            raise QueueUnavailableError(str(e)) from e

        for job in expired:
            logger.warning("job_lease_expired",
                           key=job.key,
                           job_id=job.job_id,
                           attempt=job.attempt + 1)
            await self._handle_failure(
                job, LeaseExpiredError(f"lease of {self.lease_seconds}s expired"), on_exhausted, now,
            )
        return len(expired)

    async def _take_expired(self, job_id: str, now: datetime) -> Optional[QueueJob]:
        """
        Renew an expired lease to this caller so exactly one housekeeper
        settles the job. The active record stays until it is settled.
        """
        from redis.exceptions import WatchError

        async with self.client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(self._k("active"))
                lease = await pipe.zscore(self._k("active"), job_id)
                raw = await pipe.hget(self._k("active_jobs"), job_id)
                if lease is None or lease > now.timestamp() or raw is None:
                    return None
                pipe.multi()
                pipe.zadd(self._k("active"), {job_id: now.timestamp() + self.lease_seconds})
                await pipe.execute()
            except WatchError:
                return None
        return QueueJob.from_json(raw)

    async def purge_history(self, now: datetime = None) -> int:
        now = now or utc_now()
        completed_cutoff = now.timestamp() - self.retention.completed_seconds
        failed_cutoff = now.timestamp() - self.retention.failed_seconds

        expired = set(await self.client.zrangebyscore(self._k("completed"), "-inf", completed_cutoff))
        # keep only the newest N completed records
        expired.update(await self.client.zrange(
            self._k("completed"), 0, -(self.retention.completed_count + 1),
        ))
        expired_failed = set(await self.client.zrangebyscore(self._k("failed"), "-inf", failed_cutoff))

        if not expired and not expired_failed:
            return 0

        def build(pipe):
            if expired:
                pipe.zrem(self._k("completed"), *expired)
            if expired_failed:
                pipe.zrem(self._k("failed"), *expired_failed)
            pipe.hdel(self._k("history"), *(expired | expired_failed))

        await self._execute(build)
        purged = len(expired) + len(expired_failed)
        logger.info("job_history_purged", count=purged)
        return purged


# ──────────────────────────────────────────────────────────────
#  In-Memory Implementation (Development)
# ──────────────────────────────────────────────────────────────

class InMemoryDelayedQueue(DelayedQueue):
    """
    Development/test queue backed by plain dicts.
    Single-process only — no persistence.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self._pending: dict[str, QueueJob] = {}                 # key -> job
        self._active: dict[str, tuple[QueueJob, float]] = {}    # job_id -> (job, lease deadline)
        self._history: dict[str, QueueJob] = {}                 # job_id -> finished job

    async def connect(self):
        logger.info("inmemory_queue_connected")

    async def close(self):
        self._running = False

    async def _store_pending(self, job: QueueJob, replace: bool = True) -> bool:
        if not replace and job.key in self._pending:
            return False
        job.status = JobStatus.PENDING
        self._pending[job.key] = job
        return True

    async def cancel(self, key: str) -> bool:
        job = self._pending.pop(key, None)
        if job is None:
            return False
        job.status = JobStatus.CANCELLED
        return True

    async def get_job(self, key: str) -> Optional[QueueJob]:
        return self._pending.get(key)

    async def pending_count(self) -> int:
        return len(self._pending)

    def pending_keys(self) -> list[str]:
        return sorted(self._pending)

    def history(self) -> list[QueueJob]:
        return list(self._history.values())

    async def claim_due(self, limit: int, now: datetime = None) -> list[QueueJob]:
        now = now or utc_now()
        ts = now.timestamp()
        due = sorted(
            (j for j in self._pending.values() if j.due_timestamp <= ts),
            key=lambda j: j.due_timestamp,
        )[:limit]
        for job in due:
            del self._pending[job.key]
            job.status = JobStatus.EXECUTING
            self._active[job.job_id] = (job, ts + self.lease_seconds)
        return due

    async def _finish(self, job: QueueJob):
        self._active.pop(job.job_id, None)
        self._history[job.job_id] = job

    async def _release(self, job: QueueJob):
        self._active.pop(job.job_id, None)

    async def requeue_stalled(self, now: datetime = None, on_exhausted: ExhaustedHook = None) -> int:
        now = now or utc_now()
        stalled = [job for job, lease in self._active.values() if lease < now.timestamp()]
        for job in stalled:
            await self._handle_failure(
                job, LeaseExpiredError(f"lease of {self.lease_seconds}s expired"), on_exhausted, now,
            )
        return len(stalled)

    async def purge_history(self, now: datetime = None) -> int:
        now = now or utc_now()
        ts = now.timestamp()
        completed = sorted(
            (j for j in self._history.values() if j.status == JobStatus.COMPLETED),
            key=lambda j: j.finished_at,
        )
        expired = {
            j.job_id for j in completed
            if ts - datetime.fromisoformat(j.finished_at).timestamp() > self.retention.completed_seconds
        }
        overflow = len(completed) - self.retention.completed_count
        if overflow > 0:
            expired.update(j.job_id for j in completed[:overflow])
        expired.update(
            j.job_id for j in self._history.values()
            if j.status == JobStatus.FAILED
            and ts - datetime.fromisoformat(j.finished_at).timestamp() > self.retention.failed_seconds
        )
        for job_id in expired:
            del self._history[job_id]
        return len(expired)


# ──────────────────────────────────────────────────────────────
#  Disabled Implementation (no broker configured)
# ──────────────────────────────────────────────────────────────

class DisabledDelayedQueue(DelayedQueue):
    """
    Stand-in used when no broker is configured or it could not be reached.
    Every operation is a no-op so business actions never fail on it.
    """

    is_available = False

    def __init__(self, reason: str = "queue backend not configured", **kwargs):
        super().__init__(**kwargs)
        self.reason = reason

    async def connect(self):
        logger.warning("queue_unavailable", reason=self.reason)

    async def close(self):
        pass

    async def enqueue(self, key, category, payload, delay, now=None):
        logger.warning("queue_unavailable", action="enqueue", key=key, reason=self.reason)
        return None

    async def _store_pending(self, job: QueueJob, replace: bool = True) -> bool:
        return False

    async def cancel(self, key: str) -> bool:
        logger.warning("queue_unavailable", action="cancel", key=key, reason=self.reason)
        return False

    async def get_job(self, key: str) -> Optional[QueueJob]:
        return None

    async def pending_count(self) -> int:
        return 0

    async def claim_due(self, limit: int, now: datetime = None) -> list[QueueJob]:
        return []

    async def _finish(self, job: QueueJob):
        pass

    async def _release(self, job: QueueJob):
        pass

    async def requeue_stalled(self, now: datetime = None, on_exhausted: ExhaustedHook = None) -> int:
        return 0

    async def purge_history(self, now: datetime = None) -> int:
        return 0

    async def consume(self, handler, on_exhausted=None, batch_size=10, poll_interval=1.0,
                      housekeeping_interval=60.0):
        logger.warning("consumer_not_started", reason=self.reason)


# ──────────────────────────────────────────────────────────────
#  Factory
# ──────────────────────────────────────────────────────────────

def create_delayed_queue(queue_config=None) -> DelayedQueue:
    """
    Factory: create the queue backend described by a QueueConfig.
    A redis backend without a usable URL degrades to the disabled queue.
    """
    from config.settings import QueueConfig

    config: QueueConfig = queue_config or QueueConfig()
    common = dict(
        retry=RetryPolicy(
            max_attempts=config.max_attempts,
            backoff_base_seconds=config.retry_backoff_base,
        ),
        retention=RetentionPolicy(
            completed_seconds=config.completed_retention_seconds,
            completed_count=config.completed_retention_count,
            failed_seconds=config.failed_retention_seconds,
        ),
        lease_seconds=config.lease_seconds,
    )

    if config.backend == "redis":
        if not config.redis_configured:
            logger.warning("queue_unavailable", reason="REDIS_URL not set")
            return DisabledDelayedQueue("REDIS_URL not set", **common)
        return RedisDelayedQueue(
            redis_url=config.redis_url,
            key_prefix=config.key_prefix,
            **common,
        )
    if config.backend == "memory":
        return InMemoryDelayedQueue(**common)
    return DisabledDelayedQueue(f"queue backend '{config.backend}' disabled", **common)
