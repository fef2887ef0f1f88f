# shared/delivery.py
from __future__ import annotations

import asyncio
import logging
import re
from collections import OrderedDict, deque
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple

from adapters.whatsapp.transport import TransportUnavailableError
from models.delivery import BulkItemResult, DeliveryJobView, DeliveryLogEntry, DeliveryStatus
from observability.obs import mark_error, span_attrs
from shared import time
from shared.rate_limit import RollingWindowLimiter
from store.delivery_store import DeliveryJobStore

logger = logging.getLogger(__name__)

Sender = Callable[[str, str], Awaitable[Any]]


class QueueInfrastructureError(Exception):
    """The job store (not the chat transport) failed: credentials, quota, storage."""


_CREDENTIAL_MARKERS = ("unauthenticated", "permissiondenied", "permission denied", "noauth", "credential")
_STORAGE_MARKERS = ("resourceexhausted", "quota", "misconf", "storage")


def remediation_hint(exc: BaseException) -> Optional[str]:
    cause = exc.__cause__ or exc
    text = f"{type(cause).__name__} {exc}".lower()
    if any(m in text for m in _CREDENTIAL_MARKERS):
        return "Job store rejected our credentials. Check SECRETS_DIR/firebase.json and the service account's Firestore roles."
    if any(m in text for m in _STORAGE_MARKERS):
        return "Job store is out of quota or storage. Check the Firestore project's usage limits."
    return None


_VOLATILE_RE = re.compile(r"[0-9a-f]{16,}|\d+", re.IGNORECASE)


class ErrorLogThrottle:
    """
    Logs an error signature the first time and then every `every`-th repeat.
    Ids and numbers are masked out of the signature so the same outage on
    different jobs counts as one error. At most `max_signatures` are tracked.
    """

    def __init__(self, every: int = 10, max_signatures: int = 256):
        self.every = every
        self.max_signatures = max_signatures
        self._counts: "OrderedDict[str, int]" = OrderedDict()

    @staticmethod
    def signature(exc: BaseException) -> str:
        cause = exc.__cause__ or exc
        message = _VOLATILE_RE.sub("#", str(exc))[:120]
        return f"{type(cause).__name__}:{message}"

    def hit(self, exc: BaseException) -> Tuple[bool, int]:
        sig = self.signature(exc)
        count = self._counts.pop(sig, 0) + 1
        self._counts[sig] = count
        while len(self._counts) > self.max_signatures:
            self._counts.popitem(last=False)
        return (count == 1 or count % self.every == 0), count

    def log(self, log: logging.Logger, exc: BaseException, context: str) -> bool:
        should, count = self.hit(exc)
        if not should:
            return False
        log.error("[delivery] %s: %s (occurrence %d)", context, exc, count)
        hint = remediation_hint(exc)
        if hint:
            log.error("[delivery] hint: %s", hint)
        return True


async def wait_or_stop(stop_event: asyncio.Event, timeout: float) -> None:
    if stop_event.is_set():
        return
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        pass


class DeliveryPipeline:
    """
    Outbound message queue.

    enqueue() persists a PENDING job and returns its id straight away; a pool of
    workers sends it through `sender` under a global rolling-window rate limit.
    A failed attempt is recorded as FAILED and retried with exponential backoff
    until `max_attempts` is used up; the last FAILED is terminal. Each attempt's
    result (SENT or FAILED) is appended to the job's log. A FAILED job waiting
    for its retry carries `next_attempt_at`, so recover() can pick it up after a
    restart.
    """

    def __init__(
        self,
        store: DeliveryJobStore,
        sender: Sender,
        concurrency: int = 5,
        rate_limit_per_minute: int = 60,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        completed_retention_seconds: int = 3600,
        completed_retention_count: int = 1000,
        failed_retention_seconds: int = 86400,
        infra_retry_seconds: float = 5.0,
        limiter: Optional[RollingWindowLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.sender = sender
        self.concurrency = max(1, concurrency)
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.completed_retention_seconds = completed_retention_seconds
        self.completed_retention_count = completed_retention_count
        self.failed_retention_seconds = failed_retention_seconds
        self.infra_retry_seconds = infra_retry_seconds
        self.limiter = limiter or RollingWindowLimiter(limit=rate_limit_per_minute, window=60.0)
        self._sleep = sleep

        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._stop = asyncio.Event()
        self._workers: List[asyncio.Task] = []
        self._retry_tasks: Set[asyncio.Task] = set()
        self._active = 0
        self._completed: Deque[Tuple[str, datetime]] = deque()
        self._failed: Deque[Tuple[str, datetime]] = deque()
        self.throttle = ErrorLogThrottle()

    # ---------- lifecycle ----------

    def start(self) -> None:
        if self._workers:
            return
        self._stop.clear()
        self._workers = [asyncio.create_task(self._worker(i)) for i in range(self.concurrency)]
        logger.info("[delivery] started %d workers", self.concurrency)

    async def stop(self) -> None:
        self._stop.set()
        tasks = self._workers + list(self._retry_tasks)
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._retry_tasks.clear()
        logger.info("[delivery] stopped")

    async def drain(self) -> None:
        """Wait until nothing is queued, running or waiting for a retry."""
        while True:
            await self._queue.join()
            if not self._retry_tasks:
                return
            await asyncio.gather(*list(self._retry_tasks), return_exceptions=True)

    def recover(self) -> int:
        """Re-submit jobs a previous run left PENDING/QUEUED or waiting for a retry."""
        try:
            jobs = self._store_call(self.store.list_unfinished)
        except QueueInfrastructureError as e:
            self.throttle.log(logger, e, "recovery failed")
            return 0
        now = time.utcnow()
        for job in jobs:
            if job.next_attempt_at is not None:
                self._schedule_retry(job.id, max(0.0, (job.next_attempt_at - now).total_seconds()))
            else:
                self._queue.put_nowait(job.id)
        if jobs:
            logger.info("[delivery] recovered %d unfinished jobs", len(jobs))
        return len(jobs)

    # ---------- submission ----------

    async def enqueue(self, recipient: str, body: str, user_id: str, template_id: Optional[str] = None) -> str:
        try:
            job = self._store_call(self.store.create, user_id, recipient, body, template_id)
        except QueueInfrastructureError as e:
            self.throttle.log(logger, e, "enqueue failed")
            raise
        self._queue.put_nowait(job.id)
        logger.info("[delivery] job %s queued for %s", job.id, recipient)
        return job.id

    async def enqueue_bulk(
        self,
        items: List[Tuple[str, str]],
        user_id: str,
        template_id: Optional[str] = None,
    ) -> List[BulkItemResult]:
        results: List[BulkItemResult] = []
        for recipient, body in items:
            try:
                job_id = await self.enqueue(recipient, body, user_id, template_id)
                results.append(BulkItemResult(recipient=recipient, success=True, job_id=job_id))
            except Exception as e:
                logger.warning("[delivery] bulk item for %s not queued: %s", recipient, e)
                results.append(BulkItemResult(recipient=recipient, success=False, error=str(e)))
        return results

    # ---------- inspection ----------

    def get_view(self, job_id: str, log_limit: int = 10) -> Optional[DeliveryJobView]:
        job = self._store_call(self.store.get, job_id)
        if job is None:
            return None
        logs = self._store_call(self.store.list_logs, job_id, log_limit)
        return DeliveryJobView(job=job, logs=logs)

    def stats(self) -> Dict[str, int]:
        self._prune()
        return {
            "waiting": self._queue.qsize(),
            "active": self._active,
            "delayed": len(self._retry_tasks),
            "completed": len(self._completed),
            "failed": len(self._failed),
            "workers": len(self._workers),
        }

    # ---------- workers ----------

    async def _worker(self, n: int) -> None:
        while not self._stop.is_set():
            try:
                job_id = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue

            self._active += 1
            try:
                await self._attempt(job_id)
            except asyncio.CancelledError:
                raise
            except QueueInfrastructureError as e:
                # the job stays in the store; try it again once the store recovers
                self.throttle.log(logger, e, f"job {job_id} could not be processed")
                self._schedule_retry(job_id, self.infra_retry_seconds)
            except Exception:
                logger.exception("[delivery] worker %d failed on job %s", n, job_id)
            finally:
                self._active -= 1
                self._queue.task_done()

    async def _attempt(self, job_id: str) -> None:
        job = self._store_call(self.store.get, job_id)
        if job is None:
            logger.warning("[delivery] job %s vanished from the store", job_id)
            return
        if job.status == DeliveryStatus.SENT:
            return

        attempt = job.attempts_made + 1
        if attempt > self.max_attempts:
            self._set_status(job_id, DeliveryStatus.FAILED, job.attempts_made, log=False,
                             error_message=job.error_message or "attempts exhausted", next_attempt_at=None)
            self._record(self._failed, job_id)
            return

        await self.limiter.acquire()
        self._set_status(job_id, DeliveryStatus.QUEUED, attempt, log=False, attempts_made=attempt)

        with span_attrs("delivery.attempt", job_id=job_id, attempt=attempt) as span:
            try:
                await self.sender(job.recipient, job.body)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = str(e) or type(e).__name__
                mark_error(e, kind="DeliveryError", span=span)
                self._on_send_failure(job_id, attempt, e, error)
                return

        self._set_status(job_id, DeliveryStatus.SENT, attempt,
                         sent_at=time.utcnow(), error_message=None, next_attempt_at=None)
        self._record(self._completed, job_id)
        logger.info("[delivery] job %s sent (attempt %d)", job_id, attempt)

    def _on_send_failure(self, job_id: str, attempt: int, exc: Exception, error: str) -> None:
        if isinstance(exc, TransportUnavailableError):
            logger.warning("[delivery] job %s attempt %d: transport unavailable: %s", job_id, attempt, error)
        else:
            logger.error("[delivery] job %s attempt %d failed: %s", job_id, attempt, error)

        if attempt >= self.max_attempts:
            self._set_status(job_id, DeliveryStatus.FAILED, attempt, attempts_made=attempt,
                             error_message=error, next_attempt_at=None)
            logger.error("[delivery] job %s failed after %d attempts", job_id, attempt)
            self._record(self._failed, job_id)
            return

        delay = self.backoff_seconds * (2 ** (attempt - 1))
        self._set_status(job_id, DeliveryStatus.FAILED, attempt, attempts_made=attempt, error_message=error,
                         next_attempt_at=time.utcnow() + timedelta(seconds=delay))
        logger.info("[delivery] job %s retry in %.1fs", job_id, delay)
        self._schedule_retry(job_id, delay)

    def _schedule_retry(self, job_id: str, delay: float) -> None:
        task = asyncio.create_task(self._retry_later(job_id, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _retry_later(self, job_id: str, delay: float) -> None:
        await self._sleep(delay)
        self._queue.put_nowait(job_id)

    # ---------- persistence ----------

    @staticmethod
    def _store_call(fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except Exception as e:
            raise QueueInfrastructureError(f"{type(e).__name__}: {e}") from e

    def _set_status(self, job_id: str, status: DeliveryStatus, attempt: int, log: bool = True,
                    **fields: Any) -> None:
        self._store_call(self.store.update, job_id, status=status, **fields)
        if log:
            self._log_transition(job_id, status, attempt, error_message=fields.get("error_message"))

    def _log_transition(self, job_id: str, status: DeliveryStatus, attempt: int,
                        error_message: Optional[str] = None) -> None:
        entry = DeliveryLogEntry(
            job_id=job_id,
            status=status,
            error_message=error_message,
            retry_count=attempt,
            metadata={"jobId": job_id, "retryCount": attempt},
            created_at=time.utcnow(),
        )
        self._store_call(self.store.append_log, entry)

    def _record(self, registry: Deque[Tuple[str, datetime]], job_id: str) -> None:
        registry.append((job_id, time.utcnow()))
        self._prune()

    def _prune(self) -> None:
        while self._completed and (
            len(self._completed) > self.completed_retention_count
            or time.seconds_since(self._completed[0][1]) > self.completed_retention_seconds
        ):
            self._completed.popleft()
        while self._failed and time.seconds_since(self._failed[0][1]) > self.failed_retention_seconds:
            self._failed.popleft()
