# tokenlock/jobs/scheduler.py
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger("tokenlock.scheduler")

PENDING = "pending"
RUNNING = "running"
SUCCEEDED = "succeeded"
FAILED = "failed"
CANCELLED = "cancelled"


# ----------------------------
# timestamp helpers (for info payload)
# ----------------------------
def _iso_z_from_epoch(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    dt = datetime.fromtimestamp(float(ts), tz=timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


def _now_epoch() -> float:
    return time.time()


# ----------------------------
# job state + handle
# ----------------------------
@dataclass
class ScheduledCall:
    job_id: str
    delay_s: float
    fn: Callable[[], Awaitable[Any]]
    status: str = PENDING
    scheduled_at: float = field(default_factory=_now_epoch)
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    duration_ms: Optional[int] = None
    result: Any = None
    error: Optional[BaseException] = None
    last_error: Optional[str] = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


class ScheduledCallHandle:
    """Returned by schedule_call(); lets the caller cancel, await and inspect one delayed call."""

    def __init__(self, job: ScheduledCall):
        self._job = job

    @property
    def job_id(self) -> str:
        return self._job.job_id

    @property
    def status(self) -> str:
        return self._job.status

    @property
    def done(self) -> bool:
        return self._job.status in (SUCCEEDED, FAILED, CANCELLED)

    @property
    def error(self) -> Optional[BaseException]:
        return self._job.error

    def cancel(self) -> bool:
        """Cancel the call. Returns False when it already finished."""
        if self.done:
            return False
        self._job.cancel_event.set()
        if self._job.status == RUNNING and self._job.task is not None:
            self._job.task.cancel()
        return True

    async def wait(self) -> Any:
        """
        Wait for the call to settle.

        Returns the call's result, re-raises its failure, or raises
        asyncio.CancelledError when it was cancelled.
        """
        if self._job.task is not None:
            await asyncio.gather(self._job.task, return_exceptions=True)
        if self._job.status == CANCELLED:
            raise asyncio.CancelledError(f"{self.job_id} cancelled")
        if self._job.error is not None:
            raise self._job.error
        return self._job.result

    def info(self) -> Dict[str, Any]:
        j = self._job
        due_at = j.scheduled_at + j.delay_s
        return {
            "job_id": j.job_id,
            "status": j.status,
            "delay_s": j.delay_s,
            "scheduled_at_ts": j.scheduled_at,
            "scheduled_at_iso": _iso_z_from_epoch(j.scheduled_at),
            "due_at_ts": due_at,
            "due_at_iso": _iso_z_from_epoch(due_at),
            "started_at_iso": _iso_z_from_epoch(j.started_at),
            "finished_at_iso": _iso_z_from_epoch(j.finished_at),
            "duration_ms": j.duration_ms,
            "result": None if j.result is None else str(j.result),
            "last_error": j.last_error,
        }


@dataclass
class SchedulerState:
    jobs: Dict[str, ScheduledCall] = field(default_factory=dict)  # job_id -> job


_state = SchedulerState()


# ----------------------------
# job runner
# ----------------------------
async def _run_after_delay(job: ScheduledCall) -> None:
    # stop-aware sleep
    try:
        await asyncio.wait_for(job.cancel_event.wait(), timeout=job.delay_s)
    except asyncio.TimeoutError:
        pass
    except asyncio.CancelledError:
        job.status = CANCELLED
        job.finished_at = _now_epoch()
        raise

    if job.cancel_event.is_set():
        job.status = CANCELLED
        job.finished_at = _now_epoch()
        logger.info("🛑 scheduled call cancelled before start | %s", job.job_id)
        return

    job.status = RUNNING
    job.started_at = _now_epoch()
    t0 = time.perf_counter()
    logger.info("⏱️ scheduled call running | %s", job.job_id)

    try:
        job.result = await job.fn()
        job.status = SUCCEEDED
        logger.info("✅ scheduled call done | %s | %dms", job.job_id, int((time.perf_counter() - t0) * 1000))
    except asyncio.CancelledError:
        job.status = CANCELLED
        logger.info("🛑 scheduled call cancelled while running | %s", job.job_id)
        raise
    except Exception as e:
        job.status = FAILED
        job.error = e
        job.last_error = repr(e)[:300]  # bounded for payload sanity
        logger.exception("❌ scheduled call error | %s", job.job_id)
    finally:
        job.finished_at = _now_epoch()
        job.duration_ms = int((time.perf_counter() - t0) * 1000)


# ----------------------------
# public API
# ----------------------------
def schedule_call(job_id: str, fn: Callable[[], Awaitable[Any]], delay_s: float) -> ScheduledCallHandle:
    """Run `fn()` once after `delay_s` seconds on the running event loop."""
    if delay_s < 0:
        raise ValueError(f"delay_s must be >= 0, got {delay_s}")

    existing = _state.jobs.get(job_id)
    if existing is not None and existing.status in (PENDING, RUNNING):
        raise ValueError(f"Job {job_id} is already scheduled")

    job = ScheduledCall(job_id=job_id, delay_s=float(delay_s), fn=fn)
    job.task = asyncio.create_task(_run_after_delay(job), name=job_id)
    _state.jobs[job_id] = job

    logger.info("✅ call scheduled | %s | delay_s=%s", job_id, job.delay_s)
    return ScheduledCallHandle(job)


def get_job(job_id: str) -> Optional[ScheduledCallHandle]:
    job = _state.jobs.get(job_id)
    return ScheduledCallHandle(job) if job is not None else None


def reset_scheduler() -> None:
    _state.jobs.clear()
