"""Background loops: the pending-job worker and the daily duplicate sweep."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from .domain.errors import IngestDomainError
from .observability.logger import get_logger
from .services.dedupe_service import DedupeService
from .services.job_runner import JobRunner
from .storage.repositories import JobRepository
from .utils.time import utcnow

logger = get_logger(__name__)


async def run_next_due_job(runner: JobRunner, jobs: JobRepository) -> bool:
    """Execute the oldest pending job whose backoff has elapsed. Returns False when idle."""
    for job in await jobs.list_due_pending(utcnow(), limit=5):
        if runner.is_running(job.id):
            continue
        try:
            result = await runner.execute_job(job.id)
        except IngestDomainError as e:
            logger.warning("worker_job_skipped", job_id=job.id, error=str(e))
            continue
        logger.info("worker_job_finished", job_id=job.id, status=result.status.value)
        return True
    return False


async def run_job_worker(runner: JobRunner, jobs: JobRepository, poll_seconds: float) -> None:
    """Sequential queue: one job at a time, in creation order."""
    recovered = await runner.recover_interrupted_jobs()
    logger.info("job_worker_started", poll_seconds=poll_seconds, recovered=recovered)
    while True:
        try:
            busy = await run_next_due_job(runner, jobs)
        except Exception:
            logger.exception("job_worker_iteration_failed")
            busy = False
        if not busy:
            await asyncio.sleep(poll_seconds)


def seconds_until(hour: int, tz: ZoneInfo, now: datetime | None = None) -> float:
    """Seconds from `now` until the next `hour`:00 in `tz`."""
    now = now.astimezone(tz) if now is not None else datetime.now(tz)
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def run_daily_dedupe(dedupe: DedupeService, hour: int, timezone: str) -> None:
    tz = ZoneInfo(timezone)
    while True:
        delay = seconds_until(hour, tz)
        logger.info("dedupe_scheduled", in_seconds=int(delay), hour=hour, timezone=timezone)
        await asyncio.sleep(delay)
        try:
            await dedupe.remove_duplicate_tours()
        except Exception:
            logger.exception("dedupe_run_failed")
