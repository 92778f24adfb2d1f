"""Background worker that consumes pipeline events from the queue

Each job runs in its own asyncio task with its own DB session, so a slow
channel sync never holds up description pushes for other users.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from descsync.core.errors import DescSyncError, PartialRetry
from descsync.db.session import SessionLocal
from descsync.services.event_bus import EventQueue, PipelineContext, QueuedEvent, dispatch_event
from descsync.services.youtube_gateway import YouTubeGateway

logger = logging.getLogger(__name__)
pipeline_logger = logging.getLogger("pipeline")

# Seconds between stale-job sweeps
CLEANUP_INTERVAL = 10 * 60


async def process_event_job(
    job: QueuedEvent,
    queue: EventQueue,
    gateway: YouTubeGateway,
    session_factory: Callable[[], Session] = SessionLocal,
) -> None:
    """Run one job and settle it on the queue

    Only failures flagged retryable (rate limits, outages) are retried; domain
    errors such as AlreadySyncing or LimitReached fail the job for good.
    """
    name = job.payload.get("name", "unknown")
    queue.started(job)
    db = session_factory()

    try:
        pipeline_logger.info(f"Processing {name} job {job.job_id} (attempt {job.attempt + 1})")
        result = await dispatch_event(PipelineContext(db=db, gateway=gateway, queue=queue), job.payload)
        queue.completed(job, result)

    except DescSyncError as e:
        db.rollback()
        if e.retryable:
            logger.warning(f"Job {job.job_id} ({name}) hit a transient error: {e.message}")
        else:
            logger.warning(f"Job {job.job_id} ({name}) failed: {e.code}: {e.message}")
        retry_payload = e.retry_payload if isinstance(e, PartialRetry) else None
        queue.failed(job, f"{e.code}: {e.message}", retry=e.retryable, payload=retry_payload)

    except ValueError as e:
        # Configuration problems such as an undecryptable token; retrying cannot help
        db.rollback()
        logger.error(f"Job {job.job_id} ({name}) failed permanently: {e}")
        queue.failed(job, str(e), retry=False)

    except Exception as e:
        db.rollback()
        logger.error(f"Job {job.job_id} ({name}) failed: {e}", exc_info=True)
        queue.failed(job, str(e), retry=True)

    finally:
        db.close()


async def _process_when_due(job: QueuedEvent, queue: EventQueue, gateway: YouTubeGateway) -> None:
    if job.retry_after is not None:
        delay = (job.retry_after - datetime.now(timezone.utc)).total_seconds()
        if delay > 0:
            logger.info(f"Job {job.job_id} is retry attempt {job.attempt}, waiting {delay:.0f}s")
            await asyncio.sleep(delay)
    await process_event_job(job, queue, gateway)


async def event_worker_task(queue: EventQueue, gateway: YouTubeGateway) -> None:
    """Main loop: pull jobs and spawn a task per job without waiting on it"""
    logger.info("Starting event worker task")
    last_cleanup = 0.0
    loop = asyncio.get_running_loop()

    while True:
        try:
            if loop.time() - last_cleanup > CLEANUP_INTERVAL:
                cleaned = queue.cleanup()
                if cleaned:
                    logger.warning(f"Cleaned up {cleaned} stale jobs")
                last_cleanup = loop.time()

            job = await queue.receive(timeout=5)
            if job is None:
                continue

            asyncio.create_task(_process_when_due(job, queue, gateway))

        except asyncio.CancelledError:
            logger.info("Event worker stopped")
            raise
        except Exception as e:
            logger.error(f"Error in event worker loop: {e}", exc_info=True)
            await asyncio.sleep(5)
