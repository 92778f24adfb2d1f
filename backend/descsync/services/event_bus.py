"""Typed event queue and handler dispatch for the propagation pipeline

Producers publish event models through an ``EventQueue``; the worker pulls
jobs back off it and routes them through ``HANDLERS`` by event name. Handlers
return a result dict and publish any follow-up events themselves.
"""
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import pydantic
from sqlalchemy.orm import Session

from descsync.core.config import settings
from descsync.core.errors import PartialRetry, ValidationError
from descsync.core.metrics import events_processed_counter
from descsync.db import task_queue
from descsync.schemas.events import (
    ChannelSync, ContainerUpdated, Event, TemplateUpdated, VideosUpdate, parse_event
)
from descsync.services.propagation import (
    fan_out_container_updated, fan_out_template_updated, process_videos_update
)
from descsync.services.sync_service import run_channel_sync
from descsync.services.youtube_gateway import YouTubeGateway


@dataclass
class QueuedEvent:
    job_id: str
    payload: Dict[str, Any]
    attempt: int = 0
    retry_after: Optional[datetime] = None


class EventQueue(ABC):
    """Transport-agnostic outbound/inbound event queue"""

    @abstractmethod
    def publish(self, event: Event) -> str:
        """Enqueue one event, returning its job id"""

    def publish_all(self, events: Iterable[Optional[Event]]) -> List[str]:
        return [self.publish(event) for event in events if event is not None]

    @abstractmethod
    async def receive(self, timeout: int = 5) -> Optional[QueuedEvent]:
        """Next job, or None after ``timeout`` seconds"""

    @abstractmethod
    def started(self, job: QueuedEvent) -> None:
        ...

    @abstractmethod
    def completed(self, job: QueuedEvent, result: Optional[Dict[str, Any]] = None) -> None:
        ...

    @abstractmethod
    def failed(
        self, job: QueuedEvent, error: str, retry: bool, payload: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        """Record a failure; returns the retry job id when one was scheduled

        ``payload`` replaces the job payload for the retry, when given.
        """

    def cleanup(self) -> int:
        return 0


class RedisEventQueue(EventQueue):
    """Event queue on top of the Redis job queue"""

    def __init__(self, name: Optional[str] = None, max_retries: Optional[int] = None, async_client=None):
        self.name = name or settings.EVENT_QUEUE_NAME
        self.max_retries = settings.EVENT_MAX_RETRIES if max_retries is None else max_retries
        self.async_client = async_client

    def publish(self, event: Event) -> str:
        return task_queue.enqueue_task(self.name, event.model_dump(), max_retries=self.max_retries)

    async def receive(self, timeout: int = 5) -> Optional[QueuedEvent]:
        data = await task_queue.dequeue_task(self.name, timeout=timeout, client=self.async_client)
        if data is None:
            return None
        return QueuedEvent(
            job_id=data["task_id"],
            payload=data.get("payload") or {},
            attempt=int(data.get("retry_count", 0)),
            retry_after=task_queue.get_retry_after(data["task_id"]),
        )

    def started(self, job: QueuedEvent) -> None:
        task_queue.mark_task_processing(job.job_id)

    def completed(self, job: QueuedEvent, result: Optional[Dict[str, Any]] = None) -> None:
        task_queue.mark_task_completed(job.job_id, result)

    def failed(
        self, job: QueuedEvent, error: str, retry: bool, payload: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        return task_queue.mark_task_failed(job.job_id, error, retry=retry, payload=payload)

    def cleanup(self) -> int:
        return task_queue.cleanup_stale_tasks(timeout_seconds=3600)


class InMemoryEventQueue(EventQueue):
    """Single-process queue for tests and local tooling"""

    def __init__(self, max_retries: int = 3):
        self.max_retries = max_retries
        self.pending: deque = deque()
        self.published: List[Event] = []
        self.completed_jobs: List[str] = []
        self.failed_jobs: Dict[str, str] = {}

    def publish(self, event: Event) -> str:
        job = QueuedEvent(job_id=str(uuid.uuid4()), payload=event.model_dump())
        self.published.append(event)
        self.pending.append(job)
        return job.job_id

    async def receive(self, timeout: int = 5) -> Optional[QueuedEvent]:
        return self.pending.popleft() if self.pending else None

    def started(self, job: QueuedEvent) -> None:
        pass

    def completed(self, job: QueuedEvent, result: Optional[Dict[str, Any]] = None) -> None:
        self.completed_jobs.append(job.job_id)

    def failed(
        self, job: QueuedEvent, error: str, retry: bool, payload: Optional[Dict[str, Any]] = None
    ) -> Optional[str]:
        if retry and job.attempt < self.max_retries:
            retry_job = QueuedEvent(
                job_id=str(uuid.uuid4()),
                payload=job.payload if payload is None else payload,
                attempt=job.attempt + 1,
                retry_after=datetime.now(timezone.utc) + timedelta(seconds=2 ** (job.attempt + 1)),
            )
            self.pending.append(retry_job)
            return retry_job.job_id
        self.failed_jobs[job.job_id] = error
        return None


@dataclass
class PipelineContext:
    db: Session
    gateway: YouTubeGateway
    queue: EventQueue


async def handle_channel_sync(ctx: PipelineContext, event: ChannelSync) -> Dict[str, Any]:
    result = await run_channel_sync(ctx.db, ctx.gateway, event.channel_id, event.user_id)
    if result.restored_assigned_ids:
        ctx.queue.publish(VideosUpdate(user_id=event.user_id, video_ids=result.restored_assigned_ids))
    return result.to_dict()


async def handle_videos_update(ctx: PipelineContext, event: VideosUpdate) -> Dict[str, Any]:
    batch = await process_videos_update(ctx.db, ctx.gateway, event)
    retry_ids = batch.transient_video_ids()
    if retry_ids:
        # Pushed videos are settled; only the transient failures go back on the queue
        raise PartialRetry(
            f"{len(retry_ids)} of {len(batch.results)} description pushes hit transient errors",
            retry_payload=event.model_copy(update={"video_ids": retry_ids}).model_dump(),
            details=batch.to_dict(),
        )
    return batch.to_dict()


async def handle_container_updated(ctx: PipelineContext, event: ContainerUpdated) -> Dict[str, Any]:
    follow_up = fan_out_container_updated(ctx.db, event)
    if follow_up is None:
        return {"video_ids": []}
    ctx.queue.publish(follow_up)
    return {"video_ids": follow_up.video_ids}


async def handle_template_updated(ctx: PipelineContext, event: TemplateUpdated) -> Dict[str, Any]:
    follow_up = fan_out_template_updated(ctx.db, event)
    if follow_up is None:
        return {"video_ids": []}
    ctx.queue.publish(follow_up)
    return {"video_ids": follow_up.video_ids}


Handler = Callable[[PipelineContext, Any], Awaitable[Dict[str, Any]]]

HANDLERS: Dict[str, Handler] = {
    "channel.sync": handle_channel_sync,
    "videos.update": handle_videos_update,
    "container.updated": handle_container_updated,
    "template.updated": handle_template_updated,
}


async def dispatch_event(ctx: PipelineContext, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a raw payload and run its handler

    Raises:
        ValidationError: Unknown event name or malformed payload
    """
    try:
        event = parse_event(payload)
    except pydantic.ValidationError as e:
        events_processed_counter.labels(event=str(payload.get("name", "unknown")), status="invalid").inc()
        raise ValidationError(f"Malformed event payload: {e}")

    try:
        result = await HANDLERS[event.name](ctx, event)
    except Exception:
        events_processed_counter.labels(event=event.name, status="error").inc()
        raise
    events_processed_counter.labels(event=event.name, status="success").inc()
    return result
