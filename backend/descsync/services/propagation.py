"""Change propagation: fan-out of edits and per-video description rebuilds

Fan-out turns a template or container edit into one ``videos.update`` event
carrying every affected video id. A rebuild recomposes one video's
description from current state and pushes it, so redelivering the same event
converges on the same remote text.
"""
import logging
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from descsync.core.errors import DescSyncError, RemoteTransient
from descsync.core.metrics import description_push_counter
from descsync.models.channel import Channel
from descsync.models.container import Container
from descsync.models.description_history import DescriptionHistory
from descsync.models.template import Template
from descsync.models.video import Video
from descsync.schemas.events import ContainerUpdated, TemplateUpdated, VideosUpdate
from descsync.services.variable_store import (
    ensure_variables_for_assignment, load_ordered_templates, values_for_video
)
from descsync.services.youtube_gateway import YouTubeGateway
from descsync.utils.templates import DEFAULT_SEPARATOR, compose, system_defaults

pipeline_logger = logging.getLogger("pipeline")


@dataclass
class VideoResult:
    video_id: int
    status: str  # 'pushed', 'skipped', 'failed'
    reason: Optional[str] = None
    changed: bool = False


@dataclass
class BatchResult:
    results: List[VideoResult] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for result in self.results if result.status == status)

    def transient_video_ids(self) -> List[int]:
        return [
            result.video_id for result in self.results
            if result.status == "failed" and result.reason == RemoteTransient.code
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pushed": self.count("pushed"),
            "skipped": self.count("skipped"),
            "failed": self.count("failed"),
            "videos": [asdict(result) for result in self.results],
        }


# ----------------------------------------------------------------------
# Fan-out
# ----------------------------------------------------------------------

def containers_using_template(db: Session, template: Template) -> List[Container]:
    containers = db.query(Container).filter(Container.user_id == template.user_id).order_by(Container.id).all()
    return [container for container in containers if template.id in (container.template_order or [])]


def assigned_video_ids(db: Session, container_ids: List[int]) -> List[int]:
    if not container_ids:
        return []
    rows = db.query(Video.id).filter(
        Video.container_id.in_(container_ids),
        Video.removed_at.is_(None)
    ).order_by(Video.id).all()
    return [row.id for row in rows]


def fan_out_template_updated(db: Session, event: TemplateUpdated) -> Optional[VideosUpdate]:
    template = db.query(Template).filter(
        Template.id == event.template_id,
        Template.user_id == event.user_id
    ).first()
    if template is None:
        pipeline_logger.warning(f"template.updated for unknown template {event.template_id} (user {event.user_id})")
        return None

    container_ids = [container.id for container in containers_using_template(db, template)]
    video_ids = assigned_video_ids(db, container_ids)
    pipeline_logger.info(
        f"Template {template.id} affects {len(container_ids)} containers and {len(video_ids)} videos"
    )
    if not video_ids:
        return None
    return VideosUpdate(user_id=event.user_id, video_ids=video_ids)


def fan_out_container_updated(db: Session, event: ContainerUpdated) -> Optional[VideosUpdate]:
    container = db.query(Container).filter(
        Container.id == event.container_id,
        Container.user_id == event.user_id
    ).first()
    if container is None:
        pipeline_logger.warning(f"container.updated for unknown container {event.container_id} (user {event.user_id})")
        return None

    video_ids = assigned_video_ids(db, [container.id])
    pipeline_logger.info(f"Container {container.id} affects {len(video_ids)} videos")
    if not video_ids:
        return None
    return VideosUpdate(user_id=event.user_id, video_ids=video_ids)


# ----------------------------------------------------------------------
# Rebuild
# ----------------------------------------------------------------------

def compose_for_video(db: Session, video: Video, container: Container) -> str:
    """Current description for an assigned video, from stored state only"""
    templates = load_ordered_templates(db, container.template_order, container.user_id)
    values = values_for_video(db, video, templates)
    return compose(
        [template.content for template in templates],
        values,
        separator=container.separator if container.separator is not None else DEFAULT_SEPARATOR,
        defaults=system_defaults(video.youtube_video_id),
    )


def record_description(db: Session, video: Video, description: str, created_by: Optional[int] = None) -> bool:
    """Store the live description, adding a history version when it changed"""
    if video.current_description == description:
        return False

    latest = db.query(func.max(DescriptionHistory.version_number)).filter(
        DescriptionHistory.video_id == video.id
    ).scalar() or 0
    db.add(DescriptionHistory(
        video_id=video.id,
        description=description,
        version_number=latest + 1,
        created_by=created_by,
    ))
    video.current_description = description
    return True


def _load_owned_video(db: Session, video_id: int, user_id: int) -> Optional[Video]:
    return db.query(Video).join(Channel, Video.channel_id == Channel.id).filter(
        Video.id == video_id,
        Channel.user_id == user_id
    ).first()


async def rebuild_video(db: Session, gateway: YouTubeGateway, video_id: int, user_id: int) -> VideoResult:
    """Backfill, compose and push one video's description, in that order"""
    video = _load_owned_video(db, video_id, user_id)
    if video is None:
        return VideoResult(video_id, "skipped", "not_found")
    if video.removed_at is not None:
        return VideoResult(video_id, "skipped", "removed")
    if video.container_id is None:
        return VideoResult(video_id, "skipped", "unassigned")

    container = db.get(Container, video.container_id)
    if container is None:
        return VideoResult(video_id, "skipped", "unassigned")
    ensure_variables_for_assignment(db, video, container)
    db.commit()

    description = compose_for_video(db, video, container)
    # Pushed even when unchanged locally: the remote copy may have drifted
    await gateway.update_description(db, video.channel, video.youtube_video_id, description)

    changed = record_description(db, video, description, created_by=user_id)
    db.commit()
    return VideoResult(video_id, "pushed", changed=changed)


async def process_videos_update(db: Session, gateway: YouTubeGateway, event: VideosUpdate) -> BatchResult:
    """Rebuild each video independently; one failure never stops the batch"""
    batch = BatchResult()
    for video_id in dict.fromkeys(event.video_ids):
        try:
            result = await rebuild_video(db, gateway, video_id, event.user_id)
        except DescSyncError as e:
            db.rollback()
            result = VideoResult(video_id, "failed", e.code)
            pipeline_logger.warning(f"Description push failed for video {video_id}: {e.code}: {e.message}")
        description_push_counter.labels(status=result.status).inc()
        if result.status == "pushed":
            pipeline_logger.info(f"Pushed description for video {video_id} (changed={result.changed})")
        batch.results.append(result)

    pipeline_logger.info(
        f"videos.update for user {event.user_id}: {batch.count('pushed')} pushed, "
        f"{batch.count('skipped')} skipped, {batch.count('failed')} failed"
    )
    return batch
