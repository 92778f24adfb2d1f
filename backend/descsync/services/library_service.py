"""Boundary operations on templates, containers, videos and variables

Every function takes the acting user id and checks ownership before touching
anything; objects owned by someone else are reported as not found. Mutations
return the pipeline events they imply and leave publishing to the caller.
"""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from descsync.core.errors import ResourceNotFound, ValidationError
from descsync.models.channel import Channel
from descsync.models.container import Container
from descsync.models.description_history import DescriptionHistory
from descsync.models.template import Template
from descsync.models.video import Video
from descsync.schemas.events import ContainerUpdated, TemplateUpdated, VideosUpdate
from descsync.services.plan_limits import enforce_video_limit
from descsync.services.propagation import (
    assigned_video_ids, compose_for_video, containers_using_template
)
from descsync.services.variable_store import (
    ensure_variables_for_assignment, list_for_video, load_ordered_templates, upsert_values,
    values_for_video
)
from descsync.utils.templates import DEFAULT_SEPARATOR, extract_variables, find_missing_variables

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Ownership
# ----------------------------------------------------------------------

def get_owned_channel(db: Session, user_id: int, channel_id: int) -> Channel:
    channel = db.query(Channel).filter(Channel.id == channel_id, Channel.user_id == user_id).first()
    if channel is None:
        raise ResourceNotFound(f"Channel {channel_id} not found")
    return channel


def get_owned_template(db: Session, user_id: int, template_id: int) -> Template:
    template = db.query(Template).filter(Template.id == template_id, Template.user_id == user_id).first()
    if template is None:
        raise ResourceNotFound(f"Template {template_id} not found")
    return template


def get_owned_container(db: Session, user_id: int, container_id: int) -> Container:
    container = db.query(Container).filter(Container.id == container_id, Container.user_id == user_id).first()
    if container is None:
        raise ResourceNotFound(f"Container {container_id} not found")
    return container


def get_owned_video(db: Session, user_id: int, video_id: int) -> Video:
    video = db.query(Video).join(Channel, Video.channel_id == Channel.id).filter(
        Video.id == video_id,
        Channel.user_id == user_id
    ).first()
    if video is None:
        raise ResourceNotFound(f"Video {video_id} not found")
    return video


def list_channels(db: Session, user_id: int) -> List[Dict[str, Any]]:
    channels = db.query(Channel).filter(Channel.user_id == user_id).order_by(Channel.id).all()
    return [
        {
            "id": channel.id,
            "youtube_channel_id": channel.youtube_channel_id,
            "title": channel.title,
            "thumbnail_url": channel.thumbnail_url,
            "subscriber_count": channel.subscriber_count,
            "token_status": channel.token_status,
            "sync_status": channel.sync_status,
            "sync_error": channel.sync_error,
            "last_synced_at": channel.last_synced_at.isoformat() if channel.last_synced_at else None,
        }
        for channel in channels
    ]


# ----------------------------------------------------------------------
# Templates
# ----------------------------------------------------------------------

def create_template(db: Session, user_id: int, name: str, content: str) -> Template:
    template = Template(user_id=user_id, name=name.strip(), content=content or "")
    db.add(template)
    db.commit()
    db.refresh(template)
    return template


def update_template(
    db: Session, user_id: int, template_id: int,
    name: Optional[str] = None, content: Optional[str] = None,
) -> Tuple[Template, Optional[TemplateUpdated]]:
    template = get_owned_template(db, user_id, template_id)
    content_changed = content is not None and content != template.content
    if name is not None:
        template.name = name.strip()
    if content is not None:
        template.content = content
    db.commit()
    db.refresh(template)

    event = TemplateUpdated(user_id=user_id, template_id=template.id) if content_changed else None
    return template, event


def template_impact(db: Session, user_id: int, template_id: int) -> Dict[str, Any]:
    """What an edit to this template would touch"""
    template = get_owned_template(db, user_id, template_id)
    container_ids = [container.id for container in containers_using_template(db, template)]
    return {
        "template_id": template.id,
        "variables": extract_variables(template.content),
        "container_ids": container_ids,
        "container_count": len(container_ids),
        "video_count": len(assigned_video_ids(db, container_ids)),
    }


def delete_template(db: Session, user_id: int, template_id: int) -> List[ContainerUpdated]:
    """Delete a template and drop it from every container order

    Its variable rows go with it; each container that referenced it is
    rebuilt.
    """
    template = get_owned_template(db, user_id, template_id)
    events = []
    for container in containers_using_template(db, template):
        container.template_order = [tid for tid in container.template_order if tid != template.id]
        events.append(ContainerUpdated(user_id=user_id, container_id=container.id))
    db.delete(template)
    db.commit()
    logger.info(f"Deleted template {template_id} (user {user_id}), {len(events)} containers updated")
    return events


# ----------------------------------------------------------------------
# Containers
# ----------------------------------------------------------------------

def _validated_order(db: Session, user_id: int, template_ids: Iterable[int]) -> List[int]:
    order = [int(template_id) for template_id in template_ids]
    if len(order) != len(set(order)):
        raise ValidationError("A template can appear only once in a container")
    load_ordered_templates(db, order, user_id)
    return order


def create_container(
    db: Session, user_id: int, name: str,
    template_ids: Iterable[int] = (), separator: str = DEFAULT_SEPARATOR,
) -> Container:
    container = Container(
        user_id=user_id,
        name=name.strip(),
        template_order=_validated_order(db, user_id, template_ids),
        separator=separator,
    )
    db.add(container)
    db.commit()
    db.refresh(container)
    return container


def update_container(
    db: Session, user_id: int, container_id: int,
    name: Optional[str] = None,
    template_ids: Optional[Iterable[int]] = None,
    separator: Optional[str] = None,
) -> Tuple[Container, Optional[ContainerUpdated]]:
    container = get_owned_container(db, user_id, container_id)
    changed = False
    if name is not None:
        container.name = name.strip()
    if template_ids is not None:
        order = _validated_order(db, user_id, template_ids)
        if order != list(container.template_order or []):
            container.template_order = order
            changed = True
    if separator is not None and separator != container.separator:
        container.separator = separator
        changed = True
    db.commit()
    db.refresh(container)

    event = ContainerUpdated(user_id=user_id, container_id=container.id) if changed else None
    return container, event


def delete_container(db: Session, user_id: int, container_id: int) -> int:
    """Detach the container's videos, then delete it

    Variable rows and description history are kept, and detached videos keep
    their last pushed description. Returns the number of detached videos.
    """
    container = get_owned_container(db, user_id, container_id)
    detached = db.query(Video).filter(Video.container_id == container.id).update(
        {Video.container_id: None}, synchronize_session=False
    )
    db.delete(container)
    db.commit()
    logger.info(f"Deleted container {container_id} (user {user_id}), detached {detached} videos")
    return detached


# ----------------------------------------------------------------------
# Videos
# ----------------------------------------------------------------------

def assign_video(db: Session, user_id: int, video_id: int, container_id: Optional[int]) -> Optional[VideosUpdate]:
    """Assign a video to a container, or unassign it with container_id None

    A first assignment counts against the plan's video limit; the limit is
    re-checked under the user row lock in the same transaction as the write.
    """
    video = get_owned_video(db, user_id, video_id)

    if container_id is None:
        video.container_id = None
        db.commit()
        return None

    container = get_owned_container(db, user_id, container_id)
    if video.removed_at is not None:
        raise ValidationError(f"Video {video_id} no longer exists on YouTube")

    try:
        if video.container_id is None:
            enforce_video_limit(user_id, db)
        video.container_id = container.id
        ensure_variables_for_assignment(db, video, container)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(f"Assigned video {video_id} to container {container_id} (user {user_id})")
    return VideosUpdate(user_id=user_id, video_ids=[video.id])


def get_variables(db: Session, user_id: int, video_id: int) -> List[Dict[str, Any]]:
    return list_for_video(db, get_owned_video(db, user_id, video_id))


def set_variables(db: Session, user_id: int, video_id: int, entries: Iterable[Mapping]) -> Optional[VideosUpdate]:
    video = get_owned_video(db, user_id, video_id)
    try:
        upsert_values(db, video, entries)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if video.container_id is None or video.removed_at is not None:
        return None
    return VideosUpdate(user_id=user_id, video_ids=[video.id])


def preview_description(db: Session, user_id: int, video_id: int) -> Dict[str, Any]:
    """Compose without pushing"""
    video = get_owned_video(db, user_id, video_id)
    if video.container_id is None:
        raise ValidationError(f"Video {video_id} is not assigned to a container")
    container = get_owned_container(db, user_id, video.container_id)

    description = compose_for_video(db, video, container)
    templates = load_ordered_templates(db, container.template_order, user_id)
    values = values_for_video(db, video, templates)
    # Unset or blank, in container order
    missing = dict.fromkeys(
        name for template in templates for name in find_missing_variables(template.content, values)
    )
    return {
        "video_id": video.id,
        "description": description,
        "missing_variables": list(missing),
        "matches_current": description == video.current_description,
    }


def description_history(db: Session, user_id: int, video_id: int) -> List[Dict[str, Any]]:
    video = get_owned_video(db, user_id, video_id)
    rows = db.query(DescriptionHistory).filter(
        DescriptionHistory.video_id == video.id
    ).order_by(DescriptionHistory.version_number.desc()).all()
    return [
        {
            "version": row.version_number,
            "description": row.description,
            "created_by": row.created_by,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in rows
    ]
