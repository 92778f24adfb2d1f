"""Per-video, per-template variable records

Ownership is checked by the calling boundary. This module still refuses
template ids that do not exist for the video's owner.
"""
import logging
from typing import Dict, Iterable, List, Mapping, Sequence, Tuple

from sqlalchemy.orm import Session

from descsync.core.errors import ValidationError
from descsync.models.channel import Channel
from descsync.models.container import Container
from descsync.models.template import Template
from descsync.models.video import Video
from descsync.models.video_variable import VideoVariable
from descsync.utils.templates import extract_user_variables

logger = logging.getLogger(__name__)


def _owner_id(db: Session, video: Video) -> int:
    return db.query(Channel.user_id).filter(Channel.id == video.channel_id).scalar()


def load_ordered_templates(db: Session, template_ids: Sequence[int], user_id: int) -> List[Template]:
    """Templates in the given order

    Raises:
        ValidationError: If any id is unknown or belongs to another user
    """
    ids = list(template_ids or [])
    if not ids:
        return []
    found = {
        template.id: template
        for template in db.query(Template).filter(Template.id.in_(ids), Template.user_id == user_id).all()
    }
    missing = [template_id for template_id in ids if template_id not in found]
    if missing:
        raise ValidationError(f"Unknown template ids: {missing}", {"template_ids": missing})
    return [found[template_id] for template_id in ids]


def required_variables(templates: Iterable[Template]) -> List[Tuple[int, str]]:
    """(template id, variable name) pairs in container order, defaults excluded"""
    pairs: List[Tuple[int, str]] = []
    for template in templates:
        for name in extract_user_variables(template.content):
            if (template.id, name) not in pairs:
                pairs.append((template.id, name))
    return pairs


def ensure_variables_for_assignment(db: Session, video: Video, container: Container) -> int:
    """Backfill empty rows for variables the container needs and the video lacks

    Existing rows are never touched. Returns the number of rows created.
    """
    templates = load_ordered_templates(db, container.template_order, container.user_id)
    existing = {
        (row.template_id, row.variable_name)
        for row in db.query(VideoVariable).filter(VideoVariable.video_id == video.id).all()
    }

    created = 0
    for template_id, name in required_variables(templates):
        if (template_id, name) in existing:
            continue
        db.add(VideoVariable(video_id=video.id, template_id=template_id, variable_name=name, variable_value=""))
        created += 1

    if created:
        db.flush()
        logger.debug(f"Backfilled {created} variables for video {video.id} (container {container.id})")
    return created


def upsert_values(db: Session, video: Video, entries: Iterable[Mapping]) -> List[VideoVariable]:
    """Insert or update values keyed by (video, template, name)

    Each entry needs ``template_id``, ``name`` and ``value``; only the value
    of an existing row changes.
    """
    entries = list(entries)
    template_ids = sorted({int(entry["template_id"]) for entry in entries})
    load_ordered_templates(db, template_ids, _owner_id(db, video))

    existing = {
        (row.template_id, row.variable_name): row
        for row in db.query(VideoVariable).filter(VideoVariable.video_id == video.id).all()
    }

    rows: List[VideoVariable] = []
    for entry in entries:
        name = str(entry["name"]).strip()
        if not name:
            raise ValidationError("Variable name must not be empty")
        key = (int(entry["template_id"]), name)
        value = entry.get("value") or ""
        row = existing.get(key)
        if row is None:
            row = VideoVariable(video_id=video.id, template_id=key[0], variable_name=name, variable_value=value)
            db.add(row)
            existing[key] = row
        else:
            row.variable_value = value
        rows.append(row)

    db.flush()
    return rows


def list_for_video(db: Session, video: Video) -> List[Dict]:
    rows = db.query(VideoVariable, Template.id, Template.name).join(
        Template, VideoVariable.template_id == Template.id
    ).filter(
        VideoVariable.video_id == video.id
    ).order_by(VideoVariable.template_id, VideoVariable.id).all()

    return [
        {
            "id": row.id,
            "name": row.variable_name,
            "value": row.variable_value,
            "template": {"id": template_id, "name": template_name},
        }
        for row, template_id, template_name in rows
    ]


def values_for_video(db: Session, video: Video, templates: Sequence[Template]) -> Dict[str, str]:
    """Name -> value map used for composing

    Placeholders are substituted by name across the whole description, so when
    several templates define the same name the first non-empty value in
    container order wins. A stored empty value blanks its placeholder; only
    names with no stored row at all are left out.
    """
    by_key = {
        (row.template_id, row.variable_name): row.variable_value
        for row in db.query(VideoVariable).filter(VideoVariable.video_id == video.id).all()
    }
    values: Dict[str, str] = {}
    for template in templates:
        for name in extract_user_variables(template.content):
            value = by_key.get((template.id, name))
            if value is not None and not values.get(name):
                values[name] = value
    return values
