"""Video routes: assignment, variables, preview, history, analytics"""
from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from descsync.api.deps import get_event_queue, get_gateway
from descsync.core.errors import ValidationError
from descsync.core.security import require_auth
from descsync.db.session import get_db
from descsync.schemas.library import AssignVideoRequest, VariablesUpdate
from descsync.services import library_service
from descsync.services.event_bus import EventQueue
from descsync.services.youtube_gateway import YouTubeGateway

router = APIRouter(prefix="/api/videos", tags=["videos"])


def _parse_date(value: str, field_name: str) -> str:
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise ValidationError(f"{field_name} must be a YYYY-MM-DD date", {"field": field_name, "value": value})


@router.put("/{video_id}/container")
def assign_video(
    video_id: int,
    payload: AssignVideoRequest,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    queue: EventQueue = Depends(get_event_queue),
):
    event = library_service.assign_video(db, user_id, video_id, payload.container_id)
    queue.publish_all([event])
    return {"video_id": video_id, "container_id": payload.container_id, "propagating": event is not None}


@router.get("/{video_id}/variables")
def get_variables(video_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return {"variables": library_service.get_variables(db, user_id, video_id)}


@router.put("/{video_id}/variables")
def set_variables(
    video_id: int,
    payload: VariablesUpdate,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    queue: EventQueue = Depends(get_event_queue),
):
    event = library_service.set_variables(
        db, user_id, video_id, [entry.model_dump() for entry in payload.variables]
    )
    queue.publish_all([event])
    return {
        "variables": library_service.get_variables(db, user_id, video_id),
        "propagating": event is not None,
    }


@router.get("/{video_id}/preview")
def preview_description(video_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return library_service.preview_description(db, user_id, video_id)


@router.get("/{video_id}/history")
def description_history(video_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return {"history": library_service.description_history(db, user_id, video_id)}


@router.get("/{video_id}/analytics")
async def video_analytics(
    video_id: int,
    start_date: str = Query(...),
    end_date: str = Query(...),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    gateway: YouTubeGateway = Depends(get_gateway),
):
    start = _parse_date(start_date, "start_date")
    end = _parse_date(end_date, "end_date")
    if start > end:
        raise ValidationError("start_date must not be after end_date")
    video = library_service.get_owned_video(db, user_id, video_id)
    return await gateway.video_analytics(db, video.channel, video.youtube_video_id, start, end)


@router.delete("/{video_id}")
async def delete_video(
    video_id: int,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    gateway: YouTubeGateway = Depends(get_gateway),
):
    """Delete the video on YouTube; the local row is flagged removed"""
    video = library_service.get_owned_video(db, user_id, video_id)
    await gateway.delete_video(db, video.channel, video.youtube_video_id)
    video.removed_at = datetime.now(timezone.utc)
    video.container_id = None
    db.commit()
    return {"deleted": True, "video_id": video_id}
