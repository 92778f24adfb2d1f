"""Template routes"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from descsync.api.deps import get_event_queue
from descsync.core.security import require_auth
from descsync.db.session import get_db
from descsync.schemas.library import TemplateCreate, TemplateUpdate
from descsync.services import library_service
from descsync.services.event_bus import EventQueue

router = APIRouter(prefix="/api/templates", tags=["templates"])


def _template_dict(template):
    return {"id": template.id, "name": template.name, "content": template.content}


@router.post("", status_code=201)
def create_template(payload: TemplateCreate, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return _template_dict(library_service.create_template(db, user_id, payload.name, payload.content))


@router.patch("/{template_id}")
def update_template(
    template_id: int,
    payload: TemplateUpdate,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    queue: EventQueue = Depends(get_event_queue),
):
    template, event = library_service.update_template(
        db, user_id, template_id, name=payload.name, content=payload.content
    )
    queue.publish_all([event])
    return {**_template_dict(template), "propagating": event is not None}


@router.delete("/{template_id}")
def delete_template(
    template_id: int,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    queue: EventQueue = Depends(get_event_queue),
):
    events = library_service.delete_template(db, user_id, template_id)
    queue.publish_all(events)
    return {"deleted": True, "containers_updated": [event.container_id for event in events]}


@router.get("/{template_id}/impact")
def template_impact(template_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return library_service.template_impact(db, user_id, template_id)
