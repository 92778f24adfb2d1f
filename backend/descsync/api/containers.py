"""Container routes"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from descsync.api.deps import get_event_queue
from descsync.core.security import require_auth
from descsync.db.session import get_db
from descsync.schemas.library import ContainerCreate, ContainerUpdate
from descsync.services import library_service
from descsync.services.event_bus import EventQueue

router = APIRouter(prefix="/api/containers", tags=["containers"])


def _container_dict(container):
    return {
        "id": container.id,
        "name": container.name,
        "separator": container.separator,
        "template_ids": list(container.template_order or []),
    }


@router.post("", status_code=201)
def create_container(payload: ContainerCreate, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    container = library_service.create_container(
        db, user_id, payload.name, template_ids=payload.template_ids, separator=payload.separator
    )
    return _container_dict(container)


@router.patch("/{container_id}")
def update_container(
    container_id: int,
    payload: ContainerUpdate,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    queue: EventQueue = Depends(get_event_queue),
):
    container, event = library_service.update_container(
        db, user_id, container_id,
        name=payload.name, template_ids=payload.template_ids, separator=payload.separator,
    )
    queue.publish_all([event])
    return {**_container_dict(container), "propagating": event is not None}


@router.delete("/{container_id}")
def delete_container(container_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    detached = library_service.delete_container(db, user_id, container_id)
    return {"deleted": True, "videos_detached": detached}
