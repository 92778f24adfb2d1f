"""Quota usage routes"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from descsync.core.security import require_auth
from descsync.db.session import get_db
from descsync.services.plan_limits import check_channel_limit, check_video_limit
from descsync.services.usage_service import get_usage_summary

router = APIRouter(prefix="/api/usage", tags=["usage"])


@router.get("")
def usage_summary(
    since: Optional[datetime] = None,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """Quota spent since ``since`` (default: start of the UTC day) and plan headroom"""
    summary = get_usage_summary(db, user_id, since)
    summary["limits"] = {
        "channels": check_channel_limit(user_id, db).to_dict(),
        "videos": check_video_limit(user_id, db).to_dict(),
    }
    return summary
