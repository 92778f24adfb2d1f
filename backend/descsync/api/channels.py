"""Channel routes: OAuth connection, sync trigger, disconnect and search"""
import logging
from datetime import datetime, timedelta, timezone

import httpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from descsync.api.deps import get_event_queue, get_gateway, get_http_client, get_vault
from descsync.core.config import settings
from descsync.core.errors import AlreadySyncing, DescSyncError
from descsync.core.security import require_auth
from descsync.db.session import get_db
from descsync.schemas.events import ChannelSync
from descsync.services import library_service, oauth_service
from descsync.services.credential_vault import CredentialVault
from descsync.services.event_bus import EventQueue
from descsync.services.youtube_gateway import YouTubeGateway

logger = logging.getLogger(__name__)
youtube_logger = logging.getLogger("youtube")

router = APIRouter(prefix="/api/channels", tags=["channels"])


@router.get("")
def list_channels(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return {"channels": library_service.list_channels(db, user_id)}


@router.get("/oauth/url")
def get_oauth_url(user_id: int = Depends(require_auth)):
    """Consent URL for connecting a YouTube channel"""
    return {"url": oauth_service.build_authorization_url(user_id)}


@router.get("/oauth/callback")
async def oauth_callback(
    code: str,
    state: str,
    db: Session = Depends(get_db),
    http: httpx.AsyncClient = Depends(get_http_client),
    gateway: YouTubeGateway = Depends(get_gateway),
    vault: CredentialVault = Depends(get_vault),
    queue: EventQueue = Depends(get_event_queue),
):
    """Google redirects here; the state parameter identifies the user"""
    user_id = oauth_service.consume_oauth_state(state)
    if user_id is None:
        return RedirectResponse(f"{settings.FRONTEND_URL}/channels?error=invalid_state")

    try:
        channel, event = await oauth_service.connect_channel(db, http, gateway, vault, user_id, code)
    except DescSyncError as e:
        youtube_logger.warning(f"Channel connection failed for user {user_id}: {e.code}: {e.message}")
        return RedirectResponse(f"{settings.FRONTEND_URL}/channels?error={e.code}")

    queue.publish(event)
    return RedirectResponse(f"{settings.FRONTEND_URL}/channels?connected={channel.id}")


@router.post("/{channel_id}/sync", status_code=202)
def trigger_sync(
    channel_id: int,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    queue: EventQueue = Depends(get_event_queue),
):
    """Queue a sync; rejected up front when a fresh sync is already running

    The worker's conditional claim is the authoritative guard.
    """
    channel = library_service.get_owned_channel(db, user_id, channel_id)
    if channel.sync_status == "syncing" and channel.sync_started_at is not None:
        started_at = channel.sync_started_at
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=timezone.utc)
        if datetime.now(timezone.utc) - started_at < timedelta(seconds=settings.SYNC_STALE_AFTER_SECONDS):
            raise AlreadySyncing(f"Channel {channel_id} is already syncing. Please wait for it to finish.")

    job_id = queue.publish(ChannelSync(user_id=user_id, channel_id=channel.id))
    return {"queued": True, "job_id": job_id}


@router.delete("/{channel_id}")
async def disconnect_channel(
    channel_id: int,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
):
    channel = library_service.get_owned_channel(db, user_id, channel_id)
    return await oauth_service.disconnect_channel(db, vault, channel)


@router.get("/{channel_id}/search")
async def search_channel(
    channel_id: int,
    q: str = Query(..., min_length=1),
    max_results: int = Query(25, ge=1, le=50),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db),
    gateway: YouTubeGateway = Depends(get_gateway),
):
    """Costs 100 quota units per call"""
    channel = library_service.get_owned_channel(db, user_id, channel_id)
    items = await gateway.search_channel(db, channel, q, max_results=max_results)
    return {"items": items}
