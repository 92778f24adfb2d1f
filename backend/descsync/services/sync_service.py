"""Sync orchestrator: per-channel exclusive pull of the remote upload list

State machine on Channel.sync_status:
    idle/error --claim--> syncing --success--> idle
                                 --failure--> error

The claim is a conditional UPDATE, so it holds across horizontally scaled
workers. A claim older than SYNC_STALE_AFTER_SECONDS is treated as abandoned
and may be taken over.
"""
import logging
from dataclasses import dataclass, asdict, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from descsync.core.config import settings
from descsync.core.errors import (
    AlreadySyncing, RemoteError, RemoteNotFound, RemoteTransient, ResourceNotFound
)
from descsync.core.metrics import channel_sync_counter
from descsync.models.channel import Channel
from descsync.models.description_history import DescriptionHistory
from descsync.models.video import Video
from descsync.services.youtube_gateway import YouTubeGateway

sync_logger = logging.getLogger("sync")


@dataclass
class SyncResult:
    channel_id: int
    discovered: int = 0
    updated: int = 0
    removed: int = 0
    restored: int = 0
    channel_info_error: Optional[str] = None
    # Assigned videos that came back and need their description pushed again
    restored_assigned_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        sync_logger.warning(f"Unparseable timestamp from YouTube: {value}")
        return None


def apply_channel_info(channel: Channel, info: Dict[str, Any]) -> None:
    snippet = info.get("snippet") or {}
    statistics = info.get("statistics") or {}
    thumbnails = snippet.get("thumbnails") or {}
    thumbnail = thumbnails.get("high") or thumbnails.get("medium") or thumbnails.get("default") or {}

    if snippet.get("title"):
        channel.title = snippet["title"]
    if thumbnail.get("url"):
        channel.thumbnail_url = thumbnail["url"]
    if statistics.get("subscriberCount") is not None:
        channel.subscriber_count = int(statistics["subscriberCount"])


def uploads_playlist_id(channel: Channel, info: Optional[Dict[str, Any]]) -> str:
    """Uploads playlist from channel details, else derived from the channel id (UC... -> UU...)"""
    if info:
        playlist = ((info.get("contentDetails") or {}).get("relatedPlaylists") or {}).get("uploads")
        if playlist:
            return playlist
    return "UU" + channel.youtube_channel_id[2:]


def claim_sync(db: Session, channel_id: int) -> None:
    """Atomically move a channel into 'syncing'

    Raises:
        AlreadySyncing: Another sync holds a fresh claim
    """
    now = datetime.now(timezone.utc)
    stale_cutoff = now - timedelta(seconds=settings.SYNC_STALE_AFTER_SECONDS)

    result = db.execute(
        update(Channel)
        .where(
            Channel.id == channel_id,
            or_(
                Channel.sync_status != "syncing",
                Channel.sync_started_at.is_(None),
                Channel.sync_started_at < stale_cutoff,
            )
        )
        .values(sync_status="syncing", sync_started_at=now, sync_error=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    if result.rowcount == 0:
        raise AlreadySyncing(
            f"Channel {channel_id} is already syncing. Please wait for it to finish.",
            {"channel_id": channel_id},
        )


def finish_sync(db: Session, channel: Channel, error: Optional[str] = None) -> None:
    channel.sync_started_at = None
    if error is None:
        channel.sync_status = "idle"
        channel.sync_error = None
        channel.last_synced_at = datetime.now(timezone.utc)
    else:
        channel.sync_status = "error"
        channel.sync_error = error[:1000]
    db.commit()


def reconcile_videos(db: Session, channel: Channel, remote_items: List[Dict[str, Any]], result: SyncResult) -> None:
    """Insert new videos, refresh titles and flag videos missing remotely

    Missing videos are marked with removed_at rather than deleted so their
    variables and history survive; a video that reappears is restored.
    """
    now = datetime.now(timezone.utc)
    local = {video.youtube_video_id: video for video in db.query(Video).filter(Video.channel_id == channel.id).all()}
    seen = set()

    for item in remote_items:
        youtube_video_id = item.get("id")
        if not youtube_video_id:
            continue
        seen.add(youtube_video_id)
        snippet = item.get("snippet") or {}
        video = local.get(youtube_video_id)

        if video is None:
            description = snippet.get("description") or ""
            video = Video(
                channel_id=channel.id,
                youtube_video_id=youtube_video_id,
                title=snippet.get("title"),
                current_description=description,
                published_at=_parse_timestamp(snippet.get("publishedAt")),
            )
            db.add(video)
            db.flush()
            db.add(DescriptionHistory(video_id=video.id, description=description, version_number=1))
            result.discovered += 1
            continue

        if video.removed_at is not None:
            video.removed_at = None
            result.restored += 1
            if video.container_id is not None:
                result.restored_assigned_ids.append(video.id)
        if snippet.get("title") and snippet["title"] != video.title:
            video.title = snippet["title"]
            result.updated += 1

    for youtube_video_id, video in local.items():
        if youtube_video_id not in seen and video.removed_at is None:
            video.removed_at = now
            result.removed += 1

    db.flush()


async def run_channel_sync(db: Session, gateway: YouTubeGateway, channel_id: int, user_id: int) -> SyncResult:
    """Claim, pull, reconcile and release one channel

    Raises:
        ResourceNotFound: Channel missing or owned by another user
        AlreadySyncing: Claim rejected; last_synced_at is left untouched
    """
    channel = db.query(Channel).filter(Channel.id == channel_id, Channel.user_id == user_id).first()
    if channel is None:
        raise ResourceNotFound(f"Channel {channel_id} not found")

    claim_sync(db, channel.id)
    db.refresh(channel)
    sync_logger.info(f"Sync started for channel {channel.id} ({channel.youtube_channel_id})")
    result = SyncResult(channel_id=channel.id)

    try:
        info = None
        try:
            info = await gateway.get_channel(db, channel)
            apply_channel_info(channel, info)
        except (RemoteNotFound, RemoteError, RemoteTransient) as e:
            # Not fatal; reported in the result
            result.channel_info_error = f"{e.code}: {e.message}"
            sync_logger.warning(f"Channel info refresh failed for channel {channel.id}: {result.channel_info_error}")

        video_ids = await gateway.list_upload_video_ids(db, channel, uploads_playlist_id(channel, info))
        remote_items = await gateway.get_videos(db, channel, video_ids)
        reconcile_videos(db, channel, remote_items, result)
        finish_sync(db, channel)
    except Exception as e:
        db.rollback()
        finish_sync(db, channel, error=str(e))
        channel_sync_counter.labels(status="error").inc()
        sync_logger.error(f"Sync failed for channel {channel.id}: {e}")
        raise

    channel_sync_counter.labels(status="success").inc()
    sync_logger.info(
        f"Sync finished for channel {channel.id}: {result.discovered} new, {result.updated} updated, "
        f"{result.removed} removed, {result.restored} restored"
    )
    return result
