"""Periodic fleet-wide channel sync"""
import asyncio
import logging
from typing import Optional

from sqlalchemy.orm import Session

from descsync.core.config import settings
from descsync.core.metrics import scheduler_runs_counter
from descsync.db.session import SessionLocal
from descsync.models.channel import Channel
from descsync.schemas.events import ChannelSync
from descsync.services.event_bus import EventQueue

logger = logging.getLogger(__name__)


def enqueue_fleet_sync(db: Session, queue: EventQueue) -> int:
    """Publish one channel.sync per connected channel; does not wait for the syncs

    Disconnected (revoked) channels have no credentials and are skipped.
    """
    channels = db.query(Channel.id, Channel.user_id).filter(
        Channel.token_status != "revoked"
    ).order_by(Channel.id).all()

    for channel_id, user_id in channels:
        queue.publish(ChannelSync(user_id=user_id, channel_id=channel_id))

    logger.info(f"Scheduled sync for {len(channels)} channels")
    return len(channels)


async def channel_sync_scheduler_task(queue: EventQueue, interval: Optional[int] = None) -> None:
    """Background task that triggers a full-fleet sync on a fixed interval"""
    interval = interval or settings.SYNC_INTERVAL_SECONDS
    while True:
        await asyncio.sleep(interval)
        db = SessionLocal()
        try:
            enqueue_fleet_sync(db, queue)
            scheduler_runs_counter.labels(status="success").inc()
        except Exception as e:
            scheduler_runs_counter.labels(status="error").inc()
            logger.error(f"Fleet sync scheduling failed: {e}", exc_info=True)
        finally:
            db.close()
