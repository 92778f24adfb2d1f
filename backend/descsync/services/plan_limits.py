"""Plan limits: per-tier ceilings on connected channels and assigned videos"""
import logging
from dataclasses import dataclass, asdict
from typing import Optional

from sqlalchemy.orm import Session

from descsync.core.errors import LimitReached
from descsync.models.channel import Channel
from descsync.models.subscription import Subscription
from descsync.models.user import User
from descsync.models.video import Video

logger = logging.getLogger(__name__)

# None means unlimited
PLAN_CONFIG = {
    "free": {"channel_limit": 1, "video_limit": 5},
    "pro": {"channel_limit": 1, "video_limit": None},
    "business": {"channel_limit": None, "video_limit": None},
}

ACTIVE_SUBSCRIPTION_STATUSES = ("active", "trialing")


@dataclass
class LimitStatus:
    allowed: bool
    limit: Optional[int]
    current_tier: str
    current_count: int

    def to_dict(self):
        return asdict(self)


def get_user_plan_tier(user_id: int, db: Session) -> str:
    """Plan tier of the user's active subscription, 'free' otherwise"""
    subscription = db.query(Subscription).filter(Subscription.user_id == user_id).first()
    if not subscription or subscription.status not in ACTIVE_SUBSCRIPTION_STATUSES:
        return "free"
    if subscription.plan_type not in PLAN_CONFIG:
        logger.warning(f"Unknown plan type '{subscription.plan_type}' for user {user_id}, using free limits")
        return "free"
    return subscription.plan_type


def _status(limit: Optional[int], tier: str, count: int) -> LimitStatus:
    return LimitStatus(allowed=limit is None or count < limit, limit=limit, current_tier=tier, current_count=count)


def count_channels(user_id: int, db: Session) -> int:
    """Connected channels; disconnected (revoked) ones do not hold a slot"""
    return db.query(Channel).filter(
        Channel.user_id == user_id,
        Channel.token_status != "revoked"
    ).count()


def count_assigned_videos(user_id: int, db: Session) -> int:
    return db.query(Video).join(Channel, Video.channel_id == Channel.id).filter(
        Channel.user_id == user_id,
        Video.container_id.isnot(None)
    ).count()


def check_channel_limit(user_id: int, db: Session) -> LimitStatus:
    tier = get_user_plan_tier(user_id, db)
    return _status(PLAN_CONFIG[tier]["channel_limit"], tier, count_channels(user_id, db))


def check_video_limit(user_id: int, db: Session) -> LimitStatus:
    tier = get_user_plan_tier(user_id, db)
    return _status(PLAN_CONFIG[tier]["video_limit"], tier, count_assigned_videos(user_id, db))


def lock_user(user_id: int, db: Session) -> User:
    """Row-lock the user for the rest of the transaction

    Every limited write for a user serializes on this lock, so a count taken
    after acquiring it stays true until the guarded write commits.
    """
    return db.query(User).filter(User.id == user_id).with_for_update().one()


def enforce_channel_limit(user_id: int, db: Session) -> LimitStatus:
    """Raise LimitReached unless one more channel fits; call inside the write's transaction"""
    lock_user(user_id, db)
    status = check_channel_limit(user_id, db)
    if not status.allowed:
        noun = "channel" if status.limit == 1 else "channels"
        raise LimitReached(
            f"You have reached your channel limit ({status.limit} {noun} on the {status.current_tier} plan). "
            f"Please upgrade your plan to add more channels.",
            limit=status.limit, tier=status.current_tier,
        )
    return status


def enforce_video_limit(user_id: int, db: Session) -> LimitStatus:
    """Raise LimitReached unless one more assigned video fits; call inside the write's transaction"""
    lock_user(user_id, db)
    status = check_video_limit(user_id, db)
    if not status.allowed:
        raise LimitReached(
            f"You have reached your video limit ({status.limit} videos on the {status.current_tier} plan). "
            f"Please upgrade your plan to add more videos.",
            limit=status.limit, tier=status.current_tier,
        )
    return status
