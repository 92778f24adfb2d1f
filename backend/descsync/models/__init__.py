"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from descsync.models.base import Base
from descsync.models.user import User
from descsync.models.subscription import Subscription
from descsync.models.channel import Channel
from descsync.models.container import Container
from descsync.models.template import Template
from descsync.models.video import Video
from descsync.models.video_variable import VideoVariable
from descsync.models.usage_log import UsageLog
from descsync.models.description_history import DescriptionHistory

__all__ = [
    "Base", "User", "Subscription", "Channel", "Container", "Template",
    "Video", "VideoVariable", "UsageLog", "DescriptionHistory"
]
