"""Video model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from descsync.models.base import Base


class Video(Base):
    """Video discovered on a channel, optionally assigned to one container"""
    __tablename__ = "videos"

    id = Column(Integer, primary_key=True, index=True)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="CASCADE"), nullable=False, index=True)
    youtube_video_id = Column(String(64), nullable=False)
    title = Column(Text)
    current_description = Column(Text)
    published_at = Column(DateTime(timezone=True))
    container_id = Column(Integer, ForeignKey("containers.id", ondelete="SET NULL"), nullable=True, index=True)
    removed_at = Column(DateTime(timezone=True))  # Set when missing from the remote upload list
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    channel = relationship("Channel", back_populates="videos")
    container = relationship("Container", back_populates="videos")
    variables = relationship("VideoVariable", back_populates="video", cascade="all, delete-orphan")
    history = relationship(
        "DescriptionHistory", back_populates="video",
        cascade="all, delete-orphan", order_by="DescriptionHistory.version_number"
    )

    __table_args__ = (
        UniqueConstraint('channel_id', 'youtube_video_id', name='uq_videos_channel_youtube_video'),
        Index('ix_videos_channel_container', 'channel_id', 'container_id'),
    )
