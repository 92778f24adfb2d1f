"""Channel model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from descsync.models.base import Base

TOKEN_STATUSES = ("valid", "invalid", "revoked")
SYNC_STATUSES = ("idle", "syncing", "error")


class Channel(Base):
    """Connected YouTube channel with its OAuth credentials (encrypted)"""
    __tablename__ = "channels"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    youtube_channel_id = Column(String(64), unique=True, nullable=False, index=True)
    title = Column(String(255))
    thumbnail_url = Column(Text)
    subscriber_count = Column(Integer)

    access_token = Column(Text)  # Encrypted
    refresh_token = Column(Text)  # Encrypted
    token_expires_at = Column(DateTime(timezone=True))
    granted_scopes = Column(JSON)
    token_status = Column(String(20), nullable=False, default="valid")

    # Owned by the sync orchestrator
    sync_status = Column(String(20), nullable=False, default="idle")
    sync_started_at = Column(DateTime(timezone=True))
    sync_error = Column(Text)
    last_synced_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    user = relationship("User", back_populates="channels")
    videos = relationship("Video", back_populates="channel", cascade="all, delete-orphan")

    __table_args__ = (
        Index('ix_channels_user_sync_status', 'user_id', 'sync_status'),
    )
