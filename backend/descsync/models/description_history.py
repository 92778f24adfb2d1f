"""DescriptionHistory model"""
from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from descsync.models.base import Base


class DescriptionHistory(Base):
    """Versioned record of every description that was live on a video"""
    __tablename__ = "description_history"

    id = Column(Integer, primary_key=True, index=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    version_number = Column(Integer, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    video = relationship("Video", back_populates="history")

    __table_args__ = (
        UniqueConstraint('video_id', 'version_number', name='uq_description_history_version'),
    )
