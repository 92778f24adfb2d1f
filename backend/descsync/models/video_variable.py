"""VideoVariable model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from descsync.models.base import Base


class VideoVariable(Base):
    """Stored value for one (video, template, variable name) triple"""
    __tablename__ = "video_variables"

    id = Column(Integer, primary_key=True, index=True)
    video_id = Column(Integer, ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True)
    template_id = Column(Integer, ForeignKey("templates.id", ondelete="CASCADE"), nullable=False, index=True)
    variable_name = Column(String(255), nullable=False)
    variable_value = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    video = relationship("Video", back_populates="variables")
    template = relationship("Template", back_populates="variables")

    __table_args__ = (
        UniqueConstraint('video_id', 'template_id', 'variable_name', name='uq_video_variables_triple'),
    )
