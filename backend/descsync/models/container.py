"""Container model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from descsync.models.base import Base
from descsync.utils.templates import DEFAULT_SEPARATOR


class Container(Base):
    """Named, ordered group of templates forming a description"""
    __tablename__ = "containers"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    separator = Column(Text, nullable=False, default=DEFAULT_SEPARATOR)
    template_order = Column(JSON, nullable=False, default=list)  # list of template ids, concatenation order
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    user = relationship("User", back_populates="containers")
    videos = relationship("Video", back_populates="container", passive_deletes=True)
