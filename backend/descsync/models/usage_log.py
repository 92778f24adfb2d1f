"""UsageLog model"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from datetime import datetime, timezone
from descsync.models.base import Base


class UsageLog(Base):
    """Append-only audit of every remote API attempt and the quota it cost"""
    __tablename__ = "usage_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel_id = Column(Integer, ForeignKey("channels.id", ondelete="SET NULL"), nullable=True)
    endpoint = Column(String(100), nullable=False)  # e.g. 'videos.update'
    method = Column(String(10), nullable=False)
    pool = Column(String(20), nullable=False, default="data")  # 'data' or 'analytics'
    quota_units = Column(Integer, nullable=False, default=0)
    status = Column(String(20), nullable=False)  # 'success', 'error', 'network_error'
    status_code = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('ix_usage_logs_user_created', 'user_id', 'created_at'),
    )
