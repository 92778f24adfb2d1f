"""Quota usage accounting"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from descsync.core.metrics import quota_units_counter
from descsync.models.usage_log import UsageLog

quota_logger = logging.getLogger("quota")


def record_usage(
    db: Session,
    user_id: int,
    endpoint: str,
    method: str,
    quota_units: int,
    status: str,
    pool: str = "data",
    channel_id: Optional[int] = None,
    status_code: Optional[int] = None,
) -> UsageLog:
    """Append one usage entry and commit it immediately

    Committed on its own so the audit trail survives a caller that rolls back
    after a failed call.
    """
    entry = UsageLog(
        user_id=user_id,
        channel_id=channel_id,
        endpoint=endpoint,
        method=method,
        pool=pool,
        quota_units=quota_units,
        status=status,
        status_code=status_code,
    )
    db.add(entry)
    db.commit()

    quota_units_counter.labels(pool=pool, endpoint=endpoint).inc(quota_units)
    quota_logger.debug(
        f"Charged {quota_units} {pool} units for {endpoint} "
        f"(user {user_id}, channel {channel_id}, status {status})"
    )
    return entry


def start_of_day(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def get_usage_summary(db: Session, user_id: int, since: Optional[datetime] = None) -> Dict[str, Any]:
    """Quota units and call counts per pool and per endpoint since ``since``

    Defaults to the start of the current UTC day, which is when the remote
    provider resets its daily quota.
    """
    since = since or start_of_day()

    pool_rows = db.query(
        UsageLog.pool,
        func.coalesce(func.sum(UsageLog.quota_units), 0),
        func.count(UsageLog.id),
    ).filter(
        UsageLog.user_id == user_id,
        UsageLog.created_at >= since
    ).group_by(UsageLog.pool).all()

    endpoint_rows = db.query(
        UsageLog.endpoint,
        func.coalesce(func.sum(UsageLog.quota_units), 0),
        func.count(UsageLog.id),
    ).filter(
        UsageLog.user_id == user_id,
        UsageLog.created_at >= since
    ).group_by(UsageLog.endpoint).all()

    return {
        "since": since.isoformat(),
        "pools": {pool: {"units": int(units), "calls": calls} for pool, units, calls in pool_rows},
        "endpoints": {name: {"units": int(units), "calls": calls} for name, units, calls in endpoint_rows},
    }
