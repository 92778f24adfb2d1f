"""Redis-backed job queue for pipeline events

Jobs live in a Redis list per queue; each job also has a metadata hash that
tracks status, attempts and the backoff deadline of a scheduled retry.
"""
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from descsync.db.redis import get_redis_client, get_async_redis_client

logger = logging.getLogger(__name__)

# Redis key prefixes
QUEUE_KEY_PREFIX = "task:queue:"
META_KEY_PREFIX = "task:meta:"
PROCESSING_SET_KEY = "task:processing"

# Metadata of finished jobs is kept for a day
TASK_META_TTL = 24 * 60 * 60
MAX_BACKOFF_SECONDS = 300


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def enqueue_task(
    queue: str,
    payload: Dict[str, Any],
    retry_count: int = 0,
    max_retries: int = 3,
    retry_after: Optional[datetime] = None,
) -> str:
    """Push a job onto ``queue`` and return its id"""
    task_id = str(uuid.uuid4())
    created_at = _now()
    client = get_redis_client()

    meta = {
        "task_id": task_id,
        "queue": queue,
        "payload": json.dumps(payload),
        "retry_count": str(retry_count),
        "max_retries": str(max_retries),
        "created_at": created_at,
        "status": "pending",
    }
    if retry_after is not None:
        meta["retry_after"] = retry_after.isoformat()

    meta_key = f"{META_KEY_PREFIX}{task_id}"
    client.hset(meta_key, mapping=meta)
    client.expire(meta_key, TASK_META_TTL)

    client.lpush(f"{QUEUE_KEY_PREFIX}{queue}", json.dumps({
        "task_id": task_id,
        "queue": queue,
        "payload": payload,
        "retry_count": retry_count,
        "max_retries": max_retries,
        "created_at": created_at,
    }))

    logger.info(f"Enqueued task {task_id} on {queue} (retry_count={retry_count})")
    return task_id


async def dequeue_task(queue: str, timeout: int = 5, client=None) -> Optional[Dict[str, Any]]:
    """Blocking pop of the oldest job; None on timeout"""
    client = client or get_async_redis_client()
    if client is None:
        logger.error("Async Redis client not available")
        return None

    result = await client.brpop(f"{QUEUE_KEY_PREFIX}{queue}", timeout=timeout)
    if result is None:
        return None

    _, task_json = result
    return json.loads(task_json)


def get_task_status(task_id: str) -> Optional[Dict[str, Any]]:
    meta = get_redis_client().hgetall(f"{META_KEY_PREFIX}{task_id}")
    if not meta:
        return None

    if "payload" in meta:
        meta["payload"] = json.loads(meta["payload"])
    for field in ("retry_count", "max_retries"):
        if field in meta:
            meta[field] = int(meta[field])
    return meta


def get_retry_after(task_id: str) -> Optional[datetime]:
    """Backoff deadline of a retry job, if any"""
    raw = get_redis_client().hget(f"{META_KEY_PREFIX}{task_id}", "retry_after")
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError as e:
        logger.warning(f"Unparseable retry_after for task {task_id}: {e}")
        return None


def mark_task_processing(task_id: str) -> None:
    client = get_redis_client()
    client.hset(f"{META_KEY_PREFIX}{task_id}", mapping={"status": "processing", "started_at": _now()})
    client.sadd(PROCESSING_SET_KEY, task_id)


def mark_task_completed(task_id: str, result: Optional[Dict[str, Any]] = None) -> None:
    client = get_redis_client()
    meta_key = f"{META_KEY_PREFIX}{task_id}"
    client.hset(meta_key, mapping={"status": "completed", "completed_at": _now()})
    if result:
        client.hset(meta_key, "result", json.dumps(result, default=str))
    client.srem(PROCESSING_SET_KEY, task_id)
    logger.info(f"Marked task {task_id} as completed")


def mark_task_failed(
    task_id: str, error: str, retry: bool = True, payload: Optional[Dict[str, Any]] = None
) -> Optional[str]:
    """Record a failure and, when allowed, enqueue a delayed retry

    Backoff doubles per attempt and is capped at five minutes. The retry runs
    with ``payload`` when given, otherwise with the original payload.

    Returns:
        Id of the retry job, or None when the job failed permanently
    """
    client = get_redis_client()
    meta_key = f"{META_KEY_PREFIX}{task_id}"
    meta = client.hgetall(meta_key)
    if not meta:
        logger.warning(f"Task {task_id} metadata not found")
        return None

    retry_count = int(meta.get("retry_count", "0"))
    max_retries = int(meta.get("max_retries", "3"))
    client.srem(PROCESSING_SET_KEY, task_id)

    if retry and retry_count < max_retries:
        new_retry_count = retry_count + 1
        delay_seconds = min(MAX_BACKOFF_SECONDS, 2 ** new_retry_count)
        client.hset(meta_key, mapping={
            "status": "retrying",
            "error": error,
            "retry_scheduled_at": _now(),
            "retry_delay_seconds": str(delay_seconds),
        })
        logger.info(
            f"Task {task_id} failed (attempt {retry_count + 1}/{max_retries + 1}), "
            f"scheduling retry in {delay_seconds}s: {error}"
        )
        return enqueue_task(
            queue=meta["queue"],
            payload=payload if payload is not None else json.loads(meta["payload"]),
            retry_count=new_retry_count,
            max_retries=max_retries,
            retry_after=datetime.now(timezone.utc) + timedelta(seconds=delay_seconds),
        )

    client.hset(meta_key, mapping={"status": "failed", "error": error, "failed_at": _now()})
    logger.warning(f"Task {task_id} failed permanently after {retry_count + 1} attempts: {error}")
    return None


def get_processing_tasks() -> List[str]:
    return list(get_redis_client().smembers(PROCESSING_SET_KEY))


def cleanup_stale_tasks(timeout_seconds: int = 3600) -> int:
    """Fail jobs stuck in processing, most likely left behind by a crashed worker"""
    client = get_redis_client()
    cleaned = 0

    for task_id in get_processing_tasks():
        meta_key = f"{META_KEY_PREFIX}{task_id}"
        started_at_str = client.hget(meta_key, "started_at")
        if not started_at_str:
            continue

        try:
            started_at = datetime.fromisoformat(started_at_str.replace('Z', '+00:00'))
        except ValueError as e:
            logger.warning(f"Error parsing started_at for task {task_id}: {e}")
            client.srem(PROCESSING_SET_KEY, task_id)
            cleaned += 1
            continue

        elapsed = (datetime.now(timezone.utc) - started_at).total_seconds()
        if elapsed > timeout_seconds:
            logger.warning(
                f"Cleaning up stale task {task_id} "
                f"(processing for {elapsed:.0f}s, timeout={timeout_seconds}s)"
            )
            client.srem(PROCESSING_SET_KEY, task_id)
            client.hset(meta_key, mapping={
                "status": "failed",
                "error": f"Task timeout after {elapsed:.0f} seconds",
            })
            cleaned += 1

    return cleaned
