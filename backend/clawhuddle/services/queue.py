"""Redis list-backed task queue used for gateway follow-up work."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, cast

import redis

from clawhuddle.core.config import settings
from clawhuddle.core.logging import get_logger
from clawhuddle.core.time import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueuedTask:
    """Queued task envelope."""

    task_type: str
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=utcnow)
    attempts: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {
                "task_type": self.task_type,
                "payload": self.payload,
                "created_at": self.created_at.isoformat(),
                "attempts": self.attempts,
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> QueuedTask:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data: dict[str, Any] = json.loads(raw)
        return cls(
            task_type=str(data["task_type"]),
            payload=dict(data.get("payload") or {}),
            created_at=datetime.fromisoformat(data["created_at"]),
            attempts=int(data.get("attempts", 0)),
        )


def _redis_client(redis_url: str | None = None) -> redis.Redis:
    return redis.Redis.from_url(redis_url or settings.rq_redis_url)


def enqueue_task(task: QueuedTask, queue_name: str, *, redis_url: str | None = None) -> bool:
    """Push a task envelope onto the queue. Returns ``False`` if Redis is unavailable."""
    try:
        client = _redis_client(redis_url=redis_url)
        client.lpush(queue_name, task.to_json())
    except redis.RedisError as exc:
        logger.warning(
            "rq.queue.enqueue_failed",
            extra={"task_type": task.task_type, "queue_name": queue_name, "error": str(exc)},
        )
        return False
    logger.info(
        "rq.queue.enqueued",
        extra={
            "task_type": task.task_type,
            "queue_name": queue_name,
            "attempt": task.attempts,
        },
    )
    return True


def dequeue_task(queue_name: str, *, redis_url: str | None = None) -> QueuedTask | None:
    """Pop one task envelope from the queue, or ``None`` when it is empty."""
    client = _redis_client(redis_url=redis_url)
    raw = cast(str | bytes | None, client.rpop(queue_name))
    if raw is None:
        return None
    try:
        return QueuedTask.from_json(raw)
    except (KeyError, TypeError, ValueError) as exc:
        logger.error(
            "rq.queue.dequeue_failed",
            extra={"queue_name": queue_name, "raw_payload": str(raw), "error": str(exc)},
        )
        raise


def requeue_if_failed(
    task: QueuedTask,
    queue_name: str,
    *,
    max_retries: int,
    redis_url: str | None = None,
) -> bool:
    """Requeue a failed task with capped retries.

    Returns True if requeued.
    """
    if task.attempts >= max_retries:
        logger.warning(
            "rq.queue.drop_failed_task",
            extra={
                "task_type": task.task_type,
                "queue_name": queue_name,
                "attempts": task.attempts,
            },
        )
        return False
    return enqueue_task(replace(task, attempts=task.attempts + 1), queue_name, redis_url=redis_url)
