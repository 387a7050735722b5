"""Scheduler bootstrap for periodic gateway status reconciliation.

The periodic job is a safety net that catches crashed or externally stopped containers; status
is otherwise reconciled whenever a client asks for it.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta

from redis import Redis
from rq_scheduler import Scheduler  # type: ignore[import-untyped]

from clawhuddle.core.config import settings
from clawhuddle.core.logging import get_logger
from clawhuddle.services.gateways.worker import (
    run_gateway_task_worker_once,
    run_reconcile_gateway_statuses,
)

logger = get_logger(__name__)


def _replace_job(scheduler: Scheduler, job_id: str, func: object, interval_seconds: int) -> None:
    for job in scheduler.get_jobs():
        if job.id == job_id:
            scheduler.cancel(job)
    scheduler.schedule(
        datetime.now(tz=UTC) + timedelta(seconds=10),
        func=func,
        interval=interval_seconds,
        repeat=None,
        id=job_id,
        queue_name=settings.gateway_task_queue_name,
    )


def bootstrap_gateway_reconcile_schedule(
    interval_seconds: int | None = None,
    *,
    max_attempts: int = 5,
    retry_sleep_seconds: float = 1.0,
) -> None:
    """Register the recurring reconciliation and task-drain jobs."""

    effective_interval_seconds = (
        settings.gateway_reconcile_interval_seconds if interval_seconds is None else interval_seconds
    )

    last_exc: Exception | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            connection = Redis.from_url(settings.rq_redis_url)
            connection.ping()
            scheduler = Scheduler(
                queue_name=settings.gateway_task_queue_name,
                connection=connection,
            )
            _replace_job(
                scheduler,
                settings.gateway_reconcile_schedule_id,
                run_reconcile_gateway_statuses,
                effective_interval_seconds,
            )
            _replace_job(
                scheduler,
                f"{settings.gateway_reconcile_schedule_id}-tasks",
                run_gateway_task_worker_once,
                effective_interval_seconds,
            )
            logger.info(
                "gateway.scheduler.bootstrapped",
                extra={
                    "schedule_id": settings.gateway_reconcile_schedule_id,
                    "queue_name": settings.gateway_task_queue_name,
                    "interval_seconds": effective_interval_seconds,
                },
            )
            return
        except Exception as exc:
            last_exc = exc
            logger.warning(
                "gateway.scheduler.bootstrap_failed",
                extra={
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "error": str(exc),
                },
            )
            if attempt < max_attempts:
                time.sleep(retry_sleep_seconds * attempt)

    raise RuntimeError("Failed to bootstrap gateway reconcile schedule") from last_exc
