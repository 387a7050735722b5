"""RQ worker entrypoints for gateway follow-up tasks and status reconciliation."""

from __future__ import annotations

import asyncio
import time

from sqlmodel import col, select

from clawhuddle.core.config import settings
from clawhuddle.core.logging import get_logger
from clawhuddle.db.session import async_session_maker
from clawhuddle.models.org_members import OrgMember
from clawhuddle.services.gateways.context import GatewayServices, open_gateway_services
from clawhuddle.services.gateways.exceptions import GatewayError
from clawhuddle.services.gateways.tasks import process_gateway_task
from clawhuddle.services.queue import dequeue_task

logger = get_logger(__name__)


async def drain_gateway_tasks(services: GatewayServices, *, limit: int | None = None) -> int:
    """Process queued tasks until the queue is empty or ``limit`` tasks have been taken.

    A failed task has already been requeued, so the drain stops there and the retry waits for
    the next scheduled run instead of spending its attempts back to back.
    """
    processed = 0
    while limit is None or processed < limit:
        task = dequeue_task(settings.gateway_task_queue_name)
        if task is None:
            break
        async with async_session_maker() as session:
            finished = await process_gateway_task(task, services.orchestrator(session))
        processed += 1
        if not finished:
            logger.warning(
                "gateway.worker.drain_paused",
                extra={"task_type": task.task_type, "processed": processed},
            )
            break
    return processed


async def reconcile_gateway_statuses(services: GatewayServices) -> int:
    """Reconcile every member that has a gateway record. Returns the number checked."""
    async with async_session_maker() as session:
        rows = await session.exec(
            select(OrgMember.organization_id, OrgMember.id).where(
                col(OrgMember.gateway_port).is_not(None),
            ),
        )
        targets = list(rows)
    checked = 0
    for organization_id, member_id in targets:
        async with async_session_maker() as session:
            try:
                await services.orchestrator(session).get_status(organization_id, member_id)
            except GatewayError as exc:
                logger.warning(
                    "gateway.reconcile.member_failed",
                    extra={"member_id": str(member_id), "error": exc.message},
                )
                continue
        checked += 1
    return checked


async def _run_tasks_once() -> int:
    async with open_gateway_services() as services:
        return await drain_gateway_tasks(services)


async def _run_reconcile() -> int:
    async with open_gateway_services() as services:
        return await reconcile_gateway_statuses(services)


def run_gateway_task_worker_once() -> None:
    """RQ entrypoint draining the gateway follow-up task queue."""
    start = time.time()
    count = asyncio.run(_run_tasks_once())
    logger.info(
        "gateway.worker.batch_finished",
        extra={"duration_ms": int((time.time() - start) * 1000), "tasks": count},
    )


def run_reconcile_gateway_statuses() -> None:
    """RQ entrypoint for periodically reconciling gateway statuses."""
    start = time.time()
    logger.info("gateway.reconcile.started")
    count = asyncio.run(_run_reconcile())
    logger.info(
        "gateway.reconcile.finished",
        extra={"duration_ms": int((time.time() - start) * 1000), "members": count},
    )
