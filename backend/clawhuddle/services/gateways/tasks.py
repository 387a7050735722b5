"""Follow-up gateway work carried over the task queue."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from clawhuddle.core.config import settings
from clawhuddle.core.logging import get_logger
from clawhuddle.services.gateways.exceptions import GatewayPreconditionError
from clawhuddle.services.queue import QueuedTask, enqueue_task, requeue_if_failed

if TYPE_CHECKING:
    from clawhuddle.services.gateways.orchestrator import GatewayOrchestrator

logger = get_logger(__name__)

TASK_TYPE_REDEPLOY = "gateway.redeploy"
TASK_TYPE_SYNC_AUTH_PROFILES = "gateway.sync_auth_profiles"


def enqueue_gateway_redeploy(organization_id: UUID, member_id: UUID, *, reason: str) -> bool:
    return enqueue_task(
        QueuedTask(
            task_type=TASK_TYPE_REDEPLOY,
            payload={
                "organization_id": str(organization_id),
                "member_id": str(member_id),
                "reason": reason,
            },
        ),
        settings.gateway_task_queue_name,
    )


def enqueue_auth_profile_sync(organization_id: UUID) -> bool:
    """Ask the worker to rewrite credential profiles after an organization's keys change."""
    return enqueue_task(
        QueuedTask(
            task_type=TASK_TYPE_SYNC_AUTH_PROFILES,
            payload={"organization_id": str(organization_id)},
        ),
        settings.gateway_task_queue_name,
    )


def _parse_ids(task: QueuedTask) -> tuple[UUID, UUID | None]:
    organization_id = UUID(task.payload["organization_id"])
    if task.task_type == TASK_TYPE_SYNC_AUTH_PROFILES:
        return organization_id, None
    return organization_id, UUID(task.payload["member_id"])


async def _run(
    orchestrator: GatewayOrchestrator,
    organization_id: UUID,
    member_id: UUID | None,
) -> dict[str, str]:
    if member_id is None:
        written = await orchestrator.sync_auth_profiles(organization_id)
        return {"organization_id": str(organization_id), "workspaces": str(written)}
    await orchestrator.redeploy(organization_id, member_id)
    return {"member_id": str(member_id)}


async def process_gateway_task(task: QueuedTask, orchestrator: GatewayOrchestrator) -> bool:
    """Execute one queued task. Returns ``True`` when the task is finished with.

    Malformed payloads and precondition failures (gateway removed or never deployed since the
    task was queued) drop the task. Any other failure is requeued up to the configured retry cap.
    """
    if task.task_type not in {TASK_TYPE_REDEPLOY, TASK_TYPE_SYNC_AUTH_PROFILES}:
        logger.warning("gateway.task.unknown_type", extra={"task_type": task.task_type})
        return True
    try:
        organization_id, member_id = _parse_ids(task)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning(
            "gateway.task.malformed",
            extra={"task_type": task.task_type, "payload": task.payload, "error": str(exc)},
        )
        return True
    try:
        details = await _run(orchestrator, organization_id, member_id)
    except GatewayPreconditionError as exc:
        logger.info(
            "gateway.task.dropped",
            extra={"task_type": task.task_type, "payload": task.payload, "reason": exc.message},
        )
        return True
    except Exception as exc:
        logger.error(
            "gateway.task.failed",
            extra={
                "task_type": task.task_type,
                "payload": task.payload,
                "attempts": task.attempts,
                "error": str(exc),
            },
        )
        requeue_if_failed(
            task,
            settings.gateway_task_queue_name,
            max_retries=settings.gateway_task_max_retries,
        )
        return False
    logger.info(
        "gateway.task.completed",
        extra={"task_type": task.task_type, "reason": task.payload.get("reason"), **details},
    )
    return True
