"""Process-wide gateway collaborators shared by the API and the task worker."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import docker
import httpx

from clawhuddle.core.config import Settings, settings
from clawhuddle.core.logging import get_logger
from clawhuddle.services.gateways.health import GatewayHealthProber
from clawhuddle.services.gateways.locks import MemberLockRegistry
from clawhuddle.services.gateways.orchestrator import GatewayOrchestrator
from clawhuddle.services.gateways.routing_map import RoutingMapPublisher
from clawhuddle.services.gateways.runtime import ContainerRuntime
from clawhuddle.services.gateways.workspace import WorkspaceManager

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


@dataclass(slots=True)
class GatewayServices:
    runtime: ContainerRuntime
    prober: GatewayHealthProber
    routing_map: RoutingMapPublisher
    workspace: WorkspaceManager
    locks: MemberLockRegistry = field(default_factory=MemberLockRegistry)

    def orchestrator(self, session: AsyncSession) -> GatewayOrchestrator:
        return GatewayOrchestrator(
            session,
            runtime=self.runtime,
            prober=self.prober,
            locks=self.locks,
            workspace=self.workspace,
            routing_map=self.routing_map,
        )


@asynccontextmanager
async def open_gateway_services(config: Settings | None = None) -> AsyncIterator[GatewayServices]:
    """Connect to the container engine and yield the shared collaborators.

    The Docker and HTTP clients are closed on exit.
    """
    config = config or settings
    docker_client = await asyncio.to_thread(docker.from_env)
    http_client = httpx.AsyncClient()
    runtime = ContainerRuntime(docker_client, config)
    try:
        yield GatewayServices(
            runtime=runtime,
            prober=GatewayHealthProber(http_client, config),
            routing_map=RoutingMapPublisher(runtime, config),
            workspace=WorkspaceManager(config),
        )
    finally:
        await http_client.aclose()
        await asyncio.to_thread(docker_client.close)
        logger.debug("gateway.services.closed")
