"""Readiness probing of a gateway's embedded HTTP service."""

from __future__ import annotations

import httpx

from clawhuddle.core.config import DeploymentMode, Settings, settings
from clawhuddle.core.logging import TRACE_LEVEL, get_logger

logger = get_logger(__name__)

# 401 means the service is up and correctly rejecting an unauthenticated probe.
_HEALTHY_STATUS_CODES = frozenset({httpx.codes.UNAUTHORIZED})


class GatewayHealthProber:
    """Decide whether a running gateway container is ready to serve traffic.

    A container can be "running" at the engine level while the gateway inside is still booting.
    Only a 2xx or 401 answer from the gateway root counts as healthy; connection errors,
    timeouts, and every other status read as "not yet".
    """

    def __init__(self, client: httpx.AsyncClient, config: Settings | None = None) -> None:
        self._client = client
        self._settings = config or settings

    def probe_url(self, *, container_name: str, host_port: int | None) -> str | None:
        mode: DeploymentMode = self._settings.deployment_mode
        if mode.policy.probe_via_host_port:
            if host_port is None:
                return None
            return f"http://127.0.0.1:{host_port}/"
        return f"http://{container_name}:{self._settings.gateway_internal_port}/"

    async def is_healthy(self, *, container_name: str, host_port: int | None) -> bool:
        url = self.probe_url(container_name=container_name, host_port=host_port)
        if url is None:
            logger.debug("gateway.health.no_probe_address", extra={"container": container_name})
            return False
        try:
            response = await self._client.get(
                url,
                timeout=self._settings.health_timeout_seconds,
                follow_redirects=False,
            )
        except httpx.HTTPError as exc:
            logger.log(
                TRACE_LEVEL,
                "gateway.health.unreachable",
                extra={"container": container_name, "error": type(exc).__name__},
            )
            return False
        healthy = response.is_success or response.status_code in _HEALTHY_STATUS_CODES
        logger.log(
            TRACE_LEVEL,
            "gateway.health.probed",
            extra={
                "container": container_name,
                "status_code": response.status_code,
                "healthy": healthy,
            },
        )
        return healthy
