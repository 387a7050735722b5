"""Container runtime adapter over the Docker Engine API.

The Docker SDK is synchronous, so every call runs in a worker thread. Containers are always
looked up by name per call; no long-lived container handles are kept.
"""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import UUID

from docker.errors import DockerException, NotFound

from clawhuddle.core.config import DeploymentMode, Settings, settings
from clawhuddle.core.logging import TRACE_LEVEL, get_logger
from clawhuddle.services.gateways.constants import CONTAINER_WORKSPACE_MOUNT
from clawhuddle.services.gateways.exceptions import (
    ContainerExecError,
    ContainerExecTimeoutError,
    ContainerNotFoundError,
    GatewayRuntimeError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from docker import DockerClient

logger = get_logger(__name__)

DOCKER_NAME_MAX_LENGTH = 63
_ID_SEGMENT_LENGTH = 8
_HASH_SEGMENT_LENGTH = 8


def build_container_name(prefix: str, organization_id: UUID, user_id: UUID) -> str:
    """Deterministic, DNS-safe container name for a member's gateway.

    Truncated organization and user ids keep the name readable; the trailing digest of the full
    ids keeps two members whose truncated ids coincide from sharing a container.
    """
    org_hex = organization_id.hex
    user_hex = user_id.hex
    digest = hashlib.sha256(f"{org_hex}:{user_hex}".encode()).hexdigest()[:_HASH_SEGMENT_LENGTH]
    name = (
        f"{prefix}{org_hex[:_ID_SEGMENT_LENGTH]}-{user_hex[:_ID_SEGMENT_LENGTH]}-{digest}"
    )
    return name[:DOCKER_NAME_MAX_LENGTH]


def build_routing_labels(
    container_name: str,
    hostname: str,
    internal_port: int,
) -> dict[str, str]:
    """Reverse-proxy labels routing ``hostname`` to the container's internal port.

    Forwarded-client headers are rewritten to loopback and CDN client-IP headers are stripped so
    the gateway treats proxied browsers as same-host clients for device pairing.
    """
    router = f"traefik.http.routers.{container_name}"
    middleware = f"traefik.http.middlewares.{container_name}-headers.headers.customrequestheaders"
    labels = {
        "traefik.enable": "true",
        f"{router}.rule": f"Host(`{hostname}`)",
        f"{router}.entrypoints": "web",
        f"{router}.middlewares": f"{container_name}-headers",
        f"traefik.http.services.{container_name}.loadbalancer.server.port": str(internal_port),
        f"{middleware}.X-Forwarded-For": "127.0.0.1",
        f"{middleware}.X-Real-IP": "127.0.0.1",
        f"{middleware}.X-Forwarded-Proto": "",
    }
    for header in ("CF-Connecting-IP", "True-Client-IP", "CF-IPCountry", "CF-Ray", "CF-Visitor"):
        labels[f"{middleware}.{header}"] = ""
    return labels


@dataclass(frozen=True, slots=True)
class ContainerSpec:
    """Everything needed to create one gateway container."""

    name: str
    image: str
    workspace_host_dir: Path
    internal_port: int
    network: str
    labels: dict[str, str] = field(default_factory=dict)
    publish_port: bool = False


@dataclass(frozen=True, slots=True)
class ContainerState:
    running: bool
    host_port: int | None = None


class ContainerRuntime:
    """Thin async facade over a caller-owned :class:`docker.DockerClient`."""

    def __init__(self, client: DockerClient, config: Settings | None = None) -> None:
        self._client = client
        self._settings = config or settings

    @property
    def deployment_mode(self) -> DeploymentMode:
        return self._settings.deployment_mode

    @property
    def internal_port(self) -> int:
        return self._settings.gateway_internal_port

    def container_name(self, organization_id: UUID, user_id: UUID) -> str:
        return build_container_name(
            self._settings.gateway_container_prefix,
            organization_id,
            user_id,
        )

    def build_spec(
        self,
        *,
        organization_id: UUID,
        user_id: UUID,
        subdomain: str,
        workspace_host_dir: Path,
    ) -> ContainerSpec:
        name = self.container_name(organization_id, user_id)
        internal_port = self._settings.gateway_internal_port
        return ContainerSpec(
            name=name,
            image=self._settings.gateway_image,
            workspace_host_dir=workspace_host_dir,
            internal_port=internal_port,
            network=self._settings.docker_network,
            labels=build_routing_labels(
                name,
                f"{subdomain}.{self._settings.gateway_domain}",
                internal_port,
            ),
            publish_port=self.deployment_mode.policy.publish_ports,
        )

    async def ensure_network(self) -> None:
        """Create the shared bridge network if it does not exist yet."""
        network = self._settings.docker_network

        def _ensure() -> bool:
            try:
                self._client.networks.get(network)
                return False
            except NotFound:
                self._client.networks.create(network, driver="bridge")
                return True

        try:
            created = await asyncio.to_thread(_ensure)
        except DockerException as exc:
            raise GatewayRuntimeError(f"Failed to ensure network {network}: {exc}") from exc
        if created:
            logger.info("gateway.runtime.network_created", extra={"network": network})

    def _remove_sync(self, name: str) -> bool:
        try:
            container = self._client.containers.get(name)
        except NotFound:
            return False
        try:
            container.stop()
        except DockerException as exc:
            logger.debug(
                "gateway.runtime.stop_ignored",
                extra={"container": name, "error": str(exc)},
            )
        try:
            container.remove()
        except NotFound:
            return False
        return True

    async def remove(self, name: str) -> bool:
        """Stop (ignoring failure) then remove the container. ``False`` if it was absent."""
        try:
            removed = await asyncio.to_thread(self._remove_sync, name)
        except DockerException as exc:
            raise GatewayRuntimeError(f"Failed to remove container {name}: {exc}") from exc
        logger.info("gateway.runtime.removed", extra={"container": name, "existed": removed})
        return removed

    def _host_port_sync(self, name: str, internal_port: int) -> int | None:
        container = self._client.containers.get(name)
        container.reload()
        ports = (container.attrs.get("NetworkSettings") or {}).get("Ports") or {}
        bindings = ports.get(f"{internal_port}/tcp") or []
        for binding in bindings:
            host_port = binding.get("HostPort")
            if host_port:
                return int(host_port)
        return None

    async def create_and_start(self, spec: ContainerSpec) -> int | None:
        """Recreate the container from scratch and start it.

        Any existing container with the same name is stopped and removed first. Returns the host
        port the engine bound when ``spec.publish_port`` is set, else ``None``.
        """
        await self.remove(spec.name)
        create_kwargs: dict[str, Any] = {
            "name": spec.name,
            "labels": spec.labels,
            "volumes": {
                str(spec.workspace_host_dir): {"bind": CONTAINER_WORKSPACE_MOUNT, "mode": "rw"},
            },
            "restart_policy": {"Name": "unless-stopped"},
            "network": spec.network,
        }
        if spec.publish_port:
            # ``None`` asks the engine for an OS-assigned free host port.
            create_kwargs["ports"] = {f"{spec.internal_port}/tcp": None}

        def _create_and_start() -> int | None:
            container = self._client.containers.create(spec.image, **create_kwargs)
            container.start()
            if not spec.publish_port:
                return None
            return self._host_port_sync(spec.name, spec.internal_port)

        try:
            host_port = await asyncio.to_thread(_create_and_start)
        except DockerException as exc:
            logger.error(
                "gateway.runtime.create_failed",
                extra={"container": spec.name, "image": spec.image, "error": str(exc)},
            )
            raise GatewayRuntimeError(f"Failed to start container {spec.name}: {exc}") from exc
        logger.info(
            "gateway.runtime.started",
            extra={"container": spec.name, "host_port": host_port},
        )
        return host_port

    async def _lifecycle_call(self, name: str, action: str) -> None:
        def _call() -> None:
            container = self._client.containers.get(name)
            getattr(container, action)()

        try:
            await asyncio.to_thread(_call)
        except NotFound as exc:
            raise ContainerNotFoundError(f"Gateway container {name} not found") from exc
        except DockerException as exc:
            raise GatewayRuntimeError(f"Failed to {action} container {name}: {exc}") from exc
        logger.info(f"gateway.runtime.{action}", extra={"container": name})

    async def start(self, name: str) -> None:
        await self._lifecycle_call(name, "start")

    async def stop(self, name: str) -> None:
        await self._lifecycle_call(name, "stop")

    async def inspect(self, name: str) -> ContainerState:
        """Live container state. Any lookup failure reads as not running."""

        def _inspect() -> ContainerState:
            container = self._client.containers.get(name)
            state = container.attrs.get("State") or {}
            ports = (container.attrs.get("NetworkSettings") or {}).get("Ports") or {}
            bindings = ports.get(f"{self._settings.gateway_internal_port}/tcp") or []
            host_port = next(
                (int(b["HostPort"]) for b in bindings if b.get("HostPort")),
                None,
            )
            return ContainerState(running=bool(state.get("Running")), host_port=host_port)

        try:
            return await asyncio.to_thread(_inspect)
        except (DockerException, ValueError) as exc:
            logger.log(
                TRACE_LEVEL,
                "gateway.runtime.inspect_failed",
                extra={"container": name, "error": str(exc)},
            )
            return ContainerState(running=False)

    async def exec(
        self,
        name: str,
        command: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> str:
        """Run a one-shot command in a running container and return its combined output.

        A non-zero exit raises :class:`ContainerExecError` carrying the captured output. Exceeding
        ``timeout`` raises :class:`ContainerExecTimeoutError`; the engine-side process is left to
        finish on its own.
        """
        limit = timeout if timeout is not None else self._settings.exec_timeout_seconds

        def _exec() -> tuple[int | None, str]:
            container = self._client.containers.get(name)
            result = container.exec_run(list(command), stdout=True, stderr=True, demux=False)
            output = (result.output or b"").decode("utf-8", errors="replace")
            return result.exit_code, output

        try:
            exit_code, output = await asyncio.wait_for(asyncio.to_thread(_exec), timeout=limit)
        except TimeoutError as exc:
            logger.warning(
                "gateway.runtime.exec_timeout",
                extra={"container": name, "command": command[0] if command else "", "timeout": limit},
            )
            raise ContainerExecTimeoutError("exec timeout") from exc
        except NotFound as exc:
            raise ContainerNotFoundError(f"Gateway container {name} not found") from exc
        except DockerException as exc:
            raise GatewayRuntimeError(f"Failed to exec in container {name}: {exc}") from exc
        if exit_code != 0:
            stripped = output.strip()
            raise ContainerExecError(
                stripped or f"Exit code {exit_code}",
                exit_code=exit_code,
                output=output,
            )
        return output

    async def signal(self, name: str, signal: str) -> None:
        """Deliver ``signal`` to a container's main process."""

        def _kill() -> None:
            self._client.containers.get(name).kill(signal=signal)

        try:
            await asyncio.to_thread(_kill)
        except NotFound as exc:
            raise ContainerNotFoundError(f"Container {name} not found") from exc
        except DockerException as exc:
            raise GatewayRuntimeError(f"Failed to signal container {name}: {exc}") from exc
