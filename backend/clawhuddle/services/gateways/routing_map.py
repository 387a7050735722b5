"""Subdomain → upstream map consumed by the reverse proxy.

The map is always recomputed in full from the gateway records and written atomically; the proxy
is then asked to reload. A failed reload signal is logged and dropped because the proxy picks up
the file on its next reload or restart anyway.
"""

from __future__ import annotations

import asyncio
import ipaddress
import os
import socket
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from sqlmodel import col, select

from clawhuddle.core.config import Settings, settings
from clawhuddle.core.logging import get_logger
from clawhuddle.models.org_members import OrgMember
from clawhuddle.services.gateways.exceptions import GatewayError

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from clawhuddle.services.gateways.runtime import ContainerRuntime

logger = get_logger(__name__)

MAP_BANNER = "# Auto-generated gateway subdomain map"
EMPTY_MAP_BANNER = "# gateway subdomain -> upstream map"


@dataclass(frozen=True, slots=True)
class RoutingMapEntry:
    subdomain: str
    host: str
    port: int

    def render(self) -> str:
        return f"{self.subdomain} {self.host}:{self.port};"


def render_routing_map(entries: list[RoutingMapEntry]) -> str:
    lines = [MAP_BANNER, *(entry.render() for entry in entries)]
    return "\n".join(lines) + "\n"


class RoutingMapPublisher:
    def __init__(
        self,
        runtime: ContainerRuntime | None,
        config: Settings | None = None,
    ) -> None:
        self._runtime = runtime
        self._settings = config or settings

    @property
    def map_path(self) -> Path:
        return self._settings.resolved_routing_map_path()

    def ensure_map_file(self) -> None:
        """Create an empty map with its banner if none exists yet."""
        path = self.map_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if not path.exists():
            path.write_text(f"{EMPTY_MAP_BANNER}\n", encoding="utf-8")

    async def resolve_gateway_host(self) -> str:
        """Return the configured gateway host, pre-resolved to an address when enabled.

        The proxy's own resolver cannot see every name source the API host can, so a symbolic
        host is turned into an IPv4 address here. Resolution failure keeps the name.
        """
        host = self._settings.gateway_host
        if not self._settings.gateway_host_resolve:
            return host
        try:
            ipaddress.ip_address(host)
            return host
        except ValueError:
            pass
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(host, None, family=socket.AF_INET, type=socket.SOCK_STREAM)
        except OSError as exc:
            logger.warning(
                "gateway.routing_map.resolve_failed",
                extra={"host": host, "error": str(exc)},
            )
            return host
        return str(infos[0][4][0]) if infos else host

    async def collect_entries(self, session: AsyncSession) -> list[RoutingMapEntry]:
        statement = (
            select(OrgMember)
            .where(
                col(OrgMember.gateway_subdomain).is_not(None),
                col(OrgMember.gateway_port).is_not(None),
            )
            .order_by(col(OrgMember.gateway_subdomain))
        )
        host = await self.resolve_gateway_host()
        return [
            RoutingMapEntry(
                subdomain=str(member.gateway_subdomain),
                host=host,
                port=int(member.gateway_port or 0),
            )
            for member in await session.exec(statement)
        ]

    async def write_map(self, content: str) -> Path:
        path = self.map_path

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(content)
                os.chmod(tmp_name, 0o644)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

        await asyncio.to_thread(_write)
        return path

    async def signal_reload(self) -> bool:
        if self._runtime is None:
            return False
        container = self._settings.proxy_container_name
        try:
            await self._runtime.signal(container, "SIGHUP")
        except GatewayError as exc:
            logger.warning(
                "gateway.routing_map.reload_signal_failed",
                extra={"container": container, "error": exc.message},
            )
            return False
        return True

    async def regenerate(self, session: AsyncSession) -> int:
        """Rewrite the whole map from the database and signal the proxy. Returns entry count."""
        entries = await self.collect_entries(session)
        path = await self.write_map(render_routing_map(entries))
        reloaded = await self.signal_reload()
        logger.info(
            "gateway.routing_map.regenerated",
            extra={"path": str(path), "entries": len(entries), "reloaded": reloaded},
        )
        return len(entries)
