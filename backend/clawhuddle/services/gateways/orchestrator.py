"""Gateway lifecycle orchestration for organization members.

Status machine of a member's gateway::

    absent -> provisioning -> deploying -> running
                               deploying | running -> stopped     (stop)
                               stopped -> deploying -> running    (start)
    any provisioned state -> absent                                (remove)

``deploying`` is promoted to ``running`` only by :meth:`GatewayOrchestrator.get_status`, once the
container is running *and* the gateway answers its health probe. This service is the only writer
of the member's ``gateway_*`` columns.
"""

from __future__ import annotations

import re
import secrets
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlmodel import col, select

from clawhuddle.core.time import utcnow
from clawhuddle.models.org_members import GatewayStatus, OrgMember
from clawhuddle.schemas.gateways import GatewayStatusRead
from clawhuddle.services.gateways.config_builder import (
    build_managed_sections,
    generate_config,
    merge_config,
)
from clawhuddle.services.gateways.constants import SUBDOMAIN_PREFIX
from clawhuddle.services.gateways.credentials import (
    CredentialResolver,
    DatabaseCredentialResolver,
    build_auth_profiles,
)
from clawhuddle.services.gateways.db_service import GatewayDBService
from clawhuddle.services.gateways.exceptions import (
    GatewayError,
    GatewayPreconditionError,
    GatewayRuntimeError,
    MemberNotFoundError,
)
from clawhuddle.services.gateways.skills import (
    ChannelTokenSource,
    DatabaseChannelTokenSource,
    DatabaseSkillRegistry,
    SkillRegistry,
)
from clawhuddle.services.gateways.workspace import SkillSourceError, WorkspaceManager

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from clawhuddle.services.gateways.health import GatewayHealthProber
    from clawhuddle.services.gateways.locks import MemberLockRegistry
    from clawhuddle.services.gateways.routing_map import RoutingMapPublisher
    from clawhuddle.services.gateways.runtime import ContainerRuntime

__all__ = ["GatewayOrchestrator", "generate_gateway_token", "generate_subdomain"]

ACTIVE_STATUSES = frozenset({GatewayStatus.RUNNING, GatewayStatus.DEPLOYING})
_CHANNEL_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9_-]{0,31}$")


def generate_gateway_token() -> str:
    """24 random bytes, hex encoded."""
    return secrets.token_hex(24)


def generate_subdomain() -> str:
    """Routing key: fixed prefix plus 8 lowercase hex characters."""
    return f"{SUBDOMAIN_PREFIX}{secrets.token_hex(4)}"


class GatewayOrchestrator(GatewayDBService):
    """Provision, start, stop, redeploy, remove and reconcile per-member gateways."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        runtime: ContainerRuntime,
        prober: GatewayHealthProber,
        locks: MemberLockRegistry,
        workspace: WorkspaceManager | None = None,
        credentials: CredentialResolver | None = None,
        skills: SkillRegistry | None = None,
        channels: ChannelTokenSource | None = None,
        routing_map: RoutingMapPublisher | None = None,
    ) -> None:
        super().__init__(session)
        self._runtime = runtime
        self._prober = prober
        self._locks = locks
        self._workspace = workspace or WorkspaceManager()
        self._credentials = credentials or DatabaseCredentialResolver(session)
        self._skills = skills or DatabaseSkillRegistry(session)
        self._channels = channels or DatabaseChannelTokenSource(session)
        self._routing_map = routing_map

    async def require_member(self, organization_id: UUID, member_id: UUID) -> OrgMember:
        statement = select(OrgMember).where(
            col(OrgMember.id) == member_id,
            col(OrgMember.organization_id) == organization_id,
        )
        member = (await self.session.exec(statement)).first()
        if member is None:
            raise MemberNotFoundError()
        return member

    async def _persist(self, member: OrgMember, **fields: Any) -> None:
        for name, value in fields.items():
            setattr(member, name, value)
        member.updated_at = utcnow()
        await self.add_commit_refresh(member)

    async def _clear_gateway_fields(self, member: OrgMember) -> None:
        await self._persist(
            member,
            gateway_port=None,
            gateway_status=None,
            gateway_token=None,
            gateway_subdomain=None,
        )

    async def _publish_routing_map(self) -> None:
        if self._routing_map is None:
            return
        try:
            await self._routing_map.regenerate(self.session)
        except Exception as exc:
            # The lifecycle change already committed; a stale map is repaired by the next rewrite.
            self.logger.warning("gateway.routing_map.publish_failed", extra={"error": str(exc)})

    async def _prepare_workspace(
        self,
        member: OrgMember,
        *,
        token: str,
        merge_existing: bool,
    ) -> None:
        """Write credential profiles, configuration and skills for ``member``.

        Raises a precondition error before touching the filesystem when the organization has no
        usable provider credentials.
        """
        organization_id = member.organization_id
        credentials = await self._credentials.resolve_active_credentials(organization_id)
        profiles, active_providers = build_auth_profiles(credentials)
        if not active_providers:
            raise GatewayPreconditionError.no_credentials()

        model_overrides = await self._credentials.resolve_model_overrides(organization_id)
        channel_tokens = await self._channels.channel_tokens(member.id)
        skills = await self._skills.resolve_assigned_skills(organization_id, member.user_id)
        internal_port = self._runtime.internal_port

        await self._workspace.ensure(organization_id, member.user_id)
        await self._workspace.write_auth_profiles(organization_id, member.user_id, profiles)

        existing = (
            await self._workspace.read_config(organization_id, member.user_id)
            if merge_existing
            else None
        )
        if existing is not None:
            document = merge_config(
                existing,
                build_managed_sections(
                    port=internal_port,
                    token=token,
                    active_providers=active_providers,
                    channel_tokens=channel_tokens,
                    model_overrides=model_overrides,
                ),
            )
        else:
            document = generate_config(
                port=internal_port,
                token=token,
                active_providers=active_providers,
                channel_tokens=channel_tokens,
                model_overrides=model_overrides,
            )
        await self._workspace.write_config(organization_id, member.user_id, document)

        try:
            await self._workspace.install_skills(organization_id, member.user_id, skills)
        except SkillSourceError as exc:
            raise GatewayRuntimeError(f"Skill installation failed: {exc}") from exc
        self.logger.debug(
            "gateway.workspace.prepared",
            extra={
                "member_id": str(member.id),
                "providers": active_providers,
                "skills": len(skills),
                "merged": existing is not None,
            },
        )

    async def _launch_container(self, member: OrgMember, subdomain: str) -> int:
        """Recreate and start the member's container; return the port routing should use."""
        await self._runtime.ensure_network()
        spec = self._runtime.build_spec(
            organization_id=member.organization_id,
            user_id=member.user_id,
            subdomain=subdomain,
            workspace_host_dir=self._workspace.host_workspace_dir(
                member.organization_id,
                member.user_id,
            ),
        )
        host_port = await self._runtime.create_and_start(spec)
        return host_port or spec.internal_port

    async def provision(self, organization_id: UUID, member_id: UUID) -> GatewayStatusRead:
        async with self._locks.hold(member_id):
            member = await self.require_member(organization_id, member_id)
            if member.gateway_status in ACTIVE_STATUSES:
                raise GatewayPreconditionError.already_running()

            self.logger.info(
                "gateway.provision.start",
                extra={"organization_id": str(organization_id), "member_id": str(member_id)},
            )
            token = generate_gateway_token()
            subdomain = generate_subdomain()
            await self._prepare_workspace(member, token=token, merge_existing=False)

            await self._persist(
                member,
                gateway_port=self._runtime.internal_port,
                gateway_status=GatewayStatus.PROVISIONING,
                gateway_token=token,
                gateway_subdomain=subdomain,
            )
            try:
                port = await self._launch_container(member, subdomain)
            except Exception as exc:
                self.logger.error(
                    "gateway.provision.container_failed",
                    extra={"member_id": str(member_id), "error": str(exc)},
                )
                try:
                    await self._clear_gateway_fields(member)
                except Exception:
                    self.logger.critical(
                        "gateway.provision.rollback_failed",
                        extra={"member_id": str(member_id)},
                        exc_info=True,
                    )
                raise

            await self._persist(member, gateway_port=port, gateway_status=GatewayStatus.DEPLOYING)
            self.logger.info(
                "gateway.provision.deployed",
                extra={"member_id": str(member_id), "subdomain": subdomain, "port": port},
            )
        await self._publish_routing_map()
        return GatewayStatusRead.from_member(member)

    @staticmethod
    def _require_deployed(member: OrgMember) -> None:
        if not member.has_gateway:
            raise GatewayPreconditionError.not_deployed()

    async def start(self, organization_id: UUID, member_id: UUID) -> GatewayStatusRead:
        async with self._locks.hold(member_id):
            member = await self.require_member(organization_id, member_id)
            self._require_deployed(member)
            await self._runtime.start(self._runtime.container_name(organization_id, member.user_id))
            await self._persist(member, gateway_status=GatewayStatus.DEPLOYING)
            self.logger.info("gateway.start.complete", extra={"member_id": str(member_id)})
            return GatewayStatusRead.from_member(member)

    async def stop(self, organization_id: UUID, member_id: UUID) -> GatewayStatusRead:
        async with self._locks.hold(member_id):
            member = await self.require_member(organization_id, member_id)
            self._require_deployed(member)
            await self._runtime.stop(self._runtime.container_name(organization_id, member.user_id))
            await self._persist(member, gateway_status=GatewayStatus.STOPPED)
            self.logger.info("gateway.stop.complete", extra={"member_id": str(member_id)})
            return GatewayStatusRead.from_member(member)

    async def redeploy(self, organization_id: UUID, member_id: UUID) -> GatewayStatusRead:
        """Rebuild workspace and container, keeping the member's token and subdomain."""
        async with self._locks.hold(member_id):
            member = await self.require_member(organization_id, member_id)
            if not (member.gateway_port and member.gateway_token and member.gateway_subdomain):
                raise GatewayPreconditionError.not_deployed()
            token = member.gateway_token
            subdomain = member.gateway_subdomain

            self.logger.info("gateway.redeploy.start", extra={"member_id": str(member_id)})
            await self._prepare_workspace(member, token=token, merge_existing=True)
            port = await self._launch_container(member, subdomain)
            await self._persist(member, gateway_port=port, gateway_status=GatewayStatus.DEPLOYING)
            self.logger.info(
                "gateway.redeploy.deployed",
                extra={"member_id": str(member_id), "port": port},
            )
        await self._publish_routing_map()
        return GatewayStatusRead.from_member(member)

    async def remove(self, organization_id: UUID, member_id: UUID) -> GatewayStatusRead:
        """Tear down container and workspace and clear the record. Safe to repeat."""
        async with self._locks.hold(member_id):
            member = await self.require_member(organization_id, member_id)
            if not member.has_gateway:
                self.logger.debug("gateway.remove.already_absent", extra={"member_id": str(member_id)})
            await self._runtime.remove(self._runtime.container_name(organization_id, member.user_id))
            await self._workspace.remove(organization_id, member.user_id)
            await self._clear_gateway_fields(member)
            self.logger.info("gateway.remove.complete", extra={"member_id": str(member_id)})
        await self._publish_routing_map()
        return GatewayStatusRead.from_member(member)

    async def get_status(self, organization_id: UUID, member_id: UUID) -> GatewayStatusRead:
        """Reconcile the persisted status with the live container and its health.

        Persists only on change. While another lifecycle operation holds the member's lock the
        persisted record is returned as is. Otherwise the lock is taken for the inspect, probe and
        write so a concurrent stop or remove cannot be overwritten with a stale status.
        """
        member = await self.require_member(organization_id, member_id)
        if not member.has_gateway or self._locks.is_locked(member_id):
            return GatewayStatusRead.from_member(member)

        async with self._locks.hold(member_id):
            await self.session.refresh(member)
            if not member.has_gateway:
                return GatewayStatusRead.from_member(member)
            container_name = self._runtime.container_name(organization_id, member.user_id)
            state = await self._runtime.inspect(container_name)
            if not state.running:
                actual = GatewayStatus.STOPPED
            else:
                healthy = await self._prober.is_healthy(
                    container_name=container_name,
                    host_port=state.host_port or member.gateway_port,
                )
                actual = GatewayStatus.RUNNING if healthy else GatewayStatus.DEPLOYING

            if actual != member.gateway_status:
                self.logger.info(
                    "gateway.status.reconciled",
                    extra={
                        "member_id": str(member_id),
                        "from": member.gateway_status.value if member.gateway_status else None,
                        "to": actual.value,
                    },
                )
                await self._persist(member, gateway_status=actual)
            return GatewayStatusRead.from_member(member)

    async def _exec_pairing(
        self,
        organization_id: UUID,
        member_id: UUID,
        channel: str,
        arguments: list[str],
    ) -> str:
        if not _CHANNEL_NAME_RE.match(channel):
            raise GatewayError(f"Invalid channel: {channel}")
        async with self._locks.hold(member_id):
            member = await self.require_member(organization_id, member_id)
            if member.gateway_status != GatewayStatus.RUNNING:
                raise GatewayPreconditionError.not_running()
            output = await self._runtime.exec(
                self._runtime.container_name(organization_id, member.user_id),
                ["openclaw", "pairing", *arguments],
            )
        return output.strip()

    async def approve_pairing(
        self,
        organization_id: UUID,
        member_id: UUID,
        channel: str,
        code: str,
    ) -> str:
        """Approve a device pairing code for ``channel`` inside the running gateway."""
        output = await self._exec_pairing(
            organization_id,
            member_id,
            channel,
            ["approve", channel, code.strip()],
        )
        self.logger.info(
            "gateway.pairing.approved",
            extra={"member_id": str(member_id), "channel": channel},
        )
        return output

    async def list_pairing_requests(
        self,
        organization_id: UUID,
        member_id: UUID,
        channel: str,
    ) -> str:
        return await self._exec_pairing(organization_id, member_id, channel, ["list", channel])

    async def sync_auth_profiles(self, organization_id: UUID) -> int:
        """Rewrite credential profiles of every active gateway in the organization.

        The gateway hot-reloads the profile file, so credential rotation takes effect without a
        container restart. Returns the number of workspaces rewritten. The credential subsystem
        requests this through ``enqueue_auth_profile_sync`` after a key is added, rotated or
        removed; the task worker runs it.
        """
        statement = select(OrgMember).where(
            col(OrgMember.organization_id) == organization_id,
            col(OrgMember.gateway_status).in_(list(ACTIVE_STATUSES)),
        )
        members = list(await self.session.exec(statement))
        if not members:
            return 0
        credentials = await self._credentials.resolve_active_credentials(organization_id)
        profiles, _ = build_auth_profiles(credentials)
        written = 0
        for member in members:
            if not await self._workspace.exists(organization_id, member.user_id):
                continue
            await self._workspace.write_auth_profiles(organization_id, member.user_id, profiles)
            written += 1
        self.logger.info(
            "gateway.credentials.synced",
            extra={"organization_id": str(organization_id), "workspaces": written},
        )
        return written
