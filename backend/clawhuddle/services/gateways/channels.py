"""Messaging channel bot tokens of a member.

A token change only lands in the gateway's configuration on the next redeploy, so every committed
change on a live gateway schedules one as a follow-up task.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from sqlmodel import col, select

from clawhuddle.core.time import utcnow
from clawhuddle.models.member_channels import MemberChannel
from clawhuddle.models.org_members import GatewayStatus, OrgMember
from clawhuddle.schemas.gateways import ChannelRead
from clawhuddle.services.gateways.constants import SUPPORTED_CHANNELS
from clawhuddle.services.gateways.db_service import GatewayDBService
from clawhuddle.services.gateways.exceptions import GatewayError, MemberNotFoundError
from clawhuddle.services.gateways.tasks import enqueue_gateway_redeploy

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

__all__ = ["ChannelNotConfiguredError", "MemberChannelService", "mask_token"]

_REDEPLOY_STATUSES = frozenset({GatewayStatus.RUNNING, GatewayStatus.DEPLOYING})


class ChannelNotConfiguredError(MemberNotFoundError):
    code = "channel_not_configured"

    def __init__(self, channel: str) -> None:
        super().__init__(f"Channel {channel} is not configured")


def mask_token(token: str) -> str:
    if len(token) <= 10:
        return "***"
    return f"{token[:6]}...{token[-4:]}"


def _require_supported(channel: str) -> str:
    normalized = channel.strip().lower()
    if normalized not in SUPPORTED_CHANNELS:
        raise GatewayError(f"Unsupported channel: {channel}")
    return normalized


class MemberChannelService(GatewayDBService):
    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)

    async def _require_member(self, organization_id: UUID, member_id: UUID) -> OrgMember:
        member = (
            await self.session.exec(
                select(OrgMember).where(
                    col(OrgMember.id) == member_id,
                    col(OrgMember.organization_id) == organization_id,
                ),
            )
        ).first()
        if member is None:
            raise MemberNotFoundError()
        return member

    async def _get_row(self, member_id: UUID, channel: str) -> MemberChannel | None:
        return await self.session.get(MemberChannel, (member_id, channel))

    async def list_channels(self, organization_id: UUID, member_id: UUID) -> list[ChannelRead]:
        """Every supported channel, configured or not, with the token masked."""
        await self._require_member(organization_id, member_id)
        rows = await self.session.exec(
            select(MemberChannel).where(col(MemberChannel.member_id) == member_id),
        )
        by_channel = {row.channel: row for row in rows}
        result: list[ChannelRead] = []
        for channel in SUPPORTED_CHANNELS:
            row = by_channel.get(channel)
            result.append(
                ChannelRead(
                    channel=channel,
                    configured=row is not None,
                    masked_token=mask_token(row.bot_token) if row else None,
                    updated_at=row.updated_at if row else None,
                ),
            )
        return result

    async def set_token(
        self,
        organization_id: UUID,
        member_id: UUID,
        channel: str,
        bot_token: str,
    ) -> ChannelRead:
        channel = _require_supported(channel)
        member = await self._require_member(organization_id, member_id)
        row = await self._get_row(member_id, channel)
        if row is None:
            row = MemberChannel(member_id=member_id, channel=channel, bot_token=bot_token)
        else:
            row.bot_token = bot_token
            row.updated_at = utcnow()
        await self.add_commit_refresh(row)
        self.logger.info(
            "gateway.channel.token_set",
            extra={"member_id": str(member_id), "channel": channel},
        )
        self._schedule_redeploy(member, reason=f"channel:{channel}:set")
        return ChannelRead(
            channel=channel,
            configured=True,
            masked_token=mask_token(row.bot_token),
            updated_at=row.updated_at,
        )

    async def remove_token(self, organization_id: UUID, member_id: UUID, channel: str) -> None:
        channel = _require_supported(channel)
        member = await self._require_member(organization_id, member_id)
        row = await self._get_row(member_id, channel)
        if row is None:
            raise ChannelNotConfiguredError(channel)
        await self.session.delete(row)
        await self.session.commit()
        self.logger.info(
            "gateway.channel.token_removed",
            extra={"member_id": str(member_id), "channel": channel},
        )
        self._schedule_redeploy(member, reason=f"channel:{channel}:removed")

    def _schedule_redeploy(self, member: OrgMember, *, reason: str) -> None:
        if member.gateway_status not in _REDEPLOY_STATUSES:
            return
        if not enqueue_gateway_redeploy(member.organization_id, member.id, reason=reason):
            self.logger.warning(
                "gateway.channel.redeploy_not_scheduled",
                extra={"member_id": str(member.id), "reason": reason},
            )
