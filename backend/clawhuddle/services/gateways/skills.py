"""Assigned-skill and channel-token lookups consumed during provisioning."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from sqlalchemy import or_
from sqlmodel import col, select

from clawhuddle.models.member_channels import MemberChannel
from clawhuddle.models.skills import SKILL_TYPE_MANDATORY, MemberSkill, Skill
from clawhuddle.services.gateways.config_builder import ChannelTokens

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession


@dataclass(frozen=True, slots=True)
class AssignedSkill:
    name: str
    source_repo: str
    source_path: str


class SkillRegistry(Protocol):
    async def resolve_assigned_skills(
        self,
        organization_id: UUID,
        user_id: UUID,
    ) -> list[AssignedSkill]:
        ...


class ChannelTokenSource(Protocol):
    async def channel_tokens(self, member_id: UUID) -> ChannelTokens:
        ...


class DatabaseSkillRegistry:
    """Enabled skills assigned to the user plus the organization's enabled mandatory skills."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def resolve_assigned_skills(
        self,
        organization_id: UUID,
        user_id: UUID,
    ) -> list[AssignedSkill]:
        assigned = select(MemberSkill.skill_id).where(
            col(MemberSkill.user_id) == user_id,
            col(MemberSkill.enabled).is_(True),
        )
        statement = (
            select(Skill)
            .where(
                col(Skill.organization_id) == organization_id,
                col(Skill.enabled).is_(True),
                or_(
                    col(Skill.type) == SKILL_TYPE_MANDATORY,
                    col(Skill.id).in_(assigned),
                ),
            )
            .order_by(col(Skill.name))
        )
        return [
            AssignedSkill(name=skill.name, source_repo=skill.git_url, source_path=skill.git_path)
            for skill in await self._session.exec(statement)
            if skill.git_url and skill.git_path
        ]


class DatabaseChannelTokenSource:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def channel_tokens(self, member_id: UUID) -> ChannelTokens:
        rows = await self._session.exec(
            select(MemberChannel).where(col(MemberChannel.member_id) == member_id),
        )
        return ChannelTokens.from_mapping({row.channel: row.bot_token for row in rows})
