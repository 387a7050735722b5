"""Request/response schemas for gateway lifecycle and channel endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, field_validator
from sqlmodel import SQLModel

from clawhuddle.models.org_members import GatewayStatus, OrgMember

_T = TypeVar("_T")


class DataResponse(BaseModel, Generic[_T]):
    data: _T


class GatewayStatusRead(SQLModel):
    """Gateway record of one member, as returned by every lifecycle operation."""

    member_id: UUID
    user_id: UUID
    organization_id: UUID
    gateway_port: int | None = None
    gateway_status: GatewayStatus | None = None
    gateway_subdomain: str | None = None

    @classmethod
    def from_member(cls, member: OrgMember) -> GatewayStatusRead:
        return cls(
            member_id=member.id,
            user_id=member.user_id,
            organization_id=member.organization_id,
            gateway_port=member.gateway_port,
            gateway_status=member.gateway_status,
            gateway_subdomain=member.gateway_subdomain,
        )


class ChannelTokenUpdate(SQLModel):
    bot_token: str

    @field_validator("bot_token", mode="before")
    @classmethod
    def strip_token(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("bot_token is required")
        return value


class ChannelRead(SQLModel):
    channel: str
    configured: bool
    masked_token: str | None = None
    updated_at: datetime | None = None


class PairingApprove(SQLModel):
    code: str

    @field_validator("code", mode="before")
    @classmethod
    def strip_code(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("Pairing code is required")
        return value


class PairingApproveResult(SQLModel):
    channel: str
    approved: bool
    output: str


class PairingRequestsRead(SQLModel):
    channel: str
    output: str
