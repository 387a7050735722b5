"""Per-member messaging channel bot tokens."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import Field, SQLModel

from clawhuddle.core.time import utcnow


class MemberChannel(SQLModel, table=True):
    __tablename__ = "member_channels"  # pyright: ignore[reportAssignmentType]

    member_id: UUID = Field(foreign_key="org_members.id", primary_key=True)
    channel: str = Field(primary_key=True)
    bot_token: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
