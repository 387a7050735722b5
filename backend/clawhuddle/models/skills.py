"""Skill catalog rows and per-user skill assignments."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

SKILL_TYPE_MANDATORY = "mandatory"
SKILL_TYPE_OPTIONAL = "optional"


class Skill(SQLModel, table=True):
    __tablename__ = "skills"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    name: str
    git_url: str | None = Field(default=None)
    git_path: str | None = Field(default=None)
    type: str = Field(default=SKILL_TYPE_OPTIONAL)
    enabled: bool = Field(default=True)


class MemberSkill(SQLModel, table=True):
    __tablename__ = "member_skills"  # pyright: ignore[reportAssignmentType]

    user_id: UUID = Field(primary_key=True)
    skill_id: UUID = Field(foreign_key="skills.id", primary_key=True)
    enabled: bool = Field(default=True)
