"""Organization membership rows carrying the member's gateway record."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from clawhuddle.core.time import utcnow


class GatewayStatus(str, Enum):
    """Persisted gateway status; ``None`` on the row means no gateway exists."""

    PROVISIONING = "provisioning"
    DEPLOYING = "deploying"
    RUNNING = "running"
    STOPPED = "stopped"


class OrgMember(SQLModel, table=True):
    """A user's membership in an organization, plus the member's gateway fields.

    The four ``gateway_*`` columns are written only by the gateway orchestrator. They are set
    together at provision time and cleared together on removal.
    """

    __tablename__ = "org_members"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    user_id: UUID = Field(index=True)
    role: str = Field(default="member")
    gateway_port: int | None = Field(default=None)
    gateway_status: GatewayStatus | None = Field(default=None)
    gateway_token: str | None = Field(default=None)
    gateway_subdomain: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_gateway(self) -> bool:
        return self.gateway_port is not None
