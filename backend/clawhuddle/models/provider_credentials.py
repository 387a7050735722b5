"""Organization-level model provider credentials."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from clawhuddle.core.time import utcnow


class CredentialKind(str, Enum):
    API_KEY = "api_key"
    OAUTH = "oauth"
    SETUP_TOKEN = "setup_token"


class ProviderCredential(SQLModel, table=True):
    __tablename__ = "provider_credentials"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    provider: str
    # Raw secret material; an OAuth credential stores its token JSON blob here.
    secret: str
    credential_type: CredentialKind = Field(default=CredentialKind.API_KEY)
    model_override: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
