"""Provider-credential resolution and credential-profile rendering."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol
from uuid import UUID

from sqlmodel import col, select

from clawhuddle.core.logging import get_logger
from clawhuddle.models.provider_credentials import CredentialKind, ProviderCredential
from clawhuddle.services.gateways.constants import PROVIDERS, PROVIDERS_BY_ID

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)

_PROVIDER_ORDER = {provider.id: index for index, provider in enumerate(PROVIDERS)}


@dataclass(frozen=True, slots=True)
class ResolvedCredential:
    provider_id: str
    secret: str
    kind: CredentialKind


class CredentialResolver(Protocol):
    async def resolve_active_credentials(self, organization_id: UUID) -> list[ResolvedCredential]:
        ...

    async def resolve_model_overrides(self, organization_id: UUID) -> dict[str, str]:
        ...


class DatabaseCredentialResolver:
    """Read an organization's provider credentials from the database, in catalog order."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _rows(self, organization_id: UUID) -> list[ProviderCredential]:
        statement = (
            select(ProviderCredential)
            .where(col(ProviderCredential.organization_id) == organization_id)
            .order_by(col(ProviderCredential.created_at))
        )
        rows = [row for row in await self._session.exec(statement) if row.provider in PROVIDERS_BY_ID]
        return sorted(rows, key=lambda row: _PROVIDER_ORDER[row.provider])

    async def resolve_active_credentials(self, organization_id: UUID) -> list[ResolvedCredential]:
        return [
            ResolvedCredential(
                provider_id=row.provider,
                secret=row.secret,
                kind=CredentialKind(row.credential_type),
            )
            for row in await self._rows(organization_id)
        ]

    async def resolve_model_overrides(self, organization_id: UUID) -> dict[str, str]:
        return {
            row.provider: row.model_override
            for row in await self._rows(organization_id)
            if row.model_override
        }


def _jwt_expiry(access_token: str) -> int | None:
    parts = access_token.split(".")
    if len(parts) < 2:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except (binascii.Error, ValueError):
        return None
    exp = claims.get("exp") if isinstance(claims, dict) else None
    return int(exp) if isinstance(exp, (int, float)) else None


def _oauth_profile(provider_id: str, secret: str) -> dict[str, Any] | None:
    try:
        blob = json.loads(secret)
    except ValueError:
        return None
    if not isinstance(blob, dict):
        return None
    tokens = blob.get("tokens", blob)
    if not isinstance(tokens, dict):
        return None
    access = tokens.get("access_token")
    refresh = tokens.get("refresh_token")
    if not isinstance(access, str) or not isinstance(refresh, str) or not access or not refresh:
        return None
    profile: dict[str, Any] = {
        "type": "oauth",
        "provider": provider_id,
        "access": access,
        "refresh": refresh,
    }
    expires = _jwt_expiry(access)
    if expires:
        profile["expires"] = expires
    return profile


def build_auth_profiles(
    credentials: list[ResolvedCredential],
) -> tuple[dict[str, Any], list[str]]:
    """Render the credential-profile document and the providers it activates.

    Returns ``({"version": 1, "profiles": {...}}, provider_ids)``. Unknown providers and
    malformed OAuth material are skipped and do not count as active.
    """
    profiles: dict[str, dict[str, Any]] = {}
    active: list[str] = []
    for credential in credentials:
        provider_id = credential.provider_id
        if provider_id not in PROVIDERS_BY_ID:
            continue
        if credential.kind is CredentialKind.OAUTH:
            oauth = _oauth_profile(provider_id, credential.secret)
            if oauth is None:
                logger.warning(
                    "gateway.credentials.oauth_malformed",
                    extra={"provider": provider_id},
                )
                continue
            profiles[f"{provider_id}:oauth"] = oauth
        elif credential.kind is CredentialKind.SETUP_TOKEN:
            profiles[f"{provider_id}:setup-token"] = {
                "type": "token",
                "provider": provider_id,
                "token": credential.secret,
            }
        else:
            profiles[f"{provider_id}:manual"] = {
                "type": "api_key",
                "provider": provider_id,
                "key": credential.secret,
            }
        if provider_id not in active:
            active.append(provider_id)
    return {"version": 1, "profiles": profiles}, active
