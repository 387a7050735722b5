"""Gateway configuration document builder.

The gateway reads a single JSON document (``openclaw.json``). The platform owns a fixed set of
subtrees in it; everything else belongs to whoever hand-edits the file. :func:`generate_config`
builds a fresh document and :func:`merge_config` rewrites only the managed subtrees of an existing
one, so both paths go through the same :class:`ManagedSections` value.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from clawhuddle.core.time import utcnow
from clawhuddle.services.gateways.constants import (
    CHANNEL_PLUGINS,
    CONFIG_SCHEMA_VERSION,
    PROVIDERS_BY_ID,
    TRUSTED_PROXY_RANGES,
)

__all__ = [
    "ChannelTokens",
    "GatewayConfigDocument",
    "ManagedSections",
    "build_managed_sections",
    "generate_config",
    "merge_config",
    "resolve_model_routing",
]

PAIRING_POLICY = "pairing"


class _Section(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class MetaSection(_Section):
    last_touched_version: str = Field(alias="lastTouchedVersion")
    last_touched_at: str = Field(alias="lastTouchedAt")


class CommandsSection(_Section):
    native: str = "auto"
    native_skills: str = Field(default="auto", alias="nativeSkills")
    config: bool = True


class GatewayAuthSection(_Section):
    mode: str = "token"
    token: str


class GatewaySection(_Section):
    mode: str = "local"
    port: int
    bind: str = "lan"
    auth: GatewayAuthSection
    trusted_proxies: list[str] | None = Field(default=None, alias="trustedProxies")


class ControlUiSection(_Section):
    allow_insecure_auth: bool = Field(default=True, alias="allowInsecureAuth")


class ModelRouting(_Section):
    primary: str
    fallbacks: list[str] = Field(default_factory=list)


class AgentDefaults(_Section):
    model: ModelRouting | None = None


class AgentsSection(_Section):
    defaults: AgentDefaults | None = None


class PluginEntry(_Section):
    enabled: bool = True


class PluginsSection(_Section):
    entries: dict[str, PluginEntry] = Field(default_factory=dict)


class GatewayConfigDocument(_Section):
    """Versioned schema of the gateway configuration document.

    Every section except ``gateway`` is optional so that documents written by older platform
    releases (no channels, no model routing, a shorter proxy list) still validate.
    """

    meta: MetaSection | None = None
    commands: CommandsSection | None = None
    gateway: GatewaySection
    control_ui: ControlUiSection | None = Field(default=None, alias="controlUi")
    agents: AgentsSection | None = None
    channels: dict[str, dict[str, Any]] | None = None
    plugins: PluginsSection | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True, slots=True)
class ChannelTokens:
    """Bot tokens for the messaging channels a member has connected."""

    telegram: str | None = None
    discord: str | None = None
    slack: str | None = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> ChannelTokens:
        return cls(
            telegram=values.get("telegram") or None,
            discord=values.get("discord") or None,
            slack=values.get("slack") or None,
        )

    def configured(self) -> dict[str, str]:
        return {
            name: token
            for name, token in (
                ("telegram", self.telegram),
                ("discord", self.discord),
                ("slack", self.slack),
            )
            if token
        }


@dataclass(frozen=True, slots=True)
class ManagedSections:
    """The subtrees of the configuration document owned by the platform."""

    port: int
    token: str
    model: ModelRouting | None
    channels: dict[str, dict[str, Any]]
    plugin_ids: tuple[str, ...] = CHANNEL_PLUGINS
    trusted_proxies: tuple[str, ...] = TRUSTED_PROXY_RANGES
    touched_at: datetime = field(default_factory=utcnow)


def resolve_model_routing(
    active_providers: Sequence[str],
    model_overrides: Mapping[str, str] | None = None,
) -> ModelRouting | None:
    """Pick the primary model from the first provider and list the rest as fallbacks."""
    overrides = model_overrides or {}
    models: list[str] = []
    for provider_id in active_providers:
        model = overrides.get(provider_id)
        if not model:
            spec = PROVIDERS_BY_ID.get(provider_id)
            if spec is None:
                continue
            model = spec.default_model
        if model not in models:
            models.append(model)
    if not models:
        return None
    return ModelRouting(primary=models[0], fallbacks=models[1:])


def _channel_block(name: str, token: str) -> dict[str, Any]:
    if name == "telegram":
        return {"enabled": True, "botToken": token, "dmPolicy": PAIRING_POLICY}
    if name == "discord":
        return {"enabled": True, "token": token, "dm": {"policy": PAIRING_POLICY}}
    return {"enabled": True, "botToken": token, "dm": {"policy": PAIRING_POLICY}}


def build_managed_sections(
    *,
    port: int,
    token: str,
    active_providers: Sequence[str],
    channel_tokens: ChannelTokens | None = None,
    model_overrides: Mapping[str, str] | None = None,
) -> ManagedSections:
    channels = {
        name: _channel_block(name, value)
        for name, value in (channel_tokens or ChannelTokens()).configured().items()
    }
    return ManagedSections(
        port=port,
        token=token,
        model=resolve_model_routing(active_providers, model_overrides),
        channels=channels,
    )


def generate_config(
    *,
    port: int,
    token: str,
    active_providers: Sequence[str],
    channel_tokens: ChannelTokens | None = None,
    model_overrides: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Build a fresh gateway configuration document.

    With no active providers the ``agents`` section is omitted entirely; callers treat that as a
    precondition failure rather than starting a gateway without model access.
    """
    sections = build_managed_sections(
        port=port,
        token=token,
        active_providers=active_providers,
        channel_tokens=channel_tokens,
        model_overrides=model_overrides,
    )
    document = GatewayConfigDocument(
        meta=MetaSection(
            lastTouchedVersion=CONFIG_SCHEMA_VERSION,
            lastTouchedAt=sections.touched_at.isoformat(),
        ),
        commands=CommandsSection(),
        gateway=GatewaySection(
            port=sections.port,
            auth=GatewayAuthSection(token=sections.token),
            trustedProxies=list(sections.trusted_proxies),
        ),
        controlUi=ControlUiSection(),
        agents=AgentsSection(defaults=AgentDefaults(model=sections.model)) if sections.model else None,
        channels=sections.channels or None,
        plugins=PluginsSection(entries={pid: PluginEntry() for pid in sections.plugin_ids}),
    )
    return document.to_json_dict()


def _subtree(document: dict[str, Any], key: str) -> dict[str, Any]:
    value = document.get(key)
    if not isinstance(value, dict):
        value = {}
        document[key] = value
    return value


def merge_config(existing: Mapping[str, Any], sections: ManagedSections) -> dict[str, Any]:
    """Overwrite the platform-managed subtrees of ``existing`` and keep everything else.

    Total over any JSON object: missing or wrongly-typed intermediate nodes are replaced by
    objects. When ``sections.model`` is ``None`` the ``agents.defaults.model`` subtree is removed
    instead of being left stale.
    """
    merged = copy.deepcopy(dict(existing))

    meta = _subtree(merged, "meta")
    meta["lastTouchedVersion"] = CONFIG_SCHEMA_VERSION
    meta["lastTouchedAt"] = sections.touched_at.isoformat()

    gateway = _subtree(merged, "gateway")
    gateway["mode"] = "local"
    gateway["port"] = sections.port
    gateway["bind"] = "lan"
    gateway["auth"] = {"mode": "token", "token": sections.token}
    gateway["trustedProxies"] = list(sections.trusted_proxies)

    control_ui = _subtree(merged, "controlUi")
    control_ui["allowInsecureAuth"] = True

    if sections.model is not None:
        defaults = _subtree(_subtree(merged, "agents"), "defaults")
        defaults["model"] = sections.model.model_dump(mode="json")
    else:
        agents = merged.get("agents")
        defaults = agents.get("defaults") if isinstance(agents, dict) else None
        if isinstance(defaults, dict):
            defaults.pop("model", None)

    if sections.channels:
        merged["channels"] = copy.deepcopy(sections.channels)
    else:
        merged.pop("channels", None)

    entries = _subtree(_subtree(merged, "plugins"), "entries")
    for plugin_id in sections.plugin_ids:
        entries[plugin_id] = {"enabled": True}
    return merged
