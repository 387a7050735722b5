"""Static gateway catalog values: providers, channel plugins, proxy ranges, file layout."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "AUTH_PROFILES_RELATIVE_PATH",
    "CHANNEL_PLUGINS",
    "CONFIG_FILENAME",
    "CONFIG_SCHEMA_VERSION",
    "CONTAINER_WORKSPACE_MOUNT",
    "PROVIDERS",
    "PROVIDERS_BY_ID",
    "SKILLS_DIRNAME",
    "SUBDOMAIN_PREFIX",
    "SUPPORTED_CHANNELS",
    "TRUSTED_PROXY_RANGES",
    "ProviderSpec",
]


@dataclass(frozen=True, slots=True)
class ProviderSpec:
    id: str
    label: str
    default_model: str


PROVIDERS: tuple[ProviderSpec, ...] = (
    ProviderSpec("anthropic", "Anthropic", "anthropic/claude-sonnet-4-5"),
    ProviderSpec("openai", "OpenAI", "openai/gpt-4.1"),
    ProviderSpec("openrouter", "OpenRouter", "openrouter/anthropic/claude-sonnet-4.5"),
    ProviderSpec("google", "Google Gemini", "google/gemini-2.5-pro"),
)
PROVIDERS_BY_ID: dict[str, ProviderSpec] = {provider.id: provider for provider in PROVIDERS}

# Channel plugins known to load in the gateway image. Plugins whose dependencies are broken in
# the image (whatsapp, signal, imessage, matrix, ...) are left out on purpose.
CHANNEL_PLUGINS: tuple[str, ...] = (
    "telegram",
    "discord",
    "slack",
    "irc",
    "googlechat",
    "msteams",
    "mattermost",
    "line",
    "feishu",
    "twitch",
)

# Channels a member can attach a bot token to.
SUPPORTED_CHANNELS: tuple[str, ...] = ("telegram", "discord", "slack")

# Private ranges (docker bridge, LAN) plus Cloudflare's published edge ranges.
TRUSTED_PROXY_RANGES: tuple[str, ...] = (
    "127.0.0.1/32",
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "173.245.48.0/20",
    "103.21.244.0/22",
    "103.22.200.0/22",
    "103.31.4.0/22",
    "141.101.64.0/18",
    "108.162.192.0/18",
    "190.93.240.0/20",
    "188.114.96.0/20",
    "197.234.240.0/22",
    "198.41.128.0/17",
    "162.158.0.0/15",
    "104.16.0.0/13",
    "104.24.0.0/14",
    "172.64.0.0/13",
    "131.0.72.0/22",
)

CONFIG_SCHEMA_VERSION = "2026.2.17"
CONFIG_FILENAME = "openclaw.json"
AUTH_PROFILES_RELATIVE_PATH = ("agents", "main", "agent", "auth-profiles.json")
SKILLS_DIRNAME = "skills"
CONTAINER_WORKSPACE_MOUNT = "/root/.openclaw"
SUBDOMAIN_PREFIX = "claw-"
