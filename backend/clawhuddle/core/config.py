"""Application settings and deployment-mode policy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = BACKEND_ROOT / ".env"


class DeploymentMode(str, Enum):
    """How gateways are exposed to clients."""

    LOCAL_DEVELOPMENT = "local_development"
    PRODUCTION = "production"

    @property
    def policy(self) -> DeploymentPolicy:
        return _DEPLOYMENT_POLICIES[self]


@dataclass(frozen=True, slots=True)
class DeploymentPolicy:
    """Port-publishing and health-check addressing rules for one deployment mode.

    Local development publishes the gateway's internal port to an OS-assigned host port and
    probes it over loopback. Production publishes nothing: the reverse proxy and the API reach
    each gateway by container name over the shared bridge network.
    """

    publish_ports: bool
    probe_via_host_port: bool


_DEPLOYMENT_POLICIES: dict[DeploymentMode, DeploymentPolicy] = {
    DeploymentMode.LOCAL_DEVELOPMENT: DeploymentPolicy(
        publish_ports=True,
        probe_via_host_port=True,
    ),
    DeploymentMode.PRODUCTION: DeploymentPolicy(
        publish_ports=False,
        probe_via_host_port=False,
    ),
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=DEFAULT_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "dev"
    database_url: str = "sqlite+aiosqlite:///./data/clawhuddle.db"

    deployment_mode: DeploymentMode = DeploymentMode.LOCAL_DEVELOPMENT
    data_dir: Path = Path("./data")
    host_data_dir: Path | None = None

    # Gateway containers
    gateway_image: str = "clawhuddle-gateway:local"
    gateway_internal_port: int = 6100
    gateway_container_prefix: str = "clawhuddle-gw-"
    docker_network: str = "clawhuddle-net"
    gateway_domain: str = "localhost"
    exec_timeout_seconds: float = Field(default=10.0, gt=0)
    health_timeout_seconds: float = Field(default=5.0, gt=0)

    # Skills
    skill_clone_timeout_seconds: float = Field(default=60.0, gt=0)
    skill_pull_timeout_seconds: float = Field(default=30.0, gt=0)

    # Reverse-proxy routing map
    gateway_host: str = "127.0.0.1"
    gateway_host_resolve: bool = False
    proxy_container_name: str = "clawhuddle-nginx"
    routing_map_path: Path | None = None

    # Follow-up tasks (RQ / Redis)
    rq_redis_url: str = "redis://localhost:6379/0"
    gateway_task_queue_name: str = "gateway-tasks"
    gateway_task_max_retries: int = 3
    gateway_reconcile_schedule_id: str = "gateway-status-reconcile"
    gateway_reconcile_interval_seconds: int = Field(default=60, gt=0)

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"
    log_use_utc: bool = False

    @field_validator("gateway_container_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        value = value.strip()
        if not value or len(value) > 24:
            raise ValueError("gateway_container_prefix must be 1-24 characters")
        return value

    def resolved_data_dir(self) -> Path:
        return self.data_dir.expanduser().resolve()

    def resolved_host_data_dir(self) -> Path:
        """Return the host-side path of ``data_dir`` used for container bind mounts."""
        if self.host_data_dir is None:
            return self.resolved_data_dir()
        if not self.host_data_dir.is_absolute():
            raise ValueError(
                f'HOST_DATA_DIR must be an absolute path (got "{self.host_data_dir}").',
            )
        return self.host_data_dir

    def resolved_routing_map_path(self) -> Path:
        if self.routing_map_path is not None:
            return self.routing_map_path
        return self.resolved_data_dir() / "nginx" / "gateway-map.conf"


settings = Settings()
