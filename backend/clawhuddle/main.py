"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import AsyncExitStack, asynccontextmanager
from typing import TYPE_CHECKING, Any

from docker.errors import DockerException
from fastapi import APIRouter, FastAPI

from clawhuddle.api.gateways import router as gateways_router
from clawhuddle.api.member_channels import router as member_channels_router
from clawhuddle.core.config import settings
from clawhuddle.core.error_handling import install_error_handling
from clawhuddle.core.logging import configure_logging, get_logger
from clawhuddle.core.openapi import build_openapi
from clawhuddle.core.version import APP_NAME, APP_VERSION
from clawhuddle.db.session import init_db
from clawhuddle.services.gateways.context import open_gateway_services

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    configure_logging()
    await init_db()
    async with AsyncExitStack() as stack:
        try:
            services = await stack.enter_async_context(open_gateway_services())
        except DockerException as exc:
            # Without an engine the gateway routes answer 503; channel routes keep working.
            logger.error("app.startup.docker_unavailable", extra={"error": str(exc)})
            services = None
        else:
            services.routing_map.ensure_map_file()
        app.state.gateway_services = services
        logger.info(
            "app.startup.complete",
            extra={"environment": settings.environment, "mode": settings.deployment_mode.value},
        )
        yield
        app.state.gateway_services = None
    logger.info("app.shutdown.complete")


def create_app() -> FastAPI:
    app = FastAPI(title=APP_NAME, version=APP_VERSION, lifespan=lifespan)
    install_error_handling(app)

    api = APIRouter(prefix="/api")
    api.include_router(gateways_router)
    api.include_router(member_channels_router)
    app.include_router(api)

    def _openapi() -> dict[str, Any]:
        if app.openapi_schema is None:
            app.openapi_schema = build_openapi(app.title, app.version, app.routes)
        return app.openapi_schema

    app.openapi = _openapi  # type: ignore[method-assign]
    return app


app = create_app()
