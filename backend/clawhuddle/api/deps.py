"""Shared FastAPI dependencies for gateway routes."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlmodel.ext.asyncio.session import AsyncSession

from clawhuddle.db.session import get_session
from clawhuddle.services.gateways.channels import MemberChannelService
from clawhuddle.services.gateways.context import GatewayServices
from clawhuddle.services.gateways.orchestrator import GatewayOrchestrator

SESSION_DEP = Depends(get_session)


def get_gateway_services(request: Request) -> GatewayServices:
    services = getattr(request.app.state, "gateway_services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Container engine is not available",
        )
    return services


def get_orchestrator(
    session: AsyncSession = SESSION_DEP,
    services: GatewayServices = Depends(get_gateway_services),
) -> GatewayOrchestrator:
    return services.orchestrator(session)


def get_channel_service(session: AsyncSession = SESSION_DEP) -> MemberChannelService:
    return MemberChannelService(session)
