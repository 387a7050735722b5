"""Gateway lifecycle endpoints for organization members.

Authentication and organization-role checks happen upstream; these routes trust the path ids.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status

from clawhuddle.api.deps import get_orchestrator
from clawhuddle.schemas.gateways import DataResponse, GatewayStatusRead
from clawhuddle.services.gateways.orchestrator import GatewayOrchestrator

router = APIRouter(prefix="/orgs/{org_id}/gateways/members/{member_id}", tags=["gateways"])
ORCHESTRATOR_DEP = Depends(get_orchestrator)


@router.post(
    "",
    response_model=DataResponse[GatewayStatusRead],
    status_code=status.HTTP_201_CREATED,
)
async def provision_gateway(
    org_id: UUID,
    member_id: UUID,
    orchestrator: GatewayOrchestrator = ORCHESTRATOR_DEP,
) -> DataResponse[GatewayStatusRead]:
    """Create the member's workspace and container and start the gateway."""
    return DataResponse(data=await orchestrator.provision(org_id, member_id))


@router.delete("", response_model=DataResponse[GatewayStatusRead])
async def remove_gateway(
    org_id: UUID,
    member_id: UUID,
    orchestrator: GatewayOrchestrator = ORCHESTRATOR_DEP,
) -> DataResponse[GatewayStatusRead]:
    return DataResponse(data=await orchestrator.remove(org_id, member_id))


@router.post("/start", response_model=DataResponse[GatewayStatusRead])
async def start_gateway(
    org_id: UUID,
    member_id: UUID,
    orchestrator: GatewayOrchestrator = ORCHESTRATOR_DEP,
) -> DataResponse[GatewayStatusRead]:
    return DataResponse(data=await orchestrator.start(org_id, member_id))


@router.post("/stop", response_model=DataResponse[GatewayStatusRead])
async def stop_gateway(
    org_id: UUID,
    member_id: UUID,
    orchestrator: GatewayOrchestrator = ORCHESTRATOR_DEP,
) -> DataResponse[GatewayStatusRead]:
    return DataResponse(data=await orchestrator.stop(org_id, member_id))


@router.post("/redeploy", response_model=DataResponse[GatewayStatusRead])
async def redeploy_gateway(
    org_id: UUID,
    member_id: UUID,
    orchestrator: GatewayOrchestrator = ORCHESTRATOR_DEP,
) -> DataResponse[GatewayStatusRead]:
    """Rebuild the gateway with current credentials, skills and channels; token is kept."""
    return DataResponse(data=await orchestrator.redeploy(org_id, member_id))


@router.get("/status", response_model=DataResponse[GatewayStatusRead])
async def get_gateway_status(
    org_id: UUID,
    member_id: UUID,
    orchestrator: GatewayOrchestrator = ORCHESTRATOR_DEP,
) -> DataResponse[GatewayStatusRead]:
    return DataResponse(data=await orchestrator.get_status(org_id, member_id))
