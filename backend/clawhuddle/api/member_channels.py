"""Messaging channel tokens and device pairing for a member's gateway."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status

from clawhuddle.api.deps import get_channel_service, get_orchestrator
from clawhuddle.schemas.gateways import (
    ChannelRead,
    ChannelTokenUpdate,
    DataResponse,
    PairingApprove,
    PairingApproveResult,
    PairingRequestsRead,
)
from clawhuddle.services.gateways.channels import MemberChannelService
from clawhuddle.services.gateways.orchestrator import GatewayOrchestrator

router = APIRouter(prefix="/orgs/{org_id}/members/{member_id}/channels", tags=["channels"])
CHANNEL_SERVICE_DEP = Depends(get_channel_service)
ORCHESTRATOR_DEP = Depends(get_orchestrator)


@router.get("", response_model=DataResponse[list[ChannelRead]])
async def list_channels(
    org_id: UUID,
    member_id: UUID,
    service: MemberChannelService = CHANNEL_SERVICE_DEP,
) -> DataResponse[list[ChannelRead]]:
    return DataResponse(data=await service.list_channels(org_id, member_id))


@router.put("/{channel}", response_model=DataResponse[ChannelRead])
async def set_channel_token(
    org_id: UUID,
    member_id: UUID,
    channel: str,
    payload: ChannelTokenUpdate,
    service: MemberChannelService = CHANNEL_SERVICE_DEP,
) -> DataResponse[ChannelRead]:
    """Store a bot token; a live gateway picks it up through a queued redeploy."""
    return DataResponse(
        data=await service.set_token(org_id, member_id, channel, payload.bot_token),
    )


@router.delete("/{channel}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_channel_token(
    org_id: UUID,
    member_id: UUID,
    channel: str,
    service: MemberChannelService = CHANNEL_SERVICE_DEP,
) -> None:
    await service.remove_token(org_id, member_id, channel)


@router.post("/{channel}/pair", response_model=DataResponse[PairingApproveResult])
async def approve_pairing(
    org_id: UUID,
    member_id: UUID,
    channel: str,
    payload: PairingApprove,
    orchestrator: GatewayOrchestrator = ORCHESTRATOR_DEP,
) -> DataResponse[PairingApproveResult]:
    output = await orchestrator.approve_pairing(org_id, member_id, channel, payload.code)
    return DataResponse(data=PairingApproveResult(channel=channel, approved=True, output=output))


@router.get("/{channel}/pair", response_model=DataResponse[PairingRequestsRead])
async def list_pairing_requests(
    org_id: UUID,
    member_id: UUID,
    channel: str,
    orchestrator: GatewayOrchestrator = ORCHESTRATOR_DEP,
) -> DataResponse[PairingRequestsRead]:
    output = await orchestrator.list_pairing_requests(org_id, member_id, channel)
    return DataResponse(data=PairingRequestsRead(channel=channel, output=output))
