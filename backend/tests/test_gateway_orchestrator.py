# ruff: noqa: INP001, S101
"""Lifecycle tests for the gateway orchestrator against an in-memory engine and database."""

from __future__ import annotations

import asyncio
import json
import re
from dataclasses import dataclass
from uuid import UUID, uuid4

import pytest
from sqlmodel.ext.asyncio.session import AsyncSession

from clawhuddle.core.config import Settings
from clawhuddle.models.org_members import GatewayStatus, OrgMember
from clawhuddle.models.provider_credentials import CredentialKind
from clawhuddle.services.gateways.credentials import ResolvedCredential
from clawhuddle.services.gateways.exceptions import (
    GatewayPreconditionError,
    GatewayRuntimeError,
    MemberNotFoundError,
)
from clawhuddle.services.gateways.health import GatewayHealthProber
from clawhuddle.services.gateways.locks import MemberLockRegistry
from clawhuddle.services.gateways.orchestrator import GatewayOrchestrator
from clawhuddle.services.gateways.routing_map import RoutingMapPublisher
from clawhuddle.services.gateways.runtime import ContainerRuntime
from clawhuddle.services.gateways.workspace import WorkspaceManager
from gateway_fakes import (
    FAKE_HOST_PORT,
    EmptySkillRegistry,
    ExecResult,
    FakeCredentialResolver,
    FakeDockerClient,
    anthropic_key,
    health_client,
)


@dataclass
class _Harness:
    orchestrator: GatewayOrchestrator
    docker: FakeDockerClient
    resolver: FakeCredentialResolver
    workspace: WorkspaceManager
    locks: MemberLockRegistry
    health: dict[str, int]
    settings: Settings
    session: AsyncSession


def _build(session: AsyncSession, settings: Settings, *, credentials: bool = True) -> _Harness:
    docker = FakeDockerClient()
    runtime = ContainerRuntime(docker, settings)  # type: ignore[arg-type]
    health = {"status": 503}
    resolver = FakeCredentialResolver(credentials=[anthropic_key()] if credentials else [])
    workspace = WorkspaceManager(settings)
    locks = MemberLockRegistry()
    orchestrator = GatewayOrchestrator(
        session,
        runtime=runtime,
        prober=GatewayHealthProber(health_client(health), settings),
        locks=locks,
        workspace=workspace,
        credentials=resolver,
        skills=EmptySkillRegistry(),
        routing_map=RoutingMapPublisher(runtime, settings),
    )
    return _Harness(orchestrator, docker, resolver, workspace, locks, health, settings, session)


async def _seed_member(session: AsyncSession) -> OrgMember:
    member = OrgMember(organization_id=uuid4(), user_id=uuid4())
    session.add(member)
    await session.commit()
    await session.refresh(member)
    return member


async def _reload(session_maker, member_id: UUID) -> OrgMember:  # type: ignore[no-untyped-def]
    async with session_maker() as fresh:
        member = await fresh.get(OrgMember, member_id)
        assert member is not None
        return member


@pytest.mark.asyncio
async def test_provision_fresh_member_deploys_with_new_identity(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)

        result = await h.orchestrator.provision(member.organization_id, member.id)

    assert result.gateway_status == GatewayStatus.DEPLOYING
    assert result.gateway_port == FAKE_HOST_PORT
    assert re.fullmatch(r"claw-[0-9a-f]{8}", result.gateway_subdomain or "")

    stored = await _reload(session_maker, member.id)
    assert re.fullmatch(r"[0-9a-f]{48}", stored.gateway_token or "")

    config = json.loads(
        h.workspace.config_path(member.organization_id, member.user_id).read_text(encoding="utf-8")
    )
    assert config["gateway"]["auth"]["token"] == stored.gateway_token
    assert config["gateway"]["port"] == test_settings.gateway_internal_port
    assert config["agents"]["defaults"]["model"]["primary"] == "anthropic/claude-sonnet-4-5"

    profiles = json.loads(
        h.workspace.auth_profiles_path(member.organization_id, member.user_id).read_text(
            encoding="utf-8"
        )
    )
    assert profiles["profiles"]["anthropic:manual"]["key"] == "sk-ant-test"

    routing_map = test_settings.resolved_routing_map_path().read_text(encoding="utf-8")
    assert f"{stored.gateway_subdomain} 127.0.0.1:{FAKE_HOST_PORT};" in routing_map.splitlines()
    assert ("network.create", test_settings.docker_network) in h.docker.calls


@pytest.mark.asyncio
async def test_provision_rejects_member_with_active_gateway(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        first = await h.orchestrator.provision(member.organization_id, member.id)

        with pytest.raises(GatewayPreconditionError) as exc_info:
            await h.orchestrator.provision(member.organization_id, member.id)

    assert exc_info.value.message == "Gateway already running"
    stored = await _reload(session_maker, member.id)
    assert stored.gateway_subdomain == first.gateway_subdomain


@pytest.mark.asyncio
async def test_provision_without_credentials_touches_nothing(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings, credentials=False)

        with pytest.raises(GatewayPreconditionError) as exc_info:
            await h.orchestrator.provision(member.organization_id, member.id)

    assert exc_info.value.status_code == 422
    assert exc_info.value.code == "gateway_credentials_missing"
    assert h.docker.calls == []
    assert not h.workspace.workspace_dir(member.organization_id, member.user_id).exists()
    stored = await _reload(session_maker, member.id)
    assert stored.gateway_status is None
    assert stored.gateway_port is None


@pytest.mark.asyncio
async def test_provision_rolls_back_record_when_container_fails(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        h.docker.fail_create = True

        with pytest.raises(GatewayRuntimeError):
            await h.orchestrator.provision(member.organization_id, member.id)

    stored = await _reload(session_maker, member.id)
    assert stored.gateway_port is None
    assert stored.gateway_status is None
    assert stored.gateway_token is None
    assert stored.gateway_subdomain is None


@pytest.mark.asyncio
async def test_get_status_promotes_to_running_only_when_healthy(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        await h.orchestrator.provision(member.organization_id, member.id)

        unhealthy = await h.orchestrator.get_status(member.organization_id, member.id)
        assert unhealthy.gateway_status == GatewayStatus.DEPLOYING

        h.health["status"] = 401
        healthy = await h.orchestrator.get_status(member.organization_id, member.id)
        assert healthy.gateway_status == GatewayStatus.RUNNING


@pytest.mark.asyncio
async def test_get_status_reconciles_dead_container_to_stopped(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        await h.orchestrator.provision(member.organization_id, member.id)
        h.docker.containers.items.clear()

        status = await h.orchestrator.get_status(member.organization_id, member.id)

    assert status.gateway_status == GatewayStatus.STOPPED
    stored = await _reload(session_maker, member.id)
    assert stored.gateway_status == GatewayStatus.STOPPED


@pytest.mark.asyncio
async def test_get_status_returns_record_while_lifecycle_lock_is_held(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        await h.orchestrator.provision(member.organization_id, member.id)
        h.docker.containers.items.clear()

        async with h.locks.hold(member.id):
            status = await h.orchestrator.get_status(member.organization_id, member.id)

    assert status.gateway_status == GatewayStatus.DEPLOYING


@pytest.mark.asyncio
async def test_get_status_without_gateway_skips_engine(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)

        status = await h.orchestrator.get_status(member.organization_id, member.id)

    assert member.has_gateway is False
    assert status.gateway_status is None
    assert h.docker.calls == []


@pytest.mark.asyncio
async def test_stop_during_reconcile_health_check_is_not_overwritten(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        await h.orchestrator.provision(member.organization_id, member.id)

    checking = asyncio.Event()
    release = asyncio.Event()

    class _SlowHealthCheck:
        async def is_healthy(self, *, container_name: str, host_port: int | None) -> bool:
            checking.set()
            await release.wait()
            return True

    def _orchestrator(session: AsyncSession, prober: object) -> GatewayOrchestrator:
        return GatewayOrchestrator(
            session,
            runtime=ContainerRuntime(h.docker, test_settings),  # type: ignore[arg-type]
            prober=prober,  # type: ignore[arg-type]
            locks=h.locks,
            workspace=h.workspace,
            credentials=h.resolver,
            skills=EmptySkillRegistry(),
        )

    async with session_maker() as status_session, session_maker() as stop_session:
        reconciler = _orchestrator(status_session, _SlowHealthCheck())
        stopper = _orchestrator(
            stop_session, GatewayHealthProber(health_client(h.health), test_settings)
        )
        status_task = asyncio.create_task(
            reconciler.get_status(member.organization_id, member.id)
        )
        await checking.wait()
        stop_task = asyncio.create_task(stopper.stop(member.organization_id, member.id))
        await asyncio.sleep(0.01)
        assert not stop_task.done()

        release.set()
        reconciled = await status_task
        stopped = await stop_task

    assert reconciled.gateway_status == GatewayStatus.RUNNING
    assert stopped.gateway_status == GatewayStatus.STOPPED
    stored = await _reload(session_maker, member.id)
    assert stored.gateway_status == GatewayStatus.STOPPED
    assert len(h.locks) == 0


@pytest.mark.asyncio
async def test_stop_then_start_keeps_port_and_subdomain(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        provisioned = await h.orchestrator.provision(member.organization_id, member.id)

        stopped = await h.orchestrator.stop(member.organization_id, member.id)
        assert stopped.gateway_status == GatewayStatus.STOPPED
        container = next(iter(h.docker.containers.items.values()))
        assert container.running is False

        started = await h.orchestrator.start(member.organization_id, member.id)

    assert started.gateway_status == GatewayStatus.DEPLOYING
    assert started.gateway_port == provisioned.gateway_port
    assert started.gateway_subdomain == provisioned.gateway_subdomain


@pytest.mark.asyncio
async def test_start_and_stop_require_a_deployed_gateway(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)

        with pytest.raises(GatewayPreconditionError, match="No gateway deployed"):
            await h.orchestrator.start(member.organization_id, member.id)
        with pytest.raises(GatewayPreconditionError, match="No gateway deployed"):
            await h.orchestrator.stop(member.organization_id, member.id)
        with pytest.raises(GatewayPreconditionError, match="No gateway deployed"):
            await h.orchestrator.redeploy(member.organization_id, member.id)

    assert h.docker.calls == []


@pytest.mark.asyncio
async def test_redeploy_keeps_token_and_preserves_hand_edits(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        provisioned = await h.orchestrator.provision(member.organization_id, member.id)
        token_before = (await _reload(session_maker, member.id)).gateway_token

        config_path = h.workspace.config_path(member.organization_id, member.user_id)
        document = json.loads(config_path.read_text(encoding="utf-8"))
        document["tools"] = {"web": {"enabled": False}}
        config_path.write_text(json.dumps(document), encoding="utf-8")
        h.resolver.overrides = {"anthropic": "anthropic/claude-opus-4-1"}

        redeployed = await h.orchestrator.redeploy(member.organization_id, member.id)

    stored = await _reload(session_maker, member.id)
    assert stored.gateway_token == token_before
    assert redeployed.gateway_subdomain == provisioned.gateway_subdomain
    assert redeployed.gateway_status == GatewayStatus.DEPLOYING

    merged = json.loads(config_path.read_text(encoding="utf-8"))
    assert merged["tools"] == {"web": {"enabled": False}}
    assert merged["gateway"]["auth"]["token"] == token_before
    assert merged["agents"]["defaults"]["model"]["primary"] == "anthropic/claude-opus-4-1"


@pytest.mark.asyncio
async def test_remove_is_idempotent_and_clears_everything(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        await h.orchestrator.provision(member.organization_id, member.id)

        first = await h.orchestrator.remove(member.organization_id, member.id)
        second = await h.orchestrator.remove(member.organization_id, member.id)

    for result in (first, second):
        assert result.gateway_port is None
        assert result.gateway_status is None
        assert result.gateway_subdomain is None
    assert h.docker.containers.items == {}
    assert not h.workspace.workspace_dir(member.organization_id, member.user_id).exists()
    routing_map = test_settings.resolved_routing_map_path().read_text(encoding="utf-8")
    assert [line for line in routing_map.splitlines() if not line.startswith("#")] == []


@pytest.mark.asyncio
async def test_pairing_requires_running_gateway(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        await h.orchestrator.provision(member.organization_id, member.id)

        with pytest.raises(GatewayPreconditionError, match="Gateway is not running"):
            await h.orchestrator.approve_pairing(
                member.organization_id, member.id, "telegram", "ABC123"
            )
        assert h.docker.exec_commands == []

        h.health["status"] = 200
        await h.orchestrator.get_status(member.organization_id, member.id)
        h.docker.exec_result = ExecResult(0, b"  Approved ABC123\n")
        output = await h.orchestrator.approve_pairing(
            member.organization_id, member.id, "telegram", " ABC123 "
        )

    assert output == "Approved ABC123"
    assert h.docker.exec_commands == [["openclaw", "pairing", "approve", "telegram", "ABC123"]]


@pytest.mark.asyncio
async def test_unknown_member_is_reported_as_not_found(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        h = _build(session, test_settings)
        with pytest.raises(MemberNotFoundError):
            await h.orchestrator.get_status(uuid4(), uuid4())


@pytest.mark.asyncio
async def test_redeploy_without_credentials_makes_no_engine_calls(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        await h.orchestrator.provision(member.organization_id, member.id)
        h.resolver.credentials = []
        h.docker.calls.clear()

        with pytest.raises(GatewayPreconditionError) as exc_info:
            await h.orchestrator.redeploy(member.organization_id, member.id)

    assert exc_info.value.code == "gateway_credentials_missing"
    assert h.docker.calls == []
    stored = await _reload(session_maker, member.id)
    assert stored.gateway_status == GatewayStatus.DEPLOYING


@pytest.mark.asyncio
async def test_sync_auth_profiles_rewrites_only_active_workspaces(
    session_maker, test_settings: Settings
) -> None:
    async with session_maker() as session:
        member = await _seed_member(session)
        h = _build(session, test_settings)
        await h.orchestrator.provision(member.organization_id, member.id)

        other = OrgMember(organization_id=member.organization_id, user_id=uuid4())
        session.add(other)
        await session.commit()

        h.resolver.credentials = [
            anthropic_key(),
            ResolvedCredential("google", "g-key", CredentialKind.API_KEY),
        ]
        written = await h.orchestrator.sync_auth_profiles(member.organization_id)

    assert written == 1
    profiles = json.loads(
        h.workspace.auth_profiles_path(member.organization_id, member.user_id).read_text(
            encoding="utf-8"
        )
    )
    assert set(profiles["profiles"]) == {"anthropic:manual", "google:manual"}
    assert not h.workspace.workspace_dir(member.organization_id, other.user_id).exists()
