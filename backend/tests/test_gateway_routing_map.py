# ruff: noqa: INP001, S101

from __future__ import annotations

from uuid import uuid4

import pytest

from clawhuddle.core.config import Settings
from clawhuddle.models.org_members import GatewayStatus, OrgMember
from clawhuddle.services.gateways.routing_map import (
    EMPTY_MAP_BANNER,
    MAP_BANNER,
    RoutingMapEntry,
    RoutingMapPublisher,
    render_routing_map,
)
from clawhuddle.services.gateways.runtime import ContainerRuntime
from gateway_fakes import FakeDockerClient


def test_render_routing_map_has_banner_and_one_line_per_entry() -> None:
    content = render_routing_map(
        [RoutingMapEntry("claw-00000001", "10.0.0.5", 49153), RoutingMapEntry("claw-00000002", "10.0.0.5", 6100)]
    )

    assert content.splitlines() == [
        MAP_BANNER,
        "claw-00000001 10.0.0.5:49153;",
        "claw-00000002 10.0.0.5:6100;",
    ]


def test_ensure_map_file_creates_banner_only_once(test_settings: Settings) -> None:
    publisher = RoutingMapPublisher(None, test_settings)

    publisher.ensure_map_file()
    publisher.map_path.write_text("custom\n", encoding="utf-8")
    publisher.ensure_map_file()

    assert publisher.map_path.read_text(encoding="utf-8") == "custom\n"

    publisher.map_path.unlink()
    publisher.ensure_map_file()
    assert publisher.map_path.read_text(encoding="utf-8") == f"{EMPTY_MAP_BANNER}\n"


@pytest.mark.asyncio
async def test_regenerate_lists_only_members_with_subdomain_and_port(
    session_maker, test_settings: Settings
) -> None:
    org_id = uuid4()
    async with session_maker() as session:
        session.add_all(
            [
                OrgMember(
                    organization_id=org_id,
                    user_id=uuid4(),
                    gateway_port=49153,
                    gateway_status=GatewayStatus.RUNNING,
                    gateway_subdomain="claw-aaaaaaaa",
                    gateway_token="t",
                ),
                OrgMember(
                    organization_id=org_id,
                    user_id=uuid4(),
                    gateway_port=49154,
                    gateway_status=GatewayStatus.STOPPED,
                    gateway_subdomain="claw-bbbbbbbb",
                    gateway_token="t",
                ),
                OrgMember(organization_id=org_id, user_id=uuid4()),
            ]
        )
        await session.commit()

        # The proxy container does not exist in the fake engine; the signal failure is swallowed.
        runtime = ContainerRuntime(FakeDockerClient(), test_settings)  # type: ignore[arg-type]
        publisher = RoutingMapPublisher(runtime, test_settings)
        count = await publisher.regenerate(session)

    assert count == 2
    assert publisher.map_path.read_text(encoding="utf-8").splitlines() == [
        MAP_BANNER,
        "claw-aaaaaaaa 127.0.0.1:49153;",
        "claw-bbbbbbbb 127.0.0.1:49154;",
    ]


@pytest.mark.asyncio
async def test_signal_reload_reaches_proxy_container(test_settings: Settings) -> None:
    client = FakeDockerClient()
    runtime = ContainerRuntime(client, test_settings)  # type: ignore[arg-type]
    proxy = client.containers.create("nginx", name=test_settings.proxy_container_name)

    assert await RoutingMapPublisher(runtime, test_settings).signal_reload() is True
    assert proxy.signals == ["SIGHUP"]
