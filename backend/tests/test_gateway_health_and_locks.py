# ruff: noqa: INP001, S101

from __future__ import annotations

import asyncio
from uuid import uuid4

import httpx
import pytest

from clawhuddle.core.config import DeploymentMode, Settings
from clawhuddle.services.gateways.health import GatewayHealthProber
from clawhuddle.services.gateways.locks import MemberLockRegistry


def _prober(settings: Settings, handler) -> GatewayHealthProber:  # type: ignore[no-untyped-def]
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GatewayHealthProber(client, settings)


@pytest.mark.asyncio
@pytest.mark.parametrize(("status_code", "expected"), [(200, True), (401, True), (500, False)])
async def test_health_status_codes(
    test_settings: Settings, status_code: int, expected: bool
) -> None:
    seen: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(status_code)

    prober = _prober(test_settings, _handler)

    assert await prober.is_healthy(container_name="gw", host_port=49153) is expected
    assert seen == ["http://127.0.0.1:49153/"]


@pytest.mark.asyncio
async def test_health_connection_errors_read_as_unhealthy(test_settings: Settings) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    prober = _prober(test_settings, _handler)

    assert await prober.is_healthy(container_name="gw", host_port=49153) is False


@pytest.mark.asyncio
async def test_health_without_host_port_in_local_mode_is_unhealthy(test_settings: Settings) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    prober = _prober(test_settings, _handler)

    assert await prober.is_healthy(container_name="gw", host_port=None) is False


def test_production_probes_by_container_name(test_settings: Settings) -> None:
    production = test_settings.model_copy(update={"deployment_mode": DeploymentMode.PRODUCTION})
    prober = GatewayHealthProber(httpx.AsyncClient(), production)

    assert prober.probe_url(container_name="clawhuddle-gw-x", host_port=49153) == (
        "http://clawhuddle-gw-x:6100/"
    )


@pytest.mark.asyncio
async def test_member_locks_serialize_same_member_and_clean_up() -> None:
    locks = MemberLockRegistry()
    member_id = uuid4()
    order: list[str] = []

    async def _op(label: str) -> None:
        async with locks.hold(member_id):
            order.append(f"{label}:start")
            await asyncio.sleep(0.01)
            order.append(f"{label}:end")

    await asyncio.gather(_op("a"), _op("b"))

    assert order in (
        ["a:start", "a:end", "b:start", "b:end"],
        ["b:start", "b:end", "a:start", "a:end"],
    )
    assert len(locks) == 0
    assert locks.is_locked(member_id) is False


@pytest.mark.asyncio
async def test_member_locks_do_not_block_other_members() -> None:
    locks = MemberLockRegistry()
    first, second = uuid4(), uuid4()

    async with locks.hold(first):
        assert locks.is_locked(first) is True
        async with locks.hold(second):
            assert locks.is_locked(second) is True
        assert locks.is_locked(second) is False
