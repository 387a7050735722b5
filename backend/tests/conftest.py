# ruff: noqa: INP001

from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from clawhuddle import models  # noqa: F401
from clawhuddle.core.config import DeploymentMode, Settings


@pytest.fixture
def test_settings(tmp_path) -> Settings:  # type: ignore[no-untyped-def]
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        routing_map_path=tmp_path / "nginx" / "gateway-map.conf",
        deployment_mode=DeploymentMode.LOCAL_DEVELOPMENT,
    )


@pytest_asyncio.fixture
async def session_maker():  # type: ignore[no-untyped-def]
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()
