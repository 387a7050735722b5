"""Shared DB-backed service base class for gateway services."""

from __future__ import annotations

from logging import Logger
from typing import TYPE_CHECKING

from clawhuddle.core.logging import get_logger

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession


class GatewayDBService:
    """Base class for gateway services that require an AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        # Use the concrete subclass module for logger naming.
        self._logger = get_logger(self.__class__.__module__)

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def logger(self) -> Logger:
        return self._logger

    @logger.setter
    def logger(self, value: Logger) -> None:
        self._logger = value

    async def add_commit_refresh(self, model: object) -> None:
        """Persist a model, committing the current transaction and refreshing it."""
        self.session.add(model)
        await self.session.commit()
        await self.session.refresh(model)
