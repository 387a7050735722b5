"""Per-member gateway workspace on persistent storage.

Layout under ``<data_dir>/gateways/<organization_id>/<user_id>/``::

    openclaw.json                          gateway configuration document
    agents/main/agent/auth-profiles.json   credential profiles (hot-reloaded by the gateway)
    skills/<name>/                         installed skills, one directory per skill

The directory is bind-mounted into the container, which keeps its own runtime state (sessions,
conversation history) next to the files written here.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any
from uuid import UUID

from clawhuddle.core.config import Settings, settings
from clawhuddle.core.logging import get_logger
from clawhuddle.services.gateways.constants import (
    AUTH_PROFILES_RELATIVE_PATH,
    CONFIG_FILENAME,
    SKILLS_DIRNAME,
)
from clawhuddle.services.gateways.locks import KeyedLockRegistry

if TYPE_CHECKING:
    from collections.abc import Sequence

    from clawhuddle.services.gateways.skills import AssignedSkill

logger = get_logger(__name__)


class SkillSourceError(RuntimeError):
    """A skill source repository could not be cloned or updated."""


def _atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def skill_directory_name(source_path: str, fallback: str | None = None) -> str:
    """Installed directory name: the final segment of the skill's source path.

    A skill living at its repository root (source path ``.``) has no usable segment and is
    installed under ``fallback`` instead.
    """
    name = PurePosixPath(source_path.strip().rstrip("/")).name
    if not name or name in {".", ".."}:
        name = (fallback or "").strip()
    if not name or "/" in name or name in {".", ".."}:
        raise ValueError(f"Skill source path has no usable final segment: {source_path!r}")
    return name


class WorkspaceManager:
    """Filesystem operations on gateway workspaces. All writes are idempotent."""

    def __init__(self, config: Settings | None = None) -> None:
        self._settings = config or settings
        self._repo_locks: KeyedLockRegistry[str] = KeyedLockRegistry()

    @property
    def data_dir(self) -> Path:
        return self._settings.resolved_data_dir()

    def workspace_dir(self, organization_id: UUID, user_id: UUID) -> Path:
        return self.data_dir / "gateways" / str(organization_id) / str(user_id)

    def host_workspace_dir(self, organization_id: UUID, user_id: UUID) -> Path:
        """Path of the workspace as seen by the container engine's host."""
        return (
            self._settings.resolved_host_data_dir()
            / "gateways"
            / str(organization_id)
            / str(user_id)
        )

    def config_path(self, organization_id: UUID, user_id: UUID) -> Path:
        return self.workspace_dir(organization_id, user_id) / CONFIG_FILENAME

    def auth_profiles_path(self, organization_id: UUID, user_id: UUID) -> Path:
        return self.workspace_dir(organization_id, user_id).joinpath(*AUTH_PROFILES_RELATIVE_PATH)

    def skills_dir(self, organization_id: UUID, user_id: UUID) -> Path:
        return self.workspace_dir(organization_id, user_id) / SKILLS_DIRNAME

    def repo_cache_dir(self, source_repo: str) -> Path:
        digest = hashlib.sha256(source_repo.encode("utf-8")).hexdigest()[:16]
        return self.data_dir / "skill-repos" / digest

    async def exists(self, organization_id: UUID, user_id: UUID) -> bool:
        return await asyncio.to_thread(self.workspace_dir(organization_id, user_id).is_dir)

    async def ensure(self, organization_id: UUID, user_id: UUID) -> Path:
        path = self.workspace_dir(organization_id, user_id)
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        return path

    async def write_config(
        self,
        organization_id: UUID,
        user_id: UUID,
        document: dict[str, Any],
    ) -> Path:
        path = self.config_path(organization_id, user_id)
        await asyncio.to_thread(_atomic_write_text, path, json.dumps(document, indent=2))
        return path

    async def read_config(self, organization_id: UUID, user_id: UUID) -> dict[str, Any] | None:
        """Return the current configuration document, or ``None`` if absent or unreadable."""
        path = self.config_path(organization_id, user_id)
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            document = json.loads(raw)
        except ValueError:
            logger.warning("gateway.workspace.config_unreadable", extra={"path": str(path)})
            return None
        return document if isinstance(document, dict) else None

    async def write_auth_profiles(
        self,
        organization_id: UUID,
        user_id: UUID,
        document: dict[str, Any],
    ) -> Path:
        path = self.auth_profiles_path(organization_id, user_id)
        await asyncio.to_thread(_atomic_write_text, path, json.dumps(document, indent=2))
        return path

    async def remove(self, organization_id: UUID, user_id: UUID) -> bool:
        """Delete the workspace recursively. Returns ``False`` if it was already gone."""
        path = self.workspace_dir(organization_id, user_id)

        def _remove() -> bool:
            if not path.exists():
                return False
            shutil.rmtree(path)
            return True

        removed = await asyncio.to_thread(_remove)
        logger.info(
            "gateway.workspace.removed",
            extra={"path": str(path), "existed": removed},
        )
        return removed

    async def _git(self, *args: str, cwd: Path | None, timeout: float) -> None:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        try:
            output, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError as exc:
            process.kill()
            await process.wait()
            raise SkillSourceError(f"git {args[0]} timed out after {timeout:g}s") from exc
        if process.returncode != 0:
            text = output.decode("utf-8", errors="replace").strip()
            raise SkillSourceError(f"git {args[0]} failed: {text or process.returncode}")

    async def clone_or_update_repo(self, source_repo: str) -> Path:
        """Shallow-clone ``source_repo`` into the shared cache, or pull if already cloned.

        The cache directory is shared by every member installing from the same repository, so
        clone and pull run under a lock keyed by that directory.
        """
        repo_dir = self.repo_cache_dir(source_repo)
        async with self._repo_locks.hold(repo_dir.name):
            if await asyncio.to_thread((repo_dir / ".git").is_dir):
                await self._git(
                    "pull",
                    cwd=repo_dir,
                    timeout=self._settings.skill_pull_timeout_seconds,
                )
            else:
                await asyncio.to_thread(repo_dir.parent.mkdir, parents=True, exist_ok=True)
                await self._git(
                    "clone",
                    "--depth",
                    "1",
                    "--",
                    source_repo,
                    str(repo_dir),
                    cwd=None,
                    timeout=self._settings.skill_clone_timeout_seconds,
                )
        return repo_dir

    async def install_skills(
        self,
        organization_id: UUID,
        user_id: UUID,
        skills: Sequence[AssignedSkill],
    ) -> list[str]:
        """Replace the workspace's skills directory with the given skills.

        Returns the installed directory names. A skill whose source path does not exist in its
        repository is logged and skipped.
        """
        skills_dir = self.skills_dir(organization_id, user_id)

        def _reset() -> None:
            if skills_dir.exists():
                shutil.rmtree(skills_dir)
            skills_dir.mkdir(parents=True, exist_ok=True)

        await asyncio.to_thread(_reset)
        installed: list[str] = []
        for skill in skills:
            repo_dir = await self.clone_or_update_repo(skill.source_repo)
            source_dir = (repo_dir / skill.source_path).resolve()
            if not source_dir.is_relative_to(repo_dir.resolve()) or not source_dir.is_dir():
                logger.warning(
                    "gateway.workspace.skill_source_missing",
                    extra={"skill": skill.name, "source": str(source_dir)},
                )
                continue
            target = skills_dir / skill_directory_name(skill.source_path, fallback=skill.name)
            await asyncio.to_thread(
                shutil.copytree,
                source_dir,
                target,
                ignore=shutil.ignore_patterns(".git"),
                dirs_exist_ok=True,
            )
            installed.append(target.name)
        logger.debug(
            "gateway.workspace.skills_installed",
            extra={"user_id": str(user_id), "skills": installed},
        )
        return installed
