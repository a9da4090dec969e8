"""Container manager backed by the docker CLI and docker compose.

All subprocess calls of the watcher are confined to this module.
"""

from __future__ import annotations

import asyncio
import json
import shlex
from typing import Any, Protocol

from digest_watcher.errors import BringUpFailed, ContainerQueryFailed, PullFailed, WatcherError
from digest_watcher.logging import get_logger
from digest_watcher.models import Absent, Running, RunningState

log = get_logger("digest_watcher.containers")


class ContainerManager(Protocol):
    """Reports what is running and performs the two redeploy actions."""

    async def get_running_digest(self, repository: str, tag: str) -> RunningState: ...

    async def bring_up(self) -> None: ...

    async def pull_latest(self) -> None: ...


def repository_spellings(repository: str) -> set[str]:
    """Names docker may use for *repository*, e.g. ``nginx`` and ``docker.io/library/nginx``."""
    short = repository.removeprefix("docker.io/").removeprefix("library/")
    names = {short, f"docker.io/{short}"}
    if "/" not in short:
        names |= {f"library/{short}", f"docker.io/library/{short}"}
    return names


def image_names(repository: str, tag: str) -> set[str]:
    """Spellings docker may record in a container's ``Config.Image`` for repository:tag."""
    names = {f"{name}:{tag}" for name in repository_spellings(repository)}
    if tag == "latest":
        names |= repository_spellings(repository)
    return names


def repo_digest_for(repository: str, repo_digests: list[str]) -> str | None:
    """Return an image's RepoDigests entry for *repository* as ``repository@digest``.

    The result uses *repository* exactly as given so it compares equal to
    ``normalize_digest(repository, …)``.
    """
    spellings = repository_spellings(repository)
    matches = sorted(
        f"{repository}@{digest}"
        for name, _, digest in (entry.partition("@") for entry in repo_digests)
        if digest and name in spellings
    )
    return matches[0] if matches else None


class ComposeContainerManager:
    """Manages a compose project whose service runs the tracked image."""

    def __init__(
        self,
        project_dir: str,
        compose_file: str = "docker-compose.yml",
        bring_up_command: str | None = None,
        recreate_after_pull: bool = True,
        command_timeout: int = 180,
        pull_timeout: int = 1200,
    ) -> None:
        self._project_dir = project_dir
        self._compose_file = compose_file
        self._compose = f"docker compose -f {shlex.quote(compose_file)}"
        self._bring_up_command = bring_up_command or f"{self._compose} up -d"
        self._recreate_after_pull = recreate_after_pull
        self._command_timeout = command_timeout
        self._pull_timeout = pull_timeout

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_running_digest(self, repository: str, tag: str) -> RunningState:
        """Inspect running containers started from repository:tag.

        When several containers match and disagree on their digest, the
        state is reported as ``Running(None)`` so the service gets refreshed.
        """
        ids_out = await self._run_cmd("docker ps -q --no-trunc", ContainerQueryFailed)
        container_ids = [line.strip() for line in ids_out.splitlines() if line.strip()]
        if not container_ids:
            return Absent()

        containers = await self._inspect(f"docker inspect {shlex.join(container_ids)}")
        wanted = image_names(repository, tag)
        image_ids = sorted(
            {
                str(c.get("Image", ""))
                for c in containers
                if (c.get("Config") or {}).get("Image") in wanted
                and (c.get("State") or {}).get("Running", True)
            }
            - {""}
        )
        if not image_ids:
            return Absent()

        images = await self._inspect(f"docker image inspect {shlex.join(image_ids)}")
        digests = {repo_digest_for(repository, img.get("RepoDigests") or []) for img in images}
        if len(digests) != 1:
            log.info("containers_digest_mismatch", repository=repository, count=len(digests))
            return Running(digest=None)
        return Running(digest=digests.pop())

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def bring_up(self) -> None:
        log.info("containers_bring_up", command=self._bring_up_command)
        await self._run_cmd(self._bring_up_command, BringUpFailed)

    async def pull_latest(self) -> None:
        log.info("containers_pull", compose_file=self._compose_file)
        await self._run_cmd(f"{self._compose} pull", PullFailed, timeout=self._pull_timeout)
        if self._recreate_after_pull:
            await self._run_cmd(f"{self._compose} up -d", PullFailed)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _inspect(self, cmd: str) -> list[dict[str, Any]]:
        out = await self._run_cmd(cmd, ContainerQueryFailed)
        try:
            data = json.loads(out)
        except json.JSONDecodeError as exc:
            raise ContainerQueryFailed(f"Unparseable output from: {cmd}") from exc
        if not isinstance(data, list):
            raise ContainerQueryFailed(f"Unexpected output from: {cmd}")
        return [item for item in data if isinstance(item, dict)]

    async def _run_cmd(
        self,
        cmd: str,
        error: type[WatcherError],
        timeout: int | None = None,
    ) -> str:
        """Run a shell command and return stdout, raising *error* on failure."""
        timeout = timeout or self._command_timeout
        try:
            proc = await asyncio.create_subprocess_shell(
                cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._project_dir,
            )
        except OSError as exc:
            log.warning("command_error", cmd=cmd, error=str(exc))
            raise error(f"Could not run {cmd}: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            log.warning("command_timed_out", cmd=cmd, timeout=timeout)
            raise error(f"Timed out after {timeout}s: {cmd}") from exc

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace")[:500]
            log.warning("command_failed", cmd=cmd, rc=proc.returncode, stderr=detail)
            raise error(f"{cmd} exited with {proc.returncode}: {detail}")

        return stdout.decode(errors="replace")
