"""Value types shared by the registry client, container manager and engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class Action(StrEnum):
    """Outcome of a single check."""

    NOOP = "noop"
    BROUGHT_UP = "brought_up"
    UPDATED = "updated"


@dataclass(frozen=True)
class ImageReference:
    """The repository/tag pair a watcher tracks."""

    repository: str
    tag: str

    def __post_init__(self) -> None:
        if not self.repository:
            raise ValueError("repository must not be empty")
        if not self.tag:
            raise ValueError("tag must not be empty")

    def __str__(self) -> str:
        return f"{self.repository}:{self.tag}"


@dataclass(frozen=True)
class Absent:
    """No container for the tracked image is running."""


@dataclass(frozen=True)
class Running:
    """A container for the tracked image is running.

    ``digest`` is the normalized ``repository@digest`` of the image the
    container was started from, or None when that image carries no registry
    digest for the repository (e.g. it was built locally).
    """

    digest: str | None


RunningState = Absent | Running


def normalize_digest(repository: str, digest: str) -> str:
    """Qualify *digest* with *repository*, e.g. ``acme/widget@sha256:…``.

    Already-qualified digests for the same repository are returned unchanged.
    """
    digest = digest.strip()
    if not digest:
        raise ValueError("digest must not be empty")
    prefix = f"{repository}@"
    if digest.startswith(prefix):
        return digest
    return f"{prefix}{digest}"
