"""Update decision engine.

Each ``check`` resolves the registry digest, asks the container manager what
is running and issues at most one action:

* nothing running        → ``bring_up()``    → ``Action.BROUGHT_UP``
* running, same digest   → nothing           → ``Action.NOOP``
* running, other digest  → ``pull_latest()`` → ``Action.UPDATED``

Comparison is by normalized ``repository@digest`` string only. Tags are
mutable pointers; digests are content addressed.
"""

from __future__ import annotations

from digest_watcher.containers import ContainerManager
from digest_watcher.errors import RegistryUnavailable
from digest_watcher.logging import get_logger
from digest_watcher.models import (
    Absent,
    Action,
    ImageReference,
    RunningState,
    normalize_digest,
)
from digest_watcher.registry import RegistryClient

log = get_logger("digest_watcher.engine")


def classify(remote: str, running: RunningState) -> Action:
    """Decide the action for a normalized *remote* digest and a running state."""
    if isinstance(running, Absent):
        return Action.BROUGHT_UP
    if running.digest == remote:
        return Action.NOOP
    return Action.UPDATED


class UpdateDecisionEngine:
    """Compares registry and running digests and redeploys when they differ.

    Holds no state between checks; a failed check can simply be repeated.
    """

    def __init__(
        self,
        registry: RegistryClient,
        containers: ContainerManager,
        dry_run: bool = False,
    ) -> None:
        self._registry = registry
        self._containers = containers
        self._dry_run = dry_run

    async def check(self, image_ref: ImageReference) -> Action:
        """Run one check for *image_ref* and return the action taken.

        Collaborator errors propagate unchanged. Both digests are acquired
        before any action is issued.
        """
        log.info("watcher_check_started", image=str(image_ref))

        latest = await self._registry.get_latest_digest(image_ref.repository, image_ref.tag)
        try:
            remote = normalize_digest(image_ref.repository, latest)
        except ValueError as exc:
            raise RegistryUnavailable(f"Registry returned an unusable digest: {latest!r}") from exc
        running = await self._containers.get_running_digest(image_ref.repository, image_ref.tag)

        action = classify(remote, running)
        if self._dry_run:
            log.info("watcher_dry_run", image=str(image_ref), action=action.value, remote=remote)
            return action

        if action is Action.BROUGHT_UP:
            log.info("watcher_not_running", image=str(image_ref), remote=remote)
            await self._containers.bring_up()
        elif action is Action.UPDATED:
            log.info(
                "watcher_update_triggered",
                image=str(image_ref),
                running=running.digest,
                remote=remote,
            )
            await self._containers.pull_latest()
        else:
            log.info("watcher_up_to_date", image=str(image_ref), digest=remote)

        return action
