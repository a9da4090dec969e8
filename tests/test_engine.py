"""Tests for digest_watcher.engine — the update decision logic."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from digest_watcher.engine import UpdateDecisionEngine, classify
from digest_watcher.errors import (
    BringUpFailed,
    ContainerQueryFailed,
    PullFailed,
    RegistryUnavailable,
    TagNotFound,
)
from digest_watcher.models import Absent, Action, ImageReference, Running, RunningState

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

WIDGET = ImageReference(repository="acme/widget", tag="latest")


def _make_registry(digest: str = "sha256:AAA", error: Exception | None = None) -> MagicMock:
    registry = MagicMock()
    registry.get_latest_digest = AsyncMock(return_value=digest, side_effect=error)
    return registry


def _make_containers(running: RunningState, error: Exception | None = None) -> MagicMock:
    containers = MagicMock()
    containers.get_running_digest = AsyncMock(return_value=running, side_effect=error)
    containers.bring_up = AsyncMock()
    containers.pull_latest = AsyncMock()
    return containers


def _assert_no_mutation(containers: MagicMock) -> None:
    containers.bring_up.assert_not_awaited()
    containers.pull_latest.assert_not_awaited()


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------


class TestClassify:
    """Tests for the pure classification helper."""

    def test_absent_is_brought_up(self) -> None:
        assert classify("acme/widget@sha256:AAA", Absent()) is Action.BROUGHT_UP

    def test_equal_digest_is_noop(self) -> None:
        running = Running("acme/widget@sha256:AAA")
        assert classify("acme/widget@sha256:AAA", running) is Action.NOOP

    def test_different_digest_is_updated(self) -> None:
        running = Running("acme/widget@sha256:AAA")
        assert classify("acme/widget@sha256:BBB", running) is Action.UPDATED

    def test_unknown_running_digest_is_updated(self) -> None:
        assert classify("acme/widget@sha256:AAA", Running(None)) is Action.UPDATED

    def test_comparison_is_exact(self) -> None:
        running = Running("acme/widget@sha256:aaa")
        assert classify("acme/widget@sha256:AAA", running) is Action.UPDATED


# ---------------------------------------------------------------------------
# check — the three transitions
# ---------------------------------------------------------------------------


class TestCheckScenarios:
    """Tests for UpdateDecisionEngine.check() outcomes."""

    async def test_absent_brings_up(self) -> None:
        registry = _make_registry("sha256:AAA")
        containers = _make_containers(Absent())
        engine = UpdateDecisionEngine(registry, containers)

        action = await engine.check(WIDGET)

        assert action is Action.BROUGHT_UP
        containers.bring_up.assert_awaited_once_with()
        containers.pull_latest.assert_not_awaited()

    async def test_current_digest_is_noop(self) -> None:
        registry = _make_registry("sha256:AAA")
        containers = _make_containers(Running("acme/widget@sha256:AAA"))
        engine = UpdateDecisionEngine(registry, containers)

        action = await engine.check(WIDGET)

        assert action is Action.NOOP
        _assert_no_mutation(containers)

    async def test_stale_digest_pulls(self) -> None:
        registry = _make_registry("sha256:BBB")
        containers = _make_containers(Running("acme/widget@sha256:AAA"))
        engine = UpdateDecisionEngine(registry, containers)

        action = await engine.check(WIDGET)

        assert action is Action.UPDATED
        containers.pull_latest.assert_awaited_once_with()
        containers.bring_up.assert_not_awaited()

    async def test_queries_collaborators_with_reference(self) -> None:
        registry = _make_registry("sha256:AAA")
        containers = _make_containers(Running("acme/widget@sha256:AAA"))
        engine = UpdateDecisionEngine(registry, containers)

        await engine.check(ImageReference(repository="acme/widget", tag="stable"))

        registry.get_latest_digest.assert_awaited_once_with("acme/widget", "stable")
        containers.get_running_digest.assert_awaited_once_with("acme/widget", "stable")

    async def test_already_qualified_remote_digest(self) -> None:
        registry = _make_registry("acme/widget@sha256:AAA")
        containers = _make_containers(Running("acme/widget@sha256:AAA"))
        engine = UpdateDecisionEngine(registry, containers)

        assert await engine.check(WIDGET) is Action.NOOP

    @pytest.mark.parametrize(
        ("running", "expected"),
        [
            (Absent(), Action.BROUGHT_UP),
            (Running("acme/widget@sha256:AAA"), Action.NOOP),
        ],
    )
    async def test_repeated_checks_are_stable(
        self, running: RunningState, expected: Action
    ) -> None:
        registry = _make_registry("sha256:AAA")
        containers = _make_containers(running)
        engine = UpdateDecisionEngine(registry, containers)

        first = await engine.check(WIDGET)
        second = await engine.check(WIDGET)

        assert first is second is expected
        assert registry.get_latest_digest.await_count == 2
        assert containers.get_running_digest.await_count == 2

    async def test_noop_twice_accumulates_no_side_effects(self) -> None:
        registry = _make_registry("sha256:AAA")
        containers = _make_containers(Running("acme/widget@sha256:AAA"))
        engine = UpdateDecisionEngine(registry, containers)

        assert [await engine.check(WIDGET), await engine.check(WIDGET)] == [
            Action.NOOP,
            Action.NOOP,
        ]
        _assert_no_mutation(containers)


# ---------------------------------------------------------------------------
# check — failures
# ---------------------------------------------------------------------------


class TestCheckFailures:
    """Collaborator errors abort the check without partial actions."""

    @pytest.mark.parametrize("error", [RegistryUnavailable("down"), TagNotFound("gone")])
    async def test_registry_failure_takes_no_action(self, error: Exception) -> None:
        registry = _make_registry(error=error)
        containers = _make_containers(Absent())
        engine = UpdateDecisionEngine(registry, containers)

        with pytest.raises(type(error)):
            await engine.check(WIDGET)

        _assert_no_mutation(containers)

    async def test_registry_failure_skips_container_query(self) -> None:
        registry = _make_registry(error=RegistryUnavailable("down"))
        containers = _make_containers(Running("acme/widget@sha256:AAA"))
        engine = UpdateDecisionEngine(registry, containers)

        with pytest.raises(RegistryUnavailable):
            await engine.check(WIDGET)

        containers.get_running_digest.assert_not_awaited()

    async def test_container_query_failure_takes_no_action(self) -> None:
        registry = _make_registry("sha256:AAA")
        containers = _make_containers(Absent(), error=ContainerQueryFailed("no docker"))
        engine = UpdateDecisionEngine(registry, containers)

        with pytest.raises(ContainerQueryFailed):
            await engine.check(WIDGET)

        _assert_no_mutation(containers)

    async def test_bring_up_failure_propagates(self) -> None:
        containers = _make_containers(Absent())
        containers.bring_up.side_effect = BringUpFailed("compose up failed")
        engine = UpdateDecisionEngine(_make_registry(), containers)

        with pytest.raises(BringUpFailed, match="compose up failed"):
            await engine.check(WIDGET)

        containers.bring_up.assert_awaited_once()

    async def test_pull_failure_propagates(self) -> None:
        containers = _make_containers(Running("acme/widget@sha256:AAA"))
        containers.pull_latest.side_effect = PullFailed("pull failed")
        engine = UpdateDecisionEngine(_make_registry("sha256:BBB"), containers)

        with pytest.raises(PullFailed):
            await engine.check(WIDGET)

        containers.pull_latest.assert_awaited_once()
        containers.bring_up.assert_not_awaited()

    @pytest.mark.parametrize("digest", ["", "   \n"])
    async def test_blank_registry_digest_is_unavailable(self, digest: str) -> None:
        containers = _make_containers(Running("acme/widget@sha256:AAA"))
        engine = UpdateDecisionEngine(_make_registry(digest), containers)

        with pytest.raises(RegistryUnavailable, match="unusable digest"):
            await engine.check(WIDGET)

        containers.get_running_digest.assert_not_awaited()
        _assert_no_mutation(containers)

    async def test_retry_after_failure_succeeds(self) -> None:
        registry = _make_registry()
        registry.get_latest_digest.side_effect = [RegistryUnavailable("down"), "sha256:AAA"]
        containers = _make_containers(Running("acme/widget@sha256:AAA"))
        engine = UpdateDecisionEngine(registry, containers)

        with pytest.raises(RegistryUnavailable):
            await engine.check(WIDGET)
        assert await engine.check(WIDGET) is Action.NOOP


# ---------------------------------------------------------------------------
# dry run
# ---------------------------------------------------------------------------


class TestDryRun:
    """Dry-run engines decide but never act."""

    @pytest.mark.parametrize(
        ("remote", "running", "expected"),
        [
            ("sha256:AAA", Absent(), Action.BROUGHT_UP),
            ("sha256:AAA", Running("acme/widget@sha256:AAA"), Action.NOOP),
            ("sha256:BBB", Running("acme/widget@sha256:AAA"), Action.UPDATED),
        ],
    )
    async def test_reports_without_acting(
        self, remote: str, running: RunningState, expected: Action
    ) -> None:
        containers = _make_containers(running)
        engine = UpdateDecisionEngine(_make_registry(remote), containers, dry_run=True)

        assert await engine.check(WIDGET) is expected
        _assert_no_mutation(containers)
