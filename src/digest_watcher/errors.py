"""Error taxonomy for the digest watcher.

Every error is terminal for the ``check`` call that raised it. Nothing is
retried internally; the scheduler that invokes the watcher decides whether
and when to try again.
"""

from __future__ import annotations


class WatcherError(Exception):
    """Base class for all watcher failures."""

    kind = "watcher_error"


class RegistryUnavailable(WatcherError):
    """The registry could not be reached or answered unexpectedly."""

    kind = "registry_unavailable"


class TagNotFound(WatcherError):
    """The registry has no usable manifest for the requested tag."""

    kind = "tag_not_found"


class ContainerQueryFailed(WatcherError):
    """The container runtime could not report the running digest."""

    kind = "container_query_failed"


class BringUpFailed(WatcherError):
    """Starting the service from scratch failed."""

    kind = "bring_up_failed"


class PullFailed(WatcherError):
    """Pulling the new image or refreshing the service failed."""

    kind = "pull_failed"


class MissingArgument(WatcherError):
    """A mandatory command-line argument was not supplied."""

    kind = "missing_argument"
