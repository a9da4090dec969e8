"""Command-line entry point: one check per invocation.

Usage:
    digest-watcher /srv/tezedge                       # check and act
    digest-watcher /srv/tezedge --dry-run             # report only
    digest-watcher /srv/tezedge --repository acme/widget --tag stable

Exit status is 0 on success, 1 on any collaborator failure and 3 when the
deployment root is missing (argparse keeps 2 for usage errors). The action
taken is printed on stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from pydantic import ValidationError

from digest_watcher import __version__
from digest_watcher.config import Settings, get_settings
from digest_watcher.containers import ComposeContainerManager
from digest_watcher.engine import UpdateDecisionEngine
from digest_watcher.errors import MissingArgument, WatcherError
from digest_watcher.logging import get_logger, setup_logging
from digest_watcher.models import ImageReference
from digest_watcher.registry import DockerHubRegistryClient, OciRegistryClient, RegistryClient

log = get_logger("digest_watcher.cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_MISSING_ARGUMENT = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="digest-watcher",
        description="Redeploy a compose service when its registry image digest changes.",
    )
    parser.add_argument("root", nargs="?", help="Deployment root directory")
    parser.add_argument("--repository", help="Repository to track, e.g. owner/name")
    parser.add_argument("--tag", help="Tag to track")
    parser.add_argument("--compose-file", help="Compose file inside ROOT/<deploy subdir>")
    parser.add_argument("--bring-up-command", help="Command that starts the service")
    parser.add_argument("--registry", choices=["dockerhub", "oci"], help="Registry API")
    parser.add_argument("--platform", help="Platform for tags without an index digest")
    parser.add_argument(
        "--dry-run", action="store_true", help="Report the action without performing it"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def create_registry_client(settings: Settings) -> RegistryClient:
    """Build the registry client selected by ``settings.registry``."""
    if settings.registry == "oci":
        password = settings.registry_password
        return OciRegistryClient(
            registry_url=settings.registry_url,
            username=settings.registry_username,
            password=password.get_secret_value() if password else None,
            timeout=settings.registry_timeout_seconds,
        )
    return DockerHubRegistryClient(
        api_url=settings.hub_api_url,
        platform=settings.platform,
        timeout=settings.registry_timeout_seconds,
    )


def create_engine(settings: Settings, root: str, dry_run: bool = False) -> UpdateDecisionEngine:
    """Wire the registry client and compose manager for a deployment root."""
    containers = ComposeContainerManager(
        project_dir=str(Path(root) / settings.deploy_subdir),
        compose_file=settings.compose_file,
        bring_up_command=settings.bring_up_command,
        recreate_after_pull=settings.recreate_after_pull,
        command_timeout=settings.command_timeout_seconds,
        pull_timeout=settings.pull_timeout_seconds,
    )
    return UpdateDecisionEngine(create_registry_client(settings), containers, dry_run=dry_run)


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    updates: dict[str, object] = {}
    if args.repository:
        owner, _, name = args.repository.partition("/")
        updates.update(
            {"repository_owner": owner, "repository_name": name}
            if name
            else {"repository_owner": "library", "repository_name": owner}
        )
    for field in ("tag", "compose_file", "bring_up_command", "registry", "platform"):
        value = getattr(args, field)
        if value:
            updates[field] = value
    if not updates:
        return settings
    return Settings.model_validate({**settings.model_dump(), **updates})


def run(argv: list[str] | None = None) -> int:
    """Parse *argv*, run a single check and return the process exit status."""
    args = build_parser().parse_args(argv)
    try:
        if not args.root:
            raise MissingArgument("No deployment root path specified")
        setup_logging()
        settings = _apply_overrides(get_settings(), args)
        image_ref = ImageReference(repository=settings.repository, tag=settings.tag)
        engine = create_engine(settings, args.root, dry_run=args.dry_run)
        action = asyncio.run(engine.check(image_ref))
    except MissingArgument as exc:
        log.error("watcher_missing_argument", error=str(exc))
        print(str(exc), file=sys.stderr)
        return EXIT_MISSING_ARGUMENT
    except ValidationError as exc:
        log.error("watcher_invalid_config", errors=exc.errors(include_url=False))
        return EXIT_FAILURE
    except WatcherError as exc:
        log.error("watcher_check_failed", kind=exc.kind, error=str(exc))
        return EXIT_FAILURE

    print(action.value)
    return EXIT_OK


def main() -> int:
    """Console-script entry point."""
    return run()
