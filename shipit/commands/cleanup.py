"""Cleanup command: delete dev mode servers left behind by a killed run."""

import asyncio
import logging
import sys

from shipit.cleanup import DEFAULT_CLEANUP_FILE, CleanupTracker, read_state
from shipit.commands._common import add_config_arg, load_config_or_exit, resolve_token
from shipit.provisioning import HetznerProvider

logger = logging.getLogger(__name__)


def handle_cleanup(args):
    """CLI handler for 'cleanup'."""
    asyncio.run(_handle_cleanup(args))


async def _handle_cleanup(args):
    persisted_token, server_ids = read_state(args.state_file)
    if not server_ids:
        logger.info(f"No orphaned servers recorded in {args.state_file}.")
        return

    config = load_config_or_exit(args.config)
    # The token the servers were created with is the best bet; an explicit one wins.
    token = resolve_token(args.token or persisted_token, config, required=not args.dry_run)

    if args.dry_run:
        logger.info(f"[dry-run] Would delete {len(server_ids)} server(s): {', '.join(str(i) for i in server_ids)}")
        return

    tracker = CleanupTracker(HetznerProvider(token), args.state_file)
    failed = await tracker.init(token)
    if failed:
        logger.error(f"Failed to clean up server(s): {', '.join(str(i) for i in failed)}")
        sys.exit(1)
    logger.info(f"Cleaned up {len(server_ids)} server(s).")


def register_cleanup_command(subparsers):
    """Register the cleanup subcommand."""
    parser = subparsers.add_parser("cleanup", help="Delete servers left behind by an interrupted --dev run")
    parser.add_argument("--token", default=None, help="Hetzner API token (default: the token the servers were created with)")
    parser.add_argument(
        "--state-file",
        default=str(DEFAULT_CLEANUP_FILE),
        help=f"Dev mode cleanup state file (default: {DEFAULT_CLEANUP_FILE})",
    )
    add_config_arg(parser)
    parser.add_argument("--dry-run", action="store_true", help="List the servers without deleting them")
    parser.set_defaults(func=handle_cleanup)
