"""Login command: validate an API token and store it in the config file."""

import asyncio
import logging
import sys

from shipit.commands._common import add_config_arg, load_config_or_exit, resolve_token
from shipit.config import save_config
from shipit.errors import ShipItError
from shipit.provisioning import RunMode, make_provider
from shipit.redact import register_secret

logger = logging.getLogger(__name__)

REGISTRY_ARGS = ("registry_server", "registry_username", "registry_password")


def handle_login(args):
    """CLI handler for 'login'."""
    asyncio.run(_handle_login(args))


async def _handle_login(args):
    registry_values = [getattr(args, name) for name in REGISTRY_ARGS]
    if any(registry_values) and not all(registry_values):
        logger.error("Error: --registry-server, --registry-username and --registry-password go together.")
        sys.exit(1)
    register_secret(args.registry_password)

    config = load_config_or_exit(args.config)
    token = resolve_token(args.token, config)

    mode = RunMode.SIMULATED if args.dry_run else RunMode.PRODUCTION
    try:
        await make_provider(mode, token).validate_token()
    except ShipItError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    updates = {"hetzner_token": token}
    if all(registry_values):
        server, username, password = registry_values
        updates["registry"] = {"server": server, "username": username, "password": password}
    save_config(updates, args.config)
    logger.info(f"Token is valid. Saved credentials to {args.config}")


def register_login_command(subparsers):
    """Register the login subcommand."""
    parser = subparsers.add_parser("login", help="Validate a Hetzner API token and save it to the config file")
    parser.add_argument("--token", default=None, help="Hetzner API token (default: $HETZNER_API_TOKEN)")
    parser.add_argument("--registry-server", default=None, help="Container registry host, e.g. ghcr.io")
    parser.add_argument("--registry-username", default=None, help="Container registry user")
    parser.add_argument("--registry-password", default=None, help="Container registry password or access token")
    add_config_arg(parser)
    parser.add_argument("--dry-run", action="store_true", help="Only check that a token is set, without calling the API")
    parser.set_defaults(func=handle_login)
