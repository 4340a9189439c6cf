"""Catalogue commands: list locations and server types."""

import asyncio
import logging
import sys

from shipit.commands._common import add_config_arg, load_config_or_exit, resolve_token
from shipit.errors import ShipItError
from shipit.provisioning import RunMode, make_provider

logger = logging.getLogger(__name__)


def _provider_for(args):
    """Real catalogue when a token is available, simulated data otherwise."""
    config = load_config_or_exit(args.config)
    token = None if args.dry_run else resolve_token(args.token, config, required=False)
    if not token:
        logger.info("[dry-run] No API token; showing built-in catalogue.")
        return make_provider(RunMode.SIMULATED, None)
    return make_provider(RunMode.PRODUCTION, token)


def handle_list_locations(args):
    """CLI handler for 'list-locations'."""
    asyncio.run(_handle_list_locations(args))


async def _handle_list_locations(args):
    provider = _provider_for(args)
    try:
        locations = await provider.get_locations()
    except ShipItError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    for loc in locations:
        logger.info(f"{loc.name:<8} {loc.city}, {loc.country}")


def handle_list_types(args):
    """CLI handler for 'list-types'."""
    asyncio.run(_handle_list_types(args))


async def _handle_list_types(args):
    provider = _provider_for(args)
    try:
        server_types = await provider.get_server_types()
    except ShipItError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)
    if args.location:
        server_types = [t for t in server_types if args.location in t.prices]
    logger.info(f"{'TYPE':<8} {'CPU':>4} {'RAM':>6} {'DISK':>6}  PRICE/MO")
    for t in server_types:
        price = t.prices.get(args.location) if args.location else min(t.prices.values(), key=float, default=None)
        price_str = f"EUR {float(price):.2f}" if price is not None else "-"
        logger.info(f"{t.name:<8} {t.cores:>4} {t.memory:>4g}GB {t.disk:>4}GB  {price_str}")


def _add_common_args(parser):
    parser.add_argument("--token", default=None, help="Hetzner API token (fallback: HETZNER_API_TOKEN, then config file)")
    parser.add_argument("--dry-run", action="store_true", help="Use the built-in catalogue instead of the API")
    add_config_arg(parser)


def register_catalog_commands(subparsers):
    """Register the list-locations and list-types subcommands."""
    parser = subparsers.add_parser("list-locations", help="List datacenter locations")
    _add_common_args(parser)
    parser.set_defaults(func=handle_list_locations)

    parser = subparsers.add_parser("list-types", help="List server types with monthly prices")
    parser.add_argument("--location", default=None, help="Only types available in this location")
    _add_common_args(parser)
    parser.set_defaults(func=handle_list_types)
