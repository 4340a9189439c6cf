"""Provision command: servers, firewall, load balancer and Kamal setup."""

import asyncio
import logging
import secrets
import sys

from shipit.cleanup import DEFAULT_CLEANUP_FILE, CleanupTracker, ephemeral_session
from shipit.commands._common import add_config_arg, load_config_or_exit, resolve_token
from shipit.errors import ShipItError, StepError, ToolError, ValidationError
from shipit.kamal import KamalClient
from shipit.orchestrate import Orchestrator
from shipit.provisioning import make_provider
from shipit.provisioning.keys import DEFAULT_KEYS_DIR
from shipit.provisioning.ssh import SSHRemote
from shipit.provisioning.types import (
    ACCESSORY_DEFAULTS,
    PLACEMENTS,
    AccessoriesConfig,
    AccessoryConfig,
    DeploymentRequest,
    RunMode,
)
from shipit.redact import register_secret

logger = logging.getLogger(__name__)


def _run_mode(args):
    if args.dry_run:
        return RunMode.SIMULATED
    if args.dev:
        return RunMode.EPHEMERAL
    return RunMode.PRODUCTION


def _build_accessories(types, placement):
    if not types:
        return None
    accessories = []
    for acc_type in dict.fromkeys(types):
        password = secrets.token_urlsafe(24)
        register_secret(password)
        accessories.append(AccessoryConfig(type=acc_type, password=password))
    return AccessoriesConfig(enabled=True, accessories=tuple(accessories), placement=placement)


def _print_summary(result, mode):
    prefix = "[dry-run] " if mode.is_simulated else ""
    logger.info("")
    logger.info(f"{prefix}Servers:")
    for name, sid, ip in zip(result.server_names, result.server_ids, result.server_ips):
        logger.info(f"  {name}  id={sid}  {ip}")
    if result.accessories_server_id is not None:
        logger.info(f"  accessories  id={result.accessories_server_id}  {result.accessories_server_ip}")
    if result.load_balancer_id is not None:
        logger.info(f"  load balancer  id={result.load_balancer_id}  {result.load_balancer_ip}")
    logger.info(f"{prefix}URL: http://{result.domain}")


# ── CLI handler ────────────────────────────────────────────────────


def handle_provision(args):
    """CLI handler for 'provision'."""
    try:
        asyncio.run(_handle_provision(args))
    except KeyboardInterrupt:
        logger.error("Interrupted.")
        sys.exit(130)


async def _handle_provision(args):
    mode = _run_mode(args)
    config = load_config_or_exit(args.config)
    token = resolve_token(args.token, config, required=not mode.is_simulated)

    try:
        request = DeploymentRequest(
            name=args.name,
            location=args.location,
            server_type=args.server_type,
            replicas=args.replicas,
            accessories=_build_accessories(args.accessory, args.placement),
            mode=mode,
            project_path=args.project,
            domain=args.domain,
        )
    except ValueError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    provider = make_provider(mode, token)
    try:
        await provider.validate_token()
    except ValidationError as e:
        logger.error(f"Error: {e}")
        logger.error("Check your token: it needs read & write permission on the Hetzner project.")
        sys.exit(1)
    except ShipItError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)

    tracker = CleanupTracker(provider, args.state_file) if mode.is_ephemeral else None
    orchestrator = Orchestrator(
        provider,
        SSHRemote(interval=config.timeouts.ssh_interval),
        KamalClient(args.project),
        tracker=tracker,
        settings=config.timeouts,
        keys_dir=args.keys_dir,
        registry=config.registry,
    )

    try:
        if tracker is None:
            result = await orchestrator.run(request)
        else:
            async with ephemeral_session(tracker, token):
                result = await orchestrator.run(request)
                if args.keep_servers:
                    for server_id in tracker.tracked:
                        tracker.untrack(server_id)
                    logger.info("[dev mode] --keep-servers: leaving servers running.")
    except StepError as e:
        logger.error(f"Error: {e}")
        if e.is_timeout:
            logger.error("The resource did not become ready in time. Retry later or raise the limit under 'timeouts' in the config file.")
        sys.exit(e.cause.exit_code if isinstance(e.cause, ToolError) else 1)

    _print_summary(result, mode)


# ── Registration ───────────────────────────────────────────────────


def register_provision_command(subparsers):
    """Register the provision subcommand."""
    parser = subparsers.add_parser("provision", help="Provision servers on Hetzner and set up Kamal")
    parser.add_argument("--name", required=True, help="Deployment name; server names derive from it")
    parser.add_argument("--location", default="fsn1", help="Datacenter location (default: fsn1)")
    parser.add_argument("--type", dest="server_type", default="cx22", help="Server type (default: cx22)")
    parser.add_argument("--replicas", type=int, default=1, help="Number of app servers; >1 adds a load balancer (default: 1)")
    parser.add_argument(
        "--accessory",
        nargs="+",
        choices=list(ACCESSORY_DEFAULTS),
        default=[],
        help="Accessories to run next to the app",
    )
    parser.add_argument("--placement", choices=PLACEMENTS, default="same-server", help="Where accessories run (default: same-server)")
    parser.add_argument("--project", default=".", help="Project directory (default: .)")
    parser.add_argument("--domain", default=None, help="Domain for the app (default: <ip>.nip.io)")
    parser.add_argument("--token", default=None, help="Hetzner API token (fallback: HETZNER_API_TOKEN, then config file)")
    parser.add_argument("--keys-dir", default=str(DEFAULT_KEYS_DIR), help=f"Deploy key directory (default: {DEFAULT_KEYS_DIR})")
    parser.add_argument(
        "--state-file",
        default=str(DEFAULT_CLEANUP_FILE),
        help=f"Dev mode cleanup state file (default: {DEFAULT_CLEANUP_FILE})",
    )
    add_config_arg(parser)
    modes = parser.add_mutually_exclusive_group()
    modes.add_argument("--dev", action="store_true", help="Delete the servers when this run exits")
    modes.add_argument("--dry-run", action="store_true", help="Simulate the run without touching the cloud")
    parser.add_argument("--keep-servers", action="store_true", help="With --dev: keep servers after a successful run")
    parser.set_defaults(func=handle_provision)
