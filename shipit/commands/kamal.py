"""Commands for an already provisioned project: Kamal pass-through and record keeping."""

import argparse
import asyncio
import logging
import sys

from shipit.errors import ToolError
from shipit.kamal import KamalClient
from shipit.storage import DEPLOYMENTS_FILE, get_deployment_by_path, remove_deployment, update_deployment_status

logger = logging.getLogger(__name__)


def _client(args):
    client = KamalClient(args.project)
    if not client.is_installed():
        logger.error("Error: Kamal is not installed. Install it with: gem install kamal")
        sys.exit(127)
    return client


def _set_status(args, status):
    deployment = get_deployment_by_path(args.project, args.deployments_file)
    if deployment is not None:
        update_deployment_status(deployment["id"], status, args.deployments_file)


def handle_deploy(args):
    """CLI handler for 'deploy'."""
    asyncio.run(_handle_deploy(args))


async def _handle_deploy(args):
    client = _client(args)
    try:
        await client.run_deploy()
    except ToolError as e:
        logger.error(f"Error: {e}")
        _set_status(args, "failed")
        sys.exit(e.exit_code)
    _set_status(args, "running")
    logger.info("Deployed.")


def handle_rollback(args):
    """CLI handler for 'rollback'."""
    asyncio.run(_handle_rollback(args))


async def _handle_rollback(args):
    client = _client(args)
    try:
        await client.run_rollback(args.version)
    except ToolError as e:
        logger.error(f"Error: {e}")
        sys.exit(e.exit_code)
    logger.info(f"Rolled back to {args.version}.")


def handle_logs(args):
    """CLI handler for 'logs'."""
    asyncio.run(_handle_logs(args))


async def _handle_logs(args):
    client = _client(args)
    try:
        output = await client.run_logs(args.lines)
    except ToolError as e:
        logger.error(f"Error: {e}")
        sys.exit(e.exit_code)
    logger.info(output.rstrip())


def handle_forget(args):
    """CLI handler for 'forget'. Cloud resources are left as they are."""
    deployment = get_deployment_by_path(args.project, args.deployments_file)
    if deployment is None:
        logger.error(f"Error: No deployment recorded for {args.project}")
        sys.exit(1)
    remove_deployment(deployment["id"], args.deployments_file)
    logger.info(f"Forgot deployment of {deployment['projectName']} ({deployment['domain']}).")
    logger.info(f"Servers {', '.join(str(i) for i in deployment['serverIds'])} were not deleted.")


def _add_project_args(parser):
    parser.add_argument("--project", default=".", help="Project directory (default: .)")
    parser.add_argument("--deployments-file", default=str(DEPLOYMENTS_FILE), help=argparse.SUPPRESS)


def register_kamal_commands(subparsers):
    """Register the deploy, rollback, logs and forget subcommands."""
    parser = subparsers.add_parser("deploy", help="Redeploy the project with Kamal")
    _add_project_args(parser)
    parser.set_defaults(func=handle_deploy)

    parser = subparsers.add_parser("rollback", help="Roll back to a previous version")
    parser.add_argument("version", help="Version (git commit) to roll back to")
    _add_project_args(parser)
    parser.set_defaults(func=handle_rollback)

    parser = subparsers.add_parser("logs", help="Show application logs")
    parser.add_argument("-n", "--lines", type=int, default=100, help="Number of lines (default: 100)")
    _add_project_args(parser)
    parser.set_defaults(func=handle_logs)

    parser = subparsers.add_parser("forget", help="Drop the project's deployment record, keeping its servers")
    _add_project_args(parser)
    parser.set_defaults(func=handle_forget)
