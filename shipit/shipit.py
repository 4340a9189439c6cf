#!/usr/bin/env python3
"""ship-it: provision Hetzner servers and hand off to Kamal. CLI entrypoint."""

import argparse

from shipit.commands.catalog import register_catalog_commands
from shipit.commands.cleanup import register_cleanup_command
from shipit.commands.kamal import register_kamal_commands
from shipit.commands.login import register_login_command
from shipit.commands.provision import register_provision_command
from shipit.logging_setup import setup_cli_logging


def main():
    parser = argparse.ArgumentParser(description="Provision Hetzner servers and deploy with Kamal")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_provision_command(subparsers)
    register_cleanup_command(subparsers)
    register_login_command(subparsers)
    register_catalog_commands(subparsers)
    register_kamal_commands(subparsers)

    args = parser.parse_args()
    setup_cli_logging(verbose=args.verbose)
    args.func(args)


if __name__ == "__main__":
    main()
