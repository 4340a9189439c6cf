"""Helpers shared by the CLI handlers."""

import logging
import sys

from shipit.config import CONFIG_FILE, TOKEN_ENV_VAR, load_config
from shipit.redact import register_secret

logger = logging.getLogger(__name__)


def add_config_arg(parser):
    parser.add_argument("--config", default=str(CONFIG_FILE), help=f"Config file (default: {CONFIG_FILE})")


def load_config_or_exit(path):
    try:
        return load_config(path)
    except ValueError as e:
        logger.error(f"Error: {e}")
        sys.exit(1)


def resolve_token(args_token, config, required=True):
    """Return the API token from --token, $HETZNER_API_TOKEN or the config file.

    Exits if *required* and none is set.
    """
    token = args_token or config.hetzner_token
    if not token and required:
        logger.error(f"Error: Hetzner API token required. Use --token, set {TOKEN_ENV_VAR} or add hetzner_token to the config file.")
        sys.exit(1)
    register_secret(token)
    return token
