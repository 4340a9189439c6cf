"""Keep API tokens and registry passwords out of CLI output.

Secrets come from two places. Well-known environment variables are read the
first time anything is redacted. Values resolved at runtime (the token from
--token, the state file or the config file, a registry password) are handed
to register_secret() as soon as a command knows them.

setup_cli_logging() puts SecretRedactingFilter on the stdout handler, so a
record is masked no matter which logger emitted it.
"""

import functools
import logging
import os
import re

MASK = "***"

SECRET_ENV_VARS = ("HETZNER_API_TOKEN", "KAMAL_REGISTRY_PASSWORD")

# Shorter values would mask ordinary words and ids
MIN_SECRET_LENGTH = 8

_registered: set[str] = set()


@functools.cache
def _secret_pattern() -> re.Pattern | None:
    env_values = (os.environ.get(var, "") for var in SECRET_ENV_VARS)
    values = {v for v in (*_registered, *env_values) if len(v) >= MIN_SECRET_LENGTH}
    if not values:
        return None
    # Longest first, so a token containing another secret is masked whole
    return re.compile("|".join(re.escape(v) for v in sorted(values, key=len, reverse=True)))


def register_secret(value):
    """Mask *value* in all later output. Empty or short values are ignored."""
    if value and len(value) >= MIN_SECRET_LENGTH and value not in _registered:
        _registered.add(value)
        _secret_pattern.cache_clear()


def redact_secrets(text: str) -> str:
    pattern = _secret_pattern()
    return text if pattern is None else pattern.sub(MASK, text)


class SecretRedactingFilter(logging.Filter):
    """Masks secrets in the message, its string arguments and any traceback."""

    def filter(self, record: logging.LogRecord) -> bool:
        if _secret_pattern() is None:
            return True
        record.msg = redact_secrets(str(record.msg))
        if isinstance(record.args, dict):
            record.args = {k: redact_secrets(v) if isinstance(v, str) else v for k, v in record.args.items()}
        elif record.args:
            record.args = tuple(redact_secrets(a) if isinstance(a, str) else a for a in record.args)
        if record.exc_info and not record.exc_text:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = redact_secrets(record.exc_text)
        return True
