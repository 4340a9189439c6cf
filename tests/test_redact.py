"""Tests for shipit.redact and the filter installed by setup_cli_logging."""

import logging
import sys

import pytest

import shipit.redact as redact
from shipit.errors import ProviderError
from shipit.logging_setup import setup_cli_logging
from shipit.redact import SecretRedactingFilter, redact_secrets, register_secret


@pytest.fixture(autouse=True)
def clean_secrets(monkeypatch):
    """No secrets from the environment or earlier tests."""
    for var in redact.SECRET_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    redact._registered.clear()
    redact._secret_pattern.cache_clear()
    yield
    redact._registered.clear()
    redact._secret_pattern.cache_clear()


class _CurrentStdout:
    def write(self, text):
        return sys.stdout.write(text)

    def flush(self):
        sys.stdout.flush()


@pytest.fixture
def cli_output(capsys):
    """Route logging through the CLI handler; returns a reader for stdout."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    setup_cli_logging()
    # capsys swaps sys.stdout only once the test body runs; resolve it per write
    for handler in root.handlers:
        handler.setStream(_CurrentStdout())
    yield lambda: capsys.readouterr().out
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


@pytest.mark.parametrize(
    "env, text, expected",
    [
        ({"HETZNER_API_TOKEN": "hz_SuperSecretToken123"}, "Bearer hz_SuperSecretToken123", "Bearer ***"),
        ({"HETZNER_API_TOKEN": "short"}, "token short stays", "token short stays"),
        ({}, "nothing secret here", "nothing secret here"),
        (
            {"HETZNER_API_TOKEN": "hz_TokenAAAA", "KAMAL_REGISTRY_PASSWORD": "reg_pass_BBBB_long"},
            "HZ=hz_TokenAAAA REG=reg_pass_BBBB_long",
            "HZ=*** REG=***",
        ),
    ],
)
def test_env_secrets(monkeypatch, env, text, expected):
    for var, value in env.items():
        monkeypatch.setenv(var, value)
    assert redact_secrets(text) == expected


def test_registered_secret_masked_from_then_on():
    assert redact_secrets("token-from-flag-123") == "token-from-flag-123"
    register_secret("token-from-flag-123")
    register_secret(None)
    register_secret("")
    assert redact_secrets("using token-from-flag-123") == "using ***"


def test_longer_secret_masked_whole():
    register_secret("abcdefgh")
    register_secret("abcdefgh-and-more")
    assert redact_secrets("x abcdefgh-and-more y") == "x *** y"


def test_filter_masks_percent_args():
    register_secret("reg_ArgsTestPass88")
    record = logging.LogRecord("test", logging.INFO, "", 0, "Password: %s (%d)", ("reg_ArgsTestPass88", 3), None)
    SecretRedactingFilter().filter(record)
    assert record.getMessage() == "Password: *** (3)"


def test_records_from_any_logger_are_masked(cli_output):
    register_secret("hz_FromTokenFlag_77")
    logging.getLogger("shipit.provisioning.hetzner").error("GET /servers with hz_FromTokenFlag_77 failed")
    logging.getLogger("shipit.cleanup").info("[dev mode] Tracking server 42 for cleanup")

    out = cli_output()
    assert "hz_FromTokenFlag_77" not in out
    assert "GET /servers with *** failed" in out
    assert "Tracking server 42" in out


def test_traceback_is_masked(cli_output):
    register_secret("hz_InTraceback_0042")
    try:
        raise ProviderError("rejected token hz_InTraceback_0042", status_code=401)
    except ProviderError:
        logging.getLogger("shipit").exception("Request failed")

    out = cli_output()
    assert "hz_InTraceback_0042" not in out
    assert "rejected token ***" in out
