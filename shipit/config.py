"""User configuration: API token, registry credentials and provisioning timeouts."""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml


CONFIG_DIR = Path.home() / ".config" / "ship-it"
CONFIG_FILE = CONFIG_DIR / "config.yaml"
TOKEN_ENV_VAR = "HETZNER_API_TOKEN"


@dataclass
class ProvisionSettings:
    """Poll budgets, in seconds."""

    server_timeout: float = 120
    load_balancer_timeout: float = 120
    ssh_timeout: float = 180
    poll_interval: float = 2
    ssh_interval: float = 3

    @classmethod
    def from_dict(cls, data):
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown timeout setting(s): {', '.join(sorted(unknown))}")
        return cls(**{k: float(v) for k, v in data.items()})


@dataclass
class Config:
    hetzner_token: str | None = None
    registry: dict | None = None  # server, username, password
    timeouts: ProvisionSettings = field(default_factory=ProvisionSettings)


def _expand_path(path) -> Path:
    """Expand user home directory and environment variables in path."""
    return Path(os.path.expanduser(os.path.expandvars(str(path))))


def _read_raw(path):
    path = _expand_path(path)
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML config {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config {path} must be a mapping, got {type(data).__name__}")
    return data


def load_config(path=CONFIG_FILE):
    """Load the config file; $HETZNER_API_TOKEN overrides the stored token."""
    raw = _read_raw(path)

    registry = raw.get("registry")
    if registry is not None:
        missing = [k for k in ("server", "username", "password") if not registry.get(k)]
        if missing:
            raise ValueError(f"Missing '{', '.join(missing)}' in 'registry' section.")

    config = Config(
        hetzner_token=raw.get("hetzner_token"),
        registry=registry,
        timeouts=ProvisionSettings.from_dict(raw.get("timeouts") or {}),
    )
    env_token = os.environ.get(TOKEN_ENV_VAR)
    if env_token:
        config.hetzner_token = env_token
    return config


def save_config(updates, path=CONFIG_FILE):
    """Merge *updates* into the config file and write it back."""
    path = _expand_path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    merged = {**_read_raw(path), **updates}
    path.write_text(yaml.safe_dump(merged, sort_keys=False))
    path.chmod(0o600)
    return merged
