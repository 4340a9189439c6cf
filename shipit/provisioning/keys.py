"""Local deploy keys and SSH client config for provisioned hosts."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from shipit.errors import RemoteExecError
from shipit.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)

DEFAULT_KEYS_DIR = Path.home() / ".config" / "ship-it" / "keys"


@dataclass(frozen=True)
class SSHKeyPair:
    name: str
    public_key: str
    private_key_path: str


async def generate_ssh_key(name, keys_dir=DEFAULT_KEYS_DIR):
    """Return the deploy key pair *name*, creating it with ssh-keygen if needed.

    An existing private key is reused. If only its ``.pub`` half is missing,
    the public key is regenerated from the private key.
    """
    keys_dir = Path(keys_dir)
    keys_dir.mkdir(parents=True, exist_ok=True)
    private_path = keys_dir / name
    public_path = keys_dir / f"{name}.pub"

    if private_path.exists():
        if public_path.exists():
            return SSHKeyPair(name, public_path.read_text().strip(), str(private_path))
        logger.info(f"Rebuilding missing public key for {private_path}")
        rc, stdout, stderr = await run_shell_cmd(["ssh-keygen", "-y", "-f", str(private_path)])
        if rc != 0:
            raise RemoteExecError(f"Failed to read existing SSH key: {stderr.strip() or f'exit code {rc}'}")
        public_key = stdout.strip()
        public_path.write_text(public_key + "\n")
        return SSHKeyPair(name, public_key, str(private_path))

    logger.info(f"Generating SSH key {private_path}")
    rc, _, stderr = await run_shell_cmd(
        ["ssh-keygen", "-t", "ed25519", "-f", str(private_path), "-N", "", "-C", f"ship-it-{name}", "-q"]
    )
    if rc != 0:
        raise RemoteExecError(f"ssh-keygen failed: {stderr.strip() or f'exit code {rc}'}")
    return SSHKeyPair(name, public_path.read_text().strip(), str(private_path))


def ensure_ssh_config_hosts(ips, ssh_config_path=None):
    """Disable strict host key checking for fresh server IPs in ~/.ssh/config.

    Kamal connects with its own SSH client, which refuses unknown host keys.
    Entries already present are left alone.

    Returns:
        The list of IPs that were added.
    """
    path = Path(ssh_config_path) if ssh_config_path else Path.home() / ".ssh" / "config"
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    existing = path.read_text() if path.exists() else ""

    added = []
    with open(path, "a") as f:
        for ip in ips:
            if f"Host {ip}\n" in existing:
                continue
            entry = f"\n# Added by ship-it for {ip}\nHost {ip}\n  StrictHostKeyChecking no\n  UserKnownHostsFile /dev/null\n"
            f.write(entry)
            existing += entry
            added.append(ip)
    os.chmod(path, 0o600)
    return added
