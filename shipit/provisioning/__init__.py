"""Cloud provisioning: provider contract, Hetzner and simulated clients, SSH helpers."""

from shipit.provisioning.hetzner import HetznerProvider
from shipit.provisioning.polling import gather_fail_fast, gather_settled, poll_until
from shipit.provisioning.provider import CloudProvider, build_firewall_rules
from shipit.provisioning.shell import run_shell_cmd
from shipit.provisioning.simulated import SimulatedProvider
from shipit.provisioning.ssh import SSHRemote, ssh_base_args
from shipit.provisioning.types import (
    AccessoriesConfig,
    AccessoryConfig,
    DeploymentRequest,
    DeploymentResult,
    RunMode,
)


def make_provider(mode, token, latency=0.0):
    """Return the CloudProvider for *mode*. Chosen once per run.

    Simulated runs never reach the network; the token is only checked for
    presence.
    """
    if RunMode(mode).is_simulated:
        return SimulatedProvider(token=token or "dry-run-mock-token", latency=latency)
    return HetznerProvider(token)


__all__ = [
    "AccessoriesConfig",
    "AccessoryConfig",
    "CloudProvider",
    "DeploymentRequest",
    "DeploymentResult",
    "HetznerProvider",
    "RunMode",
    "SSHRemote",
    "SimulatedProvider",
    "build_firewall_rules",
    "gather_fail_fast",
    "gather_settled",
    "make_provider",
    "poll_until",
    "run_shell_cmd",
    "ssh_base_args",
]
