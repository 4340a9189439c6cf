"""Cloud provider contract shared by the real and simulated clients.

The orchestrator only talks to a CloudProvider. Concrete clients implement
the primitive lookups and CRUD calls; the idempotent ``ensure_*`` operations
and the readiness polls are built on top of them here so both clients share
the same get-or-create semantics.
"""

import logging
from abc import ABC, abstractmethod

from shipit.provisioning.polling import poll_until
from shipit.provisioning.types import FirewallRule

logger = logging.getLogger(__name__)

BASE_FIREWALL_PORTS = [
    (22, "SSH"),
    (80, "HTTP"),
    (443, "HTTPS"),
]


def build_firewall_rules(accessory_ports=None):
    """Inbound rules for an app firewall.

    Accessory ports are opened only when the caller passes them, i.e. when
    accessories live on a dedicated server that app servers must reach.
    """
    rules = [FirewallRule(port=port, description=desc) for port, desc in BASE_FIREWALL_PORTS]
    for port in accessory_ports or []:
        rules.append(FirewallRule(port=port, description=f"Accessory {port}"))
    return rules


class CloudProvider(ABC):
    """Operations the provisioning pipeline needs from a cloud.

    The API credential is bound when the client is constructed. Every call
    may raise ProviderError carrying the provider's message.
    """

    @abstractmethod
    async def validate_token(self) -> None:
        """Raise ValidationError if the bound credential is unusable."""

    @abstractmethod
    async def get_locations(self):
        """Return available Location entries."""

    @abstractmethod
    async def get_server_types(self):
        """Return available ServerType entries sorted by cores then memory."""

    @abstractmethod
    async def get_ssh_key_by_name(self, name):
        """Return an SSHKeyHandle or None."""

    @abstractmethod
    async def create_ssh_key(self, name, public_key):
        """Register a public key and return its SSHKeyHandle."""

    @abstractmethod
    async def get_firewall_by_name(self, name):
        """Return a FirewallHandle or None."""

    @abstractmethod
    async def create_firewall(self, name, rules):
        """Create a firewall with *rules* and return its FirewallHandle."""

    @abstractmethod
    async def apply_firewall(self, firewall_id, server_id) -> None:
        """Attach a firewall to a running server."""

    @abstractmethod
    async def create_server(self, name, server_type, location, ssh_key_name):
        """Request a new server. Returns a ServerHandle (usually not yet running)."""

    @abstractmethod
    async def get_server(self, server_id):
        """Return the current ServerHandle."""

    @abstractmethod
    async def delete_server(self, server_id) -> None:
        """Delete a server. Deleting an absent server is not an error."""

    @abstractmethod
    async def create_load_balancer(self, name, location, server_ids):
        """Create a load balancer targeting *server_ids*."""

    @abstractmethod
    async def get_load_balancer(self, lb_id):
        """Return the current LoadBalancerHandle."""

    # ── Idempotent ensure operations ──────────────────────────────

    async def ensure_ssh_key(self, name, public_key):
        """Return the key registered under *name*, creating it if missing."""
        existing = await self.get_ssh_key_by_name(name)
        if existing is not None:
            logger.info(f"SSH key '{name}' already registered (id={existing.id}).")
            return existing
        logger.info(f"Registering SSH key '{name}'...")
        return await self.create_ssh_key(name, public_key)

    async def ensure_firewall(self, name, rules):
        """Return the firewall named *name*, creating it with *rules* if missing."""
        existing = await self.get_firewall_by_name(name)
        if existing is not None:
            logger.info(f"Firewall '{name}' already exists (id={existing.id}).")
            return existing
        logger.info(f"Creating firewall '{name}'...")
        return await self.create_firewall(name, rules)

    # ── Readiness polls ───────────────────────────────────────────

    async def wait_for_server(self, server_id, timeout=120, interval=2):
        """Poll until the server reports ``running``. Raises ProvisionTimeoutError."""
        return await poll_until(
            lambda: self.get_server(server_id),
            lambda s: s.running,
            f"server {server_id} to start",
            timeout,
            interval,
        )

    async def wait_for_load_balancer(self, lb_id, timeout=120, interval=2):
        """Poll until the load balancer has a public address."""
        return await poll_until(
            lambda: self.get_load_balancer(lb_id),
            lambda lb: bool(lb.ipv4),
            f"load balancer {lb_id} address",
            timeout,
            interval,
        )
