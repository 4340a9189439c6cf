"""Simulated provider for --dry-run: same contract, no cloud side effects."""

import asyncio
import itertools
import logging

from shipit.errors import ProviderError, ValidationError
from shipit.provisioning.provider import CloudProvider
from shipit.provisioning.types import (
    FirewallHandle,
    LoadBalancerHandle,
    Location,
    ServerHandle,
    ServerType,
    SSHKeyHandle,
)

logger = logging.getLogger(__name__)

SIMULATED_LOCATIONS = [
    Location("fsn1", "Falkenstein", "DE"),
    Location("nbg1", "Nuremberg", "DE"),
    Location("hel1", "Helsinki", "FI"),
    Location("ash", "Ashburn, VA", "US"),
    Location("hil", "Hillsboro, OR", "US"),
    Location("sin", "Singapore", "SG"),
]


def _prices(eu, us=None, sg=None):
    prices = {"fsn1": eu, "nbg1": eu, "hel1": eu}
    if us:
        prices.update({"ash": us, "hil": us})
    if sg:
        prices["sin"] = sg
    return prices


SIMULATED_SERVER_TYPES = [
    ServerType("cx22", "CX22", 2, 4, 40, _prices("4.35", "5.39", "5.99")),
    ServerType("cx32", "CX32", 4, 8, 80, _prices("8.09", "9.99", "10.99")),
    ServerType("cx42", "CX42", 8, 16, 160, _prices("15.59", "18.99", "20.99")),
    ServerType("cax11", "CAX11 (Arm64)", 2, 4, 40, _prices("3.79")),
    ServerType("cax21", "CAX21 (Arm64)", 4, 8, 80, _prices("6.49")),
    ServerType("cpx11", "CPX11", 2, 2, 40, _prices("4.49", "5.49", "5.99")),
]


class SimulatedProvider(CloudProvider):
    """In-memory CloudProvider that logs what it would do.

    Servers are reported ``running`` as soon as they are created and load
    balancers get an address immediately, so polls finish on the first try.
    Resources live only for the lifetime of the instance, which keeps the
    ``ensure_*`` operations idempotent within a run.

    Args:
        latency: seconds to sleep per call, to rehearse progress output.
    """

    def __init__(self, token="dry-run-mock-token", latency=0.0):
        self.token = token
        self.latency = latency
        self._ids = itertools.count(10000)
        self._ssh_keys = {}
        self._firewalls = {}
        self._servers = {}
        self._load_balancers = {}

    async def _delay(self):
        if self.latency:
            await asyncio.sleep(self.latency)

    def _next_ip(self, resource_id):
        return f"10.0.{(resource_id // 256) % 256}.{resource_id % 256}"

    async def validate_token(self):
        await self._delay()
        if not self.token:
            raise ValidationError("Token cannot be empty")

    async def get_locations(self):
        await self._delay()
        return list(SIMULATED_LOCATIONS)

    async def get_server_types(self):
        await self._delay()
        return sorted(SIMULATED_SERVER_TYPES, key=lambda t: (t.cores, t.memory))

    async def get_ssh_key_by_name(self, name):
        await self._delay()
        return self._ssh_keys.get(name)

    async def create_ssh_key(self, name, public_key):
        await self._delay()
        logger.info(f"[dry-run] Would create SSH key: {name}")
        key = SSHKeyHandle(id=next(self._ids), name=name)
        self._ssh_keys[name] = key
        return key

    async def get_firewall_by_name(self, name):
        await self._delay()
        return self._firewalls.get(name)

    async def create_firewall(self, name, rules):
        await self._delay()
        ports = ", ".join(str(r.port) for r in rules)
        logger.info(f"[dry-run] Would create firewall: {name} (ports {ports})")
        firewall = FirewallHandle(id=next(self._ids), name=name, rules=tuple(rules))
        self._firewalls[name] = firewall
        return firewall

    async def apply_firewall(self, firewall_id, server_id):
        await self._delay()
        if server_id not in self._servers:
            raise ProviderError(f"server {server_id} not found", status_code=404)
        logger.info(f"[dry-run] Would apply firewall {firewall_id} to server {server_id}")

    async def create_server(self, name, server_type, location, ssh_key_name):
        await self._delay()
        server_id = next(self._ids)
        logger.info(f"[dry-run] Would create server: {name} ({server_type}) in {location}")
        server = ServerHandle(id=server_id, name=name, status="running", ipv4=self._next_ip(server_id))
        self._servers[server_id] = server
        return server

    async def get_server(self, server_id):
        await self._delay()
        server = self._servers.get(server_id)
        if server is None:
            raise ProviderError(f"server {server_id} not found", status_code=404)
        return server

    async def delete_server(self, server_id):
        await self._delay()
        logger.info(f"[dry-run] Would delete server {server_id}")
        self._servers.pop(server_id, None)

    async def create_load_balancer(self, name, location, server_ids):
        await self._delay()
        lb_id = next(self._ids)
        logger.info(f"[dry-run] Would create load balancer: {name} in {location} -> {list(server_ids)}")
        lb = LoadBalancerHandle(id=lb_id, name=name, ipv4=self._next_ip(lb_id), target_ids=tuple(server_ids))
        self._load_balancers[lb_id] = lb
        return lb

    async def get_load_balancer(self, lb_id):
        await self._delay()
        lb = self._load_balancers.get(lb_id)
        if lb is None:
            raise ProviderError(f"load balancer {lb_id} not found", status_code=404)
        return lb
