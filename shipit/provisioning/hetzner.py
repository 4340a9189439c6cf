"""Hetzner Cloud provider: SSH keys, firewalls, servers and load balancers via the REST API."""

import logging

import httpx

from shipit.errors import ProviderError, ValidationError
from shipit.provisioning.provider import CloudProvider
from shipit.provisioning.types import (
    FirewallHandle,
    FirewallRule,
    LoadBalancerHandle,
    Location,
    ServerHandle,
    ServerType,
    SSHKeyHandle,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.hetzner.cloud/v1"
DEFAULT_IMAGE = "ubuntu-24.04"
DEFAULT_LB_TYPE = "lb11"
REQUEST_TIMEOUT = 60


# ── Response parsing ──────────────────────────────────────────────


def _ipv4(obj):
    return ((obj.get("public_net") or {}).get("ipv4") or {}).get("ip")


def _server_from_json(data):
    return ServerHandle(id=data["id"], name=data.get("name", ""), status=data.get("status", ""), ipv4=_ipv4(data))


def _firewall_from_json(data):
    rules = tuple(
        FirewallRule(
            port=int(r["port"]),
            protocol=r.get("protocol", "tcp"),
            direction=r.get("direction", "in"),
            source_ips=tuple(r.get("source_ips", ())),
            description=r.get("description") or "",
        )
        for r in data.get("rules", [])
        if r.get("port")
    )
    return FirewallHandle(id=data["id"], name=data["name"], rules=rules)


def _load_balancer_from_json(data):
    targets = tuple(t["server"]["id"] for t in data.get("targets", []) if t.get("type") == "server")
    return LoadBalancerHandle(id=data["id"], name=data.get("name", ""), ipv4=_ipv4(data), target_ids=targets)


def _error_message(resp):
    try:
        body = resp.json()
    except ValueError:
        body = {}
    return (body.get("error") or {}).get("message") or f"HTTP {resp.status_code}"


class HetznerProvider(CloudProvider):
    """CloudProvider backed by the Hetzner Cloud API.

    Args:
        token: API token, sent as a bearer credential on every request.
        transport: optional httpx transport (tests pass an httpx.MockTransport).
    """

    def __init__(self, token, api_url=DEFAULT_API_URL, image=DEFAULT_IMAGE, transport=None):
        self.token = token
        self.api_url = api_url
        self.image = image
        self._transport = transport

    async def _api_request(self, method, path, data=None, params=None, allow_404=False):
        """Make an authenticated API request and return the parsed JSON body.

        Raises:
            ProviderError: on transport failure or a non-2xx response.
        """
        url = f"{self.api_url}{path}"
        headers = {"Authorization": f"Bearer {self.token}", "Content-Type": "application/json"}
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                resp = await client.request(method, url, json=data, params=params, headers=headers, timeout=REQUEST_TIMEOUT)
        except httpx.HTTPError as e:
            raise ProviderError(f"{method} {path} failed: {e}") from e

        if allow_404 and resp.status_code == 404:
            return None
        if resp.is_error:
            raise ProviderError(_error_message(resp), status_code=resp.status_code)
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    async def validate_token(self):
        try:
            await self._api_request("GET", "/servers", params={"per_page": 1})
        except ProviderError as e:
            if e.status_code in (401, 403):
                raise ValidationError(f"Invalid Hetzner API token: {e.message}") from e
            raise

    async def get_locations(self):
        result = await self._api_request("GET", "/locations")
        return [Location(name=loc["name"], city=loc.get("city", ""), country=loc.get("country", "")) for loc in result.get("locations", [])]

    async def get_server_types(self):
        result = await self._api_request("GET", "/server_types", params={"per_page": 50})
        types = [
            ServerType(
                name=t["name"],
                description=t.get("description", ""),
                cores=t.get("cores", 0),
                memory=t.get("memory", 0),
                disk=t.get("disk", 0),
                prices={p["location"]: p["price_monthly"]["gross"] for p in t.get("prices", [])},
            )
            for t in result.get("server_types", [])
        ]
        return sorted(types, key=lambda t: (t.cores, t.memory))

    # ── SSH keys ──────────────────────────────────────────────────

    async def get_ssh_key_by_name(self, name):
        result = await self._api_request("GET", "/ssh_keys", params={"name": name})
        keys = result.get("ssh_keys", [])
        return SSHKeyHandle(id=keys[0]["id"], name=keys[0]["name"]) if keys else None

    async def create_ssh_key(self, name, public_key):
        result = await self._api_request("POST", "/ssh_keys", {"name": name, "public_key": public_key})
        key = result["ssh_key"]
        logger.info(f"SSH key registered (id={key['id']}).")
        return SSHKeyHandle(id=key["id"], name=key["name"])

    # ── Firewalls ─────────────────────────────────────────────────

    async def get_firewall_by_name(self, name):
        result = await self._api_request("GET", "/firewalls", params={"name": name})
        firewalls = result.get("firewalls", [])
        return _firewall_from_json(firewalls[0]) if firewalls else None

    async def create_firewall(self, name, rules):
        data = {
            "name": name,
            "rules": [
                {
                    "direction": r.direction,
                    "protocol": r.protocol,
                    "port": str(r.port),
                    "source_ips": list(r.source_ips),
                    "description": r.description,
                }
                for r in rules
            ],
        }
        result = await self._api_request("POST", "/firewalls", data)
        return _firewall_from_json(result["firewall"])

    async def apply_firewall(self, firewall_id, server_id):
        data = {"apply_to": [{"type": "server", "server": {"id": server_id}}]}
        await self._api_request("POST", f"/firewalls/{firewall_id}/actions/apply_to_resources", data)

    # ── Servers ───────────────────────────────────────────────────

    async def create_server(self, name, server_type, location, ssh_key_name):
        logger.info(f"Creating server '{name}' ({server_type}) in {location}...")
        data = {
            "name": name,
            "server_type": server_type,
            "location": location,
            "image": self.image,
            "start_after_create": True,
        }
        if ssh_key_name:
            data["ssh_keys"] = [ssh_key_name]
        result = await self._api_request("POST", "/servers", data)
        server = _server_from_json(result["server"])
        logger.info(f"Server '{name}' requested (id={server.id}).")
        return server

    async def get_server(self, server_id):
        result = await self._api_request("GET", f"/servers/{server_id}")
        return _server_from_json(result["server"])

    async def delete_server(self, server_id):
        result = await self._api_request("DELETE", f"/servers/{server_id}", allow_404=True)
        if result is None:
            logger.info(f"Server {server_id} already gone.")

    # ── Load balancers ────────────────────────────────────────────

    async def create_load_balancer(self, name, location, server_ids):
        logger.info(f"Creating load balancer '{name}' for {len(server_ids)} server(s)...")
        data = {
            "name": name,
            "load_balancer_type": DEFAULT_LB_TYPE,
            "location": location,
            "algorithm": {"type": "round_robin"},
            "targets": [{"type": "server", "server": {"id": sid}, "use_private_ip": False} for sid in server_ids],
            "services": [
                {
                    "protocol": "http",
                    "listen_port": 80,
                    "destination_port": 80,
                    "health_check": {
                        "protocol": "http",
                        "port": 80,
                        "interval": 15,
                        "timeout": 10,
                        "retries": 3,
                        "http": {"path": "/up"},
                    },
                }
            ],
        }
        result = await self._api_request("POST", "/load_balancers", data)
        return _load_balancer_from_json(result["load_balancer"])

    async def get_load_balancer(self, lb_id):
        result = await self._api_request("GET", f"/load_balancers/{lb_id}")
        return _load_balancer_from_json(result["load_balancer"])
