"""Shared data types for provisioning runs and cloud providers."""

from dataclasses import dataclass, field
from enum import Enum


class RunMode(str, Enum):
    """How a provisioning run touches the cloud."""

    PRODUCTION = "production"
    EPHEMERAL = "ephemeral"  # real API, servers deleted on exit
    SIMULATED = "simulated"  # no side effects

    @property
    def is_simulated(self) -> bool:
        return self is RunMode.SIMULATED

    @property
    def is_ephemeral(self) -> bool:
        return self is RunMode.EPHEMERAL


ACCESSORY_DEFAULTS = {
    "postgres": {
        "image": "postgres:16",
        "port": 5432,
        "database": "app_production",
        "username": "app",
        "data_dir": "/var/lib/postgresql/data",
    },
    "redis": {
        "image": "redis:7",
        "port": 6379,
        "database": "",
        "username": "",
        "data_dir": "/data",
    },
    "mysql": {
        "image": "mysql:8",
        "port": 3306,
        "database": "app_production",
        "username": "app",
        "data_dir": "/var/lib/mysql",
    },
}

PLACEMENTS = ("same-server", "dedicated-server")


@dataclass(frozen=True)
class AccessoryConfig:
    """One auxiliary service (database, cache) deployed next to the app."""

    type: str
    password: str = ""
    port: int | None = None
    database: str | None = None
    username: str | None = None

    def __post_init__(self):
        if self.type not in ACCESSORY_DEFAULTS:
            raise ValueError(f"Unknown accessory type '{self.type}' (expected one of: {', '.join(ACCESSORY_DEFAULTS)})")
        defaults = ACCESSORY_DEFAULTS[self.type]
        if self.port is None:
            object.__setattr__(self, "port", defaults["port"])
        if self.database is None:
            object.__setattr__(self, "database", defaults["database"])
        if self.username is None:
            object.__setattr__(self, "username", defaults["username"])

    @property
    def image(self) -> str:
        return ACCESSORY_DEFAULTS[self.type]["image"]

    @property
    def data_dir(self) -> str:
        return ACCESSORY_DEFAULTS[self.type]["data_dir"]


@dataclass(frozen=True)
class AccessoriesConfig:
    enabled: bool = False
    accessories: tuple[AccessoryConfig, ...] = ()
    placement: str = "same-server"

    def __post_init__(self):
        if self.placement not in PLACEMENTS:
            raise ValueError(f"Unknown accessory placement '{self.placement}' (expected one of: {', '.join(PLACEMENTS)})")

    @property
    def dedicated(self) -> bool:
        """True when accessories get their own server."""
        return self.enabled and self.placement == "dedicated-server"

    @property
    def ports(self) -> list[int]:
        return [a.port for a in self.accessories]


@dataclass(frozen=True)
class DeploymentRequest:
    """Immutable input to a provisioning run."""

    name: str
    location: str
    server_type: str
    replicas: int = 1
    accessories: AccessoriesConfig | None = None
    mode: RunMode = RunMode.PRODUCTION
    project_path: str = "."
    domain: str | None = None

    def __post_init__(self):
        if not self.name:
            raise ValueError("Deployment name must not be empty")
        if self.replicas < 1:
            raise ValueError(f"Replica count must be >= 1 (got {self.replicas})")
        object.__setattr__(self, "mode", RunMode(self.mode))

    @property
    def server_names(self) -> list[str]:
        """App server names: ``{name}`` for one replica, ``{name}-i`` otherwise."""
        if self.replicas == 1:
            return [self.name]
        return [f"{self.name}-{i}" for i in range(1, self.replicas + 1)]

    @property
    def resource_name(self) -> str:
        """Name shared by the SSH key and firewall of this deployment."""
        return f"ship-it-{self.name}"

    @property
    def dedicated_accessories(self) -> bool:
        return self.accessories is not None and self.accessories.dedicated


# ── Provider handles ──────────────────────────────────────────────


@dataclass(frozen=True)
class SSHKeyHandle:
    id: int
    name: str


@dataclass(frozen=True)
class FirewallRule:
    port: int
    protocol: str = "tcp"
    direction: str = "in"
    source_ips: tuple[str, ...] = ("0.0.0.0/0", "::/0")
    description: str = ""


@dataclass(frozen=True)
class FirewallHandle:
    id: int
    name: str
    rules: tuple[FirewallRule, ...] = ()


@dataclass(frozen=True)
class ServerHandle:
    id: int
    name: str
    status: str = "initializing"
    ipv4: str | None = None

    @property
    def running(self) -> bool:
        return self.status == "running"


@dataclass(frozen=True)
class LoadBalancerHandle:
    id: int
    name: str
    ipv4: str | None = None
    target_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class Location:
    name: str
    city: str
    country: str


@dataclass(frozen=True)
class ServerType:
    name: str
    description: str
    cores: int
    memory: float
    disk: int
    prices: dict[str, str] = field(default_factory=dict)  # location -> monthly gross


# ── Results ───────────────────────────────────────────────────────


@dataclass
class DeploymentResult:
    """Everything a finished run hands to storage and the CLI."""

    server_ids: list[int]
    server_ips: list[str]
    server_names: list[str]
    public_ip: str
    domain: str
    load_balancer_id: int | None = None
    load_balancer_ip: str | None = None
    accessories_server_id: int | None = None
    accessories_server_ip: str | None = None
    project: object = None
    steps: tuple = ()
