"""Shared pytest fixtures for all test modules."""

import os
import subprocess
import sys
from collections import Counter
from dataclasses import replace

import pytest

from shipit.config import ProvisionSettings
from shipit.errors import ProvisionTimeoutError, ToolError
from shipit.orchestrate import Orchestrator
from shipit.provisioning.keys import SSHKeyPair
from shipit.provisioning.simulated import SimulatedProvider

PROJECT_ROOT = os.path.normpath(os.path.join(os.path.dirname(__file__), ".."))


@pytest.fixture(scope="session")
def project_root():
    """Absolute path to the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(scope="session")
def run_cli(project_root):
    """Return a callable that invokes the ship-it CLI as a subprocess."""

    def _run(*args, env=None):
        result = subprocess.run(
            [sys.executable, "-m", "shipit.shipit", *args],
            capture_output=True,
            text=True,
            cwd=project_root,
            env={**os.environ, **(env or {})},
        )
        return result.returncode, result.stdout, result.stderr

    return _run


# ── Recording fakes ────────────────────────────────────────────────


class RecordingProvider(SimulatedProvider):
    """SimulatedProvider that records every call and can be scripted to fail.

    Servers come back from create_server as ``initializing`` and turn
    ``running`` after *polls_until_running* polls (None: never).

    Args:
        failures: {(operation, nth_call): exception} raised on that call.
    """

    def __init__(self, polls_until_running=0, failures=None):
        super().__init__(token="test-token")
        self.calls = []
        self.polls_until_running = polls_until_running
        self.failures = failures or {}
        self._counts = Counter()
        self._polls = Counter()

    def _record(self, op, *args):
        self.calls.append((op, *args))
        self._counts[op] += 1
        exc = self.failures.get((op, self._counts[op]))
        if exc is not None:
            raise exc

    def ops(self, name=None):
        return [c for c in self.calls if name is None or c[0] == name]

    async def get_ssh_key_by_name(self, name):
        self._record("get_ssh_key_by_name", name)
        return await super().get_ssh_key_by_name(name)

    async def create_ssh_key(self, name, public_key):
        self._record("create_ssh_key", name, public_key)
        return await super().create_ssh_key(name, public_key)

    async def get_firewall_by_name(self, name):
        self._record("get_firewall_by_name", name)
        return await super().get_firewall_by_name(name)

    async def create_firewall(self, name, rules):
        self._record("create_firewall", name, tuple(rules))
        return await super().create_firewall(name, rules)

    async def apply_firewall(self, firewall_id, server_id):
        self._record("apply_firewall", firewall_id, server_id)
        await super().apply_firewall(firewall_id, server_id)

    async def create_server(self, name, server_type, location, ssh_key_name):
        self._record("create_server", name, server_type, location, ssh_key_name)
        server = await super().create_server(name, server_type, location, ssh_key_name)
        return replace(server, status="initializing")

    async def get_server(self, server_id):
        self._record("get_server", server_id)
        server = await super().get_server(server_id)
        self._polls[server_id] += 1
        if self.polls_until_running is not None and self._polls[server_id] > self.polls_until_running:
            return server
        return replace(server, status="initializing")

    async def delete_server(self, server_id):
        self._record("delete_server", server_id)
        await super().delete_server(server_id)

    async def create_load_balancer(self, name, location, server_ids):
        self._record("create_load_balancer", name, location, tuple(server_ids))
        return await super().create_load_balancer(name, location, server_ids)

    async def get_load_balancer(self, lb_id):
        self._record("get_load_balancer", lb_id)
        return await super().get_load_balancer(lb_id)


class FakeRemote:
    """Stands in for SSHRemote. Hosts in *unreachable* time out."""

    def __init__(self, unreachable=()):
        self.unreachable = set(unreachable)
        self.waited = []

    async def wait_until_reachable(self, host, key_path, timeout=180):
        self.waited.append(host)
        if host in self.unreachable:
            raise ProvisionTimeoutError(f"SSH connection to {host}", timeout)


class FakeKamal:
    """Stands in for KamalClient and records which commands ran."""

    def __init__(self, installed=True, setup_exit_code=0):
        self.installed = installed
        self.setup_exit_code = setup_exit_code
        self.commands = []

    def is_installed(self):
        return self.installed

    async def run_init(self):
        self.commands.append("init")

    async def run_setup(self):
        self.commands.append("setup")
        if self.setup_exit_code != 0:
            raise ToolError("kamal setup failed", exit_code=self.setup_exit_code)
        return 0


# ── Unit-test fixtures ──────────────────────────────────────────────


@pytest.fixture
def fast_settings():
    """Poll budgets small enough for tests."""
    return ProvisionSettings(server_timeout=0.5, load_balancer_timeout=0.5, ssh_timeout=0.5, poll_interval=0.001, ssh_interval=0.001)


@pytest.fixture
def app_dir(tmp_path):
    """A minimal node project directory."""
    project = tmp_path / "app"
    project.mkdir()
    (project / "package.json").write_text('{"name": "app", "scripts": {"start": "node server.js"}}')
    return project


@pytest.fixture
def local_tools(monkeypatch, tmp_path):
    """Replace ssh-keygen and git with in-process fakes; returns the list of commits."""
    commits = []

    async def fake_generate_ssh_key(name, keys_dir=None):
        return SSHKeyPair(name, f"ssh-ed25519 AAAAtest {name}", str(tmp_path / "keys" / name))

    async def fake_commit_config(project_path):
        commits.append(project_path)

    monkeypatch.setattr("shipit.orchestrate.generate_ssh_key", fake_generate_ssh_key)
    monkeypatch.setattr("shipit.orchestrate.commit_config", fake_commit_config)
    return commits


@pytest.fixture
def make_orchestrator(tmp_path, fast_settings, local_tools):
    """Return a factory building an Orchestrator wired to fakes under tmp_path."""

    def _make(provider, remote=None, deploy_tool=None, tracker=None):
        return Orchestrator(
            provider,
            remote or FakeRemote(),
            deploy_tool or FakeKamal(),
            tracker=tracker,
            settings=fast_settings,
            keys_dir=tmp_path / "keys",
            deployments_file=tmp_path / "deployments.json",
            ssh_config_path=tmp_path / "ssh_config",
        )

    return _make
