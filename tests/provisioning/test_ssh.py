"""Tests for SSH reachability polling."""

import asyncio

import pytest

from shipit.errors import ProvisionTimeoutError, RemoteExecError
from shipit.provisioning.ssh import SSHRemote, ssh_base_args


def test_ssh_base_args():
    args = ssh_base_args("root@10.0.0.1", "/keys/id", connect_timeout=5)
    assert args[0] == "ssh"
    assert args[-1] == "root@10.0.0.1"
    assert "/keys/id" in args
    assert "ConnectTimeout=5" in args


async def test_wait_until_reachable_retries(monkeypatch):
    results = iter([(255, "", "Connection refused"), (255, "", "Connection refused"), (0, "ok\n", "")])

    async def fake_run(command, **kwargs):
        return next(results)

    monkeypatch.setattr("shipit.provisioning.ssh.run_shell_cmd", fake_run)
    await SSHRemote(interval=0.001).wait_until_reachable("10.0.0.1", "/keys/id", timeout=5)


async def test_wait_until_reachable_timeout(monkeypatch):
    async def fake_run(command, **kwargs):
        return 255, "", "Connection timed out"

    monkeypatch.setattr("shipit.provisioning.ssh.run_shell_cmd", fake_run)
    with pytest.raises(ProvisionTimeoutError, match="SSH connection to 10.0.0.1 timed out after 0.05s"):
        await SSHRemote(interval=0.01).wait_until_reachable("10.0.0.1", "/keys/id", timeout=0.05)


async def test_wait_until_reachable_bounds_a_hanging_attempt(monkeypatch):
    async def hanging_run(command, **kwargs):
        await asyncio.sleep(0.5)
        return 0, "ok\n", ""

    monkeypatch.setattr("shipit.provisioning.ssh.run_shell_cmd", hanging_run)
    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(ProvisionTimeoutError, match="timed out after 0.1s"):
        await SSHRemote(interval=0.01).wait_until_reachable("10.0.0.1", "/keys/id", timeout=0.1)
    assert loop.time() - started < 0.3


async def test_exec_without_ssh_binary(monkeypatch):
    async def fake_run(command, **kwargs):
        return 127, "", "'ssh' not found"

    monkeypatch.setattr("shipit.provisioning.ssh.run_shell_cmd", fake_run)
    with pytest.raises(RemoteExecError, match="not installed"):
        await SSHRemote().exec("10.0.0.1", "true", "/keys/id")
