"""Tests for the simulated provider used by --dry-run."""

import pytest

from shipit.errors import ProviderError, ValidationError
from shipit.provisioning import RunMode, make_provider
from shipit.provisioning.hetzner import HetznerProvider
from shipit.provisioning.provider import build_firewall_rules
from shipit.provisioning.simulated import SimulatedProvider


def test_make_provider_picks_client_once():
    assert isinstance(make_provider(RunMode.SIMULATED, None), SimulatedProvider)
    assert isinstance(make_provider("ephemeral", "tok"), HetznerProvider)
    assert isinstance(make_provider(RunMode.PRODUCTION, "tok"), HetznerProvider)


async def test_servers_are_running_immediately(caplog):
    caplog.set_level("INFO")
    provider = SimulatedProvider()

    server = await provider.create_server("web", "cx22", "fsn1", "ship-it-web")
    polled = await provider.wait_for_server(server.id, timeout=1, interval=0.001)

    assert polled.running
    assert polled.ipv4.startswith("10.0.")
    assert "[dry-run] Would create server: web (cx22) in fsn1" in caplog.text


async def test_ensure_operations_are_idempotent():
    provider = SimulatedProvider()
    first = await provider.ensure_firewall("ship-it-web", build_firewall_rules())
    second = await provider.ensure_firewall("ship-it-web", build_firewall_rules())
    assert first == second

    key = await provider.ensure_ssh_key("ship-it-web", "ssh-ed25519 AAAA")
    assert await provider.ensure_ssh_key("ship-it-web", "ssh-ed25519 BBBB") == key


async def test_load_balancer_has_address_and_targets():
    provider = SimulatedProvider()
    lb = await provider.create_load_balancer("web-lb", "fsn1", [1, 2])
    ready = await provider.wait_for_load_balancer(lb.id, timeout=1, interval=0.001)
    assert ready.ipv4
    assert ready.target_ids == (1, 2)


async def test_unknown_server_is_404():
    with pytest.raises(ProviderError) as exc_info:
        await SimulatedProvider().apply_firewall(1, 999)
    assert exc_info.value.status_code == 404


async def test_empty_token_rejected():
    with pytest.raises(ValidationError):
        await SimulatedProvider(token="").validate_token()


async def test_catalogue():
    provider = SimulatedProvider()
    assert "fsn1" in [loc.name for loc in await provider.get_locations()]
    types = await provider.get_server_types()
    assert [(t.cores, t.memory) for t in types] == sorted((t.cores, t.memory) for t in types)
