"""Provisioning orchestration: cloud resources, then Kamal hand-off."""

import logging
from pathlib import Path

from shipit.config import ProvisionSettings
from shipit.errors import ProviderError, ToolError
from shipit.project import (
    commit_config,
    detect_project,
    generate_dockerfile,
    write_deploy_config,
    write_kamal_secrets,
)
from shipit.provisioning.keys import DEFAULT_KEYS_DIR, ensure_ssh_config_hosts, generate_ssh_key
from shipit.provisioning.polling import gather_fail_fast, gather_settled
from shipit.provisioning.provider import build_firewall_rules
from shipit.provisioning.types import DeploymentResult, RunMode, SSHKeyHandle
from shipit.steps import StepTracker
from shipit.storage import DEPLOYMENTS_FILE, deployment_record, save_deployment

logger = logging.getLogger(__name__)

STEPS = [
    ("detect", "Detecting project"),
    ("ssh-key", "Setting up SSH key"),
    ("firewall", "Creating firewall"),
    ("servers", "Provisioning app servers"),
    ("wait-servers", "Waiting for app servers"),
    ("apply-firewall", "Applying firewall"),
    ("accessories-server", "Provisioning accessories server"),
    ("load-balancer", "Creating load balancer"),
    ("ssh-wait", "Waiting for SSH"),
    ("dockerfile", "Generating Dockerfile"),
    ("kamal-check", "Checking Kamal"),
    ("kamal-init", "Configuring Kamal"),
    ("git-commit", "Committing config"),
    ("kamal-setup", "Running Kamal setup"),
]

LOCAL_STEPS = ("ssh-wait", "dockerfile", "kamal-check", "kamal-init", "git-commit", "kamal-setup")

DRY_RUN_PUBLIC_KEY = "ssh-ed25519 AAAA-dry-run-placeholder ship-it"


class Orchestrator:
    """Runs one provisioning pipeline against a CloudProvider.

    Args:
        provider: CloudProvider bound to the run's credential
        remote: SSHRemote (or anything with ``wait_until_reachable``)
        deploy_tool: KamalClient for the project directory
        tracker: CleanupTracker, required for ephemeral runs
        settings: ProvisionSettings poll budgets
        keys_dir: where deploy key pairs are stored
        registry: optional registry config (server, username, password)
        deployments_file: where finished production runs are recorded
        ssh_config_path: SSH client config that gets host entries (default ~/.ssh/config)
    """

    def __init__(
        self,
        provider,
        remote,
        deploy_tool,
        tracker=None,
        settings=None,
        keys_dir=DEFAULT_KEYS_DIR,
        registry=None,
        deployments_file=DEPLOYMENTS_FILE,
        ssh_config_path=None,
    ):
        self.provider = provider
        self.remote = remote
        self.deploy_tool = deploy_tool
        self.tracker = tracker
        self.settings = settings or ProvisionSettings()
        self.keys_dir = keys_dir
        self.registry = registry
        self.deployments_file = deployments_file
        self.ssh_config_path = ssh_config_path

    async def run(self, request, on_progress=None):
        """Provision everything *request* describes and hand off to Kamal.

        Args:
            request: DeploymentRequest
            on_progress: callable(snapshot) invoked after every step transition
                with a tuple of frozen Step objects.

        Returns:
            DeploymentResult with ids, addresses, domain and final steps.

        Raises:
            StepError: wrapping the first failure; no later step starts.
        """
        if request.mode.is_ephemeral and self.tracker is None:
            raise ValueError("Ephemeral runs need a CleanupTracker")

        steps = StepTracker(STEPS, on_progress)
        mode = request.mode
        accessories = request.accessories if request.accessories is not None and request.accessories.enabled else None
        dedicated = request.dedicated_accessories
        timeouts = self.settings

        if mode.is_simulated:
            logger.info("[dry-run] Simulating provisioning, no resources will be created.")
        elif mode.is_ephemeral:
            logger.info("[dev mode] Servers will be deleted when this run exits.")

        # ── Project ───────────────────────────────────────────────

        project = await steps.run(
            "detect",
            lambda: _detect(request.project_path),
            lambda p: f"{p.type} project '{p.name}'",
        )

        # ── SSH key and firewall ──────────────────────────────────

        key_pair = None

        async def setup_ssh_key():
            nonlocal key_pair
            if mode.is_simulated:
                return await self.provider.ensure_ssh_key(request.resource_name, DRY_RUN_PUBLIC_KEY)
            key_pair = await generate_ssh_key(request.resource_name, self.keys_dir)
            return await self.provider.ensure_ssh_key(request.resource_name, key_pair.public_key)

        ssh_key: SSHKeyHandle = await steps.run(
            "ssh-key",
            setup_ssh_key,
            lambda k: f"{'[dry-run] ' if mode.is_simulated else ''}{k.name} (id={k.id})",
        )

        rules = build_firewall_rules(accessories.ports if dedicated else None)
        firewall = await steps.run(
            "firewall",
            lambda: self.provider.ensure_firewall(request.resource_name, rules),
            lambda fw: f"{fw.name} (id={fw.id})",
        )

        # ── App servers ───────────────────────────────────────────

        async def create_one(name):
            server = await self.provider.create_server(name, request.server_type, request.location, ssh_key.name)
            if mode.is_ephemeral:
                self.tracker.track(server.id)
            logger.info(f"Created server {name} (id={server.id})")
            return server

        created = await steps.run(
            "servers",
            lambda: gather_settled(*(create_one(name) for name in request.server_names)),
            lambda servers: f"Created {len(servers)} server(s)",
        )
        server_ids = [s.id for s in created]

        running = await steps.run(
            "wait-servers",
            lambda: gather_fail_fast(*(self._wait_server(sid) for sid in server_ids)),
            lambda servers: ", ".join(str(s.ipv4) for s in servers),
        )
        server_ips = [s.ipv4 for s in running]

        async def apply_to_all():
            for sid in server_ids:
                await self._apply_firewall(firewall.id, sid)

        await steps.run("apply-firewall", apply_to_all, f"{firewall.name} -> {len(server_ids)} server(s)")

        # ── Accessories ───────────────────────────────────────────

        accessories_server = None
        if dedicated:

            async def provision_accessories():
                server = await create_one(f"{request.name}-db")
                server = await self._wait_server(server.id)
                await self._apply_firewall(firewall.id, server.id)
                return server

            accessories_server = await steps.run(
                "accessories-server",
                provision_accessories,
                lambda s: f"{s.name} {s.ipv4}",
            )
        elif accessories is not None:
            steps.skip("accessories-server", "Same server")
        else:
            steps.skip("accessories-server", "Skipped")

        # ── Load balancer ─────────────────────────────────────────

        load_balancer = None
        if request.replicas > 1:

            async def provision_lb():
                lb = await self.provider.create_load_balancer(f"{request.name}-lb", request.location, server_ids)
                return await self.provider.wait_for_load_balancer(
                    lb.id, timeout=timeouts.load_balancer_timeout, interval=timeouts.poll_interval
                )

            load_balancer = await steps.run("load-balancer", provision_lb, lambda lb: f"{lb.name} {lb.ipv4}")
        else:
            steps.skip("load-balancer", "Skipped (single server)")

        public_ip = load_balancer.ipv4 if load_balancer is not None else server_ips[0]
        domain = request.domain or f"{public_ip}.nip.io"

        result = DeploymentResult(
            server_ids=server_ids,
            server_ips=server_ips,
            server_names=[s.name for s in created],
            public_ip=public_ip,
            domain=domain,
            load_balancer_id=load_balancer.id if load_balancer else None,
            load_balancer_ip=load_balancer.ipv4 if load_balancer else None,
            accessories_server_id=accessories_server.id if accessories_server else None,
            accessories_server_ip=accessories_server.ipv4 if accessories_server else None,
            project=project,
        )

        # ── Hosts and Kamal ───────────────────────────────────────

        if mode.is_simulated:
            for step_id in LOCAL_STEPS:
                steps.skip(step_id, "[dry-run] Skipped")
            result.steps = steps.snapshot()
            logger.info(f"[dry-run] Would deploy {project.name} to http://{domain}")
            return result

        hosts = server_ips + ([accessories_server.ipv4] if accessories_server else [])
        await steps.run(
            "ssh-wait",
            lambda: gather_fail_fast(
                *(self.remote.wait_until_reachable(h, key_pair.private_key_path, timeout=timeouts.ssh_timeout) for h in hosts)
            ),
            f"{len(hosts)} host(s) reachable",
        )

        await steps.run(
            "dockerfile",
            lambda: _generate_dockerfile(project),
            lambda path: "Using existing Dockerfile" if project.has_dockerfile else f"Wrote {Path(path).name}",
        )
        await steps.run("kamal-check", self._check_kamal, "Kamal installed")

        async def configure_kamal():
            if not (Path(project.path) / "config" / "deploy.yml").exists():
                await self.deploy_tool.run_init()
            write_deploy_config(
                project,
                server_ips,
                domain,
                ssh_key_path=key_pair.private_key_path,
                registry=self.registry,
                accessories=accessories,
                accessories_host=accessories_server.ipv4 if accessories_server else None,
            )
            write_kamal_secrets(
                project.path,
                registry_password=(self.registry or {}).get("password"),
                accessories=accessories,
            )

        await steps.run("kamal-init", configure_kamal, "config/deploy.yml, .kamal/secrets")
        await steps.run("git-commit", lambda: commit_config(project.path), "Committed")

        async def kamal_setup():
            ensure_ssh_config_hosts(hosts, self.ssh_config_path)
            return await self.deploy_tool.run_setup()

        await steps.run("kamal-setup", kamal_setup, f"Deployed to http://{domain}")

        result.steps = steps.snapshot()
        if mode is RunMode.PRODUCTION:
            save_deployment(deployment_record(result, request), self.deployments_file)
        return result

    async def _wait_server(self, server_id):
        return await self.provider.wait_for_server(
            server_id, timeout=self.settings.server_timeout, interval=self.settings.poll_interval
        )

    async def _apply_firewall(self, firewall_id, server_id):
        try:
            await self.provider.apply_firewall(firewall_id, server_id)
        except ProviderError as e:
            raise ProviderError(f"Applying firewall to server {server_id}: {e}", e.status_code) from e

    async def _check_kamal(self):
        if not self.deploy_tool.is_installed():
            raise ToolError("Kamal is not installed. Install it with: gem install kamal", exit_code=127)


async def _detect(project_path):
    return detect_project(project_path)


async def _generate_dockerfile(project):
    return generate_dockerfile(project)
