"""Kamal client: the external deploy tool, driven as a subprocess."""

import logging
import shutil

from shipit.errors import ToolError
from shipit.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)

SETUP_TIMEOUT = 3600


class KamalClient:
    """Runs ``kamal`` commands in a project directory. Success is exit code 0."""

    def __init__(self, project_path=".", executable="kamal"):
        self.project_path = project_path
        self.executable = executable

    def is_installed(self) -> bool:
        return shutil.which(self.executable) is not None

    async def _run(self, *args, timeout=SETUP_TIMEOUT, stream=False):
        command = [self.executable, *args]
        logger.info(f"$ {' '.join(command)}")
        rc, stdout, stderr = await run_shell_cmd(command, cwd=self.project_path, timeout=timeout, stream=stream)
        if rc != 0:
            output = "\n".join(s for s in (stdout.strip(), stderr.strip()) if s)
            raise ToolError(f"{' '.join(command)} failed:\n{output or f'exit code {rc}'}", exit_code=rc)
        return stdout

    async def run_init(self):
        """Create Kamal's config stubs (config/deploy.yml, .kamal/)."""
        await self._run("init", timeout=120)

    async def run_setup(self):
        """First-time setup: installs Docker on the hosts, builds and deploys.

        Returns:
            0 on success. A non-zero exit raises ToolError carrying the code.
        """
        await self._run("setup")
        return 0

    async def run_deploy(self):
        await self._run("deploy", stream=True)
        return 0

    async def run_rollback(self, version):
        await self._run("rollback", version, stream=True)
        return 0

    async def run_logs(self, lines=100):
        return await self._run("app", "logs", "-n", str(lines), timeout=120)
