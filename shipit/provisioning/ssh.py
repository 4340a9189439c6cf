"""Remote execution over the ssh binary, with readiness polling."""

import asyncio
import logging

from shipit.errors import ProvisionTimeoutError, RemoteExecError
from shipit.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)

DEFAULT_USER = "root"
SSH_CONNECT_FAILED = 255  # ssh's own exit status for connection errors


def ssh_base_args(address, ssh_key, ssh_port=22, connect_timeout=None):
    """Build base SSH arguments. Fresh servers have unknown host keys."""
    args = [
        "ssh",
        "-o", "StrictHostKeyChecking=no",
        "-o", "UserKnownHostsFile=/dev/null",
        "-o", "BatchMode=yes",
        "-o", "LogLevel=ERROR",
    ]
    if connect_timeout:
        args += ["-o", f"ConnectTimeout={connect_timeout}"]
    if ssh_key:
        args += ["-i", ssh_key]
    if ssh_port and ssh_port != 22:
        args += ["-p", str(ssh_port)]
    args.append(address)
    return args


class SSHRemote:
    """Runs commands on remote hosts as *user* using a private key file."""

    def __init__(self, user=DEFAULT_USER, ssh_port=22, interval=3):
        self.user = user
        self.ssh_port = ssh_port
        self.interval = interval

    def _address(self, host):
        return f"{self.user}@{host}" if self.user else host

    async def exec(self, host, command, key_path, timeout=600):
        """Run *command* on *host* and return its exit status.

        Raises:
            RemoteExecError: when ssh itself cannot connect or is missing.
        """
        args = ssh_base_args(self._address(host), key_path, self.ssh_port, connect_timeout=5)
        args.append(command)
        rc, _, stderr = await run_shell_cmd(args, timeout=timeout)
        if rc == 127 and stderr == "'ssh' not found":
            raise RemoteExecError("ssh is not installed or not on PATH")
        if rc == SSH_CONNECT_FAILED:
            raise RemoteExecError(f"SSH connection to {host} failed: {stderr.strip() or 'exit code 255'}")
        return rc

    async def wait_until_reachable(self, host, key_path, timeout=180):
        """Poll SSH connectivity until a trivial command succeeds.

        *timeout* bounds the whole wait, including an attempt still in flight.

        Raises:
            ProvisionTimeoutError: if *host* never accepted a connection.
        """
        try:
            async with asyncio.timeout(timeout):
                while True:
                    try:
                        if await self.exec(host, "echo ok", key_path, timeout=30) == 0:
                            logger.info(f"SSH ready on {host}")
                            return
                    except RemoteExecError as e:
                        logger.debug(f"SSH not ready on {host}: {e}")
                    await asyncio.sleep(self.interval)
        except TimeoutError:
            logger.error(f"Timeout after {timeout:g}s waiting for SSH connectivity to {host}")
            raise ProvisionTimeoutError(f"SSH connection to {host}", timeout) from None
