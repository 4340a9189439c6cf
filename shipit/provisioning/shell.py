"""Local command execution helper."""

import asyncio
import logging

logger = logging.getLogger(__name__)


async def run_shell_cmd(command, cwd=None, timeout=600, stream=False):
    """Run a local command and return (returncode, stdout, stderr).

    Args:
        command: list of command arguments
        cwd: working directory for the command
        timeout: maximum seconds to wait for the command
        stream: if True, let output go straight to the terminal

    Returns:
        (returncode, stdout, stderr) tuple
    """
    pipe = None if stream else asyncio.subprocess.PIPE
    try:
        proc = await asyncio.create_subprocess_exec(*command, cwd=cwd, stdout=pipe, stderr=pipe)
    except FileNotFoundError:
        logger.error(f"Error: '{command[0]}' not found. Is it installed and on PATH?")
        return 127, "", f"'{command[0]}' not found"

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        logger.error(f"Command timed out after {timeout}s: {' '.join(command)}")
        proc.kill()
        await proc.wait()
        return 1, "", "timeout"
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        raise
    stdout = stdout_bytes.decode() if stdout_bytes else ""
    stderr = stderr_bytes.decode() if stderr_bytes else ""
    return proc.returncode, stdout, stderr
