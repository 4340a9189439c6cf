"""Crash-safe cleanup of servers created in ephemeral (dev mode) runs.

Every server id is written to a state file outside the working directory as
soon as its create call returns. A normal exit, an error or an interrupt
sweeps the tracked servers; if the process is killed before it can sweep,
the next ephemeral run finds the ids in the file and deletes them first.

Only servers are tracked. Firewalls, SSH keys and load balancers created in
the same run stay allocated.

Running two ephemeral processes against the same state file is unsupported:
there is no locking and the last writer wins.
"""

import asyncio
import contextlib
import json
import logging
import os
import signal
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_FILE = Path(tempfile.gettempdir()) / "ship-it-cleanup.json"


def read_state(path):
    """Return (credential, server_ids) from the state file; empty if absent or unreadable."""
    path = Path(path)
    if not path.exists():
        return None, []
    try:
        data = json.loads(path.read_text())
        return data.get("credential"), [int(i) for i in data.get("serverIds", [])]
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"[dev mode] Ignoring unreadable cleanup state {path}: {e}")
        return None, []


class CleanupTracker:
    """Tracks ephemeral servers in memory and in a JSON state file.

    The file holds ``{"credential": ..., "serverIds": [...]}`` and is
    rewritten wholesale on every change. An absent file means nothing is
    tracked.
    """

    def __init__(self, provider, state_path=DEFAULT_CLEANUP_FILE):
        self.provider = provider
        self.state_path = Path(state_path)
        self._credential = None
        self._server_ids = []
        self._initialized = False

    @property
    def tracked(self):
        return list(self._server_ids)

    async def init(self, credential):
        """Bind the credential and delete orphans left by a previous run.

        Only the first call recovers; later calls just update the credential.

        Returns:
            ids of orphans that could not be deleted.
        """
        self._credential = credential
        if self._initialized:
            return []
        self._initialized = True

        persisted_credential, orphans = read_state(self.state_path)
        if not orphans:
            return []
        logger.info(f"[dev mode] Found {len(orphans)} orphaned server(s) from previous run.")
        if persisted_credential and persisted_credential != credential:
            logger.warning("[dev mode] Orphans were recorded under a different token; trying the current one.")
        for server_id in orphans:
            if server_id not in self._server_ids:
                self._server_ids.append(server_id)
        return await self.run_cleanup()

    def track(self, server_id):
        """Record *server_id* and persist before returning."""
        logger.info(f"[dev mode] Tracking server {server_id} for cleanup")
        if server_id not in self._server_ids:
            self._server_ids.append(server_id)
        self._persist()

    def untrack(self, server_id):
        """Stop tracking *server_id* without deleting it."""
        self._server_ids = [i for i in self._server_ids if i != server_id]
        self._persist()

    async def run_cleanup(self):
        """Delete every tracked server, best effort, then clear the state.

        A failed delete is logged and the sweep moves on. The state file is
        cleared only once the sweep is over.

        Returns:
            ids whose delete failed. They are no longer tracked.
        """
        if not self._server_ids:
            return []

        logger.info(f"[dev mode] Cleaning up {len(self._server_ids)} server(s)...")
        failed = []
        for server_id in list(self._server_ids):
            try:
                await self.provider.delete_server(server_id)
                logger.info(f"  Deleted server {server_id}")
            except Exception as e:
                logger.error(f"  Failed to delete server {server_id}: {e}")
                failed.append(server_id)

        self._server_ids = []
        self._clear()
        return failed

    def _persist(self):
        if not self._server_ids:
            self._clear()
            return
        payload = json.dumps({"credential": self._credential, "serverIds": self._server_ids}, indent=2)
        tmp_path = self.state_path.with_name(f".{self.state_path.name}.tmp")
        with open(tmp_path, "w") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.state_path)

    def _clear(self):
        self.state_path.unlink(missing_ok=True)


@contextlib.asynccontextmanager
async def ephemeral_session(tracker, credential):
    """Scope an ephemeral run: recover orphans on entry, sweep on every exit.

    SIGINT already cancels the main task under asyncio.run; SIGTERM is routed
    the same way while the session is open, so both reach the ``finally``.
    """
    await tracker.init(credential)

    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    sigterm_installed = False
    try:
        loop.add_signal_handler(signal.SIGTERM, task.cancel)
        sigterm_installed = True
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGTERM handler not available on this platform")

    try:
        yield tracker
    except asyncio.CancelledError:
        logger.info("\n[dev mode] Caught exit signal, cleaning up...")
        raise
    finally:
        if sigterm_installed:
            loop.remove_signal_handler(signal.SIGTERM)
        await tracker.run_cleanup()
