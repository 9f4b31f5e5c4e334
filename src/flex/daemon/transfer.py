"""Push container state to another host with rsync."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path

from flex.shared.exceptions import TransferError

logger = logging.getLogger(__name__)


class RsyncTransfer:
    """Copies directories to the same path on a remote host via ``rsync``.

    The remote side must accept ssh from this host and hold the same state
    root; nothing is negotiated with the target daemon.
    """

    def __init__(
        self,
        *,
        rsync_bin: str = "rsync",
        rsync_path: str = "sudo rsync",
        timeout: float | None = None,
    ) -> None:
        self._rsync_bin = rsync_bin
        self._rsync_path = rsync_path
        self._timeout = timeout

    def command(self, host: str, path: Path) -> list[str]:
        # rsync needs the trailing slash to sync directory contents
        source = f"{path}/"
        cmd = [self._rsync_bin, "-rltzha", "--devices"]
        if self._rsync_path:
            cmd.append(f"--rsync-path={self._rsync_path}")
        cmd += [source, f"{host}:{source}"]
        return cmd

    async def push(self, host: str, path: Path) -> None:
        """Synchronise ``path`` to ``host``; partial copies count as failure.

        Raises:
            TransferError: If rsync is missing, times out, or exits non-zero.
        """
        cmd = self.command(host, path)
        logger.info("pushing %s to %s", path, host)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            _stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise TransferError(f"rsync of {path} timed out after {self._timeout}s") from exc
        except FileNotFoundError as exc:
            raise TransferError(f"rsync binary not found: {self._rsync_bin}") from exc

        if proc.returncode != 0:
            err_msg = stderr.decode(errors="replace")[-500:] if stderr else "unknown error"
            raise TransferError(f"rsync of {path} failed (rc={proc.returncode}): {err_msg}")

        logger.info("pushed %s to %s", path, host)
