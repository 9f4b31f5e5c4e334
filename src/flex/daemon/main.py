"""Entry point for the flex daemon (``flexd``)."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from flex.config import Settings, get_settings
from flex.daemon.server import Daemon
from flex.shared.exceptions import DaemonError

logger = logging.getLogger(__name__)


async def run_daemon(settings: Settings) -> None:
    """Start the daemon, serve until SIGINT/SIGTERM or a listener failure, then stop it."""
    daemon = Daemon(settings)
    await daemon.start()

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    try:
        waiters = {
            asyncio.create_task(stop_requested.wait()),
            asyncio.create_task(daemon.supervisor.dying.wait()),
        }
        _done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        if stop_requested.is_set():
            logger.info("shutdown signal received")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await daemon.stop()


def main() -> None:
    """Entry point for ``flexd`` / ``python -m flex.daemon.main``."""
    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        asyncio.run(run_daemon(settings))
    except DaemonError as exc:
        logger.error("%s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
