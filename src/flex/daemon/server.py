"""The flex daemon: listener pair, dispatcher and supervisor."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from pathlib import Path

import uvicorn
from fastapi import FastAPI

from flex.config import Settings
from flex.daemon.app import create_app
from flex.daemon.supervisor import StopRequested, TaskSupervisor
from flex.runtime.interfaces import ContainerRuntime
from flex.shared.exceptions import DaemonError

logger = logging.getLogger(__name__)

_BACKLOG = 128
_STARTUP_POLLS = 50
_STARTUP_POLL_INTERVAL = 0.1


class Daemon:
    """Serves the request API on a unix socket and, optionally, a TCP endpoint.

    Sockets are bound up front so that a failing TCP bind can release the
    unix socket before the error reaches the caller. Each socket is then
    served by one uvicorn server running as a supervised task.
    """

    def __init__(self, settings: Settings, *, runtime: ContainerRuntime | None = None) -> None:
        self.settings = settings
        self.app: FastAPI = create_app(settings, runtime=runtime)
        self.supervisor = TaskSupervisor()
        self._servers: list[uvicorn.Server] = []
        self._sockets: list[socket.socket] = []
        self._started = False

    @property
    def addresses(self) -> list[str]:
        """Addresses actually bound, unix socket first."""
        result: list[str] = []
        for sock in self._sockets:
            name = sock.getsockname()
            result.append(name if isinstance(name, str) else f"{name[0]}:{name[1]}")
        return result

    async def start(self) -> None:
        """Bind both listeners and start serving them.

        Raises:
            DaemonError: If state directories or sockets cannot be set up.
        """
        if self._started:
            raise DaemonError("daemon already started")

        try:
            self.settings.dir.mkdir(mode=0o755, parents=True, exist_ok=True)
            self.settings.lxc_path.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as exc:
            raise DaemonError(f"cannot create state directory {self.settings.dir}: {exc}") from exc

        unix_sock = _bind_unix(self.settings.socket_path)
        self._sockets = [unix_sock]
        if self.settings.listen_addr:
            try:
                self._sockets.append(_bind_tcp(self.settings.listen_addr))
            except DaemonError:
                # There's a listener active which must be closed on errors
                _close_unix(unix_sock, self.settings.socket_path)
                self._sockets = []
                raise

        for sock in self._sockets:
            config = uvicorn.Config(self.app, log_config=None, access_log=False, lifespan="off")
            server = uvicorn.Server(config)
            self._servers.append(server)
            label = "unix" if sock.family == socket.AF_UNIX else "tcp"
            self.supervisor.go(_serve(server, sock), name=f"flex-{label}-listener")

        self._started = True
        await self._wait_started()
        logger.info("flex daemon listening on %s", ", ".join(self.addresses))

    async def stop(self) -> None:
        """Close both listeners and wait for their serve loops to exit.

        Attach sessions and in-flight requests are left to finish on their own.

        Raises:
            DaemonError: If the daemon was never started, or a listener died of an error.
        """
        if not self._started:
            raise DaemonError("daemon not started")

        self.supervisor.kill(StopRequested("requested stop"))
        for server in self._servers:
            server.should_exit = True
        reason = await self.supervisor.wait()

        for sock in self._sockets:
            sock.close()
        _remove_socket_file(self.settings.socket_path)
        self._servers = []
        self._started = False
        logger.info("flex daemon stopped")

        if reason is not None and not isinstance(reason, StopRequested):
            raise DaemonError(f"listener failed: {reason}") from reason

    async def _wait_started(self) -> None:
        for _ in range(_STARTUP_POLLS):
            if all(server.started for server in self._servers):
                return
            if self.supervisor.dying.is_set():
                break
            await asyncio.sleep(_STARTUP_POLL_INTERVAL)
        logger.warning("listeners not confirmed started: %s", self.supervisor.reason)


async def _serve(server: uvicorn.Server, sock: socket.socket) -> None:
    # Avoid uvicorn's signal handling to keep the daemon in control.
    serve_coro = server._serve([sock]) if hasattr(server, "_serve") else server.serve([sock])
    await serve_coro


def _bind_unix(path: Path) -> socket.socket:
    if path.exists():
        if _socket_in_use(path):
            raise DaemonError(f"another daemon is listening on {path}")
        _remove_socket_file(path)

    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.bind(str(path))
        sock.listen(_BACKLOG)
    except OSError as exc:
        sock.close()
        raise DaemonError(f"cannot listen on unix socket {path}: {exc}") from exc
    return sock


def _bind_tcp(listen_addr: str) -> socket.socket:
    host, sep, port = listen_addr.rpartition(":")
    if not sep or not port.isdigit():
        raise DaemonError(f"cannot resolve listen address {listen_addr!r}")
    host = host.strip("[]") or None

    try:
        infos = socket.getaddrinfo(host, int(port), type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE)
    except socket.gaierror as exc:
        raise DaemonError(f"cannot resolve listen address {listen_addr!r}: {exc}") from exc

    family, socktype, proto, _canon, sockaddr = infos[0]
    sock = socket.socket(family, socktype, proto)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(sockaddr)
        sock.listen(_BACKLOG)
    except OSError as exc:
        sock.close()
        raise DaemonError(f"cannot listen on {listen_addr}: {exc}") from exc
    return sock


def _socket_in_use(path: Path) -> bool:
    probe = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        probe.connect(str(path))
    except OSError:
        return False
    finally:
        probe.close()
    return True


def _close_unix(sock: socket.socket, path: Path) -> None:
    sock.close()
    _remove_socket_file(path)


def _remove_socket_file(path: Path) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("failed to remove socket %s: %s", path, exc)
