"""Secret-authenticated pty bridge between a remote caller and a container command."""

from __future__ import annotations

import asyncio
import logging
import os
import pty
import socket

from flex.runtime.interfaces import Container, ContainerRuntime
from flex.runtime.options import AttachOptions
from flex.shared.enums import AttachState
from flex.shared.exceptions import AttachError, ContainerRuntimeError
from flex.shared.streams import open_fd_streams, pump

logger = logging.getLogger(__name__)

# Time allowed for pty output to drain once the command has exited
_DRAIN_GRACE_SECONDS = 1.0


class AttachSession:
    """One ephemeral attach listener and the bridge behind it.

    Lifecycle::

        LISTENING -> AWAITING_SECRET -> {AUTHENTICATED, REJECTED}
                  -> BRIDGING -> CLOSED

    :meth:`listen` binds the listener and returns its address; :meth:`run`
    accepts exactly one connection, checks the secret and bridges the
    connection to a pty wired to the command. The command and both copy
    directions run in one task group, so the session never outlives any of
    them and the pty and connection are closed exactly once.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        *,
        name: str,
        command: str,
        secret: str,
        host: str = "0.0.0.0",
        read_size: int = 100,
        accept_timeout: float | None = None,
    ) -> None:
        self.name = name
        self.command = command
        self.state = AttachState.LISTENING
        self._runtime = runtime
        self._secret = secret.encode()
        self._host = host
        self._read_size = read_size
        self._accept_timeout = accept_timeout
        self._sock: socket.socket | None = None

    def listen(self) -> str:
        """Bind the ephemeral listener and return its ``host:port`` address.

        Raises:
            AttachError: If the listener cannot be bound.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((self._host, 0))
            sock.listen(1)
            sock.setblocking(False)
        except OSError as exc:
            sock.close()
            raise AttachError(f"failed listening: {exc}") from exc

        self._sock = sock
        host, port = sock.getsockname()[:2]
        return f"{host}:{port}"

    async def run(self) -> None:
        """Serve the single connection this session allows, then close."""
        if self._sock is None:
            raise AttachError("listen() must be called before run()")

        loop = asyncio.get_running_loop()
        try:
            conn, peer = await asyncio.wait_for(loop.sock_accept(self._sock), timeout=self._accept_timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            logger.debug("attach listener for %s closed without a client: %r", self.name, exc)
            self.state = AttachState.CLOSED
            return
        finally:
            # At most one client may ever attach to this address
            self._sock.close()

        logger.debug("attach connection for %s from %s", self.name, peer)
        try:
            reader, writer = await asyncio.open_connection(sock=conn)
        except OSError as exc:
            logger.debug("attach connection setup failed: %s", exc)
            conn.close()
            self.state = AttachState.CLOSED
            return

        try:
            if await self._authenticate(reader):
                await self._bridge(reader, writer)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as exc:
                logger.debug("closing attach connection: %s", exc)
            self.state = AttachState.CLOSED
            logger.debug("attach session for %s closed", self.name)

    async def _authenticate(self, reader: asyncio.StreamReader) -> bool:
        self.state = AttachState.AWAITING_SECRET
        try:
            data = await reader.read(self._read_size)
        except OSError as exc:
            logger.debug("bad read: %s", exc)
            self.state = AttachState.REJECTED
            return False

        if len(data) != len(self._secret):
            logger.debug("read %d characters, secret is %d", len(data), len(self._secret))
            self.state = AttachState.REJECTED
            return False
        if data != self._secret:
            logger.debug("wrong secret received from attach client")
            self.state = AttachState.REJECTED
            return False

        self.state = AttachState.AUTHENTICATED
        logger.debug("attaching to %s", self.name)
        return True

    async def _bridge(self, conn_reader: asyncio.StreamReader, conn_writer: asyncio.StreamWriter) -> None:
        try:
            master, slave = pty.openpty()
        except OSError as exc:
            logger.warning("failed opening a pty for %s: %s", self.name, exc)
            return

        self.state = AttachState.BRIDGING
        slave_open = True
        pty_reader: asyncio.StreamReader | None = None
        pty_writer: asyncio.StreamWriter | None = None
        read_transport: asyncio.BaseTransport | None = None
        try:
            pty_reader, read_transport, pty_writer = await open_fd_streams(master, master)
            container = self._runtime.open(self.name)
            options = AttachOptions(stdin=slave, stdout=slave, stderr=slave, clear_env=True)

            async with asyncio.TaskGroup() as tg:
                command = tg.create_task(self._run_command(container, options))
                inbound = tg.create_task(pump(conn_reader, pty_writer, "conn->pty"))
                outbound = tg.create_task(pump(pty_reader, conn_writer, "pty->conn"))

                await asyncio.wait({command, inbound}, return_when=asyncio.FIRST_COMPLETED)
                if command.done():
                    logger.debug("command exited, stopping console")
                    # Once our slave copy is gone the master reports EOF after the backlog
                    os.close(slave)
                    slave_open = False
                    await asyncio.wait({outbound}, timeout=_DRAIN_GRACE_SECONDS)
                else:
                    logger.debug("attach client went away, stopping command")
                for task in (command, inbound, outbound):
                    task.cancel()
        finally:
            if pty_writer is not None:
                pty_writer.close()
            if read_transport is not None:
                read_transport.close()
            os.close(master)
            if slave_open:
                os.close(slave)

    async def _run_command(self, container: Container, options: AttachOptions) -> None:
        try:
            rc = await container.run_command([self.command], options)
        except ContainerRuntimeError as exc:
            logger.warning("attach command %r in %s failed: %s", self.command, self.name, exc)
            return
        logger.debug("attach command in %s exited with %d", self.name, rc)
