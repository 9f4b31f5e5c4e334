"""Client side of an attach session: connect, authenticate, bridge local stdio."""

from __future__ import annotations

import asyncio
import logging
import os
import secrets
import stat
import sys
import termios
import tty
from collections.abc import Iterator
from contextlib import contextmanager

from flex.client.client import FlexClient
from flex.shared.exceptions import AttachError, TransportError
from flex.shared.streams import open_read_stream, open_write_stream, pump, pump_from_file, pump_to_file

logger = logging.getLogger(__name__)

_UNSPECIFIED_HOSTS = {"", "0.0.0.0", "::", "[::]"}


def new_secret() -> str:
    return secrets.token_urlsafe(32)


def session_address(client: FlexClient, listen_address: str) -> tuple[str, int]:
    """Turn the daemon's listen address into something this host can dial.

    The daemon binds an unspecified host, so the host part is replaced by the
    remote's own host (or loopback for the local daemon).
    """
    host, sep, port = listen_address.strip().rpartition(":")
    if not sep or not port.isdigit():
        raise AttachError(f"daemon returned an invalid attach address: {listen_address!r}")
    if host in _UNSPECIFIED_HOSTS:
        host = client.remote.host if client.remote is not None else "127.0.0.1"
    return host.strip("[]"), int(port)


async def open_session(
    client: FlexClient,
    name: str,
    command: str,
    *,
    secret: str | None = None,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Request an attach session and authenticate against it.

    Raises:
        AttachError: If the daemon refuses the request or returns a bad address.
        TransportError: If the session listener cannot be reached.
    """
    secret = secret or new_secret()
    reply = await client.attach(name, command, secret)
    if not reply.ok:
        raise AttachError(reply.body)

    host, port = session_address(client, reply.body)
    logger.debug("attaching to %s:%d", host, port)
    try:
        reader, writer = await asyncio.open_connection(host, port)
        writer.write(secret.encode())
        await writer.drain()
    except OSError as exc:
        raise TransportError(f"cannot reach attach session at {host}:{port}: {exc}") from exc
    return reader, writer


async def interact(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    *,
    stdin_fd: int = 0,
    stdout_fd: int = 1,
) -> None:
    """Bridge local stdin/stdout with an authenticated session until the session ends.

    Regular files (``< input`` or ``> output``) are copied with blocking I/O in
    a worker thread; pipes, sockets and terminals get asyncio transports.
    """
    stdin_reader: asyncio.StreamReader | None = None
    stdin_transport: asyncio.BaseTransport | None = None
    stdout_writer: asyncio.StreamWriter | None = None
    try:
        stdin_is_file = local_is_regular_file(stdin_fd)
        stdout_is_file = local_is_regular_file(stdout_fd)
        if not stdin_is_file:
            stdin_reader, stdin_transport = await open_read_stream(stdin_fd)
        if not stdout_is_file:
            stdout_writer = await open_write_stream(stdout_fd)
        with _raw_terminal(stdin_fd):
            async with asyncio.TaskGroup() as tg:
                if stdin_reader is None:
                    upstream = tg.create_task(pump_from_file(stdin_fd, writer, "stdin->session"))
                else:
                    upstream = tg.create_task(pump(stdin_reader, writer, "stdin->session"))
                if stdout_writer is None:
                    downstream = tg.create_task(pump_to_file(reader, stdout_fd, "session->stdout"))
                else:
                    downstream = tg.create_task(pump(reader, stdout_writer, "session->stdout"))
                await downstream
                upstream.cancel()
    finally:
        if stdin_transport is not None:
            stdin_transport.close()
        if stdout_writer is not None:
            stdout_writer.close()
        writer.close()


def local_is_regular_file(fd: int) -> bool:
    """Classify a local stdio descriptor for :func:`interact`.

    Raises:
        AttachError: If ``fd`` is closed or is something other than a regular
            file, pipe, socket or character device.
    """
    try:
        mode = os.fstat(fd).st_mode
    except OSError as exc:
        raise AttachError(f"cannot attach descriptor {fd}: {exc}") from exc
    if stat.S_ISREG(mode):
        return True
    if stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode) or stat.S_ISCHR(mode):
        return False
    raise AttachError(f"cannot attach descriptor {fd}: unsupported file type")


@contextmanager
def _raw_terminal(fd: int) -> Iterator[None]:
    if not os.isatty(fd):
        yield
        return
    saved = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


async def attach(client: FlexClient, name: str, command: str) -> None:
    """Attach the calling terminal to ``command`` running inside ``name``."""
    stdin_fd, stdout_fd = sys.stdin.fileno(), sys.stdout.fileno()
    # Refuse unusable stdio before the daemon starts a session for us
    local_is_regular_file(stdin_fd)
    local_is_regular_file(stdout_fd)
    reader, writer = await open_session(client, name, command)
    await interact(reader, writer, stdin_fd=stdin_fd, stdout_fd=stdout_fd)
