"""asyncio stream helpers for bridging file descriptors and sockets."""

from __future__ import annotations

import asyncio
import logging
import os

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096


async def open_read_stream(fd: int) -> tuple[asyncio.StreamReader, asyncio.BaseTransport]:
    """Wrap the readable end of a pipe, socket, tty or pty in a ``StreamReader``."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    transport, _ = await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader),
        os.fdopen(os.dup(fd), "rb", buffering=0),
    )
    return reader, transport


async def open_write_stream(fd: int) -> asyncio.StreamWriter:
    """Wrap the writable end of a pipe, socket, tty or pty in a ``StreamWriter``."""
    loop = asyncio.get_running_loop()
    # The protocol only supplies drain() flow control; its reader stays unused
    transport, protocol = await loop.connect_write_pipe(
        lambda: asyncio.StreamReaderProtocol(asyncio.StreamReader()),
        os.fdopen(os.dup(fd), "wb", buffering=0),
    )
    return asyncio.StreamWriter(transport, protocol, None, loop)


async def open_fd_streams(
    read_fd: int,
    write_fd: int,
) -> tuple[asyncio.StreamReader, asyncio.BaseTransport, asyncio.StreamWriter]:
    """Wrap a pipe, tty or pty in asyncio streams.

    Each transport owns a duplicate of its descriptor, so closing the
    transports never closes the caller's ``read_fd``/``write_fd``.

    Returns:
        (reader, read transport, writer)
    """
    reader, read_transport = await open_read_stream(read_fd)
    try:
        writer = await open_write_stream(write_fd)
    except BaseException:
        read_transport.close()
        raise
    return reader, read_transport, writer


async def pump(source: asyncio.StreamReader, sink: asyncio.StreamWriter, label: str) -> None:
    """Copy bytes until EOF or an I/O error on either side."""
    try:
        while True:
            chunk = await source.read(CHUNK_SIZE)
            if not chunk:
                break
            sink.write(chunk)
            await sink.drain()
    except OSError as exc:
        logger.debug("%s: %s", label, exc)
    logger.debug("%s exiting", label)


async def pump_from_file(fd: int, sink: asyncio.StreamWriter, label: str) -> None:
    """Like :func:`pump`, reading a regular file with blocking reads in a worker thread."""
    try:
        while chunk := await asyncio.to_thread(os.read, fd, CHUNK_SIZE):
            sink.write(chunk)
            await sink.drain()
    except OSError as exc:
        logger.debug("%s: %s", label, exc)
    logger.debug("%s exiting", label)


async def pump_to_file(source: asyncio.StreamReader, fd: int, label: str) -> None:
    """Like :func:`pump`, writing a regular file with blocking writes in a worker thread."""
    try:
        while chunk := await source.read(CHUNK_SIZE):
            await asyncio.to_thread(_write_all, fd, chunk)
    except OSError as exc:
        logger.debug("%s: %s", label, exc)
    logger.debug("%s exiting", label)


def _write_all(fd: int, data: bytes) -> None:
    view = memoryview(data)
    while view:
        view = view[os.write(fd, view) :]
