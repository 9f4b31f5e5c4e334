"""Tests for the fd stream helpers."""

from __future__ import annotations

import asyncio
import os
import socket

from flex.shared.streams import open_fd_streams, pump, pump_from_file, pump_to_file


class TestStreams:
    async def test_pump_copies_until_eof(self) -> None:
        in_r, in_w = os.pipe()
        out_r, out_w = os.pipe()
        reader, read_transport, writer = await open_fd_streams(in_r, out_w)
        os.close(in_r)
        os.close(out_w)
        try:
            os.write(in_w, b"x" * 10000)
            os.close(in_w)
            await asyncio.wait_for(pump(reader, writer, "test"), timeout=5)
        finally:
            read_transport.close()
            writer.close()

        data = b""
        while len(data) < 10000:
            data += os.read(out_r, 65536)
        os.close(out_r)
        assert data == b"x" * 10000

    async def test_pump_between_regular_files(self, tmp_path) -> None:
        (tmp_path / "in.bin").write_bytes(b"y" * 10000)
        sock_a, sock_b = socket.socketpair()
        reader_b, writer_b = await asyncio.open_connection(sock=sock_b)
        reader_a, writer_a = await asyncio.open_connection(sock=sock_a)
        in_fd = os.open(tmp_path / "in.bin", os.O_RDONLY)
        out_fd = os.open(tmp_path / "out.bin", os.O_WRONLY | os.O_CREAT)
        try:
            await asyncio.wait_for(pump_from_file(in_fd, writer_a, "file->socket"), timeout=5)
            writer_a.close()
            await asyncio.wait_for(pump_to_file(reader_b, out_fd, "socket->file"), timeout=5)
        finally:
            writer_b.close()
            os.close(in_fd)
            os.close(out_fd)

        assert (tmp_path / "out.bin").read_bytes() == b"y" * 10000
