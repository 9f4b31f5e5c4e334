"""Tests for the flex daemon listeners."""

from __future__ import annotations

import socket

import httpx
import pytest

from flex.client.client import FlexClient
from flex.config import Settings
from flex.daemon.server import Daemon
from flex.shared.exceptions import DaemonError
from flex.shared.models import RemoteConfig


class TestDaemon:
    async def test_serves_unix_socket(self, settings: Settings, runtime) -> None:
        daemon = Daemon(settings, runtime=runtime)
        await daemon.start()
        try:
            assert daemon.addresses == [str(settings.socket_path)]
            assert settings.socket_path.exists()
            await FlexClient.local(settings.socket_path).ping()
        finally:
            await daemon.stop()

        assert not settings.socket_path.exists()

    async def test_serves_tcp_endpoint(self, settings: Settings, runtime) -> None:
        runtime.states["web1"] = "RUNNING"
        daemon = Daemon(settings.model_copy(update={"listen_addr": "127.0.0.1:0"}), runtime=runtime)
        await daemon.start()
        try:
            assert len(daemon.addresses) == 2
            client = FlexClient.network(RemoteConfig(address=daemon.addresses[1]))
            await client.ping()
            reply = await client.list()
            assert reply.body == "0: web1 (RUNNING)\n"
        finally:
            await daemon.stop()

    async def test_stop_before_start(self, settings: Settings, runtime) -> None:
        with pytest.raises(DaemonError, match="not started"):
            await Daemon(settings, runtime=runtime).stop()

    async def test_tcp_failure_releases_unix_socket(self, settings: Settings, runtime) -> None:
        busy = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        port = busy.getsockname()[1]
        try:
            daemon = Daemon(settings.model_copy(update={"listen_addr": f"127.0.0.1:{port}"}), runtime=runtime)
            with pytest.raises(DaemonError, match="cannot listen"):
                await daemon.start()
        finally:
            busy.close()

        assert not settings.socket_path.exists()

    async def test_unresolvable_listen_address(self, settings: Settings, runtime) -> None:
        daemon = Daemon(settings.model_copy(update={"listen_addr": "localhost"}), runtime=runtime)

        with pytest.raises(DaemonError, match="cannot resolve"):
            await daemon.start()
        assert not settings.socket_path.exists()

    async def test_refuses_second_daemon(self, settings: Settings, runtime) -> None:
        first = Daemon(settings, runtime=runtime)
        await first.start()
        try:
            with pytest.raises(DaemonError, match="another daemon"):
                await Daemon(settings, runtime=runtime).start()
        finally:
            await first.stop()

    async def test_replaces_stale_socket_file(self, settings: Settings, runtime) -> None:
        settings.dir.mkdir(parents=True)
        settings.socket_path.write_text("")

        daemon = Daemon(settings, runtime=runtime)
        await daemon.start()
        try:
            async with httpx.AsyncClient(
                transport=httpx.AsyncHTTPTransport(uds=str(settings.socket_path)),
                base_url="http://unix.socket",
            ) as client:
                response = await client.get("/ping")
            assert response.text == "pong"
        finally:
            await daemon.stop()
