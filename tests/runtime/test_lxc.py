"""Tests for the LXC command line runtime."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from flex.runtime.interfaces import Container, ContainerRuntime
from flex.runtime.lxc import LxcCommand, LxcContainer, LxcRuntime, _parse_fancy_listing
from flex.runtime.options import AttachOptions, ContainerInfo, TemplateOptions
from flex.shared.exceptions import ContainerRuntimeError

LXC_PATH = Path("/var/lib/flex/lxc")


def _proc(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> AsyncMock:
    mock_proc = AsyncMock()
    mock_proc.communicate.return_value = (stdout, stderr)
    mock_proc.returncode = returncode
    return mock_proc


@pytest.fixture
def container() -> LxcContainer:
    return LxcContainer("web1", LxcCommand(LXC_PATH))


class TestLxcCommand:
    def test_argv_uses_lxc_path(self) -> None:
        assert LxcCommand(LXC_PATH).argv("lxc-start", "-n", "web1") == [
            "lxc-start",
            "-P",
            "/var/lib/flex/lxc",
            "-n",
            "web1",
        ]

    def test_argv_with_bin_dir(self) -> None:
        argv = LxcCommand(LXC_PATH, bin_dir="/opt/lxc/bin").argv("lxc-ls")
        assert argv[0] == "/opt/lxc/bin/lxc-ls"

    async def test_check_raises_on_failure(self) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(stderr=b"no such container", returncode=1)):
            with pytest.raises(ContainerRuntimeError, match="no such container"):
                await LxcCommand(LXC_PATH).check("lxc-start", "-n", "ghost")

    async def test_binary_not_found(self) -> None:
        with patch("asyncio.create_subprocess_exec", side_effect=FileNotFoundError("lxc-start")):
            with pytest.raises(ContainerRuntimeError, match="not found"):
                await LxcCommand(LXC_PATH).check("lxc-start", "-n", "web1")


class TestLxcContainer:
    def test_satisfies_protocol(self, container: LxcContainer) -> None:
        assert isinstance(container, Container)
        assert isinstance(LxcRuntime(LXC_PATH), ContainerRuntime)

    @pytest.mark.parametrize(
        ("method", "expected"),
        [
            ("start", ["lxc-start", "-P", str(LXC_PATH), "-n", "web1", "-d"]),
            ("stop", ["lxc-stop", "-P", str(LXC_PATH), "-n", "web1"]),
            ("reboot", ["lxc-stop", "-P", str(LXC_PATH), "-n", "web1", "-r"]),
            ("destroy", ["lxc-destroy", "-P", str(LXC_PATH), "-n", "web1"]),
        ],
    )
    async def test_lifecycle_commands(self, container: LxcContainer, method: str, expected: list[str]) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc()) as mock_exec:
            await getattr(container, method)()

        assert list(mock_exec.call_args[0]) == expected

    async def test_checkpoint_flags(self, container: LxcContainer) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc()) as mock_exec:
            await container.checkpoint(Path("/ckpt/web1/0"), stop=True, verbose=True)

        args = list(mock_exec.call_args[0])
        assert args[0] == "lxc-checkpoint"
        assert args[-4:] == ["-D", "/ckpt/web1/0", "-s", "-v"]

    async def test_checkpoint_without_stop(self, container: LxcContainer) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc()) as mock_exec:
            await container.checkpoint(Path("/ckpt/web1/0"), stop=False, verbose=False)

        args = list(mock_exec.call_args[0])
        assert "-s" not in args
        assert "-v" not in args

    async def test_restore(self, container: LxcContainer) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc()) as mock_exec:
            await container.restore(Path("/ckpt/web1/0"), verbose=False)

        args = list(mock_exec.call_args[0])
        assert args[3:] == ["-r", "-d", "-n", "web1", "-D", "/ckpt/web1/0"]

    async def test_checkpoint_failure(self, container: LxcContainer) -> None:
        with patch("asyncio.create_subprocess_exec", return_value=_proc(stderr=b"criu failed", returncode=1)):
            with pytest.raises(ContainerRuntimeError, match="lxc-checkpoint failed"):
                await container.checkpoint(Path("/ckpt/web1/0"), stop=True, verbose=False)

    async def test_create_passes_template_options(self, container: LxcContainer) -> None:
        options = TemplateOptions(distro="ubuntu", release="trusty", arch="amd64")

        with patch("asyncio.create_subprocess_exec", return_value=_proc()) as mock_exec:
            await container.create(options)

        args = list(mock_exec.call_args[0])
        assert args[3:7] == ["-n", "web1", "-t", "download"]
        assert args[-7:] == ["--", "-d", "ubuntu", "-r", "trusty", "-a", "amd64"]
        assert "-f" not in args

    async def test_create_writes_config_items(self, container: LxcContainer) -> None:
        seen: dict[str, str] = {}

        async def fake_exec(*args: str, **kwargs: object) -> AsyncMock:
            config_file = args[list(args).index("-f") + 1]
            with open(config_file) as f:
                seen["path"] = config_file
                seen["content"] = f.read()
            return _proc()

        await container.set_config_item("lxc.idmap", "u 0 200000 65536")
        await container.set_config_item("lxc.idmap", "")
        await container.set_config_item("lxc.idmap", "u 0 100000 65536")
        await container.set_config_item("lxc.idmap", "g 0 100000 65536")

        with patch("asyncio.create_subprocess_exec", side_effect=fake_exec):
            await container.create(TemplateOptions(distro="ubuntu", release="trusty", arch="amd64"))

        assert seen["content"] == "lxc.idmap = u 0 100000 65536\nlxc.idmap = g 0 100000 65536\n"
        assert not os.path.exists(seen["path"])

    async def test_run_command(self, container: LxcContainer) -> None:
        mock_proc = AsyncMock()
        mock_proc.wait.return_value = 3
        options = AttachOptions(stdin=5, stdout=5, stderr=5)

        with patch("asyncio.create_subprocess_exec", return_value=mock_proc) as mock_exec:
            rc = await container.run_command(["/bin/bash"], options)

        assert rc == 3
        args = list(mock_exec.call_args[0])
        assert args[0] == "lxc-attach"
        assert args[-4:] == ["web1", "--clear-env", "--", "/bin/bash"]
        assert mock_exec.call_args.kwargs["stdin"] == 5
        assert mock_exec.call_args.kwargs["start_new_session"] is True

    async def test_run_command_cancel_kills_process(self, container: LxcContainer) -> None:
        started = asyncio.Event()
        mock_proc = MagicMock()
        mock_proc.returncode = None

        async def wait_forever() -> int:
            if not started.is_set():
                started.set()
                await asyncio.Event().wait()
            return -9

        mock_proc.wait = AsyncMock(side_effect=wait_forever)
        options = AttachOptions(stdin=5, stdout=5, stderr=5)

        with patch("asyncio.create_subprocess_exec", return_value=mock_proc):
            task = asyncio.create_task(container.run_command(["/bin/bash"], options))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        mock_proc.kill.assert_called_once()


class TestLxcRuntime:
    async def test_list_defined(self) -> None:
        listing = b"NAME STATE\ndb   STOPPED\nweb1 RUNNING\n"

        with patch("asyncio.create_subprocess_exec", return_value=_proc(stdout=listing)) as mock_exec:
            containers = await LxcRuntime(LXC_PATH).list_defined()

        assert containers == [ContainerInfo("db", "STOPPED"), ContainerInfo("web1", "RUNNING")]
        assert "--defined" in mock_exec.call_args[0]

    def test_parse_empty_listing(self) -> None:
        assert _parse_fancy_listing("") == []
        assert _parse_fancy_listing("NAME STATE") == []

    def test_open_returns_handle(self) -> None:
        handle = LxcRuntime(LXC_PATH).open("web1")
        assert handle.name == "web1"
