"""LXC container runtime driven through the ``lxc-*`` command line tools."""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from flex.runtime.options import AttachOptions, ContainerInfo, TemplateOptions
from flex.shared.exceptions import ContainerRuntimeError

logger = logging.getLogger(__name__)


class LxcCommand:
    """Runs ``lxc-*`` tools against one LXC path through async subprocess calls."""

    def __init__(self, lxc_path: Path, *, bin_dir: str = "") -> None:
        self.lxc_path = lxc_path
        self._bin_dir = bin_dir

    def argv(self, tool: str, *args: str) -> list[str]:
        binary = os.path.join(self._bin_dir, tool) if self._bin_dir else tool
        return [binary, "-P", str(self.lxc_path), *args]

    async def run(self, tool: str, *args: str) -> tuple[str, str, int]:
        """Run an LXC tool and return (stdout, stderr, returncode)."""
        cmd = self.argv(tool, *args)
        logger.debug("running %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout_b, stderr_b = await proc.communicate()
        except FileNotFoundError as exc:
            raise ContainerRuntimeError(f"{tool} binary not found") from exc

        return (
            stdout_b.decode(errors="replace").strip(),
            stderr_b.decode(errors="replace").strip(),
            proc.returncode or 0,
        )

    async def check(self, tool: str, *args: str) -> str:
        """Run an LXC tool and raise ``ContainerRuntimeError`` on a non-zero exit."""
        stdout, stderr, rc = await self.run(tool, *args)
        if rc != 0:
            raise ContainerRuntimeError(f"{tool} failed (rc={rc}): {stderr[-500:] or stdout[-500:]}")
        return stdout


class LxcContainer:
    """Handle on one named LXC container.

    Implements the ``Container`` protocol. Configuration items set before
    :meth:`create` are written to a temporary config file handed to
    ``lxc-create``.
    """

    def __init__(self, name: str, lxc: LxcCommand) -> None:
        self.name = name
        self._lxc = lxc
        self._config_items: list[tuple[str, str]] = []

    async def create(self, options: TemplateOptions) -> None:
        args = ["-n", self.name, "-t", options.template]
        config_file: str | None = None
        if self._config_items:
            with tempfile.NamedTemporaryFile("w", suffix=".conf", prefix="flex-", delete=False) as f:
                for key, value in self._config_items:
                    f.write(f"{key} = {value}\n")
                config_file = f.name
            args += ["-f", config_file]
        args += ["--", "-d", options.distro, "-r", options.release, "-a", options.arch]

        try:
            await self._lxc.check("lxc-create", *args)
        finally:
            if config_file is not None:
                os.unlink(config_file)
        logger.info("created container %s (%s %s %s)", self.name, options.distro, options.release, options.arch)

    async def set_config_item(self, key: str, value: str) -> None:
        if not value:
            self._config_items = [(k, v) for k, v in self._config_items if k != key]
            return
        self._config_items.append((key, value.strip()))

    async def start(self) -> None:
        await self._lxc.check("lxc-start", "-n", self.name, "-d")
        logger.info("started container %s", self.name)

    async def stop(self) -> None:
        await self._lxc.check("lxc-stop", "-n", self.name)
        logger.info("stopped container %s", self.name)

    async def reboot(self) -> None:
        await self._lxc.check("lxc-stop", "-n", self.name, "-r")
        logger.info("rebooted container %s", self.name)

    async def destroy(self) -> None:
        await self._lxc.check("lxc-destroy", "-n", self.name)
        logger.info("destroyed container %s", self.name)

    async def checkpoint(self, path: Path, *, stop: bool, verbose: bool) -> None:
        args = ["-n", self.name, "-D", str(path)]
        if stop:
            args.append("-s")
        if verbose:
            args.append("-v")
        await self._lxc.check("lxc-checkpoint", *args)
        logger.info("checkpointed container %s into %s (stop=%s)", self.name, path, stop)

    async def restore(self, path: Path, *, verbose: bool) -> None:
        args = ["-r", "-d", "-n", self.name, "-D", str(path)]
        if verbose:
            args.append("-v")
        await self._lxc.check("lxc-checkpoint", *args)
        logger.info("restored container %s from %s", self.name, path)

    async def run_command(self, argv: list[str], options: AttachOptions) -> int:
        args = ["-n", self.name]
        if options.clear_env:
            args.append("--clear-env")
        cmd = self._lxc.argv("lxc-attach", *args, "--", *argv)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=options.stdin,
                stdout=options.stdout,
                stderr=options.stderr,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise ContainerRuntimeError("lxc-attach binary not found") from exc

        try:
            rc = await proc.wait()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise

        logger.debug("command %s in %s exited with %d", argv, self.name, rc)
        return rc


class LxcRuntime:
    """Implements the ``ContainerRuntime`` protocol for one LXC path."""

    def __init__(self, lxc_path: Path, *, bin_dir: str = "") -> None:
        self._lxc = LxcCommand(lxc_path, bin_dir=bin_dir)

    async def list_defined(self) -> list[ContainerInfo]:
        stdout = await self._lxc.check("lxc-ls", "--defined", "--fancy", "--fancy-format", "NAME,STATE")
        return _parse_fancy_listing(stdout)

    def open(self, name: str) -> LxcContainer:
        return LxcContainer(name, self._lxc)


def _parse_fancy_listing(output: str) -> list[ContainerInfo]:
    """Parse ``lxc-ls --fancy --fancy-format NAME,STATE`` output (header line first)."""
    containers: list[ContainerInfo] = []
    for line in output.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 2:
            continue
        containers.append(ContainerInfo(name=fields[0], state=fields[1]))
    return containers
