"""Shared pytest fixtures for the flex test suite."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest
from fastapi import FastAPI

from flex.config import Settings
from flex.daemon.app import create_app
from flex.runtime.options import AttachOptions, ContainerInfo, TemplateOptions
from flex.shared.exceptions import ContainerRuntimeError


class FakeContainer:
    """In-memory container handle backed by a ``FakeRuntime``."""

    def __init__(self, name: str, runtime: FakeRuntime) -> None:
        self.name = name
        self._runtime = runtime

    def _require(self) -> None:
        if self.name not in self._runtime.states:
            raise ContainerRuntimeError(f"{self.name} does not exist")

    async def create(self, options: TemplateOptions) -> None:
        if self.name in self._runtime.states:
            raise ContainerRuntimeError(f"{self.name} already exists")
        self._runtime.created.append((self.name, options))
        self._runtime.states[self.name] = "STOPPED"

    async def set_config_item(self, key: str, value: str) -> None:
        self._runtime.config_items.append((self.name, key, value))

    async def start(self) -> None:
        self._require()
        self._runtime.states[self.name] = "RUNNING"

    async def stop(self) -> None:
        self._require()
        self._runtime.states[self.name] = "STOPPED"

    async def reboot(self) -> None:
        self._require()

    async def destroy(self) -> None:
        self._require()
        del self._runtime.states[self.name]

    async def checkpoint(self, path: Path, *, stop: bool, verbose: bool) -> None:
        self._require()
        if self._runtime.fail_checkpoint:
            (path / "partial.img").write_bytes(b"")
            raise ContainerRuntimeError("criu dump failed")
        (path / "inventory.img").write_bytes(b"dump")
        self._runtime.checkpoints.append((self.name, path, stop, verbose))
        if stop:
            self._runtime.states[self.name] = "STOPPED"

    async def restore(self, path: Path, *, verbose: bool) -> None:
        self._require()
        self._runtime.restores.append((self.name, path, verbose))
        self._runtime.states[self.name] = "RUNNING"

    async def run_command(self, argv: list[str], options: AttachOptions) -> int:
        self._runtime.commands.append((self.name, argv))
        os.write(options.stdout, self._runtime.command_output)
        if self._runtime.hold_command:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self._runtime.command_cancelled = True
                raise
        return 0


class FakeRuntime:
    """Implements ``ContainerRuntime`` with a dict of container states."""

    def __init__(self, states: dict[str, str] | None = None) -> None:
        self.states: dict[str, str] = dict(states or {})
        self.created: list[tuple[str, TemplateOptions]] = []
        self.config_items: list[tuple[str, str, str]] = []
        self.checkpoints: list[tuple[str, Path, bool, bool]] = []
        self.restores: list[tuple[str, Path, bool]] = []
        self.commands: list[tuple[str, list[str]]] = []
        self.command_output = b"hello from the container\n"
        self.fail_checkpoint = False
        self.hold_command = False
        self.command_cancelled = False

    async def list_defined(self) -> list[ContainerInfo]:
        return [ContainerInfo(name=name, state=state) for name, state in sorted(self.states.items())]

    def open(self, name: str) -> FakeContainer:
        return FakeContainer(name, self)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Return a Settings instance rooted in a temporary directory."""
    return Settings(
        dir=tmp_path / "flex",
        attach_host="127.0.0.1",
        attach_accept_timeout=5.0,
        client_config=tmp_path / "client.json",
    )


@pytest.fixture()
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def app(settings: Settings, runtime: FakeRuntime) -> FastAPI:
    return create_app(settings, runtime=runtime)
