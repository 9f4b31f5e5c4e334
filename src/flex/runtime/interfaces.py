"""Protocol interfaces for the container runtime collaborator."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

from flex.runtime.options import AttachOptions, ContainerInfo, TemplateOptions


@runtime_checkable
class Container(Protocol):
    """Handle on one named container.

    Handles are cheap and opened fresh per request; every method raises
    ``ContainerRuntimeError`` on failure.
    """

    name: str

    async def create(self, options: TemplateOptions) -> None:
        """Create the container's rootfs and configuration from a template."""
        ...

    async def set_config_item(self, key: str, value: str) -> None:
        """Set a configuration item; an empty value clears every entry for ``key``."""
        ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def reboot(self) -> None: ...

    async def destroy(self) -> None: ...

    async def checkpoint(self, path: Path, *, stop: bool, verbose: bool) -> None:
        """Dump the running container's process state into ``path``.

        Args:
            path: Existing, empty checkpoint directory.
            stop: Stop the container once the dump completes.
            verbose: Ask the checkpoint facility for verbose logs.
        """
        ...

    async def restore(self, path: Path, *, verbose: bool) -> None:
        """Restore the container from the checkpoint in ``path``."""
        ...

    async def run_command(self, argv: list[str], options: AttachOptions) -> int:
        """Run ``argv`` inside the container wired to the given descriptors.

        Blocks until the command exits and returns its exit status.
        Cancelling the call terminates the command.
        """
        ...


@runtime_checkable
class ContainerRuntime(Protocol):
    """Protocol for the runtime that owns every container under one LXC path."""

    async def list_defined(self) -> list[ContainerInfo]:
        """Return all defined containers in a stable order."""
        ...

    def open(self, name: str) -> Container:
        """Return a handle for ``name``; the container need not exist yet."""
        ...
