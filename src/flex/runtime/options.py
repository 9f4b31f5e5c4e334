"""Value types passed across the container runtime boundary."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ContainerInfo:
    """One defined container as reported by the runtime."""

    name: str
    state: str


@dataclass(frozen=True, slots=True)
class TemplateOptions:
    """Template arguments for creating a container from a downloaded image."""

    distro: str
    release: str
    arch: str
    template: str = "download"


@dataclass(frozen=True, slots=True)
class AttachOptions:
    """Stdio descriptors and environment policy for running a command in a container."""

    stdin: int
    stdout: int
    stderr: int
    clear_env: bool = True
