"""Client configuration persistence and remote table edits.

The configuration is an explicit, immutable value: edits return a new
``ClientConfig`` and nothing is written until ``save_config`` is called.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import aiofiles  # type: ignore[import-untyped]
from pydantic import ValidationError

from flex.shared.exceptions import RemoteError
from flex.shared.models import ClientConfig, RemoteConfig

logger = logging.getLogger(__name__)


async def load_config(path: Path) -> ClientConfig:
    """Read the client configuration; a missing file yields an empty one.

    Raises:
        RemoteError: If the file exists but cannot be parsed.
    """
    path = path.expanduser()
    if not path.exists():
        logger.debug("no client config at %s, using defaults", path)
        return ClientConfig()

    async with aiofiles.open(path) as f:
        raw = await f.read()
    try:
        return ClientConfig.model_validate_json(raw)
    except ValidationError as exc:
        raise RemoteError(f"invalid client config {path}: {exc}") from exc


async def save_config(config: ClientConfig, path: Path) -> None:
    """Persist the client configuration, creating parent directories."""
    path = path.expanduser()
    os.makedirs(path.parent, exist_ok=True)
    async with aiofiles.open(path, "w") as f:
        await f.write(config.model_dump_json(indent=2))
    logger.debug("saved client config to %s", path)


def add_remote(config: ClientConfig, name: str, address: str) -> ClientConfig:
    if name in config.remotes:
        raise RemoteError(f"remote {name} exists as <{config.remotes[name].address}>")
    remotes = {**config.remotes, name: RemoteConfig(address=address)}
    return config.model_copy(update={"remotes": remotes})


def remove_remote(config: ClientConfig, name: str) -> ClientConfig:
    if name not in config.remotes:
        raise RemoteError(f"remote {name} doesn't exist")
    remotes = {k: v for k, v in config.remotes.items() if k != name}
    update: dict[str, object] = {"remotes": remotes}
    if config.default_remote == name:
        update["default_remote"] = ""
    return config.model_copy(update=update)


def rename_remote(config: ClientConfig, old: str, new: str) -> ClientConfig:
    if old not in config.remotes:
        raise RemoteError(f"remote {old} doesn't exist")
    if new in config.remotes:
        raise RemoteError(f"remote {new} already exists")
    remotes = {(new if k == old else k): v for k, v in config.remotes.items()}
    update: dict[str, object] = {"remotes": remotes}
    if config.default_remote == old:
        update["default_remote"] = new
    return config.model_copy(update=update)


def set_remote_url(config: ClientConfig, name: str, address: str) -> ClientConfig:
    if name not in config.remotes:
        raise RemoteError(f"remote {name} doesn't exist")
    remotes = {**config.remotes, name: RemoteConfig(address=address)}
    return config.model_copy(update={"remotes": remotes})


def set_default_remote(config: ClientConfig, name: str) -> ClientConfig:
    if name not in ("", "local") and name not in config.remotes:
        raise RemoteError(f"remote {name} doesn't exist")
    return config.model_copy(update={"default_remote": name})


def list_remotes(config: ClientConfig) -> list[str]:
    return [f"{name} <{rc.address}>" for name, rc in sorted(config.remotes.items())]
