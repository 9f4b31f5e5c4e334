"""Resolve ``[remote:]container`` references to verified daemon clients."""

from __future__ import annotations

import logging

from flex.client.client import FlexClient
from flex.config import Settings
from flex.shared.exceptions import InvalidReferenceError, UnknownRemoteError
from flex.shared.models import ClientConfig, ContainerReference

logger = logging.getLogger(__name__)

SEPARATOR = ":"
LOCAL_REMOTE = "local"


def parse_reference(raw: str) -> ContainerReference:
    """Split ``raw`` on its first separator.

    Raises:
        InvalidReferenceError: If the container part is empty.
    """
    remote, sep, container = raw.partition(SEPARATOR)
    if not sep:
        remote, container = "", raw
    if not container:
        raise InvalidReferenceError(f"no container name in reference {raw!r}")
    return ContainerReference(remote=remote if sep else None, container=container)


def select_client(config: ClientConfig, remote: str, settings: Settings) -> FlexClient:
    """Pick the transport for ``remote`` without touching the network.

    Raises:
        UnknownRemoteError: If ``remote`` is neither local nor configured.
    """
    if remote in ("", LOCAL_REMOTE):
        return FlexClient.local(settings.socket_path, timeout=settings.client_timeout)
    remote_config = config.remotes.get(remote)
    if remote_config is None:
        raise UnknownRemoteError(f"unknown remote name: {remote!r}")
    return FlexClient.network(remote_config, timeout=settings.client_timeout)


async def connect(config: ClientConfig, remote: str | None, settings: Settings) -> FlexClient:
    """Return a client for ``remote`` (default remote when None) that answered a ping."""
    name = config.default_remote if remote is None else remote
    client = select_client(config, name, settings)
    await client.ping()
    logger.debug("connected to %s (%s)", name or LOCAL_REMOTE, client.base_url)
    return client


async def resolve(config: ClientConfig, raw: str, settings: Settings) -> tuple[FlexClient, str]:
    """Resolve a container reference to a live client and the container name.

    Raises:
        InvalidReferenceError: If the reference has no container name.
        UnknownRemoteError: If the remote is not configured; nothing is dialled.
        TransportError: If the daemon does not answer the ping with ``pong``.
    """
    ref = parse_reference(raw)
    client = await connect(config, ref.remote, settings)
    return client, ref.container
