"""HTTP client for one flex daemon."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

import httpx

from flex.shared.enums import ReplyStatus
from flex.shared.exceptions import PingError, TransportError
from flex.shared.models import RESULT_HEADER, CheckpointResult, RemoteConfig, Reply

logger = logging.getLogger(__name__)

LOCAL_BASE_URL = "http://unix.socket"

TransportFactory = Callable[[], httpx.AsyncBaseTransport]


class FlexClient:
    """Talks to a flex daemon over its unix socket or its network endpoint.

    Every request returns the daemon's plaintext body together with its
    result tag; only transport-level problems raise.
    """

    def __init__(
        self,
        base_url: str,
        *,
        remote: RemoteConfig | None = None,
        transport_factory: TransportFactory | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.remote = remote
        self._transport_factory = transport_factory
        self._timeout = timeout

    @classmethod
    def local(cls, socket_path: Path, *, timeout: float | None = None) -> FlexClient:
        """Client for the daemon on this host, reached through its unix socket."""
        return cls(
            LOCAL_BASE_URL,
            transport_factory=lambda: httpx.AsyncHTTPTransport(uds=str(socket_path)),
            timeout=timeout,
        )

    @classmethod
    def network(cls, remote: RemoteConfig, *, timeout: float | None = None) -> FlexClient:
        return cls(f"http://{remote.address}", remote=remote, timeout=timeout)

    @property
    def is_local(self) -> bool:
        return self.remote is None

    async def ping(self) -> None:
        """Check that the daemon is up, listening and working.

        Raises:
            TransportError: If the daemon cannot be reached.
            PingError: If it answers with anything but ``pong``.
        """
        logger.debug("pinging the daemon at %s", self.base_url)
        reply = await self._get("/ping")
        if reply.body != "pong":
            raise PingError(f"unexpected response to daemon ping: {reply.body!r}")
        logger.debug("pong received")

    async def list(self) -> Reply:
        logger.debug("getting list from the daemon")
        return await self._get("/list")

    async def create(self, name: str, distro: str, release: str, arch: str) -> Reply:
        return await self._get(
            "/create",
            {"name": name, "distro": distro, "release": release, "arch": arch},
        )

    async def attach(self, name: str, command: str, secret: str) -> Reply:
        """Ask for an attach session; the reply body is the address to connect to."""
        return await self._get("/attach", {"name": name, "command": command, "secret": secret})

    async def call_by_name(self, function: str, name: str) -> Reply:
        """Call a name-only lifecycle verb (start, stop, reboot, destroy)."""
        return await self._get(f"/{function}", {"name": name})

    async def start(self, name: str) -> Reply:
        return await self.call_by_name("start", name)

    async def stop(self, name: str) -> Reply:
        return await self.call_by_name("stop", name)

    async def reboot(self, name: str) -> Reply:
        return await self.call_by_name("reboot", name)

    async def destroy(self, name: str) -> Reply:
        return await self.call_by_name("destroy", name)

    async def checkpoint(self, name: str, *, stop: bool, verbose: bool = False) -> CheckpointResult:
        params = {"name": name}
        if stop:
            params["stop"] = "true"
        if verbose:
            params["verbose"] = "true"
        return CheckpointResult.from_reply(await self._get("/checkpoint", params))

    async def restore(self, name: str, checkpoint_id: int, *, verbose: bool = False) -> Reply:
        params = {"name": name, "id": str(checkpoint_id)}
        if verbose:
            params["verbose"] = "true"
        return await self._get("/restore", params)

    async def send_container(self, remote: RemoteConfig, name: str, checkpoint_id: int | None = None) -> Reply:
        """Ask this daemon to push ``name`` (and a checkpoint, if given) to ``remote``."""
        params = {"name": name, "remote": remote.address}
        if checkpoint_id is not None:
            params["checkpoint"] = "true"
            params["id"] = str(checkpoint_id)
        return await self._get("/sendContainer", params)

    def _client(self) -> httpx.AsyncClient:
        transport = self._transport_factory() if self._transport_factory is not None else None
        return httpx.AsyncClient(base_url=self.base_url, transport=transport, timeout=self._timeout)

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Reply:
        try:
            async with self._client() as client:
                resp = await client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise TransportError(f"request to {self.base_url}{path} failed: {exc}") from exc

        if resp.status_code != 200:
            raise TransportError(f"{self.base_url}{path} returned {resp.status_code}: {resp.text[:200]}")

        tag = resp.headers.get(RESULT_HEADER, "")
        try:
            status = ReplyStatus(tag)
        except ValueError as exc:
            raise TransportError(f"{self.base_url}{path} answered without a valid {RESULT_HEADER}: {tag!r}") from exc
        return Reply(status=status, body=resp.text)
