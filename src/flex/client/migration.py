"""Client-side orchestration of container migration between two daemons."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import NoReturn, TypeVar

from flex.client.client import FlexClient
from flex.client.resolver import parse_reference, select_client
from flex.config import Settings
from flex.shared.enums import MigrationState
from flex.shared.exceptions import MigrationError, TransportError
from flex.shared.models import ClientConfig, Reply

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class MigrationResult:
    """Outcome of one migration run."""

    name: str
    state: MigrationState = MigrationState.IDLE
    checkpoint_id: int | None = None
    replies: list[Reply] = field(default_factory=list)


class MigrationCoordinator:
    """Drives a source and a target daemon through checkpoint → transfer → restore.

    Talks to the runtime only through the two daemons' request APIs. Each
    step gates the next; a failing step moves the run to ``FAILED`` and
    raises ``MigrationError``. Nothing already done is rolled back: a
    checkpoint or a partial transfer left behind is for the operator to
    clean up.
    """

    def __init__(
        self,
        source: FlexClient,
        target: FlexClient,
        *,
        stop: bool = True,
        verbose: bool = False,
        on_reply: Callable[[Reply], None] | None = None,
    ) -> None:
        self._source = source
        self._target = target
        self._stop = stop
        self._verbose = verbose
        self._on_reply = on_reply
        self.state = MigrationState.IDLE

    def check_preconditions(self) -> None:
        """Both ends must be network daemons: the transfer needs the target's public address."""
        if self._source.is_local or self._target.is_local:
            self._fail("checkpointing to local remote not supported")

    async def migrate(self, name: str) -> MigrationResult:
        """Move container ``name`` from the source daemon to the target daemon.

        Raises:
            MigrationError: On a failed precondition or step; ``state`` names
                the step that failed.
        """
        self.check_preconditions()
        result = MigrationResult(name=name)
        target_remote = self._target.remote
        if target_remote is None:
            self._fail("target has no network address")

        self._enter(MigrationState.CHECKPOINTING, name)
        checkpoint = await self._call(self._source.checkpoint(name, stop=self._stop, verbose=self._verbose))
        if not checkpoint.ok or checkpoint.checkpoint_id is None:
            self._fail(checkpoint.error or "checkpoint failed")
        checkpoint_id = checkpoint.checkpoint_id
        result.checkpoint_id = checkpoint_id
        self._enter(MigrationState.CHECKPOINTED, name)

        self._enter(MigrationState.TRANSFERRING, name)
        sent = await self._call(self._source.send_container(target_remote, name, checkpoint_id))
        self._record(result, sent)
        if not sent.ok:
            self._fail(sent.body)
        self._enter(MigrationState.TRANSFERRED, name)

        self._enter(MigrationState.RESTORING, name)
        restored = await self._call(self._target.restore(name, checkpoint_id, verbose=self._verbose))
        self._record(result, restored)
        if not restored.ok:
            self._fail(restored.body)
        self._enter(MigrationState.RESTORED, name)

        result.state = self.state
        return result

    def _enter(self, state: MigrationState, name: str) -> None:
        logger.debug("migration of %s: %s -> %s", name, self.state.value, state.value)
        self.state = state

    def _record(self, result: MigrationResult, reply: Reply) -> None:
        result.replies.append(reply)
        if self._on_reply is not None:
            self._on_reply(reply)

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except TransportError as exc:
            self._fail(str(exc), cause=exc)

    def _fail(self, message: str, *, cause: Exception | None = None) -> NoReturn:
        failed_in = self.state
        self.state = MigrationState.FAILED
        logger.warning("migration failed while %s: %s", failed_in.value, message)
        raise MigrationError(message, state=failed_in.value) from cause


async def migrate(
    config: ClientConfig,
    source_ref: str,
    target_ref: str,
    settings: Settings,
    *,
    stop: bool = True,
    verbose: bool = False,
    on_reply: Callable[[Reply], None] | None = None,
) -> MigrationResult:
    """Resolve both references and move the source container to the target daemon.

    Locality is checked before either daemon is contacted, so a local
    endpoint never leads to a checkpoint.
    """
    source_ref_parsed = parse_reference(source_ref)
    target_ref_parsed = parse_reference(target_ref)
    source = select_client(config, _remote_name(config, source_ref_parsed.remote), settings)
    target = select_client(config, _remote_name(config, target_ref_parsed.remote), settings)

    coordinator = MigrationCoordinator(source, target, stop=stop, verbose=verbose, on_reply=on_reply)
    coordinator.check_preconditions()

    await source.ping()
    await target.ping()
    return await coordinator.migrate(source_ref_parsed.container)


def _remote_name(config: ClientConfig, remote: str | None) -> str:
    return config.default_remote if remote is None else remote
