"""Request handlers for the flex daemon.

Handlers never print. Local problems worth an admin's attention are logged;
anything that prevents a request from being served is reported back to the
client as a plaintext body tagged ``X-Flex-Result: error``.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from flex.config import Settings
from flex.daemon.attach import AttachSession
from flex.daemon.checkpoints import CheckpointStore
from flex.daemon.locks import ContainerLocks
from flex.daemon.transfer import RsyncTransfer
from flex.runtime.interfaces import Container, ContainerRuntime
from flex.runtime.options import TemplateOptions
from flex.shared.enums import ReplyStatus
from flex.shared.exceptions import AttachError, CheckpointError, ContainerRuntimeError, ParameterError, TransferError
from flex.shared.models import RESULT_HEADER, RemoteConfig

logger = logging.getLogger(__name__)

router = APIRouter()

_TRUE_VALUES = {"1", "true", "yes", "on", "verbose"}


def reply(body: str = "", *, ok: bool = True) -> PlainTextResponse:
    """Plaintext response carrying its explicit result tag."""
    status = ReplyStatus.OK if ok else ReplyStatus.ERROR
    return PlainTextResponse(body, headers={RESULT_HEADER: status.value})


def fail(body: str) -> PlainTextResponse:
    return reply(body, ok=False)


def _state(request: Request, key: str) -> Any:
    return getattr(request.app.state, key)


def _runtime(request: Request) -> ContainerRuntime:
    return _state(request, "runtime")


def _locks(request: Request) -> ContainerLocks:
    return _state(request, "locks")


def _checkpoints(request: Request) -> CheckpointStore:
    return _state(request, "checkpoints")


def _settings(request: Request) -> Settings:
    return _state(request, "settings")


def _require(request: Request, field: str) -> str:
    value = request.query_params.get(field, "")
    if not value:
        raise ParameterError(field)
    return value


def _container_name(request: Request) -> str:
    name = _require(request, "name")
    if "/" in name or name in (".", ".."):
        raise ParameterError("name")
    return name


def _flag(request: Request, field: str) -> bool:
    return request.query_params.get(field, "").strip().lower() in _TRUE_VALUES


@router.get("/ping")
async def ping(request: Request) -> PlainTextResponse:
    remote_addr = request.client.host if request.client else "unix socket"
    logger.debug("responding to ping from %s", remote_addr)
    return reply("pong")


@router.get("/list")
async def list_containers(request: Request) -> PlainTextResponse:
    logger.debug("responding to list")
    try:
        containers = await _runtime(request).list_defined()
    except ContainerRuntimeError as exc:
        logger.warning("listing containers failed: %s", exc)
        return fail("failed listing containers")
    lines = [f"{i}: {c.name} ({c.state})\n" for i, c in enumerate(containers)]
    return reply("".join(lines))


@router.get("/create")
async def create(request: Request) -> PlainTextResponse:
    logger.debug("responding to create")
    name = _container_name(request)
    options = TemplateOptions(
        distro=_require(request, "distro"),
        release=_require(request, "release"),
        arch=_require(request, "arch"),
        template=_settings(request).lxc_template,
    )

    container = _runtime(request).open(name)
    async with _locks(request).hold(name):
        try:
            await _apply_idmap(container, _settings(request))
        except ContainerRuntimeError as exc:
            logger.warning("setting id mapping for %s failed: %s", name, exc)
            return fail("failed to set id mapping")

        try:
            await container.create(options)
        except ContainerRuntimeError as exc:
            logger.warning("creating %s failed: %s", name, exc)
            return fail("fail!")
    return reply("success!")


@router.get("/attach")
async def attach(request: Request) -> PlainTextResponse:
    logger.debug("responding to attach")
    settings = _settings(request)
    session = AttachSession(
        _runtime(request),
        name=_container_name(request),
        command=_require(request, "command"),
        secret=_require(request, "secret"),
        host=settings.attach_host,
        read_size=settings.attach_read_size,
        accept_timeout=settings.attach_accept_timeout,
    )
    try:
        address = session.listen()
    except AttachError as exc:
        logger.warning("attach to %s: %s", session.name, exc)
        return fail("failed listening")

    # Sessions outlive the request and are not cancelled by daemon shutdown
    sessions: set[asyncio.Task[None]] = _state(request, "sessions")
    task = asyncio.create_task(session.run(), name=f"attach-{session.name}-{secrets.token_hex(4)}")
    sessions.add(task)
    task.add_done_callback(sessions.discard)
    return reply(address)


def _by_name(
    verb: str,
    action: Callable[[Container], Awaitable[None]],
) -> Callable[[Request], Awaitable[PlainTextResponse]]:
    async def handler(request: Request) -> PlainTextResponse:
        logger.debug("responding to %s", verb)
        name = _container_name(request)
        container = _runtime(request).open(name)
        async with _locks(request).hold(name):
            try:
                await action(container)
            except ContainerRuntimeError as exc:
                logger.warning("%s %s failed: %s", verb, name, exc)
                return fail("operation failed")
        return reply()

    handler.__name__ = verb
    return handler


router.add_api_route("/start", _by_name("start", lambda c: c.start()), methods=["GET"])
router.add_api_route("/stop", _by_name("stop", lambda c: c.stop()), methods=["GET"])
router.add_api_route("/reboot", _by_name("reboot", lambda c: c.reboot()), methods=["GET"])
router.add_api_route("/destroy", _by_name("destroy", lambda c: c.destroy()), methods=["GET"])


@router.get("/checkpoint")
async def checkpoint(request: Request) -> PlainTextResponse:
    logger.debug("responding to checkpoint")
    name = _container_name(request)
    stop = _flag(request, "stop")
    verbose = _flag(request, "verbose")
    store = _checkpoints(request)
    container = _runtime(request).open(name)

    async with _locks(request).hold(name):
        try:
            checkpoint_id, path = store.allocate(name)
        except CheckpointError as exc:
            logger.warning("checkpoint of %s: %s", name, exc)
            return fail(str(exc))

        try:
            await container.checkpoint(path, stop=stop, verbose=verbose)
        except ContainerRuntimeError as exc:
            logger.warning("checkpoint %d of %s failed: %s", checkpoint_id, name, exc)
            store.discard(path)
            return fail("checkpoint failed")

    return reply(str(checkpoint_id))


@router.get("/restore")
async def restore(request: Request) -> PlainTextResponse:
    logger.debug("responding to restore")
    name = _container_name(request)
    raw_id = _require(request, "id")
    verbose = _flag(request, "verbose")
    container = _runtime(request).open(name)

    async with _locks(request).hold(name):
        try:
            path = _checkpoints(request).locate(name, raw_id)
        except CheckpointError as exc:
            return fail(str(exc))

        try:
            await container.restore(path, verbose=verbose)
        except ContainerRuntimeError as exc:
            logger.warning("restore of %s from %s failed: %s", name, path, exc)
            return fail("restore failed!")

    return reply("restore success!")


@router.get("/sendContainer")
async def send_container(request: Request) -> PlainTextResponse:
    logger.debug("responding to sendContainer")
    name = _container_name(request)
    host = RemoteConfig(address=_require(request, "remote")).host
    transfer: RsyncTransfer = _state(request, "transfer")

    # Without a checkpoint this is an offline send of the container alone
    if _flag(request, "checkpoint") or request.query_params.get("id"):
        try:
            path = _checkpoints(request).locate(name, _require(request, "id"))
        except CheckpointError as exc:
            return fail(str(exc))
        try:
            await transfer.push(host, path)
        except TransferError as exc:
            logger.warning("%s", exc)
            return fail("rsync of checkpoint failed!")

    container_dir = _settings(request).lxc_path / name
    if not container_dir.is_dir():
        return fail("container doesn't exist!")
    try:
        await transfer.push(host, container_dir)
    except TransferError as exc:
        logger.warning("%s", exc)
        return fail("rsync of container failed!")

    return reply("send successful!")


async def _apply_idmap(container: Container, settings: Settings) -> None:
    """Replace any inherited id mapping with the configured one."""
    if not settings.uid_map and not settings.gid_map:
        return
    logger.debug("setting custom idmap")
    await container.set_config_item("lxc.idmap", "")
    if settings.uid_map:
        await container.set_config_item("lxc.idmap", f"u 0 {settings.uid_map}")
    if settings.gid_map:
        await container.set_config_item("lxc.idmap", f"g 0 {settings.gid_map}")
