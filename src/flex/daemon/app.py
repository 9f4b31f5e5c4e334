"""FastAPI application factory for the flex daemon."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from flex.config import Settings, get_settings
from flex.daemon.checkpoints import CheckpointStore
from flex.daemon.locks import ContainerLocks
from flex.daemon.routes import fail, router
from flex.daemon.transfer import RsyncTransfer
from flex.runtime.interfaces import ContainerRuntime
from flex.runtime.lxc import LxcRuntime
from flex.shared.exceptions import ParameterError

logger = logging.getLogger(__name__)


async def _parameter_error(request: Request, exc: Exception) -> PlainTextResponse:
    # A bad parameter only fails its own request
    logger.debug("%s %s: %s", request.method, request.url.path, exc)
    return fail(str(exc))


def create_app(
    settings: Settings | None = None,
    *,
    runtime: ContainerRuntime | None = None,
) -> FastAPI:
    """Create and configure the daemon's request dispatcher."""
    if settings is None:
        settings = get_settings()
    if runtime is None:
        runtime = LxcRuntime(settings.lxc_path, bin_dir=settings.lxc_bin_dir)

    app = FastAPI(title="flex daemon", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.runtime = runtime
    app.state.checkpoints = CheckpointStore(settings.var_path("checkpoints"))
    app.state.locks = ContainerLocks()
    app.state.transfer = RsyncTransfer(
        rsync_bin=settings.rsync_bin,
        rsync_path=settings.rsync_path,
        timeout=settings.transfer_timeout,
    )
    app.state.sessions = set()
    app.add_exception_handler(ParameterError, _parameter_error)
    app.include_router(router)
    return app
