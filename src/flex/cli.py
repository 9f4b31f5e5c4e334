"""Command line client for flex daemons."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

import click

from flex.client import remotes
from flex.client.attach import attach as attach_terminal
from flex.client.migration import migrate
from flex.client.resolver import connect, resolve
from flex.config import Settings, get_settings
from flex.shared.exceptions import FlexError, MigrationError
from flex.shared.models import ClientConfig, Reply

logger = logging.getLogger(__name__)


def _run(coro: Coroutine[Any, Any, None]) -> None:
    """Run a command; transport and resolution errors go to stderr, not stdout."""
    try:
        asyncio.run(coro)
    except FlexError as exc:
        logger.debug("command failed", exc_info=exc)
        _report(exc)
        sys.exit(1)


def _report(exc: FlexError) -> None:
    if isinstance(exc, MigrationError):
        click.echo(f"error: migration failed while {exc.state}: {exc}", err=True)
    else:
        click.echo(f"error: {exc}", err=True)


def _print_reply(reply: Reply) -> None:
    click.echo(reply.body.rstrip("\n"))
    if not reply.ok:
        sys.exit(1)


async def _load(settings: Settings) -> ClientConfig:
    return await remotes.load_config(settings.client_config)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool) -> None:
    """Manage containers on local and remote flex daemons."""
    settings = get_settings()
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ctx.obj = settings


@cli.command()
@click.argument("remote", required=False)
@click.pass_obj
def ping(settings: Settings, remote: str | None) -> None:
    """Ping the flex daemon to check it is up and working."""

    async def _ping() -> None:
        # connect() pings before handing the client back
        await connect(await _load(settings), remote, settings)
        click.echo("pong")

    _run(_ping())


@cli.command("list")
@click.argument("remote", required=False)
@click.pass_obj
def list_(settings: Settings, remote: str | None) -> None:
    """List the containers known to a flex daemon."""

    async def _list() -> None:
        client = await connect(await _load(settings), remote, settings)
        _print_reply(await client.list())

    _run(_list())


@cli.command()
@click.argument("ref")
@click.option("--distro", default="ubuntu", show_default=True)
@click.option("--release", default="trusty", show_default=True)
@click.option("--arch", default="amd64", show_default=True)
@click.pass_obj
def create(settings: Settings, ref: str, distro: str, release: str, arch: str) -> None:
    """Create a container from the download template."""

    async def _create() -> None:
        client, name = await resolve(await _load(settings), ref, settings)
        _print_reply(await client.create(name, distro, release, arch))

    _run(_create())


def _by_name_command(verb: str) -> click.Command:
    @click.argument("ref")
    @click.pass_obj
    def command(settings: Settings, ref: str) -> None:
        async def _call() -> None:
            client, name = await resolve(await _load(settings), ref, settings)
            do: Callable[[str], Awaitable[Reply]] = getattr(client, verb)
            _print_reply(await do(name))

        _run(_call())

    command.__doc__ = f"{verb.capitalize()} a container."
    return click.command(verb)(command)


for _verb in ("start", "stop", "reboot", "destroy"):
    cli.add_command(_by_name_command(_verb))


@cli.command()
@click.argument("ref")
@click.argument("command", default="/bin/bash")
@click.pass_obj
def attach(settings: Settings, ref: str, command: str) -> None:
    """Run COMMAND inside a container, attached to this terminal."""

    async def _attach() -> None:
        client, name = await resolve(await _load(settings), ref, settings)
        await attach_terminal(client, name, command)

    _run(_attach())


@cli.command()
@click.argument("source")
@click.argument("target")
@click.option("--stop/--no-stop", default=True, show_default=True, help="Stop the container once checkpointed")
@click.option("--verbose", is_flag=True, help="Emit verbose checkpoint/restore logs")
@click.pass_obj
def move(settings: Settings, source: str, target: str, stop: bool, verbose: bool) -> None:
    """Live migrate a container: [remote:]container [remote:]container."""

    async def _move() -> None:
        config = await _load(settings)
        await migrate(
            config,
            source,
            target,
            settings,
            stop=stop,
            verbose=verbose,
            on_reply=lambda reply: click.echo(reply.body),
        )

    _run(_move())


@cli.group()
def remote() -> None:
    """Manage remote flex daemons."""


def _edit_remotes(settings: Settings, edit: Callable[[ClientConfig], ClientConfig]) -> None:
    async def _edit() -> None:
        config = edit(await _load(settings))
        await remotes.save_config(config, settings.client_config)

    _run(_edit())


@remote.command("add")
@click.argument("name")
@click.argument("address")
@click.pass_obj
def remote_add(settings: Settings, name: str, address: str) -> None:
    """Add the remote NAME at ADDRESS (host:port)."""
    _edit_remotes(settings, lambda config: remotes.add_remote(config, name, address))


@remote.command("rm")
@click.argument("name")
@click.pass_obj
def remote_rm(settings: Settings, name: str) -> None:
    """Remove the remote NAME."""
    _edit_remotes(settings, lambda config: remotes.remove_remote(config, name))


@remote.command("rename")
@click.argument("old")
@click.argument("new")
@click.pass_obj
def remote_rename(settings: Settings, old: str, new: str) -> None:
    """Rename remote OLD to NEW."""
    _edit_remotes(settings, lambda config: remotes.rename_remote(config, old, new))


@remote.command("set-url")
@click.argument("name")
@click.argument("address")
@click.pass_obj
def remote_set_url(settings: Settings, name: str, address: str) -> None:
    """Point remote NAME at ADDRESS."""
    _edit_remotes(settings, lambda config: remotes.set_remote_url(config, name, address))


@remote.command("set-default")
@click.argument("name")
@click.pass_obj
def remote_set_default(settings: Settings, name: str) -> None:
    """Use NAME for references without a remote ("local" for this host)."""
    _edit_remotes(settings, lambda config: remotes.set_default_remote(config, name))


@remote.command("list")
@click.pass_obj
def remote_list(settings: Settings) -> None:
    """List all remotes."""

    async def _list() -> None:
        for line in remotes.list_remotes(await _load(settings)):
            click.echo(line)

    _run(_list())


def main() -> None:
    """Entry point for ``flex``."""
    cli()


if __name__ == "__main__":
    main()
