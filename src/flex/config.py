"""Centralised configuration via Pydantic Settings."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Daemon and client configuration loaded from ``FLEX_*`` environment variables."""

    model_config = {"env_prefix": "FLEX_", "frozen": True}

    # Root for all persisted daemon state and the unix socket (FLEX_DIR)
    dir: Path = Path("/var/lib/flex")

    # Optional network endpoint, "host:port". Empty disables it.
    listen_addr: str = ""

    # Attach sessions
    attach_host: str = "0.0.0.0"
    attach_read_size: int = 100
    # Seconds an unclaimed attach listener stays open, None waits forever
    attach_accept_timeout: float | None = 300.0

    # Transfer (rsync over ssh, host trust is pre-shared)
    rsync_bin: str = "rsync"
    rsync_path: str = "sudo rsync"
    transfer_timeout: float | None = None

    # LXC
    lxc_template: str = "download"
    lxc_bin_dir: str = ""
    # "<start> <range>" for the container's root id mapping, empty disables it
    uid_map: str = ""
    gid_map: str = ""

    # Client
    client_config: Path = Path("~/.config/flex/config.json")
    client_timeout: float | None = None

    log_level: str = "INFO"

    @property
    def lxc_path(self) -> Path:
        return self.var_path("lxc")

    @property
    def socket_path(self) -> Path:
        return self.var_path("unix.socket")

    def var_path(self, *parts: str) -> Path:
        """Join ``parts`` under the state root."""
        return self.dir.joinpath(*parts)


def get_settings() -> Settings:
    """Factory, patched in tests."""
    return Settings()
