"""Hierarchical exception types for flex."""

from __future__ import annotations


class FlexError(Exception):
    """Base exception for all flex errors."""


# ── Daemon ──────────────────────────────────────────────────────


class DaemonError(FlexError):
    """Daemon failed to start or stop."""


class ContainerRuntimeError(FlexError):
    """LXC operation failed."""


class CheckpointError(FlexError):
    """Checkpoint allocation or lookup failed."""


class TransferError(FlexError):
    """Pushing container state to another host failed."""


class ParameterError(FlexError):
    """A required request parameter is missing or empty."""

    def __init__(self, field: str) -> None:
        super().__init__(f"failed parsing {field}")
        self.field = field


class AttachError(FlexError):
    """Attach session could not be set up."""


# ── Client ──────────────────────────────────────────────────────


class TransportError(FlexError):
    """Failed to talk to a flex daemon."""


class PingError(TransportError):
    """Daemon answered the liveness check with something other than pong."""


class UnknownRemoteError(FlexError):
    """Remote name is not in the client configuration."""


class InvalidReferenceError(FlexError):
    """A ``remote:container`` reference could not be parsed."""


class RemoteError(FlexError):
    """Remote table edit rejected."""


class MigrationError(FlexError):
    """A migration step failed; remaining steps were skipped."""

    def __init__(self, message: str, *, state: str) -> None:
        super().__init__(message)
        self.state = state
