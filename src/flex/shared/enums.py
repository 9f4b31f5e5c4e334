"""Domain enumerations used across all modules."""

from __future__ import annotations

from enum import Enum, unique


@unique
class ReplyStatus(str, Enum):
    """Value of the ``X-Flex-Result`` header on every daemon response."""

    OK = "ok"
    ERROR = "error"


@unique
class AttachState(str, Enum):
    """Lifecycle states for one attach session."""

    LISTENING = "listening"
    AWAITING_SECRET = "awaiting_secret"
    AUTHENTICATED = "authenticated"
    REJECTED = "rejected"
    BRIDGING = "bridging"
    CLOSED = "closed"


@unique
class MigrationState(str, Enum):
    """Lifecycle states for a container migration between two daemons."""

    IDLE = "idle"
    CHECKPOINTING = "checkpointing"
    CHECKPOINTED = "checkpointed"
    TRANSFERRING = "transferring"
    TRANSFERRED = "transferred"
    RESTORING = "restoring"
    RESTORED = "restored"
    FAILED = "failed"
