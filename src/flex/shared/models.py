"""Frozen Pydantic models shared by the daemon and the client."""

from __future__ import annotations

from pydantic import BaseModel, Field

from flex.shared.enums import ReplyStatus

# Header carrying the explicit success/failure tag of every daemon response
RESULT_HEADER = "X-Flex-Result"


class RemoteConfig(BaseModel):
    """Network location of a flex daemon."""

    model_config = {"frozen": True}

    address: str

    @property
    def host(self) -> str:
        """Address without its port, as needed by ssh-style destinations.

        IPv6 literals keep their brackets so ``host:path`` stays unambiguous.
        """
        host, sep, port = self.address.rpartition(":")
        if not sep or not port.isdigit():
            return self.address
        return host


class ClientConfig(BaseModel):
    """Persisted client configuration: the remote table and its default."""

    model_config = {"frozen": True}

    default_remote: str = ""
    remotes: dict[str, RemoteConfig] = Field(default_factory=dict)


class ContainerReference(BaseModel):
    """A parsed ``[remote:]container`` string."""

    model_config = {"frozen": True}

    remote: str | None = None
    container: str


class Reply(BaseModel):
    """Plaintext daemon response together with its result tag."""

    model_config = {"frozen": True}

    status: ReplyStatus
    body: str = ""

    @property
    def ok(self) -> bool:
        return self.status is ReplyStatus.OK


class CheckpointResult(BaseModel):
    """Tagged result of a checkpoint request: an id on success, a message otherwise."""

    model_config = {"frozen": True}

    status: ReplyStatus
    checkpoint_id: int | None = Field(default=None, ge=0)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is ReplyStatus.OK

    @classmethod
    def from_reply(cls, reply: Reply) -> CheckpointResult:
        if not reply.ok:
            return cls(status=ReplyStatus.ERROR, error=reply.body)
        try:
            return cls(status=ReplyStatus.OK, checkpoint_id=int(reply.body.strip()))
        except ValueError:
            return cls(status=ReplyStatus.ERROR, error=f"malformed checkpoint id: {reply.body!r}")
