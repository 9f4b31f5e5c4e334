"""Tests for frozen Pydantic models shared by daemon and client."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from flex.shared.enums import MigrationState, ReplyStatus
from flex.shared.models import CheckpointResult, ClientConfig, RemoteConfig, Reply


class TestRemoteConfig:
    @pytest.mark.parametrize(
        ("address", "host"),
        [
            ("10.0.0.5:8443", "10.0.0.5"),
            ("peer.example.org:8443", "peer.example.org"),
            ("[::1]:8443", "[::1]"),
            ("peer.example.org", "peer.example.org"),
        ],
    )
    def test_host_strips_port(self, address: str, host: str) -> None:
        assert RemoteConfig(address=address).host == host

    def test_frozen_raises_on_mutation(self) -> None:
        remote = RemoteConfig(address="10.0.0.5:8443")
        with pytest.raises(ValidationError):
            remote.address = "10.0.0.6:8443"  # type: ignore[misc]


class TestClientConfig:
    def test_defaults(self) -> None:
        config = ClientConfig()
        assert config.default_remote == ""
        assert config.remotes == {}

    def test_json_round_trip(self) -> None:
        config = ClientConfig(default_remote="a", remotes={"a": RemoteConfig(address="10.0.0.5:8443")})
        assert ClientConfig.model_validate_json(config.model_dump_json()) == config


class TestReply:
    def test_ok(self) -> None:
        assert Reply(status=ReplyStatus.OK, body="pong").ok
        assert not Reply(status=ReplyStatus.ERROR, body="operation failed").ok


class TestCheckpointResult:
    def test_from_ok_reply(self) -> None:
        result = CheckpointResult.from_reply(Reply(status=ReplyStatus.OK, body="12"))
        assert result.ok
        assert result.checkpoint_id == 12
        assert result.error is None

    def test_from_error_reply(self) -> None:
        result = CheckpointResult.from_reply(Reply(status=ReplyStatus.ERROR, body="checkpoint failed"))
        assert not result.ok
        assert result.checkpoint_id is None
        assert result.error == "checkpoint failed"

    def test_error_text_that_looks_like_an_id(self) -> None:
        # The tag decides, not the body
        result = CheckpointResult.from_reply(Reply(status=ReplyStatus.ERROR, body="3"))
        assert not result.ok
        assert result.error == "3"

    def test_malformed_ok_body(self) -> None:
        result = CheckpointResult.from_reply(Reply(status=ReplyStatus.OK, body="too many checkpoints"))
        assert not result.ok
        assert "malformed checkpoint id" in (result.error or "")

    def test_negative_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CheckpointResult(status=ReplyStatus.OK, checkpoint_id=-1)


class TestEnums:
    def test_values_are_strings(self) -> None:
        assert ReplyStatus("ok") is ReplyStatus.OK
        assert MigrationState.CHECKPOINTING.value == "checkpointing"
