"""Tests for the command-line interface."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from typer.testing import CliRunner

from consul_leader.cli import app, run_cmd, status_cmd
from consul_leader.distributed.client import FailureKind, Result
from consul_leader.distributed.leader import PollOutcome

runner = CliRunner()


def fake_client(holder: Result) -> MagicMock:
    client = MagicMock()
    client.get_leader_holder = AsyncMock(return_value=holder)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    return client


class TestStatusCommand:
    """Tests for `consul-leader status`."""

    @pytest.fixture
    def patch_client(self, monkeypatch: pytest.MonkeyPatch):
        def install(holder: Result) -> MagicMock:
            client = fake_client(holder)
            monkeypatch.setattr(
                status_cmd.ConsulClient, "from_settings", MagicMock(return_value=client)
            )
            return client

        return install

    def test_shows_leader(self, patch_client) -> None:
        """The holding session is printed."""
        client = patch_client(Result.success("abc"))

        result = runner.invoke(app, ["status", "--service", "orders"])

        assert result.exit_code == 0
        assert "abc" in result.output
        client.get_leader_holder.assert_awaited_once_with("orders")

    def test_no_leader(self, patch_client) -> None:
        """An unheld key is reported."""
        patch_client(Result.success(None))

        result = runner.invoke(app, ["status", "--service", "orders"])

        assert result.exit_code == 0
        assert "No leader" in result.output

    def test_unreachable(self, patch_client) -> None:
        """Read failures exit with code 1."""
        patch_client(Result.fail(FailureKind.TRANSPORT, "connection refused"))

        result = runner.invoke(app, ["status", "--service", "orders"])

        assert result.exit_code == 1
        assert "Unable to read leader" in result.output


class TestRunCommand:
    """Tests for `consul-leader run`."""

    def test_bounded_polls(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """--polls runs that many polls and stops the election."""
        election = MagicMock()
        election.service_name = "orders"
        election.poll_interval = 0
        election.run_once = AsyncMock(
            side_effect=[PollOutcome.NOT_LEADING, PollOutcome.LEADING]
        )
        election.stop = AsyncMock()
        monkeypatch.setattr(run_cmd, "create_election", MagicMock(return_value=election))
        monkeypatch.setattr(run_cmd, "configure_logging", MagicMock())

        result = runner.invoke(
            app, ["run", "--service", "orders", "--polls", "2", "--interval", "0.01"]
        )

        assert result.exit_code == 0, result.output
        assert "poll 1/2: not_leading" in result.output
        assert "poll 2/2: leading" in result.output
        election.stop.assert_awaited_once()

    def test_help(self) -> None:
        """Help lists the subcommands."""
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "run" in result.output
        assert "status" in result.output
