"""Tests for CLI main commands."""

import pytest
from unittest.mock import AsyncMock, Mock, patch
from click.testing import CliRunner

from lifesync.cli.config import Config
from lifesync.cli.main import cli
from lifesync.core.errors import PreconditionFailed, RecordNotFound, StoreError
from lifesync.services.advisory import AdvisoryConfig, AdvisoryFallbackService


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    """Point every Config the CLI builds at a temporary file."""
    monkeypatch.delenv("LIFESYNC_STORE_URL", raising=False)
    monkeypatch.delenv("GEOLOCATION_URL", raising=False)
    path = tmp_path / "config.yaml"
    with patch("lifesync.cli.main.Config", side_effect=lambda: Config(config_file=path)):
        yield path


def logged_in(path, role):
    Config(config_file=path).set("role", role)


@pytest.fixture
def mock_store():
    """Store client stand-in usable as an async context manager."""
    store = AsyncMock()
    store.subscribe = Mock()
    store.__aenter__.return_value = store
    store.__aexit__.return_value = None
    return store


@pytest.fixture
def offline_advisory():
    with patch(
        "lifesync.cli.main.get_advisory_service",
        return_value=AdvisoryFallbackService(AdvisoryConfig()),
    ):
        yield


class TestSessionCommands:
    """Tests for login, logout and whoami."""

    def test_login_and_whoami(self, runner, config_path):
        result = runner.invoke(cli, ["login", "responder"])
        whoami = runner.invoke(cli, ["whoami"])

        assert result.exit_code == 0
        assert "Logged in as responder" in result.output
        assert "responder" in whoami.output

    def test_login_unknown_role_rejected(self, runner, config_path):
        result = runner.invoke(cli, ["login", "dispatcher"])

        assert result.exit_code == 2

    def test_logout(self, runner, config_path):
        logged_in(config_path, "citizen")

        result = runner.invoke(cli, ["logout"])

        assert result.exit_code == 0
        assert "Logged out of citizen role" in result.output
        assert Config(config_file=config_path).get("role") is None

    def test_logout_when_logged_out(self, runner, config_path):
        result = runner.invoke(cli, ["logout"])

        assert "Not logged in" in result.output


class TestSosCommand:
    """Tests for sos command."""

    def test_sos_requires_login(self, runner, config_path):
        result = runner.invoke(cli, ["sos", "--lat", "1.30", "--lng", "103.80"])

        assert result.exit_code == 0
        assert "Not logged in." in result.output

    def test_sos_requires_citizen_role(self, runner, config_path):
        logged_in(config_path, "responder")

        result = runner.invoke(cli, ["sos", "--lat", "1.30", "--lng", "103.80"])

        assert "only available to the citizen role" in result.output

    def test_sos_no_wait(self, runner, config_path, mock_store, offline_advisory):
        """Test that an SOS is created at the given position and shows advice."""
        # Arrange
        logged_in(config_path, "citizen")
        mock_store.create.return_value = "abc123"

        # Act
        with patch(
            "lifesync.cli.main.RemoteIncidentStore", return_value=mock_store
        ) as mock_store_class:
            result = runner.invoke(
                cli, ["sos", "--lat", "1.30", "--lng", "103.80", "--no-wait"]
            )

        # Assert
        assert result.exit_code == 0
        assert "SOS sent: abc123" in result.output
        assert "First-Aid Protocol" in result.output
        assert mock_store_class.call_args.args[0] == "http://localhost:8000"
        collection, record = mock_store.create.await_args.args
        assert collection == "emergencies"
        assert record["location"] == {"lat": 1.30, "lng": 103.80}
        assert record["status"] == "pending"
        mock_store.subscribe.assert_called_once()
        assert mock_store.subscribe.call_args.args[0] == "emergencies/abc123"

    def test_sos_waits_for_acceptance(self, runner, config_path, mock_store, offline_advisory):
        """Test that the command ends with the accepted banner."""
        # Arrange
        logged_in(config_path, "citizen")
        mock_store.create.return_value = "abc123"

        def deliver_accepted(key, callback):
            callback({"status": "accepted", "acceptedAt": "2026-01-01T08:05:00+00:00"})
            return Mock()

        mock_store.subscribe.side_effect = deliver_accepted

        # Act
        with patch("lifesync.cli.main.RemoteIncidentStore", return_value=mock_store):
            result = runner.invoke(cli, ["sos", "--lat", "1.30", "--lng", "103.80"])

        # Assert
        assert result.exit_code == 0
        assert "HELP IS ON THE WAY" in result.output

    def test_sos_acceptance_not_held_back_by_slow_advisory(
        self, runner, config_path, mock_store, advisory_config, hanging_llm
    ):
        """Test that acceptance is announced while the advisory is still outstanding."""
        # Arrange
        logged_in(config_path, "citizen")
        mock_store.create.return_value = "abc123"
        slow_advisory = AdvisoryFallbackService(
            advisory_config.model_copy(update={"timeout": 30.0}), llm=hanging_llm
        )

        def deliver_accepted(key, callback):
            callback({"status": "accepted", "acceptedAt": "2026-01-01T08:05:00+00:00"})
            return Mock()

        mock_store.subscribe.side_effect = deliver_accepted

        # Act
        with patch("lifesync.cli.main.RemoteIncidentStore", return_value=mock_store), patch(
            "lifesync.cli.main.get_advisory_service", return_value=slow_advisory
        ):
            result = runner.invoke(cli, ["sos", "--lat", "1.30", "--lng", "103.80"])

        # Assert
        assert result.exit_code == 0
        assert "HELP IS ON THE WAY" in result.output
        assert "First-Aid Protocol" not in result.output

    def test_sos_url_override(self, runner, config_path, mock_store, offline_advisory):
        logged_in(config_path, "citizen")
        mock_store.create.return_value = "abc123"

        with patch(
            "lifesync.cli.main.RemoteIncidentStore", return_value=mock_store
        ) as mock_store_class:
            runner.invoke(
                cli,
                ["sos", "--lat", "1.3", "--lng", "103.8", "--no-wait", "--url", "http://custom:8000"],
            )

        assert mock_store_class.call_args.args[0] == "http://custom:8000"

    def test_sos_without_position(self, runner, config_path, mock_store, offline_advisory):
        """Test that no incident is created without a position fix."""
        # Arrange
        logged_in(config_path, "citizen")

        # Act
        with patch("lifesync.cli.main.RemoteIncidentStore", return_value=mock_store):
            result = runner.invoke(cli, ["sos", "--no-wait"])

        # Assert
        assert result.exit_code == 0
        assert "No position source" in result.output
        assert "Retry with: lifesync sos" in result.output
        assert "First-Aid Protocol" in result.output
        mock_store.create.assert_not_called()

    def test_sos_store_failure(self, runner, config_path, mock_store, offline_advisory):
        logged_in(config_path, "citizen")
        mock_store.create.side_effect = StoreError("Failed to connect")

        with patch("lifesync.cli.main.RemoteIncidentStore", return_value=mock_store):
            result = runner.invoke(cli, ["sos", "--lat", "1.3", "--lng", "103.8"])

        assert result.exit_code == 0
        assert "Could not send SOS" in result.output
        assert "Retry with: lifesync sos" in result.output


class TestFeedCommand:
    """Tests for feed command."""

    def test_feed_snapshot(self, runner, config_path, mock_store, sample_record):
        logged_in(config_path, "responder")
        mock_store.get.return_value = {"abc123": sample_record}

        with patch("lifesync.cli.main.RemoteIncidentStore", return_value=mock_store):
            result = runner.invoke(cli, ["feed", "--no-watch"])

        assert result.exit_code == 0
        assert "abc123" in result.output
        assert "lifesync accept abc123" in result.output
        mock_store.get.assert_awaited_once_with("emergencies")

    def test_feed_empty(self, runner, config_path, mock_store):
        logged_in(config_path, "responder")
        mock_store.get.return_value = None

        with patch("lifesync.cli.main.RemoteIncidentStore", return_value=mock_store):
            result = runner.invoke(cli, ["feed", "--no-watch"])

        assert "No emergencies reported." in result.output

    def test_feed_requires_responder_role(self, runner, config_path):
        logged_in(config_path, "citizen")

        result = runner.invoke(cli, ["feed", "--no-watch"])

        assert "only available to the responder role" in result.output


class TestAcceptCommand:
    """Tests for accept command."""

    def test_accept_success(self, runner, config_path, mock_store, accepted_record):
        """Test that a claim is sent as a conditional update."""
        # Arrange
        logged_in(config_path, "responder")
        mock_store.update.return_value = accepted_record

        # Act
        with patch("lifesync.cli.main.RemoteIncidentStore", return_value=mock_store):
            result = runner.invoke(cli, ["accept", "abc123"])

        # Assert
        assert result.exit_code == 0
        assert "Case abc123 accepted" in result.output
        key, fields = mock_store.update.await_args.args
        assert key == "emergencies/abc123"
        assert fields["status"] == "accepted"
        assert mock_store.update.await_args.kwargs["expect"] == {"status": "pending"}

    def test_accept_already_accepted(self, runner, config_path, mock_store, accepted_record):
        logged_in(config_path, "responder")
        mock_store.update.side_effect = PreconditionFailed("emergencies/abc123", accepted_record)

        with patch("lifesync.cli.main.RemoteIncidentStore", return_value=mock_store):
            result = runner.invoke(cli, ["accept", "abc123"])

        assert result.exit_code == 0
        assert "already been accepted" in result.output

    def test_accept_unknown_incident(self, runner, config_path, mock_store):
        logged_in(config_path, "responder")
        mock_store.update.side_effect = RecordNotFound("emergencies/missing")

        with patch("lifesync.cli.main.RemoteIncidentStore", return_value=mock_store):
            result = runner.invoke(cli, ["accept", "missing"])

        assert "Incident missing not found" in result.output

    def test_accept_requires_responder_role(self, runner, config_path, mock_store):
        logged_in(config_path, "citizen")

        with patch("lifesync.cli.main.RemoteIncidentStore", return_value=mock_store):
            result = runner.invoke(cli, ["accept", "abc123"])

        assert "only available to the responder role" in result.output
        mock_store.update.assert_not_called()


class TestServeCommand:
    def test_serve_runs_store_service(self, runner):
        with patch("lifesync.cli.main.uvicorn.run") as mock_run:
            result = runner.invoke(cli, ["serve", "--port", "9000"])

        assert result.exit_code == 0
        mock_run.assert_called_once_with("lifesync.main:app", host="127.0.0.1", port=9000)


class TestConfigCommands:
    """Tests for config commands."""

    def test_config_set_and_get(self, runner, config_path):
        set_result = runner.invoke(cli, ["config", "set", "store_url", "http://store:8000"])
        get_result = runner.invoke(cli, ["config", "get", "store_url"])

        assert set_result.exit_code == 0
        assert "store_url = http://store:8000" in get_result.output

    def test_config_set_unknown_key(self, runner, config_path):
        result = runner.invoke(cli, ["config", "set", "colour", "red"])

        assert result.exit_code == 0
        assert "Unknown configuration key" in result.output
        assert not config_path.exists()

    def test_config_get_unset(self, runner, config_path):
        result = runner.invoke(cli, ["config", "get", "store_url"])

        assert "not set" in result.output

    def test_config_list(self, runner, config_path):
        runner.invoke(cli, ["config", "set", "store_url", "http://store:8000"])

        result = runner.invoke(cli, ["config", "list"])

        assert "Configuration:" in result.output
        assert "store_url = http://store:8000" in result.output

    def test_config_list_empty(self, runner, config_path):
        result = runner.invoke(cli, ["config", "list"])

        assert "No configuration set" in result.output

    def test_configured_store_url_is_used(self, runner, config_path, mock_store, accepted_record):
        logged_in(config_path, "responder")
        Config(config_file=config_path).set("store_url", "http://configured:8000")
        mock_store.update.return_value = accepted_record

        with patch(
            "lifesync.cli.main.RemoteIncidentStore", return_value=mock_store
        ) as mock_store_class:
            runner.invoke(cli, ["accept", "abc123"])

        assert mock_store_class.call_args.args[0] == "http://configured:8000"
