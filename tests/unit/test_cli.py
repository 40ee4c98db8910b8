"""Tests for the command-line entry point."""

from unittest.mock import MagicMock, patch

import pytest

from renewal_sync.__main__ import build_parser, main
from renewal_sync.config import ConfigurationError
from renewal_sync.models.results import SweepReport
from renewal_sync.services.billing_client import BillingAuthError


@pytest.fixture(autouse=True)
def restore_env(monkeypatch):
    """main() exports its flags to the environment; restore them afterwards."""
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.setenv("LOG_FORMAT", "json")
    monkeypatch.setenv("CONFIG_PATH", "config/settings.yaml")


@pytest.fixture
def mock_config():
    config = MagicMock()
    config.sweep.horizon_days = 7
    return config


@pytest.fixture
def mock_services():
    services = MagicMock()
    services.sweeper.run_sweep.return_value = SweepReport(horizon_days=3, checked=4, updated=3, failed=1)
    return services


class TestParser:
    def test_sweep_arguments(self):
        args = build_parser().parse_args(["--log-level", "DEBUG", "sweep", "--days", "3", "--every", "60"])

        assert args.command == "sweep"
        assert args.days == 3
        assert args.every == 60
        assert args.log_level == "DEBUG"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestSweepCommand:
    """renewal_sync sweep."""

    @patch("renewal_sync.__main__.build_services")
    @patch("renewal_sync.__main__.get_config")
    def test_sweep_prints_summary(self, mock_get_config, mock_build, mock_config, mock_services, capsys):
        mock_get_config.return_value = mock_config
        mock_build.return_value = mock_services

        exit_code = main(["sweep", "--days", "3"])

        out = capsys.readouterr().out
        assert exit_code == 0
        assert "Checking Google Play subscriptions expiring within 3 days..." in out
        assert "Completed. Checked: 4, Updated: 3, Failed: 1" in out
        mock_services.sweeper.run_sweep.assert_called_once_with(3)

    @patch("renewal_sync.__main__.build_services")
    @patch("renewal_sync.__main__.get_config")
    def test_sweep_defaults_to_configured_horizon(self, mock_get_config, mock_build, mock_config, mock_services):
        mock_get_config.return_value = mock_config
        mock_build.return_value = mock_services

        main(["sweep"])

        mock_services.sweeper.run_sweep.assert_called_once_with(7)

    @patch("renewal_sync.__main__.build_services")
    @patch("renewal_sync.__main__.get_config")
    def test_sweep_with_nothing_to_check(self, mock_get_config, mock_build, mock_config, mock_services, capsys):
        mock_get_config.return_value = mock_config
        mock_build.return_value = mock_services
        mock_services.sweeper.run_sweep.return_value = SweepReport(horizon_days=7)

        main(["sweep"])

        assert "No subscriptions to check." in capsys.readouterr().out

    @patch("renewal_sync.__main__.build_services")
    @patch("renewal_sync.__main__.get_config")
    def test_non_positive_days_fails(self, mock_get_config, mock_build, mock_config, mock_services):
        mock_get_config.return_value = mock_config
        mock_build.return_value = mock_services

        assert main(["sweep", "--days", "0"]) == 1
        mock_services.sweeper.run_sweep.assert_not_called()

    @pytest.mark.parametrize("error", [ConfigurationError("bad"), BillingAuthError("no creds")])
    @patch("renewal_sync.__main__.get_config")
    def test_startup_errors_fail(self, mock_get_config, error, capsys):
        mock_get_config.side_effect = error

        assert main(["sweep"]) == 1
        assert "Failed to start sweep" in capsys.readouterr().err

    @patch("renewal_sync.__main__.build_services")
    @patch("renewal_sync.__main__.get_config")
    def test_every_runs_periodically(self, mock_get_config, mock_build, mock_config, mock_services):
        mock_get_config.return_value = mock_config
        mock_build.return_value = mock_services

        assert main(["sweep", "--days", "2", "--every", "30"]) == 0

        args = mock_services.sweeper.run_periodically.call_args.args
        assert args[:2] == (30, 2)


class TestListenCommand:
    """renewal_sync listen."""

    @patch("renewal_sync.__main__.build_services")
    @patch("renewal_sync.__main__.get_config")
    def test_listen_disabled_fails(self, mock_get_config, mock_build, mock_config, capsys):
        mock_config.pubsub.enabled = False
        mock_get_config.return_value = mock_config

        assert main(["listen"]) == 1
        assert "disabled" in capsys.readouterr().err

    @patch("renewal_sync.services.pubsub_listener.PubSubListener")
    @patch("renewal_sync.__main__.build_services")
    @patch("renewal_sync.__main__.get_config")
    def test_listen_runs_listener(self, mock_get_config, mock_build, mock_listener_class, mock_config, mock_services):
        mock_config.pubsub.enabled = True
        mock_config.pubsub.project_id = "test-project"
        mock_config.pubsub.subscription = "play-rtdn"
        mock_config.pubsub.max_messages = 10
        mock_get_config.return_value = mock_config
        mock_build.return_value = mock_services

        assert main(["listen"]) == 0

        mock_listener_class.assert_called_once_with(
            handler=mock_services.handler,
            project_id="test-project",
            subscription="play-rtdn",
            max_messages=10,
        )
        mock_listener_class.return_value.run.assert_called_once()


class TestServeCommand:
    @patch("renewal_sync.__main__.uvicorn.run")
    def test_serve_runs_app_factory(self, mock_run):
        assert main(["serve", "--port", "9000"]) == 0

        kwargs = mock_run.call_args.kwargs
        assert mock_run.call_args.args[0] == "renewal_sync.main:create_app"
        assert kwargs["factory"] is True
        assert kwargs["port"] == 9000
