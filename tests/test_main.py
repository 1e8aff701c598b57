#!/usr/bin/env python3
"""
Unit tests for the command line entry point.
"""

import json
from unittest.mock import patch, AsyncMock

import pytest

from client import main as cli
from shared.exceptions import ServerError
from shared.models import User


@pytest.fixture
def cli_env(tmp_path, monkeypatch, memory_keyring):
    for env_var in ("GPT_TOOLKIT_SERVER_URL", "GPT_TOOLKIT_TIMEOUT", "GPT_TOOLKIT_USE_KEYRING",
                    "GPT_TOOLKIT_KEYRING_SERVICE", "GPT_TOOLKIT_LOG_LEVEL", "GPT_TOOLKIT_LOG_FILE"):
        monkeypatch.delenv(env_var, raising=False)
    monkeypatch.setenv("GPT_TOOLKIT_CREDENTIALS_FILE", str(tmp_path / "credentials.enc"))
    with patch.object(cli, "setup_logging"):
        yield ["--config", str(tmp_path / "client.conf")]


class TestArguments:
    """Test argument parsing."""

    def test_login_arguments(self):
        args = cli.parse_arguments(["--server-url", "https://x.example.com", "login", "--email", "a@example.com"])

        assert args.command == "login"
        assert args.email == "a@example.com"
        assert args.password is None
        assert args.server_url == "https://x.example.com"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.parse_arguments([])


class TestMain:
    """Test command execution."""

    def test_status_offline(self, cli_env, capsys):
        exit_code = cli.main(cli_env + ["--json", "status"])

        assert exit_code == cli.EXIT_SUCCESS
        output = json.loads(capsys.readouterr().out)
        assert output == {
            "server_url": "https://api.example.com/",
            "auth_state": "logged_out",
            "saved_session": False,
        }

    def test_status_reports_saved_session(self, cli_env, capsys, memory_keyring):
        memory_keyring.set_password("GPTToolkitMacApp", "refreshToken", "refresh-1")

        cli.main(cli_env + ["--json", "status"])

        assert json.loads(capsys.readouterr().out)["saved_session"] is True

    def test_invalid_server_url(self, cli_env, capsys):
        exit_code = cli.main(cli_env + ["--server-url", "nonsense", "status"])

        assert exit_code == cli.EXIT_CONFIG_ERROR
        assert "Invalid server URL" in capsys.readouterr().err

    def test_whoami_logged_out(self, cli_env, capsys):
        exit_code = cli.main(cli_env + ["whoami"])

        assert exit_code == cli.EXIT_NOT_AUTHENTICATED
        assert "Not logged in" in capsys.readouterr().out

    def test_login_success(self, cli_env, capsys):
        user = User(id="1", email="a@example.com", name="Alice")
        with patch("client.auth.session_manager.SessionManager.login", new=AsyncMock(return_value=user)) as login:
            exit_code = cli.main(cli_env + ["login", "--email", "a@example.com", "--password", "pw"])

        assert exit_code == cli.EXIT_SUCCESS
        login.assert_awaited_once_with("a@example.com", "pw")
        assert "Logged in as Alice" in capsys.readouterr().out

    def test_login_failure_prints_server_message(self, cli_env, capsys):
        error = ServerError(401, "Invalid email or password")
        with patch("client.auth.session_manager.SessionManager.login", new=AsyncMock(side_effect=error)):
            exit_code = cli.main(cli_env + ["login", "--email", "a@example.com", "--password", "pw"])

        assert exit_code == cli.EXIT_FAILED
        assert "Invalid email or password" in capsys.readouterr().err

    def test_rejected_refresh_discards_saved_session(self, cli_env, capsys, memory_keyring):
        memory_keyring.set_password("GPTToolkitMacApp", "refreshToken", "refresh-revoked")
        error = ServerError(401, "Refresh token revoked")
        with patch("client.auth.session_manager.SessionManager.refresh", new=AsyncMock(side_effect=error)):
            exit_code = cli.main(cli_env + ["refresh"])

        assert exit_code == cli.EXIT_FAILED
        assert "Refresh token revoked" in capsys.readouterr().err
        assert memory_keyring.get_password("GPTToolkitMacApp", "refreshToken") is None

    def test_refresh_without_session(self, cli_env, capsys):
        exit_code = cli.main(cli_env + ["refresh"])

        assert exit_code == cli.EXIT_NOT_AUTHENTICATED
