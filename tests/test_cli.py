"""Tests for the CLI commands."""

import json
import shutil
import tempfile
from pathlib import Path

from click.testing import CliRunner

from idxflow.cli.main import cli

from tests.conftest import (
    CHALLENGE_ANSWER_SUFFIX,
    CHALLENGE_SUFFIX,
    IDENTIFY_SUFFIX,
    INTERACT_SUFFIX,
    INTROSPECT_SUFFIX,
    TOKEN_SUFFIX,
    StubTransport,
    challenge_payload,
    identify_payload,
    phone_authenticator_payload,
    select_authenticator_payload,
    success_payload,
    token_payload,
)

CLEAN_ENV = {
    "IDXFLOW_ISSUER": None,
    "IDXFLOW_CLIENT_ID": None,
    "IDXFLOW_CLIENT_SECRET": None,
    "IDXFLOW_REDIRECT_URI": None,
    "IDXFLOW_LOG_LEVEL": None,
    "IDXFLOW_TRACE": None,
}


def test_cli_version() -> None:
    """Test CLI version command."""
    runner = CliRunner()
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_cli_help() -> None:
    """Test CLI help command."""
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "Interaction Code Authentication Flow Client" in result.output


def test_signin_help() -> None:
    """Test signin help command."""
    runner = CliRunner()
    result = runner.invoke(cli, ["signin", "--help"])
    assert result.exit_code == 0
    assert "interaction code flow" in result.output


class TestConfigCommands:
    """Tests for config CLI commands with an isolated config file."""

    def setup_method(self) -> None:
        """Set up test fixtures."""
        self.runner = CliRunner(env=CLEAN_ENV)
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "config.yaml"

    def teardown_method(self) -> None:
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def invoke(self, *args: str):
        return self.runner.invoke(cli, ["--config", str(self.config_path), *args])

    def test_config_path(self) -> None:
        """Test config path prints the selected file."""
        result = self.invoke("config", "path")
        assert result.exit_code == 0
        assert result.output.strip() == str(self.config_path)

    def test_config_init_template(self) -> None:
        """Test config init writes the default template."""
        result = self.invoke("config", "init")
        assert result.exit_code == 0
        assert "Configuration written to" in result.output
        assert "# idxflow Configuration File" in self.config_path.read_text()

    def test_config_init_already_exists(self) -> None:
        """Test config init refuses to overwrite without --force."""
        self.config_path.write_text("client: {}\n")
        result = self.invoke("config", "init")
        assert result.exit_code != 0
        assert "already exists" in result.output

    def test_config_init_force_with_settings(self) -> None:
        """Test config init --force writes the given client settings."""
        self.config_path.write_text("client: {}\n")
        result = self.invoke(
            "config",
            "init",
            "--force",
            "--issuer",
            "https://example.okta.com/oauth2/default",
            "--client-id",
            "0oa123",
            "--redirect-uri",
            "com.example:/callback",
            "--scope",
            "openid",
            "--scope",
            "email",
        )
        assert result.exit_code == 0

        result = self.invoke("config", "show", "--json")
        data = json.loads(result.output)
        assert data["client"]["client_id"] == "0oa123"
        assert data["client"]["scopes"] == ["openid", "email"]

    def test_config_init_json_output(self) -> None:
        """Test config init with JSON output."""
        result = self.invoke("config", "init", "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "created"
        assert data["path"] == str(self.config_path)

    def test_config_show_masks_secret(self) -> None:
        """Test config show never prints the client secret."""
        self.config_path.write_text("client:\n  client_secret: hunter2\n")
        result = self.invoke("config", "show")
        assert result.exit_code == 0
        assert "hunter2" not in result.output
        assert "[REDACTED]" in result.output
        assert "Missing client settings: issuer, client_id, redirect_uri" in result.output


class TestSigninCommand:
    """Tests for the interactive signin command against a stub server."""

    def setup_method(self) -> None:
        """Set up test fixtures."""
        self.runner = CliRunner(env=CLEAN_ENV)
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "config.yaml"

    def teardown_method(self) -> None:
        """Clean up test fixtures."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self) -> None:
        self.config_path.write_text(
            "client:\n"
            "  issuer: https://example.okta.com/oauth2/default\n"
            "  client_id: test-client\n"
            "  redirect_uri: com.example.app:/callback\n"
        )

    def test_signin_without_configuration(self) -> None:
        """Test signin explains how to configure the client."""
        result = self.runner.invoke(cli, ["--config", str(self.config_path), "--log-level", "ERROR", "signin"])
        assert result.exit_code != 0
        assert "idxflow config init" in result.output

    def test_signin_walks_remediations(self) -> None:
        """Test signin prompts for each step until tokens are issued."""
        self._write_config()
        transport = (
            StubTransport()
            .add(INTERACT_SUFFIX, {"interaction_handle": "ih-1"})
            .add(INTROSPECT_SUFFIX, identify_payload())
            .add(IDENTIFY_SUFFIX, select_authenticator_payload())
            .add(CHALLENGE_SUFFIX, challenge_payload())
            .add(CHALLENGE_ANSWER_SUFFIX, success_payload())
            .add(TOKEN_SUFFIX, token_payload())
        )

        # Step choice, remember-me, authenticator choice, password
        result = self.runner.invoke(
            cli,
            ["--config", str(self.config_path), "--log-level", "ERROR", "signin", "-u", "alice"],
            obj={"transport": transport},
            input="identify\nn\nPassword\nsecret\n",
        )

        assert result.exit_code == 0, result.output
        assert "Signed in successfully!" in result.output
        assert "has_refresh_token: True" in result.output
        assert "Password is incorrect" in result.output
        assert transport.last(IDENTIFY_SUFFIX).body["identifier"] == "alice"
        assert transport.last(CHALLENGE_ANSWER_SUFFIX).body["credentials"] == {"passcode": "secret"}

    def test_signin_reports_flow_errors(self) -> None:
        """Test flow errors are reported and exit non-zero."""
        self._write_config()
        transport = StubTransport().add(INTERACT_SUFFIX, {"unexpected": True})

        result = self.runner.invoke(
            cli,
            ["--config", str(self.config_path), "--log-level", "ERROR", "signin"],
            obj={"transport": transport},
        )

        assert result.exit_code != 0
        assert "ApiError" in result.output

    def test_signin_prompts_for_selected_option_fields(self) -> None:
        """Test choosing an authenticator prompts for the fields its option asks for."""
        self._write_config()
        transport = (
            StubTransport()
            .add(INTERACT_SUFFIX, {"interaction_handle": "ih-1"})
            .add(INTROSPECT_SUFFIX, identify_payload())
            .add(IDENTIFY_SUFFIX, phone_authenticator_payload())
            .add(CHALLENGE_SUFFIX, success_payload())
            .add(TOKEN_SUFFIX, token_payload())
        )

        # Step choice, remember-me, authenticator choice, phone method
        result = self.runner.invoke(
            cli,
            ["--config", str(self.config_path), "--log-level", "ERROR", "signin", "-u", "alice"],
            obj={"transport": transport},
            input="identify\nn\nPhone\nSMS\n",
        )

        assert result.exit_code == 0, result.output
        assert transport.last(CHALLENGE_SUFFIX).body["authenticator"] == {"id": "aut-phone", "methodType": "sms"}

    def test_signin_stops_without_remediations(self) -> None:
        """Test a terminal response shows its messages and explains why sign-in stopped."""
        self._write_config()
        terminal = {
            "version": "1.0.0",
            "stateHandle": "02state",
            "messages": {
                "type": "array",
                "value": [{"message": "User is not assigned to this application", "class": "ERROR"}],
            },
        }
        transport = (
            StubTransport()
            .add(INTERACT_SUFFIX, {"interaction_handle": "ih-1"})
            .add(INTROSPECT_SUFFIX, terminal)
        )

        result = self.runner.invoke(
            cli,
            ["--config", str(self.config_path), "--log-level", "ERROR", "signin"],
            obj={"transport": transport},
        )

        assert result.exit_code != 0
        assert "User is not assigned to this application" in result.output
        assert "the server offered no further steps" in result.output
        assert "MissingRemediationOption" not in result.output
