"""Tests for the devorch login wizard."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import tomlkit
from typer.testing import CliRunner

import devorch.settings as settings_module
from devorch.exceptions import UpstreamError
from devorch.main import app
from devorch.models import GitHubUser

runner = CliRunner()


@pytest.fixture(autouse=True)
def config_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    path = tmp_path / "config.toml"
    monkeypatch.setattr(settings_module, "CONFIG_PATH", path)
    monkeypatch.delenv("DEVORCH_DEFAULT_PROFILE", raising=False)
    settings_module._load_toml.cache_clear()
    with patch("devorch.main.CONFIG_PATH", path):
        with patch("devorch.main.config_show"):
            yield path
    settings_module._load_toml.cache_clear()


class TestLoginToken:
    def test_writes_token_profile(self, config_path: Path) -> None:
        result = runner.invoke(
            app,
            ["login"],
            # profile, auth, github token, agent key, relay url (default), set default, verify
            input="work\ntoken\nghp_mytoken\nkey_abc\n\ny\nn\n",
        )

        assert result.exit_code == 0, result.output
        config = tomlkit.load(config_path.open())
        assert config["default_profile"] == "work"
        assert config["work"]["github_auth"] == "token"
        assert config["work"]["github_token"] == "ghp_mytoken"
        assert config["work"]["agent_api_key"] == "key_abc"
        assert config["work"]["relay_url"] == "http://127.0.0.1:8888"

    def test_keeps_existing_profiles_and_default(self, config_path: Path) -> None:
        config_path.write_text('default_profile = "home"\n\n[home]\nrelay_url = "http://relay.home"  # keep me\n')

        result = runner.invoke(app, ["login"], input="work\ntoken\nghp_x\nkey_x\nhttp://relay.work\nn\nn\n")

        assert result.exit_code == 0, result.output
        text = config_path.read_text()
        assert "# keep me" in text
        config = tomlkit.load(config_path.open())
        assert config["default_profile"] == "home"
        assert config["work"]["relay_url"] == "http://relay.work"

    def test_verifies_github_user(self, config_path: Path) -> None:
        provider = MagicMock()
        provider.get_user.return_value = GitHubUser(login="jdoss")
        with patch("devorch.main.GitHubProvider", return_value=provider):
            result = runner.invoke(app, ["login"], input="work\ntoken\nghp_x\nkey_x\n\ny\ny\n")

        assert result.exit_code == 0, result.output
        assert "Connected as jdoss" in result.output

    def test_verification_failure_is_a_warning(self, config_path: Path) -> None:
        provider = MagicMock()
        provider.get_user.side_effect = UpstreamError(401, "Bad credentials", "GitHub returned 401")
        with patch("devorch.main.GitHubProvider", return_value=provider):
            result = runner.invoke(app, ["login"], input="work\ntoken\nghp_x\nkey_x\n\ny\ny\n")

        assert result.exit_code == 0, result.output
        assert "Could not fetch GitHub user" in result.output


class TestLoginGhCli:
    def test_writes_ghcli_profile_no_token(self, config_path: Path) -> None:
        with patch("subprocess.run", return_value=MagicMock(returncode=0)):
            result = runner.invoke(app, ["login"], input="personal\ngh-cli\nkey_abc\n\ny\nn\n")

        assert result.exit_code == 0, result.output
        profile = tomlkit.load(config_path.open())["personal"]
        assert profile["github_auth"] == "gh-cli"
        assert "github_token" not in profile
        assert profile["agent_api_key"] == "key_abc"

    def test_blank_agent_key_still_reads_fresh_config(self, config_path: Path) -> None:
        config_path.write_text('[home]\nrelay_url = "http://relay.home"\n')
        settings_module.get_settings(profile="home")  # warms the config cache

        provider = MagicMock()
        provider.get_user.return_value = GitHubUser(login="jdoss")
        with patch("subprocess.run", return_value=MagicMock(returncode=0)):
            with patch("devorch.main.GitHubProvider", return_value=provider) as provider_cls:
                result = runner.invoke(app, ["login"], input="personal\ngh-cli\n  \n\nn\ny\n")

        assert result.exit_code == 0, result.output
        assert "Connected as jdoss" in result.output
        assert provider_cls.call_args.args[0].github_auth == "gh-cli"
        assert "agent_api_key" not in tomlkit.load(config_path.open())["personal"]

    def test_gh_not_authenticated_exits(self, config_path: Path) -> None:
        with patch("subprocess.run", return_value=MagicMock(returncode=1)):
            result = runner.invoke(app, ["login"], input="personal\ngh-cli\n")

        assert result.exit_code != 0
        assert not config_path.exists()


def test_invalid_auth_method_exits(config_path: Path) -> None:
    result = runner.invoke(app, ["login"], input="work\noauth\n")
    assert result.exit_code == 1
