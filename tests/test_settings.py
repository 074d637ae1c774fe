"""Tests for devorch.settings: profile precedence and error paths."""

from pathlib import Path

import pytest
import tomlkit

import devorch.settings as settings_module
from devorch.exceptions import DevorchError
from devorch.settings import _list_profiles, get_settings, resolve_profile


def _write_config(tmp_path: Path, config: dict) -> Path:
    config_path = tmp_path / "config.toml"
    config_path.write_text(tomlkit.dumps(config))
    return config_path


@pytest.fixture(autouse=True)
def isolated(monkeypatch: pytest.MonkeyPatch):
    """Clear the lru_cache and any DEVORCH_* env vars around each test."""
    for var in ("DEVORCH_DEFAULT_PROFILE", "DEVORCH_GITHUB_TOKEN", "DEVORCH_AGENT_API_KEY", "DEVORCH_RELAY_URL"):
        monkeypatch.delenv(var, raising=False)
    settings_module._load_toml.cache_clear()
    yield
    settings_module._load_toml.cache_clear()


class TestListProfiles:
    def test_returns_section_keys(self) -> None:
        config = {"default_profile": "work", "work": {"relay_url": "x"}, "personal": {}}
        assert _list_profiles(config) == ["work", "personal"]

    def test_empty_config(self) -> None:
        assert _list_profiles({}) == []


class TestResolveProfile:
    @pytest.fixture
    def config(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_path = _write_config(tmp_path, {"default_profile": "personal", "work": {}, "personal": {}})
        monkeypatch.setattr(settings_module, "CONFIG_PATH", config_path)

    def test_argument_wins(self, config: None, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVORCH_DEFAULT_PROFILE", "personal")
        assert resolve_profile("work") == "work"

    def test_env_var_beats_toml(self, config: None, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVORCH_DEFAULT_PROFILE", "work")
        assert resolve_profile() == "work"

    def test_toml_default_profile(self, config: None) -> None:
        assert resolve_profile() == "personal"

    def test_first_profile_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings_module, "CONFIG_PATH", _write_config(tmp_path, {"work": {}, "home": {}}))
        assert resolve_profile() == "work"

    def test_no_config_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings_module, "CONFIG_PATH", tmp_path / "nonexistent.toml")
        assert resolve_profile() is None


class TestGetSettings:
    def test_profile_values_are_loaded(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_path = _write_config(
            tmp_path,
            {
                "work": {"github_token": "ghp_work", "agent_api_key": "key_work", "relay_url": "http://relay.work"},
                "personal": {"github_token": "ghp_personal"},
            },
        )
        monkeypatch.setattr(settings_module, "CONFIG_PATH", config_path)

        s = get_settings(profile="work")
        assert s.profile == "work"
        assert s.github_token is not None
        assert s.github_token.get_secret_value() == "ghp_work"
        assert s.agent_api_key is not None
        assert s.agent_api_key.get_secret_value() == "key_work"
        assert s.relay_url == "http://relay.work"

    def test_env_overrides_profile_value(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        config_path = _write_config(tmp_path, {"work": {"relay_url": "http://relay.work"}})
        monkeypatch.setattr(settings_module, "CONFIG_PATH", config_path)
        monkeypatch.setenv("DEVORCH_RELAY_URL", "http://relay.env")

        assert get_settings().relay_url == "http://relay.env"

    def test_missing_profile_raises(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings_module, "CONFIG_PATH", _write_config(tmp_path, {"work": {}}))
        with pytest.raises(DevorchError, match="Profile 'nonexistent' not found"):
            get_settings(profile="nonexistent")

    def test_no_config_file_returns_defaults(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings_module, "CONFIG_PATH", tmp_path / "nonexistent.toml")
        monkeypatch.setenv("DEVORCH_AGENT_API_KEY", "key_env")

        s = get_settings()
        assert s.profile is None
        assert s.github_token is None
        assert s.agent_api_key is not None
        assert s.agent_api_key.get_secret_value() == "key_env"
        assert s.agent_api_base == "https://api.devin.ai/v1"
        assert s.confidence_poll_max_attempts == 40
