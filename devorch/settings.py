"""Settings resolution with profile precedence chain."""

import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path

import tomlkit
from pydantic import SecretStr
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from devorch.exceptions import DevorchError

CONFIG_PATH = Path.home() / ".config" / "devorch" / "config.toml"
SESSIONS_PATH = CONFIG_PATH.parent / "sessions.toml"


class DevorchSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DEVORCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    default_profile: str | None = None
    profile: str | None = None  # resolved active profile, set by get_settings

    # GitHub
    github_token: SecretStr | None = None
    github_auth: str = "token"  # "token" | "gh-cli"
    github_client_id: str | None = None
    github_client_secret: SecretStr | None = None

    # Agent service
    agent_api_key: SecretStr | None = None
    agent_api_base: str = "https://api.devin.ai/v1"
    relay_url: str = "http://127.0.0.1:8888"

    # Timing (seconds)
    request_timeout: float = 30.0
    reconcile_delay: float = 2.0
    confidence_poll_interval: float = 5.0
    confidence_poll_max_interval: float = 60.0
    confidence_poll_backoff: float = 1.5
    confidence_poll_max_attempts: int = 40

    log_level: str = "WARNING"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Profile values arrive as init kwargs; env vars and .env must win over them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


@lru_cache(maxsize=1)
def _load_toml() -> tomlkit.TOMLDocument:
    """Load ~/.config/devorch/config.toml, returning empty document if missing."""
    if not CONFIG_PATH.exists():
        return tomlkit.document()
    return tomlkit.parse(CONFIG_PATH.read_text())


def _list_profiles(config: Mapping) -> list[str]:
    # tomlkit Table implements MutableMapping but not dict, so check Mapping
    return [k for k, v in config.items() if isinstance(v, Mapping)]


def resolve_profile(profile: str | None = None) -> str | None:
    """Return the active profile name.

    Precedence (highest to lowest):
    1. profile argument (--profile CLI flag)
    2. DEVORCH_DEFAULT_PROFILE env var
    3. default_profile key in ~/.config/devorch/config.toml
    4. First profile defined in ~/.config/devorch/config.toml
    """
    toml_config = _load_toml()
    profiles = _list_profiles(toml_config)
    return (
        profile
        or os.environ.get("DEVORCH_DEFAULT_PROFILE")
        or toml_config.get("default_profile")
        or (profiles[0] if profiles else None)
    )


def get_settings(profile: str | None = None) -> DevorchSettings:
    """Resolve the active profile and return a fully populated DevorchSettings.

    Values from the profile block are base defaults; env vars and .env always
    override them.
    """
    toml_config = _load_toml()
    active = resolve_profile(profile)

    profile_defaults: dict = {}
    if active:
        if not isinstance(toml_config.get(active), Mapping):
            profiles = _list_profiles(toml_config)
            raise DevorchError(f"Profile '{active}' not found in {CONFIG_PATH}. Available: {profiles or '(none)'}")
        profile_defaults = dict(toml_config[active])

    profile_defaults["profile"] = active
    return DevorchSettings(**profile_defaults)
