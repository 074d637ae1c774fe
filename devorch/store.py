"""Client-side persisted state: credentials and per-issue session handles.

Both stores round-trip their TOML file through tomlkit so hand-written
comments survive. Writes are last-write-wins; there is no locking.
"""

import logging
from collections.abc import Iterator
from pathlib import Path

import tomlkit

import devorch.settings as settings_module
from devorch.models import Credential, CredentialKind

logger = logging.getLogger(__name__)

TOKEN_KEYS = {
    CredentialKind.SOURCE_CONTROL: "github_token",
    CredentialKind.AGENT_SERVICE: "agent_api_key",
}

DEFAULT_PROFILE = "default"


def _load(path: Path) -> tomlkit.TOMLDocument:
    return tomlkit.parse(path.read_text()) if path.exists() else tomlkit.document()


def _save(path: Path, doc: tomlkit.TOMLDocument) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(tomlkit.dumps(doc))


class CredentialStore:
    """Persists the two opaque bearer tokens in a profile block of the config file."""

    def __init__(self, profile: str | None = None, path: Path | None = None) -> None:
        self._profile = profile
        self._path = path

    @property
    def path(self) -> Path:
        return self._path or settings_module.CONFIG_PATH

    @property
    def profile(self) -> str:
        return self._profile or settings_module.resolve_profile() or DEFAULT_PROFILE

    def set_token(self, kind: CredentialKind, value: str) -> None:
        doc = _load(self.path)
        profile = self.profile
        if profile not in doc:
            doc.add(profile, tomlkit.table())
        doc[profile][TOKEN_KEYS[kind]] = value
        _save(self.path, doc)
        settings_module._load_toml.cache_clear()
        logger.debug("Stored %s token in profile '%s'", kind.value, profile)

    def get(self, kind: CredentialKind) -> Credential | None:
        block = _load(self.path).get(self.profile)
        value = block.get(TOKEN_KEYS[kind]) if block is not None else None
        return Credential(kind=kind, value=str(value)) if value is not None else None

    def get_token(self, kind: CredentialKind) -> str | None:
        credential = self.get(kind)
        return credential.value if credential else None


class SessionHandleStore:
    """Maps (repository full name, issue number) to an agent session id.

    One entry per pair ever opened; entries are never torn down.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path or settings_module.SESSIONS_PATH

    @staticmethod
    def key(full_name: str, issue_number: int) -> str:
        return f"{full_name}#{issue_number}"

    def _sessions(self, doc: tomlkit.TOMLDocument):
        if "sessions" not in doc:
            doc.add("sessions", tomlkit.table())
        return doc["sessions"]

    def get(self, full_name: str, issue_number: int) -> str | None:
        doc = _load(self.path)
        value = doc.get("sessions", {}).get(self.key(full_name, issue_number))
        return str(value) if value is not None else None

    def set(self, full_name: str, issue_number: int, session_id: str) -> None:
        doc = _load(self.path)
        self._sessions(doc)[self.key(full_name, issue_number)] = session_id
        _save(self.path, doc)
        logger.debug("Saved session %s for %s#%s", session_id, full_name, issue_number)

    def items(self) -> Iterator[tuple[str, str]]:
        doc = _load(self.path)
        for key, value in doc.get("sessions", {}).items():
            yield key, str(value)
