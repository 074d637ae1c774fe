"""Shared test fixtures."""

from pathlib import Path

import pytest

from devorch.exceptions import UpstreamError
from devorch.models import CreatedSession, Issue, IssueAuthor, Repository, ServerMessage, Session
from devorch.settings import DevorchSettings
from devorch.store import SessionHandleStore


class FakeAgent:
    """In-memory stand-in for AgentClient. ``fail`` names operations that should raise."""

    def __init__(self) -> None:
        self.sessions: dict[str, Session] = {}
        self.created: list[dict] = []
        self.sent: list[tuple[str, str]] = []
        self.fetches = 0
        self.fail: set[str] = set()

    def _check(self, op: str) -> None:
        if op in self.fail:
            raise UpstreamError(502, f"{op} exploded")

    def _push(self, session_id: str, message: ServerMessage) -> None:
        session = self.sessions[session_id]
        self.sessions[session_id] = session.model_copy(update={"messages": [*session.messages, message]})

    def create_session(self, prompt: str, tags: list[str] | None = None, **extra) -> CreatedSession:
        self._check("create")
        session_id = f"devin-{len(self.sessions) + 1}"
        self.created.append({"prompt": prompt, "tags": tags, **extra})
        self.sessions[session_id] = Session(
            session_id=session_id,
            status="blocked",
            tags=tags or [],
            messages=[ServerMessage(type="initial_user_message", message=prompt)],
        )
        return CreatedSession(session_id=session_id)

    def send_message(self, session_id: str, text: str) -> None:
        self._check("send")
        self.sent.append((session_id, text))
        self._push(session_id, ServerMessage(type="user_message", message=text))

    def get_session(self, session_id: str) -> Session:
        self._check("get")
        self.fetches += 1
        return self.sessions[session_id]

    def list_sessions(self, limit: int = 20, offset: int | None = None) -> list[Session]:
        self._check("list")
        return list(self.sessions.values())[:limit]

    def reply(self, session_id: str, text: str) -> None:
        self._push(session_id, ServerMessage(type="devin_message", message=text))


@pytest.fixture
def settings() -> DevorchSettings:
    return DevorchSettings(
        github_token="ghp_test",
        agent_api_key="agent_test",
        relay_url="http://relay.test",
        reconcile_delay=0,
        confidence_poll_interval=0,
        confidence_poll_max_interval=0,
        confidence_poll_max_attempts=3,
    )  # type: ignore[call-arg]


@pytest.fixture
def repo() -> Repository:
    return Repository(
        id="101",
        name="quickvm",
        full_name="jdoss/quickvm",
        description="Tiny VMs",
        stargazers_count=7,
        url="https://github.com/jdoss/quickvm",
        language="Python",
    )


@pytest.fixture
def issue() -> Issue:
    return Issue(
        id="987654321",
        number=42,
        title="Bug: crash on save",
        body="Steps: open a file, press save.",
        state="open",
        url="https://github.com/jdoss/quickvm/issues/42",
        author=IssueAuthor(login="jdoss"),
    )


@pytest.fixture
def handles(tmp_path: Path) -> SessionHandleStore:
    return SessionHandleStore(path=tmp_path / "sessions.toml")


@pytest.fixture
def agent() -> FakeAgent:
    return FakeAgent()
