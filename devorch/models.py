"""Shared pydantic models: the contract between the clients, the orchestrator and main.py."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CredentialKind(str, Enum):
    SOURCE_CONTROL = "source-control"
    AGENT_SERVICE = "agent-service"


class Credential(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: CredentialKind
    value: str


# ---------------------------------------------------------------------------
# Source control
# ---------------------------------------------------------------------------


class GitHubUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    login: str
    name: str | None = None
    avatar_url: str | None = None


class Repository(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    full_name: str  # owner/name
    description: str | None = None
    stargazers_count: int = 0
    url: str
    updated_at: datetime | None = None
    language: str | None = None

    @property
    def owner(self) -> str:
        return self.full_name.split("/")[0]

    @property
    def repo_tag(self) -> str:
        """Tag that binds an agent session to this repository."""
        return f"repo:{self.full_name}"


class IssueAuthor(BaseModel):
    model_config = ConfigDict(frozen=True)

    login: str
    avatar_url: str | None = None


class Issue(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    number: int  # scoped to the repository
    title: str
    body: str | None = None
    state: str = "open"  # "open" | "closed"
    url: str
    created_at: datetime | None = None
    author: IssueAuthor | None = None


# ---------------------------------------------------------------------------
# Agent service
# ---------------------------------------------------------------------------


class ServerMessage(BaseModel):
    """One entry of an agent session's message list, as the agent service reports it."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str | None = None  # "devin_message" | "user_message" | ...
    role: str | None = None
    message: str | None = None
    content: str | None = None
    origin: str | None = None
    timestamp: datetime | None = None

    @property
    def text(self) -> str:
        return self.message or self.content or ""


class PullRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    url: str


class Session(BaseModel):
    """Server-owned agent session. The client never edits these fields."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    session_id: str
    status: str = ""
    status_enum: str | None = None
    title: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    tags: list[str] = []
    pull_request: PullRequest | None = None
    messages: list[ServerMessage] = []

    @field_validator("tags", "messages", mode="before")
    @classmethod
    def _none_as_empty(cls, value: object) -> object:
        return [] if value is None else value

    @property
    def pull_request_url(self) -> str | None:
        return self.pull_request.url if self.pull_request else None


class SessionList(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    sessions: list[Session]


class CreatedSession(BaseModel):
    """Returned by create_session: minimal, just what the caller needs."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    session_id: str
    url: str | None = None
    is_new_session: bool | None = None


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"


class Message(BaseModel):
    """An entry of the local chat log, in display order."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: datetime | None = None
    pending: bool = False  # optimistic user message not yet seen on the server


class ConfidenceAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    reasoning: str = ""
