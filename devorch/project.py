"""View state for one selected repository: its issues, its agent sessions, and chat contexts."""

import logging

import httpx

from devorch.agent import AgentClient
from devorch.exceptions import DevorchError
from devorch.models import Issue, Repository, Session
from devorch.orchestrator import SessionOrchestrator, filter_sessions_for_repo
from devorch.providers.base import SourceControlProvider
from devorch.settings import DevorchSettings
from devorch.store import SessionHandleStore

logger = logging.getLogger(__name__)


class ProjectView:
    """Background loads log their failure and keep the previous list."""

    def __init__(
        self,
        repo: Repository,
        provider: SourceControlProvider,
        agent: AgentClient,
        handles: SessionHandleStore,
        settings: DevorchSettings,
    ) -> None:
        self.repo = repo
        self._provider = provider
        self._agent = agent
        self._handles = handles
        self._settings = settings
        self.issues: list[Issue] = []
        self.sessions: list[Session] = []

    def _owner_and_name(self) -> tuple[str, str]:
        owner, name = self.repo.full_name.split("/", 1)
        return owner, name

    def load_issues(self) -> list[Issue]:
        try:
            self.issues = self._provider.list_issues(*self._owner_and_name())
        except (DevorchError, httpx.HTTPError) as exc:
            logger.error("Failed to load issues for %s: %s", self.repo.full_name, exc)
        return self.issues

    def get_issue(self, number: int) -> Issue:
        for issue in self.issues:
            if issue.number == number:
                return issue
        return self._provider.get_issue(*self._owner_and_name(), number)

    def create_issue(self, title: str, body: str = "") -> Issue | None:
        """Create an issue and prepend it to the loaded list, without reloading."""
        if not title.strip():
            return None
        owner, name = self._owner_and_name()
        try:
            issue = self._provider.create_issue(owner, name, title, body)
        except (DevorchError, httpx.HTTPError) as exc:
            logger.error("Failed to create issue in %s: %s", self.repo.full_name, exc)
            return None
        self.issues.insert(0, issue)
        return issue

    def load_sessions(self, limit: int = 20) -> list[Session]:
        # The listing call is not scoped to a repository; the repo tag does the scoping.
        try:
            self.sessions = filter_sessions_for_repo(self._agent.list_sessions(limit=limit), self.repo.full_name)
        except DevorchError as exc:
            logger.error("Failed to list agent sessions: %s", exc)
        return self.sessions

    def chat(self) -> SessionOrchestrator:
        return SessionOrchestrator(self._agent, self._handles, self._settings, self.repo)

    def open_issue_chat(self, issue: Issue) -> SessionOrchestrator:
        orchestrator = self.chat()
        orchestrator.open_issue_chat(issue)
        return orchestrator

    def open_session(self, session_id: str) -> SessionOrchestrator:
        orchestrator = self.chat()
        orchestrator.open_session(session_id)
        return orchestrator
