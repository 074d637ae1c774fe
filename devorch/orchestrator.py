"""Session orchestration for one chat context (a repository, and usually one of its issues).

Lifecycle::

    uninitialized -> creating -> awaiting-confidence -> ready-for-execution -> running

Local state is optimistic: user messages are shown before the agent service
confirms them and ``running`` is set as soon as the kickoff message is
accepted. Every fetch of the session reconciles the local log against the
server's message list, which is treated as ground truth.
"""

import logging
import threading
from collections import Counter
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import Enum

from devorch.agent import AgentClient
from devorch.confidence import CONFIDENCE_PROMPT, parse_confidence
from devorch.exceptions import DevorchError
from devorch.models import (
    ConfidenceAssessment,
    Issue,
    Message,
    MessageRole,
    Repository,
    ServerMessage,
    Session,
)
from devorch.settings import DevorchSettings
from devorch.store import SessionHandleStore

logger = logging.getLogger(__name__)

AGENT_MESSAGE_TYPE = "devin_message"
ASSISTANT_ROLES = frozenset({"model", "assistant"})
RUNNING_STATUS = "running"

EXECUTION_PROMPT = (
    "Thanks for the assessment. Please proceed with the fix now: implement the change, "
    "run the tests and open a pull request when you are done."
)


class ChatState(str, Enum):
    UNINITIALIZED = "uninitialized"
    CREATING = "creating"
    AWAITING_CONFIDENCE = "awaiting-confidence"
    READY_FOR_EXECUTION = "ready-for-execution"
    RUNNING = "running"


# States in which the user may chat with the agent
CHAT_STATES = frozenset({ChatState.AWAITING_CONFIDENCE, ChatState.READY_FOR_EXECUTION, ChatState.RUNNING})


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def issue_tags(repo: Repository, issue: Issue) -> list[str]:
    return [repo.repo_tag, f"issue:{issue.number}"]


def build_issue_prompt(repo: Repository, issue: Issue) -> str:
    """Return the opening prompt for a session working on one issue."""
    body = (issue.body or "").strip() or "_No description provided._"
    return (
        f"You are working on the GitHub repository {repo.full_name} ({repo.url}).\n\n"
        f"Issue #{issue.number}: {issue.title}\n\n"
        f"{body}\n\n"
        "Study the repository and the issue, but do not change any code until you are asked to proceed."
    )


def map_role(message: ServerMessage) -> MessageRole:
    if message.type == AGENT_MESSAGE_TYPE or (message.role or "").lower() in ASSISTANT_ROLES:
        return MessageRole.ASSISTANT
    return MessageRole.USER


def map_messages(messages: Iterable[ServerMessage]) -> list[Message]:
    return [Message(role=map_role(m), content=m.text, timestamp=m.timestamp) for m in messages]


def reconcile(local: list[Message], server: list[Message]) -> list[Message]:
    """Take the server list as ground truth, keeping pending user messages it does not show yet.

    A pending message is confirmed by a server user message with the same text
    that the local log did not already hold as confirmed. Unconfirmed pending
    messages stay at the tail, in their original order.
    """
    server_users = Counter(m.content for m in server if m.role is MessageRole.USER)
    known_users = Counter(m.content for m in local if m.role is MessageRole.USER and not m.pending)
    unseen = server_users - known_users

    carried = []
    for message in local:
        if not message.pending:
            continue
        if unseen[message.content]:
            unseen[message.content] -= 1
        else:
            carried.append(message)
    return [*server, *carried]


def filter_sessions_for_repo(sessions: Iterable[Session], full_name: str) -> list[Session]:
    """Keep the sessions tagged ``repo:<full_name>``; untagged sessions are dropped."""
    tag = f"repo:{full_name}"
    return [s for s in sessions if tag in s.tags]


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SessionOrchestrator:
    """Drives one agent session through creation, confidence check, chat and execution.

    Every external failure is caught here. Chat actions surface it as an
    ``error`` message in the log; background fetches log it and leave the
    previous state in place. ``close()`` cancels any pending wait.
    """

    def __init__(
        self,
        agent: AgentClient,
        handles: SessionHandleStore,
        settings: DevorchSettings,
        repo: Repository,
    ) -> None:
        self._agent = agent
        self._handles = handles
        self._settings = settings
        self._closed = threading.Event()

        self.repo = repo
        self.issue: Issue | None = None
        self.state = ChatState.UNINITIALIZED
        self.session_id: str | None = None
        self.status: str | None = None
        self.pull_request_url: str | None = None
        self.messages: list[Message] = []
        self.assessment: ConfidenceAssessment | None = None
        self.confidence_requested = False

    # -- internals ----------------------------------------------------------

    def _append(self, role: MessageRole, content: str, pending: bool = False) -> None:
        self.messages.append(
            Message(role=role, content=content, timestamp=datetime.now(timezone.utc), pending=pending)
        )

    def _fail(self, action: str, exc: DevorchError) -> None:
        logger.warning("%s (session %s): %s", action, self.session_id, exc)
        self._append(MessageRole.ERROR, f"{action}: {exc}")

    def _apply(self, session: Session) -> None:
        self.status = session.status
        self.pull_request_url = session.pull_request_url
        self.messages = reconcile(self.messages, map_messages(session.messages))

    # -- opening ------------------------------------------------------------

    def open_issue_chat(self, issue: Issue) -> None:
        """Attach to the issue's saved session, or create one and ask for a confidence score."""
        self.issue = issue
        saved = self._handles.get(self.repo.full_name, issue.number)
        if saved:
            logger.info("Reusing session %s for %s#%s", saved, self.repo.full_name, issue.number)
            self.session_id = saved
            # The confidence exchange already happened when this handle was created.
            self.state = ChatState.AWAITING_CONFIDENCE
            self.refresh(surface_errors=True)
            return

        self.state = ChatState.CREATING
        try:
            created = self._agent.create_session(build_issue_prompt(self.repo, issue), tags=issue_tags(self.repo, issue))
        except DevorchError as exc:
            self.state = ChatState.UNINITIALIZED
            self._fail("Failed to create agent session", exc)
            return

        self.session_id = created.session_id
        self._handles.set(self.repo.full_name, issue.number, created.session_id)
        self._append(MessageRole.SYSTEM, f"Session {created.session_id} started for issue #{issue.number}.")
        self.state = ChatState.AWAITING_CONFIDENCE
        self.request_confidence()

    def open_session(self, session_id: str) -> None:
        """Attach to an existing session that is not tied to an issue."""
        self.session_id = session_id
        try:
            session = self._agent.get_session(session_id)
        except DevorchError as exc:
            self._fail("Failed to load session", exc)
            return
        running = RUNNING_STATUS in (session.status, session.status_enum)
        self.state = ChatState.RUNNING if running else ChatState.AWAITING_CONFIDENCE
        self._apply(session)

    # -- confidence ---------------------------------------------------------

    def request_confidence(self) -> bool:
        if not self.session_id:
            return False
        self._append(MessageRole.USER, CONFIDENCE_PROMPT, pending=True)
        try:
            self._agent.send_message(self.session_id, CONFIDENCE_PROMPT)
        except DevorchError as exc:
            self._fail("Failed to request confidence assessment", exc)
            return False
        self.confidence_requested = True
        return True

    @property
    def awaiting_assessment(self) -> bool:
        return self.confidence_requested and self.assessment is None and self.state is ChatState.AWAITING_CONFIDENCE

    def check_confidence(self) -> bool:
        """Run one poll tick. Returns True once an assessment has been parsed."""
        if not self.session_id:
            return False
        try:
            session = self._agent.get_session(self.session_id)
        except DevorchError as exc:
            logger.warning("Confidence poll failed for session %s: %s", self.session_id, exc)
            return False

        newest = session.messages[-1] if session.messages else None
        if newest is None or map_role(newest) is not MessageRole.ASSISTANT:
            return False
        assessment = parse_confidence(newest.text)
        if assessment is None:
            logger.debug("No confidence block in latest reply of session %s yet", self.session_id)
            return False

        self.assessment = assessment
        self._apply(session)
        if self.state is ChatState.AWAITING_CONFIDENCE:
            self.state = ChatState.READY_FOR_EXECUTION
        return True

    def poll_confidence(self) -> ConfidenceAssessment | None:
        """Poll until an assessment arrives, attempts run out, or the chat is closed.

        The wait between ticks starts at ``confidence_poll_interval`` and grows by
        ``confidence_poll_backoff`` up to ``confidence_poll_max_interval``.
        """
        settings = self._settings
        interval = settings.confidence_poll_interval
        for attempt in range(1, settings.confidence_poll_max_attempts + 1):
            if self._closed.wait(interval):
                logger.debug("Confidence poll cancelled for session %s", self.session_id)
                return None
            if self.check_confidence():
                return self.assessment
            logger.debug("Confidence poll %d/%d: nothing yet", attempt, settings.confidence_poll_max_attempts)
            interval = min(interval * settings.confidence_poll_backoff, settings.confidence_poll_max_interval)
        logger.info("Gave up waiting for a confidence assessment on session %s", self.session_id)
        return None

    # -- chat ---------------------------------------------------------------

    def refresh(self, surface_errors: bool = False) -> bool:
        """Fetch the session and reconcile the local log against it."""
        if not self.session_id:
            return False
        try:
            session = self._agent.get_session(self.session_id)
        except DevorchError as exc:
            if surface_errors:
                self._fail("Failed to load session", exc)
            else:
                logger.warning("Refresh failed for session %s: %s", self.session_id, exc)
            return False
        self._apply(session)
        return True

    def send_message(self, text: str) -> bool:
        text = text.strip()
        if not text or not self.session_id:
            return False
        if self.state not in CHAT_STATES:
            logger.warning("Cannot send a message while %s", self.state.value)
            return False

        self._append(MessageRole.USER, text, pending=True)
        try:
            self._agent.send_message(self.session_id, text)
        except DevorchError as exc:
            self._fail("Failed to send message", exc)
            return False

        if not self._closed.wait(self._settings.reconcile_delay):
            self.refresh()
        return True

    def start_execution(self) -> bool:
        if not self.session_id or self.state not in (ChatState.AWAITING_CONFIDENCE, ChatState.READY_FOR_EXECUTION):
            return False
        try:
            self._agent.send_message(self.session_id, EXECUTION_PROMPT)
        except DevorchError as exc:
            self._fail("Failed to start execution", exc)
            return False
        self.state = ChatState.RUNNING
        self.status = RUNNING_STATUS
        self._append(MessageRole.SYSTEM, "Execution started. The agent is now working on the fix.")
        return True

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()
