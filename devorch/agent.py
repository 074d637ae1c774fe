"""Agent service client. Every call goes through the relay, never to the agent API directly."""

import logging
from typing import TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from devorch.exceptions import MissingCredentialError, ResponseShapeError, TransportError, UpstreamError
from devorch.models import CreatedSession, Session, SessionList
from devorch.settings import DevorchSettings

logger = logging.getLogger(__name__)

# Relay routes, shared with devorch.relay
AGENT_PROXY_PATH = "/agent-proxy"
EXCHANGE_TOKEN_PATH = "/exchange-token"

M = TypeVar("M", bound=BaseModel)


def _validate(model: type[M], data: object) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ResponseShapeError(f"Unexpected {model.__name__} response from agent service: {exc}") from exc


def _post_json(url: str, body: dict, timeout: float) -> object:
    try:
        response = httpx.post(url, json=body, timeout=timeout)
    except httpx.RequestError as exc:
        raise TransportError(f"Could not reach relay at {url}: {exc}") from exc
    try:
        data = response.json()
    except ValueError:
        data = response.text
    if response.is_error:
        error = data.get("error", data) if isinstance(data, dict) else data
        raise UpstreamError(response.status_code, error)
    return data


class AgentClient:
    def __init__(self, settings: DevorchSettings) -> None:
        if not settings.agent_api_key:
            raise MissingCredentialError("agent service", "Run: devorch set-token agent-service <key>")
        self._api_key = settings.agent_api_key.get_secret_value()
        self._url = settings.relay_url.rstrip("/") + AGENT_PROXY_PATH
        self._timeout = settings.request_timeout

    def request(self, action: str, **payload) -> object:
        logger.debug("Agent request %s", action)
        return _post_json(self._url, {"action": action, "apiKey": self._api_key, **payload}, self._timeout)

    def list_sessions(self, limit: int = 20, offset: int | None = None) -> list[Session]:
        payload: dict = {"limit": limit}
        if offset:
            payload["offset"] = offset
        return _validate(SessionList, self.request("listSessions", **payload)).sessions

    def create_session(self, prompt: str, tags: list[str] | None = None, **extra) -> CreatedSession:
        payload = {"prompt": prompt, **extra}
        if tags:
            payload["tags"] = tags
        created = _validate(CreatedSession, self.request("createSession", **payload))
        logger.info("Created agent session %s", created.session_id)
        return created

    def send_message(self, session_id: str, text: str) -> object:
        return self.request("sendMessage", sessionId=session_id, message=text)

    def get_session(self, session_id: str) -> Session:
        return _validate(Session, self.request("getSession", sessionId=session_id))


def exchange_code(settings: DevorchSettings, code: str) -> dict:
    """Trade a GitHub OAuth code for a token payload via the relay."""
    body: dict = {"code": code}
    if settings.github_client_id:
        body["client_id"] = settings.github_client_id
    data = _post_json(settings.relay_url.rstrip("/") + EXCHANGE_TOKEN_PATH, body, settings.request_timeout)
    if not isinstance(data, dict):
        raise ResponseShapeError(f"Unexpected token exchange response: {data!r}")
    return data
