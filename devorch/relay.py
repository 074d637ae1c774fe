"""Stateless relay in front of the agent API and the GitHub OAuth token endpoint.

Each request is a single pass-through: the bearer token travels in the request
body, nothing is cached, nothing is retried. Failures never escape as
exceptions; they become a JSON ``{"error": ...}`` body with the upstream
status (or 500 when there is none).
"""

import json
import logging

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from devorch.agent import AGENT_PROXY_PATH, EXCHANGE_TOKEN_PATH
from devorch.exceptions import InvalidActionError, MissingFieldError
from devorch.settings import DevorchSettings, get_settings

logger = logging.getLogger(__name__)

GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
}

app = FastAPI(title="devorch-relay", version="0.1.0")


def get_relay_settings() -> DevorchSettings:
    return get_settings()


# ---------------------------------------------------------------------------
# Agent API translation
# ---------------------------------------------------------------------------


def build_agent_request(
    action: str | None, session_id: str | None, payload: dict
) -> tuple[str, str, object | None, dict | None]:
    """Translate a relay action into (method, path, json body, query params) for the agent API.

    Messages go to ``POST /sessions/{id}/messages`` as ``{"content": text}``.
    """
    match action:
        case "createSession":
            return "POST", "/sessions", payload, None
        case "sendMessage":
            if not session_id:
                raise MissingFieldError("session ID")
            return "POST", f"/sessions/{session_id}/messages", {"content": payload.get("message")}, None
        case "getSession":
            if not session_id:
                raise MissingFieldError("session ID")
            return "GET", f"/sessions/{session_id}", None, None
        case "listSessions":
            params = {key: payload[key] for key in ("limit", "offset") if payload.get(key)}
            return "GET", "/sessions", None, params or None
        case _:
            # Generic passthrough for anything not modelled above
            method, path = payload.get("method"), payload.get("path")
            if method and path and isinstance(method, str) and isinstance(path, str):
                return method.upper(), path, payload.get("data"), payload.get("params")
            raise InvalidActionError(action)


def _response_body(response: httpx.Response) -> object:
    try:
        return response.json()
    except ValueError:
        return response.text or None


async def forward_agent_request(body: dict, settings: DevorchSettings) -> tuple[int, object]:
    """Run one relay request and return (status code, JSON-able body)."""
    payload = dict(body)
    action = payload.pop("action", None)
    session_id = payload.pop("sessionId", None)
    api_key = payload.pop("apiKey", None)

    if not api_key:
        return 400, {"error": "Missing API key"}

    try:
        method, path, data, params = build_agent_request(action, session_id, payload)
    except (MissingFieldError, InvalidActionError) as exc:
        return 400, {"error": str(exc)}

    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    try:
        async with httpx.AsyncClient(base_url=settings.agent_api_base, timeout=settings.request_timeout) as client:
            response = await client.request(method, path, json=data, params=params, headers=headers)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        error = _response_body(exc.response)
        logger.error("Agent API error (%s %s): %s", method, path, error)
        return exc.response.status_code, {"error": error}
    except httpx.RequestError as exc:
        logger.error("Agent API unreachable (%s %s): %s", method, path, exc)
        return 500, {"error": str(exc) or "Failed to communicate with agent API"}
    except (httpx.InvalidURL, TypeError, ValueError) as exc:
        # Malformed passthrough params or data that httpx refuses to encode
        logger.error("Agent API request rejected (%s %s): %s", method, path, exc)
        return 500, {"error": str(exc) or "Failed to communicate with agent API"}

    return 200, _response_body(response)


async def _read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return {}
    return body if isinstance(body, dict) else {}


# ── Routes ───────────────────────────────────────────────────────


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info("[relay] Incoming %s %s", request.method, request.url.path)
    response = await call_next(request)
    log = logger.warning if response.status_code >= 400 else logger.info
    log("[relay] %s %s -> %s", request.method, request.url.path, response.status_code)
    return response


@app.options(AGENT_PROXY_PATH)
async def agent_proxy_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@app.post(AGENT_PROXY_PATH)
async def agent_proxy(request: Request, settings: DevorchSettings = Depends(get_relay_settings)) -> JSONResponse:
    """Forward one agent action to the agent API."""
    status_code, body = await forward_agent_request(await _read_json(request), settings)
    return JSONResponse(body, status_code=status_code, headers=CORS_HEADERS)


@app.api_route(EXCHANGE_TOKEN_PATH, methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def exchange_token(request: Request, settings: DevorchSettings = Depends(get_relay_settings)) -> JSONResponse:
    """Exchange a GitHub OAuth code for an access token."""
    if request.method != "POST":
        return JSONResponse({"error": "Method Not Allowed"}, status_code=405)

    body = await _read_json(request)
    code = body.get("code")
    client_id = body.get("client_id") or settings.github_client_id
    client_secret = body.get("client_secret") or (
        settings.github_client_secret.get_secret_value() if settings.github_client_secret else None
    )

    if not code:
        return JSONResponse({"error": "Missing code"}, status_code=400)
    if not client_id or not client_secret:
        logger.error("Missing GitHub OAuth client id or secret")
        return JSONResponse({"error": "Server configuration error"}, status_code=500)

    try:
        async with httpx.AsyncClient(timeout=settings.request_timeout) as client:
            response = await client.post(
                GITHUB_TOKEN_URL,
                json={"client_id": client_id, "client_secret": client_secret, "code": code},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Error exchanging token: %s", exc)
        return JSONResponse({"error": "Failed to exchange token"}, status_code=500)

    return JSONResponse(_response_body(response))
