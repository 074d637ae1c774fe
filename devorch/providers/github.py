"""GitHub REST API v3 provider."""

import logging
import subprocess

import httpx

from devorch.exceptions import MissingCredentialError, UpstreamError
from devorch.models import GitHubUser, Issue, IssueAuthor, Repository
from devorch.providers.base import SourceControlProvider
from devorch.settings import DevorchSettings

logger = logging.getLogger(__name__)

BASE_URL = "https://api.github.com"


class GitHubProvider(SourceControlProvider):
    def __init__(self, settings: DevorchSettings) -> None:
        self._token = self._resolve_token(settings)
        self._timeout = settings.request_timeout
        self._headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    def _resolve_token(self, settings: DevorchSettings) -> str:
        if settings.github_auth == "gh-cli":
            result = subprocess.run(
                ["gh", "auth", "token"],
                capture_output=True,
                text=True,
            )
            if result.returncode != 0:
                raise MissingCredentialError("GitHub", "gh auth token failed. Run: gh auth login")
            return result.stdout.strip()
        if settings.github_token:
            return settings.github_token.get_secret_value()
        raise MissingCredentialError("GitHub", "Run: devorch login")

    def _check(self, response: httpx.Response) -> None:
        if response.status_code == 401:
            raise UpstreamError(
                401,
                response.text,
                "GitHub API returned 401. Run devorch login to update credentials for the active profile.",
            )
        response.raise_for_status()

    def _get(self, path: str, params: dict | None = None) -> dict | list:
        response = httpx.get(
            f"{BASE_URL}{path}",
            headers=self._headers,
            params=params or {},
            timeout=self._timeout,
        )
        self._check(response)
        return response.json()

    def _post(self, path: str, body: dict) -> dict:
        response = httpx.post(
            f"{BASE_URL}{path}",
            headers=self._headers,
            json=body,
            timeout=self._timeout,
        )
        self._check(response)
        return response.json()

    def _repo_from_node(self, node: dict) -> Repository:
        return Repository(
            id=str(node["id"]),
            name=node["name"],
            full_name=node["full_name"],
            description=node.get("description"),
            stargazers_count=node.get("stargazers_count") or 0,
            url=node["html_url"],
            updated_at=node.get("updated_at"),
            language=node.get("language"),
        )

    def _issue_from_node(self, node: dict) -> Issue:
        user = node.get("user")
        return Issue(
            id=str(node["id"]),
            number=node["number"],
            title=node["title"],
            body=node.get("body"),
            state=node.get("state", "open"),
            url=node["html_url"],
            created_at=node.get("created_at"),
            author=IssueAuthor(login=user["login"], avatar_url=user.get("avatar_url")) if user else None,
        )

    def get_user(self) -> GitHubUser:
        node = self._get("/user")
        return GitHubUser(
            login=node["login"],  # type: ignore[index]
            name=node.get("name"),  # type: ignore[union-attr]
            avatar_url=node.get("avatar_url"),  # type: ignore[union-attr]
        )

    def list_repos(self, page: int = 1, per_page: int = 30) -> list[Repository]:
        nodes = self._get(
            "/user/repos",
            params={"sort": "updated", "page": str(page), "per_page": str(per_page)},
        )
        return [self._repo_from_node(node) for node in nodes]  # type: ignore[union-attr]

    def get_repo(self, owner: str, repo: str) -> Repository:
        return self._repo_from_node(self._get(f"/repos/{owner}/{repo}"))  # type: ignore[arg-type]

    def get_issue(self, owner: str, repo: str, number: int) -> Issue:
        return self._issue_from_node(self._get(f"/repos/{owner}/{repo}/issues/{number}"))  # type: ignore[arg-type]

    def list_issues(self, owner: str, repo: str) -> list[Issue]:
        # NOTE: fetches page 1 only (GitHub default of 30). Full pagination not implemented.
        nodes = self._get(f"/repos/{owner}/{repo}/issues", params={"state": "open"})
        # The issues endpoint also returns pull requests; they carry a pull_request key.
        return [self._issue_from_node(n) for n in nodes if "pull_request" not in n]  # type: ignore[union-attr]

    def create_issue(self, owner: str, repo: str, title: str, body: str | None) -> Issue:
        payload: dict = {"title": title}
        if body:
            payload["body"] = body
        node = self._post(f"/repos/{owner}/{repo}/issues", payload)
        logger.info("Created issue %s/%s#%s", owner, repo, node["number"])
        return self._issue_from_node(node)
