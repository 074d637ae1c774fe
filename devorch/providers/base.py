"""Abstract base class for source-control providers."""

from abc import ABC, abstractmethod

from devorch.models import GitHubUser, Issue, Repository


class SourceControlProvider(ABC):
    @abstractmethod
    def get_user(self) -> GitHubUser: ...

    @abstractmethod
    def list_repos(self, page: int = 1, per_page: int = 30) -> list[Repository]: ...

    @abstractmethod
    def get_repo(self, owner: str, repo: str) -> Repository: ...

    @abstractmethod
    def list_issues(self, owner: str, repo: str) -> list[Issue]: ...

    @abstractmethod
    def get_issue(self, owner: str, repo: str, number: int) -> Issue: ...

    @abstractmethod
    def create_issue(self, owner: str, repo: str, title: str, body: str | None) -> Issue: ...
