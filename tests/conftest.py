"""Pytest configuration and fixtures."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from github_compliance_monitor.core.config import GitHubSettings, Settings, SyncSettings
from github_compliance_monitor.core.models import (
    CustomProperties,
    FindingTool,
    OwnershipRule,
    Repository,
    SecurityFinding,
)
from github_compliance_monitor.github.client import GitHubAPIError, GitHubClient
from github_compliance_monitor.storage.database import Database

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeGitHubClient:
    """
    Scripted stand-in for GitHubClient.

    Responses are plain attributes keyed by repository full name; errors
    registered with :meth:`fail` are raised instead of the response.
    """

    def __init__(self):
        self.repositories: list[dict[str, Any]] = []
        self.custom_properties: dict[str, dict[str, str]] = {}
        self.teams: list[dict[str, Any]] = []
        self.alerts: dict[FindingTool, dict[str, list[dict[str, Any]]]] = {tool: {} for tool in FindingTool}
        self.files: dict[tuple[str, str], str] = {}
        self.collaborators: dict[str, list[dict[str, Any]]] = {}
        self.commits: dict[str, list[dict[str, Any]]] = {}
        self.errors: dict[tuple[str, Optional[str]], Exception] = {}
        self.calls: list[tuple[str, Optional[str]]] = []

    def fail(self, method: str, key: Optional[str] = None, error: Optional[Exception] = None) -> None:
        self.errors[(method, key)] = error or GitHubAPIError("Not Found", 404)

    def _call(self, method: str, key: Optional[str] = None) -> None:
        self.calls.append((method, key))
        error = self.errors.get((method, key))
        if error is not None:
            raise error

    async def list_user_repositories(self):
        self._call("list_user_repositories")
        return list(self.repositories)

    async def get_custom_properties(self, full_name):
        self._call("get_custom_properties", full_name)
        return dict(self.custom_properties.get(full_name, {}))

    async def list_teams(self, organization=None):
        self._call("list_teams", organization)
        return list(self.teams)

    async def list_code_scanning_alerts(self, full_name):
        self._call("list_code_scanning_alerts", full_name)
        return self.alerts[FindingTool.CODE_SCANNING].get(full_name, [])

    async def list_secret_scanning_alerts(self, full_name):
        self._call("list_secret_scanning_alerts", full_name)
        return self.alerts[FindingTool.SECRET_SCANNING].get(full_name, [])

    async def list_dependabot_alerts(self, full_name):
        self._call("list_dependabot_alerts", full_name)
        return self.alerts[FindingTool.DEPENDABOT].get(full_name, [])

    async def get_file_content(self, full_name, path, ref=None):
        self._call("get_file_content", f"{full_name}:{path}")
        return self.files.get((full_name, path))

    async def list_collaborators(self, full_name):
        self._call("list_collaborators", full_name)
        return self.collaborators.get(full_name, [])

    async def list_commits(self, full_name, since):
        self._call("list_commits", full_name)
        return self.commits.get(full_name, [])


def make_client(handler, **overrides) -> GitHubClient:
    """Real client whose requests are answered by ``handler``."""
    settings = GitHubSettings(token="ghp_testtoken", requests_per_second=1000, **overrides)
    return GitHubClient(settings, transport=httpx.MockTransport(handler))


def json_response(status_code: int, payload) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode(), headers={"content-type": "application/json"})


def repo_payload(repo_id: int, name: str, owner: str = "acme") -> dict[str, Any]:
    """Minimal /user/repos item."""
    return {
        "id": repo_id,
        "name": name,
        "full_name": f"{owner}/{name}",
        "html_url": f"https://github.com/{owner}/{name}",
        "description": None,
    }


def make_repository(repo_id: int, name: str, environment: Optional[str] = None, **properties) -> Repository:
    custom = CustomProperties(properties)
    if environment is not None:
        custom["environmentType"] = environment
    return Repository(
        id=repo_id,
        name=name,
        full_name=f"acme/{name}",
        html_url=f"https://github.com/acme/{name}",
        custom_properties=custom,
        last_fetched=NOW,
    )


def make_finding(
    repository: Repository,
    number: int,
    severity: str = "high",
    path: str = "src/app.py",
    tool: FindingTool = FindingTool.CODE_SCANNING,
    created_at: datetime = NOW,
    owner: Optional[str] = None,
) -> SecurityFinding:
    return SecurityFinding(
        id=SecurityFinding.build_id(tool, repository.id, number),
        repository_id=repository.id,
        repository_name=repository.full_name,
        tool=tool,
        severity=severity,
        title=f"Finding {number}",
        created_at=created_at,
        directory_path=path,
        owner=owner,
        last_fetched=NOW,
    )


def make_rule(repository: Repository, pattern: str, owner: str) -> OwnershipRule:
    return OwnershipRule(
        repository_id=repository.id,
        repository_name=repository.full_name,
        directory_path=pattern,
        owner=owner,
        last_fetched=NOW,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create test settings."""
    return Settings(
        github=GitHubSettings(token="ghp_testtoken", requests_per_second=1000),
        sync=SyncSettings(max_concurrency=2),
    )


@pytest.fixture
def database(tmp_path: Path) -> Database:
    """Empty cache in a temporary directory."""
    return Database(tmp_path / "cache.db")


@pytest.fixture
def fake_client() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
def production_repo() -> Repository:
    return make_repository(1, "payments", environment="Production", pod="billing")


@pytest.fixture
def staging_repo() -> Repository:
    return make_repository(2, "sandbox", environment="Staging")
