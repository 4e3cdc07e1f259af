"""
Data models for the GitHub Compliance Monitor.

This module defines the cached entities (repositories, teams, findings,
ownership rules, compliance checks, metrics) and the result types the
fetchers and classifiers report back to the sync orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

PRODUCTION_ENVIRONMENT = "Production"


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class FindingTool(str, Enum):
    """Scanning tool that raised a security finding."""

    CODE_SCANNING = "code_scanning"
    SECRET_SCANNING = "secret_scanning"
    DEPENDABOT = "dependabot"

    @property
    def id_prefix(self) -> str:
        """Prefix used when building deterministic finding ids."""
        return {
            FindingTool.CODE_SCANNING: "code",
            FindingTool.SECRET_SCANNING: "secret",
            FindingTool.DEPENDABOT: "dependabot",
        }[self]


class ItemStatus(str, Enum):
    """Outcome of one slice of work inside a stage."""

    SUCCESS = "success"
    SKIPPED = "skipped"


class CustomProperties(dict):
    """
    Repository custom properties.

    An open string-keyed mapping: ``pod`` and ``environmentType`` are the
    keys the compliance policy looks at, any other upstream property is
    kept as-is.
    """

    @property
    def pod(self) -> Optional[str]:
        return self.get("pod")

    @property
    def environment_type(self) -> Optional[str]:
        return self.get("environmentType")

    @property
    def is_production(self) -> bool:
        return self.environment_type == PRODUCTION_ENVIRONMENT


@dataclass
class Repository:
    """A repository visible to the authenticated principal."""

    id: int
    name: str
    full_name: str
    html_url: str = ""
    description: Optional[str] = None
    custom_properties: CustomProperties = field(default_factory=CustomProperties)
    last_fetched: datetime = field(default_factory=utcnow)


@dataclass
class Team:
    """A GitHub team."""

    id: int
    name: str
    slug: str
    html_url: str = ""
    description: Optional[str] = None
    last_fetched: datetime = field(default_factory=utcnow)


@dataclass
class SecurityFinding:
    """
    A single alert raised by code scanning, secret scanning or Dependabot.

    ``severity`` keeps the casing reported by the tool; compare it with
    :func:`severity_in`.
    """

    id: str
    repository_id: int
    repository_name: str
    tool: FindingTool
    severity: str
    title: str = ""
    description: str = ""
    html_url: str = ""
    created_at: datetime = field(default_factory=utcnow)
    directory_path: str = ""
    owner: Optional[str] = None
    last_fetched: datetime = field(default_factory=utcnow)

    @staticmethod
    def build_id(tool: FindingTool, repository_id: int, alert_number: int) -> str:
        """Deterministic id so re-fetching an alert overwrites it."""
        return f"{tool.id_prefix}_{repository_id}_{alert_number}"


@dataclass
class OwnershipRule:
    """One CODEOWNERS line: a path pattern and the owner(s) it maps to."""

    repository_id: int
    repository_name: str
    directory_path: str
    owner: str
    last_fetched: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple[int, str]:
        return self.repository_id, self.directory_path


@dataclass
class ComplianceCheck:
    """Compliance facets of a production repository."""

    repository_id: int
    repository_name: str
    valid_codeowners: bool = False
    old_high_critical_findings: bool = False
    direct_user_access: bool = False
    admin_owner_access: bool = False
    last_checked: datetime = field(default_factory=utcnow)

    @property
    def is_compliant(self) -> bool:
        return (
            self.valid_codeowners
            and not self.old_high_critical_findings
            and not self.direct_user_access
            and not self.admin_owner_access
        )


@dataclass
class MetricsSummary:
    """Singleton summary row; its ``last_fetched`` drives staleness."""

    repository_count: int = 0
    team_count: int = 0
    commit_count: int = 0
    last_fetched: datetime = field(default_factory=utcnow)
    id: int = 1


@dataclass
class ItemResult:
    """Outcome of one repository, tool or file slice."""

    key: str
    status: ItemStatus
    reason: str = ""


@dataclass
class BatchReport:
    """Collected per-item outcomes of one stage."""

    stage: str
    results: list[ItemResult] = field(default_factory=list)

    def record_success(self, key: str) -> None:
        self.results.append(ItemResult(key=key, status=ItemStatus.SUCCESS))

    def record_skip(self, key: str, reason: str) -> None:
        self.results.append(ItemResult(key=key, status=ItemStatus.SKIPPED, reason=reason))

    @property
    def succeeded(self) -> list[ItemResult]:
        return [r for r in self.results if r.status == ItemStatus.SUCCESS]

    @property
    def skipped(self) -> list[ItemResult]:
        return [r for r in self.results if r.status == ItemStatus.SKIPPED]

    def skipped_keys(self) -> set[str]:
        return {r.key for r in self.skipped}


@dataclass
class FetchResult(Generic[T]):
    """Normalized items produced by a stage plus its batch report."""

    items: list[T]
    report: BatchReport


@dataclass
class SyncReport:
    """Result of a successful full sync."""

    started_at: datetime
    completed_at: Optional[datetime] = None
    stages: dict[str, BatchReport] = field(default_factory=dict)
    metrics: Optional[MetricsSummary] = None

    @property
    def duration_seconds(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    @property
    def skipped_count(self) -> int:
        return sum(len(report.skipped) for report in self.stages.values())


def severity_in(severity: Optional[str], *levels: str) -> bool:
    """Case-insensitive severity membership test."""
    if not severity:
        return False
    return severity.lower() in {level.lower() for level in levels}
