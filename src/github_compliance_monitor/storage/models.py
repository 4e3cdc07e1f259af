"""
Row mapping for the SQLite cache.

Each cached entity has a table schema and a pair of functions converting
between the dataclass from ``core.models`` and a column dictionary.
Timestamps are stored as ISO-8601 text, booleans as integers and the
custom property map as JSON.
"""

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Optional, TypeVar

from ..core.models import (
    ComplianceCheck,
    CustomProperties,
    FindingTool,
    MetricsSummary,
    OwnershipRule,
    Repository,
    SecurityFinding,
    Team,
)

T = TypeVar("T")


@dataclass(frozen=True)
class TableSchema(Generic[T]):
    """How one entity kind is laid out in SQLite."""

    name: str
    columns: tuple[str, ...]
    key_columns: tuple[str, ...]
    to_row: Callable[[T], dict[str, Any]]
    from_row: Callable[[sqlite3.Row], T]


def _dt(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_dt(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# === Repositories ===

def repository_to_row(repo: Repository) -> dict[str, Any]:
    return {
        "id": repo.id,
        "name": repo.name,
        "full_name": repo.full_name,
        "description": repo.description,
        "html_url": repo.html_url,
        "custom_properties": json.dumps(dict(repo.custom_properties), sort_keys=True),
        "pod": repo.custom_properties.pod,
        "environment_type": repo.custom_properties.environment_type,
        "last_fetched": _dt(repo.last_fetched),
    }


def repository_from_row(row: sqlite3.Row) -> Repository:
    return Repository(
        id=row["id"],
        name=row["name"],
        full_name=row["full_name"],
        description=row["description"],
        html_url=row["html_url"] or "",
        custom_properties=CustomProperties(json.loads(row["custom_properties"] or "{}")),
        last_fetched=_parse_dt(row["last_fetched"]),
    )


# === Teams ===

def team_to_row(team: Team) -> dict[str, Any]:
    return {
        "id": team.id,
        "name": team.name,
        "slug": team.slug,
        "description": team.description,
        "html_url": team.html_url,
        "last_fetched": _dt(team.last_fetched),
    }


def team_from_row(row: sqlite3.Row) -> Team:
    return Team(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        description=row["description"],
        html_url=row["html_url"] or "",
        last_fetched=_parse_dt(row["last_fetched"]),
    )


# === Security findings ===

def finding_to_row(finding: SecurityFinding) -> dict[str, Any]:
    return {
        "id": finding.id,
        "repository_id": finding.repository_id,
        "repository_name": finding.repository_name,
        "tool": finding.tool.value,
        "severity": finding.severity,
        "title": finding.title,
        "description": finding.description,
        "html_url": finding.html_url,
        "created_at": _dt(finding.created_at),
        "directory_path": finding.directory_path,
        "owner": finding.owner,
        "last_fetched": _dt(finding.last_fetched),
    }


def finding_from_row(row: sqlite3.Row) -> SecurityFinding:
    return SecurityFinding(
        id=row["id"],
        repository_id=row["repository_id"],
        repository_name=row["repository_name"],
        tool=FindingTool(row["tool"]),
        severity=row["severity"],
        title=row["title"] or "",
        description=row["description"] or "",
        html_url=row["html_url"] or "",
        created_at=_parse_dt(row["created_at"]),
        directory_path=row["directory_path"] or "",
        owner=row["owner"],
        last_fetched=_parse_dt(row["last_fetched"]),
    )


# === Ownership rules ===

def ownership_rule_to_row(rule: OwnershipRule) -> dict[str, Any]:
    return {
        "repository_id": rule.repository_id,
        "directory_path": rule.directory_path,
        "repository_name": rule.repository_name,
        "owner": rule.owner,
        "last_fetched": _dt(rule.last_fetched),
    }


def ownership_rule_from_row(row: sqlite3.Row) -> OwnershipRule:
    return OwnershipRule(
        repository_id=row["repository_id"],
        repository_name=row["repository_name"],
        directory_path=row["directory_path"],
        owner=row["owner"],
        last_fetched=_parse_dt(row["last_fetched"]),
    )


# === Compliance checks ===

def compliance_check_to_row(check: ComplianceCheck) -> dict[str, Any]:
    return {
        "repository_id": check.repository_id,
        "repository_name": check.repository_name,
        "valid_codeowners": int(check.valid_codeowners),
        "old_high_critical_findings": int(check.old_high_critical_findings),
        "direct_user_access": int(check.direct_user_access),
        "admin_owner_access": int(check.admin_owner_access),
        "last_checked": _dt(check.last_checked),
    }


def compliance_check_from_row(row: sqlite3.Row) -> ComplianceCheck:
    return ComplianceCheck(
        repository_id=row["repository_id"],
        repository_name=row["repository_name"],
        valid_codeowners=bool(row["valid_codeowners"]),
        old_high_critical_findings=bool(row["old_high_critical_findings"]),
        direct_user_access=bool(row["direct_user_access"]),
        admin_owner_access=bool(row["admin_owner_access"]),
        last_checked=_parse_dt(row["last_checked"]),
    )


# === Metrics summary ===

def metrics_summary_to_row(summary: MetricsSummary) -> dict[str, Any]:
    return {
        "id": summary.id,
        "repository_count": summary.repository_count,
        "team_count": summary.team_count,
        "commit_count": summary.commit_count,
        "last_fetched": _dt(summary.last_fetched),
    }


def metrics_summary_from_row(row: sqlite3.Row) -> MetricsSummary:
    return MetricsSummary(
        id=row["id"],
        repository_count=row["repository_count"],
        team_count=row["team_count"],
        commit_count=row["commit_count"],
        last_fetched=_parse_dt(row["last_fetched"]),
    )


REPOSITORIES = TableSchema(
    name="repositories",
    columns=(
        "id", "name", "full_name", "description", "html_url",
        "custom_properties", "pod", "environment_type", "last_fetched",
    ),
    key_columns=("id",),
    to_row=repository_to_row,
    from_row=repository_from_row,
)

TEAMS = TableSchema(
    name="teams",
    columns=("id", "name", "slug", "description", "html_url", "last_fetched"),
    key_columns=("id",),
    to_row=team_to_row,
    from_row=team_from_row,
)

SECURITY_FINDINGS = TableSchema(
    name="security_findings",
    columns=(
        "id", "repository_id", "repository_name", "tool", "severity", "title",
        "description", "html_url", "created_at", "directory_path", "owner", "last_fetched",
    ),
    key_columns=("id",),
    to_row=finding_to_row,
    from_row=finding_from_row,
)

OWNERSHIP_RULES = TableSchema(
    name="ownership_rules",
    columns=("repository_id", "directory_path", "repository_name", "owner", "last_fetched"),
    key_columns=("repository_id", "directory_path"),
    to_row=ownership_rule_to_row,
    from_row=ownership_rule_from_row,
)

COMPLIANCE_CHECKS = TableSchema(
    name="compliance_checks",
    columns=(
        "repository_id", "repository_name", "valid_codeowners", "old_high_critical_findings",
        "direct_user_access", "admin_owner_access", "last_checked",
    ),
    key_columns=("repository_id",),
    to_row=compliance_check_to_row,
    from_row=compliance_check_from_row,
)

METRICS_SUMMARY = TableSchema(
    name="metrics_summary",
    columns=("id", "repository_count", "team_count", "commit_count", "last_fetched"),
    key_columns=("id",),
    to_row=metrics_summary_to_row,
    from_row=metrics_summary_from_row,
)
