"""
Security finding fetchers.

One fetcher per scanning tool:
- Code Scanning alerts (SAST findings, e.g. CodeQL)
- Secret Scanning alerts (exposed secrets detected by GitHub)
- Dependabot alerts (vulnerable dependencies)

Each walks the cached repositories, lists the tool's alerts per
repository and maps them to ``SecurityFinding`` rows. A repository whose
listing fails (feature disabled, no access, network error) contributes no
findings for that tool and shows up as skipped in the batch report.
Severities are kept exactly as the tool reports them, except for secret
scanning which reports none and is always stored as ``critical``.
"""

from abc import abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from ..core.models import FetchResult, FindingTool, Repository, SecurityFinding, utcnow
from ..utils.secure_logging import get_secure_logger
from .base import BaseFetcher

logger = get_secure_logger(__name__)

SECRET_SCANNING_SEVERITY = "critical"


def parse_github_datetime(value: Optional[str]) -> datetime:
    """Parse GitHub's ISO timestamps; missing or malformed values become now."""
    if not value:
        return utcnow()
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return utcnow()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class FindingFetcher(BaseFetcher[SecurityFinding]):
    """Shared per-repository loop of the three alert fetchers."""

    tool: FindingTool

    @property
    def stage(self) -> str:  # type: ignore[override]
        return f"findings:{self.tool.value}"

    @abstractmethod
    async def list_alerts(self, repo: Repository) -> list[dict[str, Any]]:
        """List this tool's raw alerts for one repository."""
        pass

    @abstractmethod
    def parse_alert(self, repo: Repository, data: dict[str, Any]) -> SecurityFinding:
        """Map one raw alert to a finding."""
        pass

    def finding_id(self, repo: Repository, data: dict[str, Any]) -> str:
        return SecurityFinding.build_id(self.tool, repo.id, data["number"])

    async def fetch(self) -> FetchResult[SecurityFinding]:
        report = self.new_report()

        async def fetch_repository(repo: Repository) -> list[SecurityFinding]:
            alerts = await self.guarded(
                report,
                f"{repo.full_name}:{self.tool.value}",
                lambda: self.list_alerts(repo),
                default=[],
            )
            findings = []
            for data in alerts:
                try:
                    findings.append(self.parse_alert(repo, data))
                except (KeyError, TypeError, ValueError) as e:
                    key = f"{repo.full_name}:{self.tool.value}#{data.get('number', '?')}"
                    logger.warning("Failed to parse %s alert %s: %s", self.tool.value, key, e)
                    report.record_skip(key, f"unparseable alert: {e}")
            return findings

        per_repository = await self.for_each_repository(fetch_repository)
        findings = [finding for batch in per_repository for finding in batch]

        self.database.findings.bulk_put(findings)
        logger.info(
            "Stored %d %s findings (%d slices skipped)",
            len(findings),
            self.tool.value,
            len(report.skipped),
        )
        return FetchResult(items=findings, report=report)


class CodeScanningFetcher(FindingFetcher):
    """Fetches code scanning alerts."""

    tool = FindingTool.CODE_SCANNING

    async def list_alerts(self, repo: Repository) -> list[dict[str, Any]]:
        return await self.client.list_code_scanning_alerts(repo.full_name)

    def parse_alert(self, repo: Repository, data: dict[str, Any]) -> SecurityFinding:
        rule = data.get("rule") or {}
        most_recent = data.get("most_recent_instance") or {}
        message = most_recent.get("message") or {}
        location = most_recent.get("location") or {}

        return SecurityFinding(
            id=self.finding_id(repo, data),
            repository_id=repo.id,
            repository_name=repo.full_name,
            tool=self.tool,
            severity=rule.get("severity") or "unknown",
            title=rule.get("description") or "",
            description=message.get("text") or "",
            html_url=data.get("html_url", ""),
            created_at=parse_github_datetime(data.get("created_at")),
            directory_path=location.get("path") or "",
            owner=None,
            last_fetched=utcnow(),
        )


class SecretScanningFetcher(FindingFetcher):
    """Fetches secret scanning alerts."""

    tool = FindingTool.SECRET_SCANNING

    async def list_alerts(self, repo: Repository) -> list[dict[str, Any]]:
        return await self.client.list_secret_scanning_alerts(repo.full_name)

    @staticmethod
    def _location_path(data: dict[str, Any]) -> str:
        location = data.get("location")
        if isinstance(location, str):
            return location
        if isinstance(location, dict):
            return (location.get("details") or {}).get("path") or ""
        return ""

    def parse_alert(self, repo: Repository, data: dict[str, Any]) -> SecurityFinding:
        secret_type = data.get("secret_type", "unknown")

        return SecurityFinding(
            id=self.finding_id(repo, data),
            repository_id=repo.id,
            repository_name=repo.full_name,
            tool=self.tool,
            severity=SECRET_SCANNING_SEVERITY,
            title=f"Exposed {secret_type}",
            description=f"Secret detected in {secret_type}",
            html_url=data.get("html_url", ""),
            created_at=parse_github_datetime(data.get("created_at")),
            directory_path=self._location_path(data),
            owner=None,
            last_fetched=utcnow(),
        )


class DependabotFetcher(FindingFetcher):
    """Fetches Dependabot alerts."""

    tool = FindingTool.DEPENDABOT

    async def list_alerts(self, repo: Repository) -> list[dict[str, Any]]:
        return await self.client.list_dependabot_alerts(repo.full_name)

    def parse_alert(self, repo: Repository, data: dict[str, Any]) -> SecurityFinding:
        advisory = data["security_advisory"]
        dependency = data.get("dependency") or {}

        return SecurityFinding(
            id=self.finding_id(repo, data),
            repository_id=repo.id,
            repository_name=repo.full_name,
            tool=self.tool,
            severity=advisory["severity"],
            title=advisory.get("summary") or "",
            description=advisory.get("description") or "",
            html_url=data.get("html_url", ""),
            created_at=parse_github_datetime(data.get("created_at")),
            directory_path=dependency.get("manifest_path") or "",
            owner=None,
            last_fetched=utcnow(),
        )
