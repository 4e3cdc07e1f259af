"""
Compliance evaluation for production repositories.

A production repository is compliant when it has a CODEOWNERS file with a
catch-all pattern, no high or critical finding older than 30 days, no
direct collaborators and no collaborator with admin or maintain rights.
"""

import sqlite3
from datetime import datetime, timedelta
from typing import Any, Optional

from ..core.models import (
    BatchReport,
    ComplianceCheck,
    FetchResult,
    Repository,
    severity_in,
    utcnow,
)
from ..fetchers.base import BaseFetcher
from ..fetchers.ownership import find_ownership_file
from ..utils.secure_logging import get_secure_logger

logger = get_secure_logger(__name__)

# Findings older than this at high/critical severity break compliance
FINDING_AGE_LIMIT = timedelta(days=30)
PRIVILEGED_PERMISSIONS = ("admin", "maintain")


def has_catch_all_owner(content: Optional[str]) -> bool:
    """A CODEOWNERS file counts as valid when it has a ``*`` anywhere."""
    return content is not None and "*" in content


def has_privileged_collaborator(collaborators: list[dict[str, Any]]) -> bool:
    for collaborator in collaborators:
        permissions = collaborator.get("permissions") or {}
        if any(permissions.get(name) for name in PRIVILEGED_PERMISSIONS):
            return True
    return False


class ComplianceEvaluator(BaseFetcher[ComplianceCheck]):
    """
    Evaluates the compliance facets of every cached production repository.

    Facet lookups that fail are recorded as skipped and count as ``False``;
    the remaining facets of the repository are still evaluated.
    """

    stage = "compliance"

    async def fetch(self) -> FetchResult[ComplianceCheck]:
        return await self.evaluate_compliance()

    def _has_old_high_critical_findings(self, repo: Repository, cutoff: datetime) -> bool:
        findings = self.database.findings.where(repository_id=repo.id)
        return any(
            severity_in(f.severity, "high", "critical") and f.created_at < cutoff
            for f in findings
        )

    async def evaluate_repository(
        self, repo: Repository, now: datetime, report: BatchReport
    ) -> ComplianceCheck:
        """Compute the four facets of one repository."""
        lookup = await find_ownership_file(self.client, repo.full_name)
        valid_codeowners = has_catch_all_owner(lookup.content)
        if not lookup.found and lookup.errors:
            report.record_skip(f"{repo.full_name}:codeowners", lookup.failure_reason)

        try:
            old_findings = self._has_old_high_critical_findings(repo, now - FINDING_AGE_LIMIT)
        except sqlite3.Error as e:
            key = f"{repo.full_name}:findings"
            logger.warning("Could not read cached findings for %s: %s", repo.full_name, e)
            report.record_skip(key, f"{type(e).__name__}: {e}")
            old_findings = False

        collaborators = await self.guarded(
            report,
            f"{repo.full_name}:collaborators",
            lambda: self.client.list_collaborators(repo.full_name),
            default=[],
        )

        return ComplianceCheck(
            repository_id=repo.id,
            repository_name=repo.full_name,
            valid_codeowners=valid_codeowners,
            old_high_critical_findings=old_findings,
            direct_user_access=len(collaborators) > 0,
            admin_owner_access=has_privileged_collaborator(collaborators),
            last_checked=now,
        )

    async def evaluate_compliance(self, now: Optional[datetime] = None) -> FetchResult[ComplianceCheck]:
        """
        Evaluate and store one check per production repository.

        Check rows of cached repositories that are no longer production
        are removed.

        Args:
            now: Reference time for the finding age limit

        Returns:
            Stored checks in repository order and the batch report
        """
        now = now or utcnow()
        report = self.new_report()

        production = [
            repo for repo in self.database.repositories.all()
            if repo.custom_properties.is_production
        ]

        checks = await self.for_each_repository(
            lambda repo: self.evaluate_repository(repo, now, report),
            production,
        )

        self.database.compliance_checks.bulk_put(checks)
        pruned = self.database.prune_compliance_checks(repo.id for repo in production)

        compliant = sum(1 for check in checks if check.is_compliant)
        logger.info(
            "Evaluated %d production repositories: %d compliant, %d non-compliant (%d stale checks removed)",
            len(checks),
            compliant,
            len(checks) - compliant,
            pruned,
        )
        return FetchResult(items=checks, report=report)
