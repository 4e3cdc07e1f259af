"""
Sync orchestrator.

Runs the fetchers and classifiers in dependency order against one GitHub
client and one cache store, and reports per-stage outcomes.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional

from ..classifiers import ComplianceEvaluator, OwnershipResolver
from ..fetchers import (
    CodeScanningFetcher,
    DependabotFetcher,
    MetricsSummaryFetcher,
    OwnershipFileFetcher,
    RepositoryFetcher,
    SecretScanningFetcher,
    TeamFetcher,
)
from ..github.client import GitHubClient
from ..storage.database import Database
from ..utils.secure_logging import get_secure_logger
from .config import Settings
from .models import BatchReport, FetchResult, SyncReport, utcnow

logger = get_secure_logger(__name__)


class SyncError(Exception):
    """A sync stage failed; later stages did not run."""

    def __init__(self, stage: str, message: Optional[str] = None):
        super().__init__(message or f"Sync failed during stage '{stage}'")
        self.stage = stage


class SyncOrchestrator:
    """
    Coordinates a full sync of the compliance cache.

    Order:
    1. Repositories (with custom properties)
    2. Teams
    3. Findings: code scanning, secret scanning, Dependabot
    4. CODEOWNERS rules
    5. Finding owners
    6. Compliance checks
    7. Metrics summary

    The metrics summary is written last, so a sync that fails midway leaves
    the cache stale.
    """

    def __init__(self, client: GitHubClient, database: Database, settings: Settings):
        """
        Initialize orchestrator.

        Args:
            client: Connected GitHub client shared by all stages
            database: Cache store
            settings: Application settings
        """
        self.client = client
        self.database = database
        self.settings = settings

        concurrency = settings.sync.max_concurrency
        self.repository_fetcher = RepositoryFetcher(client, database, concurrency)
        self.team_fetcher = TeamFetcher(
            client, database, concurrency, organization=settings.github.organization
        )
        self.finding_fetchers = [
            CodeScanningFetcher(client, database, concurrency),
            SecretScanningFetcher(client, database, concurrency),
            DependabotFetcher(client, database, concurrency),
        ]
        self.ownership_fetcher = OwnershipFileFetcher(client, database, concurrency)
        self.ownership_resolver = OwnershipResolver(database)
        self.compliance_evaluator = ComplianceEvaluator(client, database, concurrency)
        self.metrics_fetcher = MetricsSummaryFetcher(client, database, concurrency)

    async def _run_stage(
        self,
        report: SyncReport,
        stage: str,
        step: Callable[[], Awaitable[FetchResult]],
    ) -> FetchResult:
        logger.info("Sync stage started: %s", stage)
        try:
            result = await step()
        except Exception as e:
            logger.error("Sync stage %s failed: %s", stage, e)
            raise SyncError(stage) from e

        report.stages[stage] = result.report
        logger.info(
            "Sync stage finished: %s (%d ok, %d skipped)",
            stage,
            len(result.report.succeeded),
            len(result.report.skipped),
        )
        return result

    async def _resolve_owners(self) -> FetchResult:
        batch: BatchReport = self.ownership_resolver.assign_owners()
        return FetchResult(items=[], report=batch)

    async def run_full_sync(self, now: Optional[datetime] = None) -> SyncReport:
        """
        Run every stage in order.

        Args:
            now: Reference time for compliance ages and the completion
                timestamp (defaults to the wall clock)

        Returns:
            Per-stage batch reports and the new metrics summary

        Raises:
            SyncError: A stage raised; its cause is chained
        """
        report = SyncReport(started_at=now or utcnow())

        await self._run_stage(report, self.repository_fetcher.stage, self.repository_fetcher.fetch)
        await self._run_stage(report, self.team_fetcher.stage, self.team_fetcher.fetch)
        for fetcher in self.finding_fetchers:
            await self._run_stage(report, fetcher.stage, fetcher.fetch)
        await self._run_stage(report, self.ownership_fetcher.stage, self.ownership_fetcher.fetch)
        await self._run_stage(report, self.ownership_resolver.stage, self._resolve_owners)
        await self._run_stage(
            report,
            self.compliance_evaluator.stage,
            lambda: self.compliance_evaluator.evaluate_compliance(now=now),
        )

        completed_at = now or utcnow()
        result = await self._run_stage(
            report,
            self.metrics_fetcher.stage,
            lambda: self.metrics_fetcher.fetch(completed_at=completed_at),
        )

        report.completed_at = completed_at
        report.metrics = result.items[0]
        logger.info(
            "Full sync completed in %.1fs (%d slices skipped)",
            report.duration_seconds,
            report.skipped_count,
        )
        return report

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        """Whether the cache is older than 24 hours or was never synced."""
        return self.database.is_data_stale(now)
