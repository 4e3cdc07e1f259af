"""
Metrics summary fetcher.

Counts cached repositories and teams and samples recent commit activity.
Writing the summary is the last step of a sync; its ``last_fetched``
timestamp is what the staleness check reads.
"""

from datetime import datetime, timedelta
from typing import Optional

from ..core.models import FetchResult, MetricsSummary, Repository, utcnow
from ..utils.secure_logging import get_secure_logger
from .base import BaseFetcher

logger = get_secure_logger(__name__)

COMMIT_WINDOW = timedelta(days=30)
# Commits are only sampled from the first few repositories to spare the rate limit
COMMIT_SAMPLE_SIZE = 5


class MetricsSummaryFetcher(BaseFetcher[MetricsSummary]):
    """Computes and stores the singleton metrics summary."""

    stage = "metrics"

    async def fetch(self, completed_at: Optional[datetime] = None) -> FetchResult[MetricsSummary]:
        """
        Compute the summary and store it.

        Args:
            completed_at: Timestamp to record as ``last_fetched``
                (defaults to the time the computation finished)
        """
        report = self.new_report()

        repository_count = self.database.repositories.count()
        team_count = self.database.teams.count()

        since = utcnow() - COMMIT_WINDOW
        sample = self.database.repositories.all()[:COMMIT_SAMPLE_SIZE]

        async def count_commits(repo: Repository) -> int:
            commits = await self.guarded(
                report,
                f"{repo.full_name}:commits",
                lambda: self.client.list_commits(repo.full_name, since),
                default=[],
            )
            return len(commits)

        commit_count = sum(await self.for_each_repository(count_commits, sample))

        summary = MetricsSummary(
            repository_count=repository_count,
            team_count=team_count,
            commit_count=commit_count,
            last_fetched=completed_at or utcnow(),
        )
        self.database.metrics_summary.put(summary)

        logger.info(
            "Metrics: %d repositories, %d teams, %d commits in the last %d days",
            repository_count,
            team_count,
            commit_count,
            COMMIT_WINDOW.days,
        )
        return FetchResult(items=[summary], report=report)
