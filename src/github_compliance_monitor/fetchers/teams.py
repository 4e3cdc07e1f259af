"""
Team fetcher.
"""

from typing import Any, Optional

from ..core.models import FetchResult, Team, utcnow
from ..github.client import GitHubClient
from ..storage.database import Database
from ..utils.secure_logging import get_secure_logger
from .base import BaseFetcher

logger = get_secure_logger(__name__)


def parse_team(data: dict[str, Any]) -> Team:
    """Map a GitHub team payload to the cached shape."""
    return Team(
        id=data["id"],
        name=data["name"],
        slug=data["slug"],
        description=data.get("description"),
        html_url=data.get("html_url", ""),
        last_fetched=utcnow(),
    )


class TeamFetcher(BaseFetcher[Team]):
    """Fetches the teams of the configured organization (or of the token owner)."""

    stage = "teams"

    def __init__(
        self,
        client: GitHubClient,
        database: Database,
        max_concurrency: int = 4,
        organization: Optional[str] = None,
    ):
        super().__init__(client, database, max_concurrency)
        self.organization = organization

    async def fetch(self) -> FetchResult[Team]:
        report = self.new_report()

        teams = [parse_team(data) for data in await self.client.list_teams(self.organization)]
        for team in teams:
            report.record_success(team.slug)

        self.database.teams.bulk_put(teams)
        logger.info("Stored %d teams", len(teams))
        return FetchResult(items=teams, report=report)
