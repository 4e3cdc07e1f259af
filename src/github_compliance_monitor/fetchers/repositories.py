"""
Repository fetcher.

Lists the repositories of the authenticated user and attaches each one's
custom properties.
"""

from typing import Any

from ..core.models import CustomProperties, FetchResult, Repository, utcnow
from ..utils.parallel import gather_bounded
from ..utils.secure_logging import get_secure_logger
from .base import BaseFetcher

logger = get_secure_logger(__name__)


def parse_repository(data: dict[str, Any], custom_properties: dict[str, str]) -> Repository:
    """Map a GitHub repository payload to the cached shape."""
    return Repository(
        id=data["id"],
        name=data["name"],
        full_name=data["full_name"],
        description=data.get("description"),
        html_url=data.get("html_url", ""),
        custom_properties=CustomProperties(custom_properties),
        last_fetched=utcnow(),
    )


class RepositoryFetcher(BaseFetcher[Repository]):
    """Fetches repositories and their custom properties."""

    stage = "repositories"

    async def fetch(self) -> FetchResult[Repository]:
        report = self.new_report()

        # A failure here is a stage failure
        repos_data = await self.client.list_user_repositories()

        async def with_properties(data: dict[str, Any]) -> Repository:
            full_name = data["full_name"]
            properties = await self.guarded(
                report,
                f"{full_name}:custom_properties",
                lambda: self.client.get_custom_properties(full_name),
                default={},
            )
            return parse_repository(data, properties)

        repositories = await gather_bounded(with_properties, repos_data, self.max_concurrency)

        self.database.repositories.bulk_put(repositories)
        logger.info(
            "Stored %d repositories (%d custom property lookups skipped)",
            len(repositories),
            len(report.skipped),
        )
        return FetchResult(items=repositories, report=report)
