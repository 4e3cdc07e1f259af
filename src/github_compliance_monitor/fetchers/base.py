"""
Base fetcher class that all resource fetchers inherit from.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import httpx

from ..core.models import BatchReport, FetchResult, Repository
from ..github.client import GitHubAPIError, GitHubClient
from ..storage.database import Database
from ..utils.parallel import gather_bounded
from ..utils.secure_logging import get_secure_logger

logger = get_secure_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

# Failures of a single remote call; anything else aborts the stage
ITEM_ERRORS = (GitHubAPIError, httpx.HTTPError)


def describe_error(error: BaseException) -> str:
    """Short reason string for a batch report entry."""
    if isinstance(error, GitHubAPIError) and error.status_code >= 400:
        return f"HTTP {error.status_code}: {error}"
    return f"{type(error).__name__}: {error}"


class BaseFetcher(ABC, Generic[T]):
    """
    Abstract base class for all resource fetchers.

    A fetcher lists one entity kind from GitHub, normalizes it into the
    cached shape, bulk-upserts it and returns what it stored together
    with a report of the slices it had to skip.
    """

    stage: str = "base"

    def __init__(
        self,
        client: GitHubClient,
        database: Database,
        max_concurrency: int = 4,
    ):
        """
        Initialize fetcher.

        Args:
            client: Connected GitHub client
            database: Cache store
            max_concurrency: Repositories processed concurrently
        """
        self.client = client
        self.database = database
        self.max_concurrency = max_concurrency

    @abstractmethod
    async def fetch(self) -> FetchResult[T]:
        """
        Fetch, normalize and store this fetcher's entities.

        Returns:
            Stored items and the batch report
        """
        pass

    def new_report(self) -> BatchReport:
        return BatchReport(stage=self.stage)

    async def guarded(
        self,
        report: BatchReport,
        key: str,
        call: Callable[[], Awaitable[R]],
        default: R,
    ) -> R:
        """
        Run one remote call, turning a per-item failure into a skipped entry.

        Args:
            report: Report to record the outcome in
            key: Identifies the slice (e.g. "org/repo:code_scanning")
            call: Zero-argument coroutine factory
            default: Value returned when the call fails

        Returns:
            The call's result, or ``default`` on failure
        """
        try:
            result = await call()
        except ITEM_ERRORS as e:
            reason = describe_error(e)
            logger.warning("Skipping %s in %s: %s", key, self.stage, reason)
            report.record_skip(key, reason)
            return default
        report.record_success(key)
        return result

    async def for_each_repository(
        self,
        func: Callable[[Repository], Awaitable[R]],
        repositories: Optional[list[Repository]] = None,
    ) -> list[R]:
        """
        Apply ``func`` to every cached repository with bounded concurrency.

        Results keep repository order.
        """
        if repositories is None:
            repositories = self.database.repositories.all()
        return await gather_bounded(func, repositories, self.max_concurrency)
