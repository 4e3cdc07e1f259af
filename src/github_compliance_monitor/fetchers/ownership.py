"""
CODEOWNERS fetcher.

Looks up each repository's CODEOWNERS file at the conventional locations
and stores one ownership rule per pattern line. A repository's rule set is
replaced wholesale on every lookup, so patterns removed from the file do
not linger in the cache.
"""

from dataclasses import dataclass, field
from typing import Optional

from ..core.models import FetchResult, OwnershipRule, Repository, utcnow
from ..github.client import GitHubClient
from ..utils.secure_logging import get_secure_logger
from .base import ITEM_ERRORS, BaseFetcher, describe_error

logger = get_secure_logger(__name__)

# Checked in order; the first path with content wins
CODEOWNERS_PATHS = ("CODEOWNERS", ".github/CODEOWNERS", "docs/CODEOWNERS")


@dataclass
class OwnershipFileLookup:
    """Outcome of a CODEOWNERS lookup, including candidates that failed to load."""

    path: Optional[str] = None
    content: Optional[str] = None
    errors: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.content is not None

    @property
    def failure_reason(self) -> str:
        if self.errors:
            return "; ".join(self.errors)
        return "no CODEOWNERS file found"


async def find_ownership_file(client: GitHubClient, full_name: str) -> OwnershipFileLookup:
    """
    Find a repository's CODEOWNERS file.

    A candidate that is missing or fails to load is passed over; load
    failures are kept on the result so callers can report them.

    Args:
        client: Connected GitHub client
        full_name: Repository in "owner/repo" format

    Returns:
        Path and content of the first candidate found, if any
    """
    lookup = OwnershipFileLookup()
    for path in CODEOWNERS_PATHS:
        try:
            content = await client.get_file_content(full_name, path)
        except ITEM_ERRORS as e:
            reason = f"{path}: {describe_error(e)}"
            logger.warning("Could not read CODEOWNERS candidate in %s: %s", full_name, reason)
            lookup.errors.append(reason)
            continue
        if content is not None:
            lookup.path, lookup.content = path, content
            return lookup
    return lookup


def parse_ownership_file(content: str, repo: Repository) -> list[OwnershipRule]:
    """
    Parse CODEOWNERS content into rules.

    Blank lines and comment lines are skipped. The first token of a line is
    the pattern; the remaining tokens, joined by one space, are the owner.
    Lines without an owner are ignored.

    Args:
        content: Raw file content
        repo: Repository the file belongs to

    Returns:
        Rules in file order
    """
    fetched_at = utcnow()
    rules = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue

        pattern, *owners = stripped.split()
        if not owners:
            continue

        rules.append(
            OwnershipRule(
                repository_id=repo.id,
                repository_name=repo.full_name,
                directory_path=pattern,
                owner=" ".join(owners),
                last_fetched=fetched_at,
            )
        )
    return rules


class OwnershipFileFetcher(BaseFetcher[OwnershipRule]):
    """Fetches and parses CODEOWNERS files."""

    stage = "ownership_rules"

    async def fetch(self) -> FetchResult[OwnershipRule]:
        report = self.new_report()

        async def fetch_repository(repo: Repository) -> list[OwnershipRule]:
            lookup = await find_ownership_file(self.client, repo.full_name)
            key = f"{repo.full_name}:codeowners"
            if not lookup.found:
                rules: list[OwnershipRule] = []
                report.record_skip(key, lookup.failure_reason)
            else:
                rules = parse_ownership_file(lookup.content, repo)
                logger.debug("Parsed %d rules from %s in %s", len(rules), lookup.path, repo.full_name)
                report.record_success(key)

            self.database.replace_ownership_rules(repo.id, rules)
            return rules

        per_repository = await self.for_each_repository(fetch_repository)
        rules = [rule for batch in per_repository for rule in batch]

        logger.info(
            "Stored %d ownership rules (%d repositories without CODEOWNERS)",
            len(rules),
            len(report.skipped),
        )
        return FetchResult(items=rules, report=report)
