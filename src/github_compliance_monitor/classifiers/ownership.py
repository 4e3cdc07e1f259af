"""
Owner resolution for security findings.

Matches each finding's path against its repository's CODEOWNERS rules
and records the owner of the most specific matching rule. Specificity is
the raw length of the pattern string, not its number of path segments.
"""

from collections import defaultdict
from typing import Iterable, Optional

from ..core.models import BatchReport, OwnershipRule, SecurityFinding
from ..storage.database import Database
from ..utils.secure_logging import get_secure_logger

logger = get_secure_logger(__name__)


def pattern_matches(pattern: str, path: str) -> bool:
    """
    Check whether a CODEOWNERS pattern covers a path.

    Supported forms: ``*`` (everything), an exact path, ``dir/*`` and
    ``dir/**`` (prefix match on ``dir/``).
    """
    if pattern == "*" or pattern == path:
        return True
    if pattern.endswith("/*") and path.startswith(pattern[:-1]):
        return True
    if pattern.endswith("/**") and path.startswith(pattern[:-2]):
        return True
    return False


def best_matching_rule(path: str, rules: Iterable[OwnershipRule]) -> Optional[OwnershipRule]:
    """
    Pick the matching rule with the longest pattern.

    On equal length the rule seen first is kept.
    """
    best: Optional[OwnershipRule] = None
    best_length = 0
    for rule in rules:
        if pattern_matches(rule.directory_path, path) and len(rule.directory_path) > best_length:
            best = rule
            best_length = len(rule.directory_path)
    return best


class OwnershipResolver:
    """
    Assigns owners to cached findings from cached ownership rules.

    Findings without a matching rule are left untouched, so re-running
    the resolver on unchanged tables changes nothing.
    """

    stage = "ownership_resolution"

    def __init__(self, database: Database):
        self.database = database

    def assign_owners(self) -> BatchReport:
        """
        Resolve and persist the owner of every finding that has a match.

        Returns:
            Report with one success entry per owned finding and one skip
            entry per finding no rule covers
        """
        report = BatchReport(stage=self.stage)

        rules_by_repository: dict[int, list[OwnershipRule]] = defaultdict(list)
        for rule in self.database.ownership_rules.all():
            rules_by_repository[rule.repository_id].append(rule)

        changed: list[SecurityFinding] = []
        for finding in self.database.findings.all():
            rules = rules_by_repository.get(finding.repository_id)
            if not rules:
                continue

            match = best_matching_rule(finding.directory_path, rules)
            if match is None:
                report.record_skip(finding.id, f"no rule matches '{finding.directory_path}'")
                continue

            report.record_success(finding.id)
            if finding.owner != match.owner:
                finding.owner = match.owner
                changed.append(finding)

        self.database.findings.bulk_put(changed)
        logger.info(
            "Assigned owners to %d findings (%d updated, %d unmatched)",
            len(report.succeeded),
            len(changed),
            len(report.skipped),
        )
        return report
