"""Resource fetchers: one per cached entity kind."""

from .base import BaseFetcher
from .findings import (
    CodeScanningFetcher,
    DependabotFetcher,
    FindingFetcher,
    SecretScanningFetcher,
)
from .metrics import MetricsSummaryFetcher
from .ownership import (
    CODEOWNERS_PATHS,
    OwnershipFileFetcher,
    OwnershipFileLookup,
    find_ownership_file,
    parse_ownership_file,
)
from .repositories import RepositoryFetcher
from .teams import TeamFetcher

__all__ = [
    "BaseFetcher",
    "CODEOWNERS_PATHS",
    "CodeScanningFetcher",
    "DependabotFetcher",
    "FindingFetcher",
    "MetricsSummaryFetcher",
    "OwnershipFileFetcher",
    "OwnershipFileLookup",
    "RepositoryFetcher",
    "SecretScanningFetcher",
    "TeamFetcher",
    "find_ownership_file",
    "parse_ownership_file",
]
