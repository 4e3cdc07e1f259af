"""GitHub API client module."""

from .client import GitHubAPIError, GitHubClient
from .rate_limiter import RateLimiter, RateLimitInfo

__all__ = [
    "GitHubAPIError",
    "GitHubClient",
    "RateLimiter",
    "RateLimitInfo",
]
