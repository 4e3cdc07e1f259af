"""
Async client for the parts of the GitHub REST API the compliance sync reads.

Covers repositories and their custom properties, teams, the three security
alert listings, file contents, collaborators, commits and the rate limit.
Every request is paced by a :class:`RateLimiter`; timeouts and connection
errors are retried with exponential backoff.
"""

import asyncio
import base64
import binascii
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import GitHubSettings
from ..utils.secure_logging import get_secure_logger
from .rate_limiter import RateLimiter

logger = get_secure_logger(__name__)

API_VERSION = "2022-11-28"


class GitHubAPIError(Exception):
    """A non-2xx reply from the GitHub API."""

    def __init__(self, message: str, status_code: int = 0, response: Optional[dict] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response or {}

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json() if response.content else {}
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


class GitHubClient:
    """
    GitHub REST client shared by all stages of one sync.

    Listing calls read ``settings.max_pages`` pages of ``settings.per_page``
    items; the default of one page keeps listings to a single call.
    """

    def __init__(
        self,
        settings: GitHubSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            settings: Connection settings (token, base URL, paging)
            transport: httpx transport override, e.g. ``httpx.MockTransport``
        """
        self.settings = settings
        self.rate_limiter = RateLimiter(requests_per_second=settings.requests_per_second)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the underlying HTTP connection pool."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": "GitHubComplianceMonitor/1.0",
        }
        if self.settings.token:
            headers["Authorization"] = f"Bearer {self.settings.token}"

        self._client = httpx.AsyncClient(
            base_url=self.settings.api_url,
            headers=headers,
            timeout=self.settings.timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("GitHubClient is not connected; use 'async with' or call connect()")
        return self._client

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=30),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        _replay_on_rate_limit: bool = True,
    ) -> Any:
        """
        Send one paced request and decode the JSON body.

        A secondary rate limit reply (403/429 with a ``retry-after``) is
        waited out and replayed once.

        Raises:
            GitHubAPIError: The reply status is 400 or above, or a
                successful reply's body is not JSON
        """
        await self.rate_limiter.acquire()
        response = await self.client.request(method, endpoint, params=params)
        self.rate_limiter.update_from_headers(response.headers)

        if response.status_code < 400:
            if response.status_code == 204 or not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise GitHubAPIError(
                    f"Reply is not valid JSON ({method} {endpoint})", response.status_code
                ) from e

        payload = _error_payload(response)
        message = payload.get("message", f"HTTP {response.status_code}")

        if (
            _replay_on_rate_limit
            and response.status_code in (403, 429)
            and "rate limit" in message.lower()
        ):
            retry_after = self.rate_limiter.get_retry_after(response.headers)
            if retry_after:
                logger.warning("Secondary rate limit on %s; retrying in %ss", endpoint, retry_after)
                await asyncio.sleep(retry_after)
                return await self._request(method, endpoint, params, _replay_on_rate_limit=False)

        raise GitHubAPIError(f"{message} ({method} {endpoint})", response.status_code, payload)

    async def _paginate(
        self,
        endpoint: str,
        params: Optional[dict] = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Yield listing items, stopping after ``max_pages`` pages or at a short page."""
        params = dict(params or {})
        per_page = self.settings.per_page
        params["per_page"] = per_page

        for page in range(1, self.settings.max_pages + 1):
            params["page"] = page
            body = await self._request("GET", endpoint, params=params)

            # Most listings are bare arrays; a few wrap them in an object
            items = body if isinstance(body, list) else body.get("items", body.get("repositories", []))
            for item in items:
                yield item

            if len(items) < per_page:
                break

    async def _list(self, endpoint: str, params: Optional[dict] = None) -> list[dict[str, Any]]:
        return [item async for item in self._paginate(endpoint, params)]

    # Repositories

    async def list_user_repositories(self) -> list[dict[str, Any]]:
        """Repositories visible to the authenticated user (``GET /user/repos``)."""
        return await self._list("/user/repos")

    async def get_custom_properties(self, full_name: str) -> dict[str, str]:
        """
        Custom property values of a repository.

        Multi-select values are joined with ``","``; unset values are dropped.

        Args:
            full_name: Repository in "owner/repo" format

        Returns:
            Property name -> value
        """
        response = await self._request("GET", f"/repos/{full_name}/properties/values")

        if isinstance(response, dict):
            return {k: str(v) for k, v in response.items() if v is not None}

        properties: dict[str, str] = {}
        for entry in response:
            name = entry.get("property_name")
            value = entry.get("value")
            if not name or value is None:
                continue
            if isinstance(value, list):
                value = ",".join(str(v) for v in value)
            properties[name] = str(value)
        return properties

    async def list_collaborators(self, full_name: str) -> list[dict[str, Any]]:
        """Collaborators of a repository, each with a ``permissions`` map."""
        return await self._list(f"/repos/{full_name}/collaborators")

    async def list_commits(self, full_name: str, since: datetime) -> list[dict[str, Any]]:
        """Commits of a repository's default branch made after ``since``."""
        since_utc = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return await self._list(f"/repos/{full_name}/commits", {"since": since_utc})

    # Teams

    async def list_teams(self, organization: Optional[str] = None) -> list[dict[str, Any]]:
        """
        Teams of an organization, or of the authenticated user.

        Args:
            organization: Organization login, None for the user's teams
        """
        if organization:
            return await self._list(f"/orgs/{organization}/teams")
        return await self._list("/user/teams")

    # Security alerts

    async def list_code_scanning_alerts(self, full_name: str) -> list[dict[str, Any]]:
        return await self._list(f"/repos/{full_name}/code-scanning/alerts")

    async def list_secret_scanning_alerts(self, full_name: str) -> list[dict[str, Any]]:
        return await self._list(f"/repos/{full_name}/secret-scanning/alerts")

    async def list_dependabot_alerts(self, full_name: str) -> list[dict[str, Any]]:
        return await self._list(f"/repos/{full_name}/dependabot/alerts")

    # Contents

    async def get_file_content(
        self,
        full_name: str,
        path: str,
        ref: Optional[str] = None,
    ) -> Optional[str]:
        """
        Decoded text of a file.

        Args:
            full_name: Repository in "owner/repo" format
            path: Path inside the repository
            ref: Branch, tag or SHA (default branch when omitted)

        Returns:
            The file's text, or None when the path does not exist or is
            not a regular file

        Raises:
            GitHubAPIError: Any error other than 404, or a body that is
                not valid base64
        """
        try:
            response = await self._request(
                "GET",
                f"/repos/{full_name}/contents/{path}",
                params={"ref": ref} if ref else None,
            )
        except GitHubAPIError as e:
            if e.is_not_found:
                return None
            raise

        if not (isinstance(response, dict) and response.get("type") == "file" and response.get("content")):
            return None

        try:
            raw = base64.b64decode(response["content"])
        except (binascii.Error, TypeError) as e:
            raise GitHubAPIError(f"Undecodable content of {path} in {full_name}") from e
        return raw.decode("utf-8", errors="replace")

    # Quota

    async def get_rate_limit(self) -> dict[str, Any]:
        """Current quota per bucket (``core``, ``search``, ``graphql``, ...)."""
        response = await self._request("GET", "/rate_limit")
        return response.get("resources", {})
