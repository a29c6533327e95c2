"""Async GitHub GraphQL client using httpx."""

from datetime import datetime, timezone
from logging import getLogger
from typing import Any

import httpx
from pydantic import SecretStr

from prdashboard.errors import (
    APIStatusError,
    AuthenticationError,
    DecodingError,
    GitHubAPIError,
    NetworkError,
    RateLimitedError,
)

from .models import RateLimitInfo
from .queries import VIEWER_QUERY

logger = getLogger(__name__)


def parse_rate_limit_headers(headers: httpx.Headers) -> RateLimitInfo | None:
    """Parse the standard ``X-RateLimit-*`` headers.

    Returns:
        RateLimitInfo, or None if any of the three headers is missing or malformed
    """
    try:
        limit = int(headers["X-RateLimit-Limit"])
        remaining = int(headers["X-RateLimit-Remaining"])
        reset = float(headers["X-RateLimit-Reset"])
    except (KeyError, ValueError):
        return None
    return RateLimitInfo(
        limit=limit,
        remaining=remaining,
        reset_at=datetime.fromtimestamp(reset, tz=timezone.utc),
    )


class GitHubAPIClient:
    """Async client executing GraphQL queries against GitHub.

    Each call is exactly one POST; retry policy belongs to the polling
    scheduler. The bearer token can be swapped at any time with
    :meth:`update_token` without rebuilding the client.
    """

    def __init__(
        self,
        token: SecretStr | str | None = None,
        graphql_url: str = "https://api.github.com/graphql",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize GitHub API client.

        Args:
            token: GitHub access token (may be empty until sign-in)
            graphql_url: GraphQL endpoint
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.token = token.get_secret_value() if isinstance(token, SecretStr) else (token or "")
        self.graphql_url = graphql_url
        self.timeout = timeout
        self.rate_limit_info = RateLimitInfo.empty()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GitHubAPIClient":
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            headers={
                "Accept": "application/vnd.github+json",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def update_token(self, token: SecretStr | str | None) -> None:
        """Replace the bearer token used for subsequent requests."""
        self.token = token.get_secret_value() if isinstance(token, SecretStr) else (token or "")

    async def execute_graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute a GraphQL query against GitHub's GraphQL API.

        Args:
            query: GraphQL query string
            variables: Optional dictionary of GraphQL variables

        Returns:
            GraphQL response dictionary (with a ``data`` key)

        Raises:
            AuthenticationError: On 401, or 403 without a rate-limit reset header
            RateLimitedError: On 403 carrying ``X-RateLimit-Reset``
            APIStatusError: On any other non-200 status
            GitHubAPIError: If GraphQL errors came back without usable data
            NetworkError: If the request failed below HTTP (DNS, TLS, timeout)
            DecodingError: If the body is not a JSON object
        """
        if not self._client:
            raise RuntimeError("Client not initialized - use async with context manager")

        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = await self._client.request(
                "POST",
                self.graphql_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.token}"},
            )
        except httpx.TransportError as e:
            logger.warning(f"GraphQL request failed before a response was received: {e!r}")
            raise NetworkError(e) from e

        rate_limit = parse_rate_limit_headers(response.headers)
        if rate_limit is not None:
            self.rate_limit_info = rate_limit
            if rate_limit.is_low:
                logger.warning(f"GitHub rate limit is low: {rate_limit.remaining}/{rate_limit.limit} remaining")

        status_code = response.status_code
        if status_code == 401:
            raise AuthenticationError()
        if status_code == 403:
            reset_header = response.headers.get("X-RateLimit-Reset")
            if reset_header:
                try:
                    reset_at = datetime.fromtimestamp(float(reset_header), tz=timezone.utc)
                except ValueError:
                    raise AuthenticationError()
                logger.warning(f"Rate limited by GitHub until {reset_at.isoformat()}")
                raise RateLimitedError(reset_at)
            raise AuthenticationError()
        if status_code != 200:
            logger.error(f"Unexpected HTTP status from GitHub GraphQL: {status_code}")
            raise APIStatusError(status_code)

        try:
            result = response.json()
        except ValueError as e:
            raise DecodingError(e) from e
        if not isinstance(result, dict):
            raise DecodingError(f"Expected a JSON object, got {type(result).__name__}")

        errors = result.get("errors")
        if errors:
            if not result.get("data"):
                first = errors[0]
                message = first.get("message", str(first)) if isinstance(first, dict) else str(first)
                raise GitHubAPIError(message)
            # Partial results: GitHub returns data alongside errors for e.g. inaccessible repositories
            logger.warning(f"GraphQL returned {len(errors)} error(s) alongside data; using partial data")

        return result

    async def get_viewer_login(self) -> str:
        """Return the login of the user owning the current token."""
        result = await self.execute_graphql(VIEWER_QUERY)
        try:
            login: str = result["data"]["viewer"]["login"]
        except (KeyError, TypeError) as e:
            raise DecodingError(e) from e
        return login

    async def validate_token(self) -> bool:
        """Check whether the current token is accepted by GitHub.

        Returns:
            True if valid, False if GitHub rejected the credential
        """
        try:
            await self.execute_graphql(VIEWER_QUERY)
        except AuthenticationError:
            return False
        return True
