"""Exception types raised by the PR synchronization engine."""

from datetime import datetime


class PRDashboardError(Exception):
    """Base exception for all errors surfaced on a refresh."""


class ConfigurationError(PRDashboardError):
    """Raised when user configuration or settings values are invalid."""


class AuthenticationError(PRDashboardError):
    """Raised when the GitHub credential is missing, invalid or revoked."""

    def __init__(self, message: str = "Invalid GitHub token. Please check your settings.") -> None:
        super().__init__(message)


class RateLimitedError(PRDashboardError):
    """Raised when GitHub rejects a request because the rate limit is exhausted."""

    def __init__(self, reset_at: datetime) -> None:
        self.reset_at = reset_at
        super().__init__(f"Rate limited. Try again after {reset_at.astimezone().strftime('%H:%M')}")


class NetworkError(PRDashboardError):
    """Raised when the request never produced an HTTP response (DNS, TLS, timeout)."""

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Network error: {cause}")


class DecodingError(PRDashboardError):
    """Raised when a response payload does not match the expected schema."""

    def __init__(self, cause: Exception | str) -> None:
        self.cause = cause
        super().__init__(f"Failed to parse response: {cause}")


class GitHubAPIError(PRDashboardError):
    """Raised for GitHub failures that are neither auth nor rate limit related."""


class APIStatusError(GitHubAPIError):
    """Raised for unexpected HTTP status codes."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")
