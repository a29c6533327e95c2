from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings


class GitHubSettings(BaseSettings):
    """GitHub API configuration and authentication settings."""

    # Personal Access Token authentication
    github_token: SecretStr | None = Field(
        default=None,
        description="GitHub token used as the bearer credential for GraphQL requests",
    )
    github_username: str | None = Field(
        default=None,
        description="GitHub login to watch (discovered from the token when unset)",
    )

    github_graphql_url: str = Field(
        default="https://api.github.com/graphql",
        description="GitHub GraphQL endpoint",
    )
    github_request_timeout: float = Field(
        default=30.0,
        description="Per-request timeout in seconds",
    )
    github_enrichment_concurrency: int = Field(
        default=4,
        description="Maximum concurrent follow-up queries for CI contexts and review threads",
    )

    @field_validator("github_request_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate the request timeout is positive."""
        if v <= 0:
            raise ValueError("github_request_timeout must be positive")
        return v

    @field_validator("github_enrichment_concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        """Validate enrichment concurrency is in a sane range."""
        if not 1 <= v <= 32:
            raise ValueError("github_enrichment_concurrency must be between 1 and 32")
        return v
