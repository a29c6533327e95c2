"""Service for collecting the dashboard's pull requests from GitHub."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from logging import getLogger

from prdashboard.errors import DecodingError

from .client import GitHubAPIClient
from .enrichment import EnrichmentFetcher
from .models import PRCategory, PullRequest
from .normalizer import ExcludeFilter, normalize_bucket
from .queries import build_combined_query

logger = getLogger(__name__)

# Server-side window for the merged bucket; wider than the display window to tolerate clock skew
MERGED_FETCH_DAYS = 2
# Client-side window for recently merged PRs
MERGED_DISPLAY_WINDOW = timedelta(hours=24)

BUCKETS = ("authored", "reviewRequested", "reviewedBy", "mergedInvolved")


@dataclass
class CombinedPRResult:
    """Result of one collection: open PRs and recently merged PRs, both sorted."""

    open_prs: list[PullRequest] = field(default_factory=list)
    merged_prs: list[PullRequest] = field(default_factory=list)


def _dedupe(prs: list[PullRequest]) -> list[PullRequest]:
    """Deduplicate by id, first seen wins."""
    seen: set[int] = set()
    result: list[PullRequest] = []
    for pr in prs:
        if pr.id in seen:
            continue
        seen.add(pr.id)
        result.append(pr)
    return result


def aggregate_buckets(
    authored: list[PullRequest],
    review_requested: list[PullRequest],
    reviewed_by: list[PullRequest],
    merged_involved: list[PullRequest],
    username: str,
    now: datetime | None = None,
    merged_window: timedelta = MERGED_DISPLAY_WINDOW,
) -> CombinedPRResult:
    """Combine the four search buckets into the dashboard's open and merged lists.

    Args:
        authored: Open PRs authored by the viewer
        review_requested: Open PRs requesting the viewer's review
        reviewed_by: Open PRs the viewer already reviewed
        merged_involved: Recently merged PRs the viewer was involved in
        username: Viewer login, used to re-tag merged PRs by author
        now: Reference time for the merged window (default: current time)
        merged_window: Trailing window for merged PRs

    Returns:
        CombinedPRResult with open PRs sorted by ``updated_at`` and merged PRs
        sorted by ``merged_at`` (falling back to ``updated_at``), newest first
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - merged_window

    authored_prs = [pr.model_copy(update={"category": PRCategory.AUTHORED}) for pr in authored]
    review_prs = [
        pr.model_copy(update={"category": PRCategory.REVIEW_REQUEST})
        for pr in _dedupe(review_requested + reviewed_by)
    ]
    open_prs = _dedupe(authored_prs + review_prs)
    open_prs.sort(key=lambda pr: pr.updated_at, reverse=True)

    merged: list[PullRequest] = []
    for pr in _dedupe(merged_involved):
        if pr.merged_at is None or pr.merged_at < cutoff:
            continue
        category = PRCategory.AUTHORED if pr.author.lower() == username.lower() else PRCategory.REVIEW_REQUEST
        merged.append(pr.model_copy(update={"category": category}))
    merged.sort(key=lambda pr: pr.merged_at or pr.updated_at, reverse=True)

    return CombinedPRResult(open_prs=open_prs, merged_prs=merged)


class PullRequestCollector:
    """Service for collecting the viewer's pull requests from GitHub."""

    def __init__(self, github_client: GitHubAPIClient, enrichment: EnrichmentFetcher | None = None) -> None:
        """Initialize the pull request collector.

        Args:
            github_client: Authenticated GitHub API client
            enrichment: Fetcher for follow-up pages (default: one built on ``github_client``)
        """
        self.github_client = github_client
        self.enrichment = enrichment or EnrichmentFetcher(github_client)

    async def collect(
        self,
        username: str,
        exclude_filter: ExcludeFilter = "",
        now: datetime | None = None,
    ) -> CombinedPRResult:
        """Fetch, normalize, enrich and aggregate the viewer's pull requests.

        Args:
            username: Viewer login
            exclude_filter: Case-insensitive substring hiding status contexts by name,
                or a callable returning it
            now: Reference time for the merged windows (default: current time)

        Returns:
            CombinedPRResult

        Raises:
            PRDashboardError: If the combined query fails or its payload is malformed
        """
        collection_start_time = time.time()
        now = now or datetime.now(timezone.utc)
        logger.info(f"Starting PR collection for {username}")

        query = build_combined_query(username, merged_days_back=MERGED_FETCH_DAYS, now=now)
        response = await self.github_client.execute_graphql(query)

        data = response.get("data")
        if not isinstance(data, dict):
            raise DecodingError("Response is missing 'data'")
        missing = [bucket for bucket in BUCKETS if not isinstance(data.get(bucket), dict)]
        if missing:
            raise DecodingError(f"Response is missing search results: {', '.join(missing)}")

        buckets = {
            bucket: normalize_bucket(
                data[bucket].get("nodes"),
                PRCategory.REVIEW_REQUEST if bucket != "authored" else PRCategory.AUTHORED,
                username=username,
                exclude_filter=exclude_filter,
            )
            for bucket in BUCKETS
        }
        logger.info(
            "Fetched buckets: "
            + ", ".join(f"{bucket}={len(items)}" for bucket, items in buckets.items())
        )

        await self.enrichment.enrich(
            [item for items in buckets.values() for item in items],
            exclude_filter=exclude_filter,
            username=username,
        )

        result = aggregate_buckets(
            authored=[item.pull_request for item in buckets["authored"]],
            review_requested=[item.pull_request for item in buckets["reviewRequested"]],
            reviewed_by=[item.pull_request for item in buckets["reviewedBy"]],
            merged_involved=[item.pull_request for item in buckets["mergedInvolved"]],
            username=username,
            now=now,
        )

        duration = time.time() - collection_start_time
        logger.info(
            f"PR collection completed in {duration:.2f}s: {len(result.open_prs)} open, "
            f"{len(result.merged_prs)} recently merged"
        )
        return result
