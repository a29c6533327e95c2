"""Follow-up pagination for pull requests whose first page under-reports.

Two feeds are enriched:

* CI contexts, paginated forward from the first page's end cursor when the
  rollup reports FAILURE or PENDING that the first 20 contexts do not explain.
* Review threads, paginated backward from the first page's start cursor,
  because the search query fetches the newest 20 threads and older ones
  precede them.

Enrichment is best-effort: a failing follow-up query is logged and the pull
request keeps its first-page values.
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from logging import getLogger
from typing import Any

from prdashboard.errors import DecodingError, PRDashboardError

from .client import GitHubAPIClient
from .models import CIStatus, ReviewThread
from .normalizer import (
    CIContext,
    ExcludeFilter,
    NormalizedPullRequest,
    PageInfo,
    aggregate_ci_contexts,
    apply_ci_counts,
    my_threads_all_resolved,
    parse_context,
    parse_review_threads,
)
from .queries import CI_CONTEXTS_QUERY, REVIEW_THREADS_QUERY

logger = getLogger(__name__)

MAX_CI_CONTEXTS = 200
MAX_REVIEW_THREAD_PAGES = 10


@dataclass
class CIContextsResult:
    """All contexts known for a commit after forward pagination."""

    contexts: list[CIContext] = field(default_factory=list)
    limit_reached: bool = False
    pages_fetched: int = 0


@dataclass
class ReviewThreadsResult:
    """Older review threads, oldest first."""

    threads: list[ReviewThread] = field(default_factory=list)
    limit_reached: bool = False
    pages_fetched: int = 0


def needs_ci_enrichment(normalized: NormalizedPullRequest) -> bool:
    """Whether the rollup claims FAILURE/PENDING that the first page does not show."""
    pr = normalized.pull_request
    rollup = (pr.github_ci_state or "").upper()
    disagrees = (rollup == "FAILURE" and pr.check_failure_count == 0) or (
        rollup == "PENDING" and pr.check_pending_count == 0
    )
    return (
        disagrees and normalized.ci_page.has_more and bool(normalized.ci_page.cursor) and bool(pr.head_commit_oid)
    )


def needs_thread_enrichment(normalized: NormalizedPullRequest) -> bool:
    """Whether older review threads exist beyond the fetched page."""
    return normalized.thread_page.has_more and bool(normalized.thread_page.cursor)


def _page_info(container: dict[str, Any], has_key: str, cursor_key: str) -> PageInfo:
    page_info = container.get("pageInfo") or {}
    return PageInfo(has_more=bool(page_info.get(has_key)), cursor=page_info.get(cursor_key))


class EnrichmentFetcher:
    """Fetch remaining CI context and review thread pages for pull requests."""

    def __init__(
        self,
        client: GitHubAPIClient,
        max_ci_contexts: int = MAX_CI_CONTEXTS,
        max_thread_pages: int = MAX_REVIEW_THREAD_PAGES,
        concurrency: int = 4,
    ) -> None:
        """Initialize the enrichment fetcher.

        Args:
            client: Authenticated GitHub API client
            max_ci_contexts: Cap on total CI contexts per commit, first page included
            max_thread_pages: Cap on additional review thread pages per PR
            concurrency: Maximum concurrent PRs being enriched
        """
        self.client = client
        self.max_ci_contexts = max_ci_contexts
        self.max_thread_pages = max_thread_pages
        self.concurrency = concurrency

    async def fetch_ci_contexts(
        self,
        owner: str,
        repo: str,
        commit_oid: str,
        cursor: str,
        initial_count: int = 0,
    ) -> CIContextsResult:
        """Paginate CI contexts forward from ``cursor``.

        Stops when the feed is exhausted or ``initial_count`` plus the fetched
        contexts reaches ``max_ci_contexts``. ``limit_reached`` is set only if
        the cap stopped a feed that still had pages.

        Raises:
            PRDashboardError: If a page request fails
        """
        result = CIContextsResult()
        total = initial_count
        next_cursor: str | None = cursor

        while next_cursor:
            response = await self.client.execute_graphql(
                CI_CONTEXTS_QUERY,
                variables={"owner": owner, "name": repo, "oid": commit_oid, "cursor": next_cursor},
            )
            data = response.get("data") or {}
            commit = ((data.get("repository") or {}).get("object")) or {}
            container = ((commit.get("statusCheckRollup") or {}).get("contexts")) or {}
            nodes = container.get("nodes") or []
            page = _page_info(container, "hasNextPage", "endCursor")

            result.contexts.extend(parse_context(node) for node in nodes)
            result.pages_fetched += 1
            total += len(nodes)

            if total >= self.max_ci_contexts:
                if page.has_more:
                    logger.warning(
                        f"Reached CI context limit ({self.max_ci_contexts}) for {owner}/{repo}@{commit_oid}, "
                        f"more pages available"
                    )
                    result.limit_reached = True
                break

            next_cursor = page.cursor if page.has_more else None

        return result

    async def fetch_review_threads(self, owner: str, repo: str, number: int, cursor: str) -> ReviewThreadsResult:
        """Paginate review threads backward from ``cursor``, returning them oldest first.

        Raises:
            PRDashboardError: If a page request fails
        """
        result = ReviewThreadsResult()
        next_cursor: str | None = cursor

        while next_cursor:
            if result.pages_fetched >= self.max_thread_pages:
                logger.warning(
                    f"Reached review thread page limit ({self.max_thread_pages}) for {owner}/{repo}#{number}"
                )
                result.limit_reached = True
                break

            response = await self.client.execute_graphql(
                REVIEW_THREADS_QUERY,
                variables={"owner": owner, "name": repo, "number": number, "cursor": next_cursor},
            )
            data = response.get("data") or {}
            pull_request = ((data.get("repository") or {}).get("pullRequest")) or {}
            container = pull_request.get("reviewThreads") or {}
            try:
                threads = parse_review_threads(container.get("nodes"))
            except (KeyError, TypeError, ValueError) as e:
                raise DecodingError(e) from e
            page = _page_info(container, "hasPreviousPage", "startCursor")

            # Each page precedes the one fetched before it
            result.threads = threads + result.threads
            result.pages_fetched += 1
            next_cursor = page.cursor if page.has_more else None

        return result

    async def enrich_ci(self, normalized: NormalizedPullRequest, exclude_filter: ExcludeFilter = "") -> None:
        """Fetch remaining CI contexts and recompute counts in place.

        Counts are recomputed over first page plus fetched pages so re-run
        deduplication spans page boundaries. If the rollup still claims
        FAILURE with no failing context found, the status becomes UNKNOWN.
        """
        pr = normalized.pull_request
        fetched = await self.fetch_ci_contexts(
            owner=pr.repository_owner,
            repo=pr.repository_name,
            commit_oid=pr.head_commit_oid or "",
            cursor=normalized.ci_page.cursor or "",
            initial_count=len(normalized.contexts),
        )

        all_contexts = normalized.contexts + fetched.contexts
        counts = aggregate_ci_contexts(all_contexts, exclude_filter)
        updated = apply_ci_counts(pr, counts, has_rollup=True)

        if (pr.github_ci_state or "").upper() == "FAILURE" and counts.failure == 0:
            updated = updated.model_copy(update={"ci_status": CIStatus.UNKNOWN})
            logger.info(
                f"PR {pr.id} set to unknown: GitHub says FAILURE but no failure found "
                f"in {len(all_contexts)} contexts (limit_reached={fetched.limit_reached})"
            )

        normalized.contexts = all_contexts
        normalized.ci_page = PageInfo(has_more=fetched.limit_reached, cursor=None)
        normalized.pull_request = updated
        logger.info(
            f"Enriched CI for PR {pr.id}: {counts.success} success, {counts.failure} failure, "
            f"{counts.pending} pending, limit_reached={fetched.limit_reached}"
        )

    async def enrich_threads(self, normalized: NormalizedPullRequest, username: str | None = None) -> None:
        """Prepend older review threads in place and recompute the viewer's thread state."""
        pr = normalized.pull_request
        fetched = await self.fetch_review_threads(
            owner=pr.repository_owner,
            repo=pr.repository_name,
            number=pr.number,
            cursor=normalized.thread_page.cursor or "",
        )
        if fetched.threads:
            threads = fetched.threads + pr.review_threads
            update: dict[str, Any] = {"review_threads": threads}
            if username:
                update["my_threads_all_resolved"] = my_threads_all_resolved(threads, username)
            normalized.pull_request = pr.model_copy(update=update)
            logger.info(
                f"Enriched review threads for PR {pr.id} (#{pr.number}): "
                f"fetched {len(fetched.threads)} additional threads"
            )
        normalized.thread_page = PageInfo(has_more=fetched.limit_reached, cursor=None)

    async def enrich(
        self,
        normalized: Iterable[NormalizedPullRequest],
        exclude_filter: ExcludeFilter = "",
        username: str | None = None,
    ) -> list[NormalizedPullRequest]:
        """Enrich every pull request that needs it.

        Requests are deduplicated by PR id (the same PR can appear in several
        search buckets); the enriched result is copied onto every occurrence.

        Returns:
            The same list, with enriched entries updated in place
        """
        items = list(normalized)
        unique: dict[int, NormalizedPullRequest] = {}
        for item in items:
            unique.setdefault(item.id, item)

        ci_targets = [item for item in unique.values() if needs_ci_enrichment(item)]
        thread_targets = [item for item in unique.values() if needs_thread_enrichment(item)]
        if not ci_targets and not thread_targets:
            return items

        if ci_targets:
            logger.info(f"Need to fetch additional CI contexts for {len(ci_targets)} PRs")
        if thread_targets:
            logger.info(f"Need to fetch additional review threads for {len(thread_targets)} PRs")

        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_ci(item: NormalizedPullRequest) -> None:
            async with semaphore:
                try:
                    await self.enrich_ci(item, exclude_filter)
                except PRDashboardError as e:
                    logger.error(f"Failed to fetch additional CI contexts for PR {item.id}: {e}")

        async def run_threads(item: NormalizedPullRequest) -> None:
            async with semaphore:
                try:
                    await self.enrich_threads(item, username)
                except PRDashboardError as e:
                    logger.error(
                        f"Failed to fetch additional review threads for PR {item.id} "
                        f"(#{item.pull_request.number}): {e}"
                    )

        # CI and thread enrichment of one PR both rewrite pull_request, so run them in two phases
        await asyncio.gather(*[run_ci(item) for item in ci_targets])
        await asyncio.gather(*[run_threads(item) for item in thread_targets])

        for item in items:
            source = unique[item.id]
            if source is not item:
                item.pull_request = source.pull_request.model_copy(update={"category": item.pull_request.category})
                item.contexts = source.contexts
                item.ci_page = source.ci_page
                item.thread_page = source.thread_page

        return items
