"""Map raw GraphQL pull request nodes into domain models.

CI contexts come back as a union of ``CheckRun`` (carries ``conclusion``) and
``StatusContext`` (carries ``state``). They are resolved once into a tagged
variant here, then aggregated with re-run deduplication: contexts are scanned
newest-first and only the latest run of each named check is counted.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from logging import getLogger
from typing import Any

from pydantic import ValidationError

from prdashboard.errors import DecodingError

from .models import (
    CIExtendedInfo,
    CIStatus,
    CIWorkflowInfo,
    PRCategory,
    PRState,
    PullRequest,
    ReviewComment,
    ReviewState,
    ReviewThread,
)

logger = getLogger(__name__)

CHECK_SUCCESS = frozenset({"SUCCESS"})
CHECK_FAILURE = frozenset({"FAILURE", "TIMED_OUT", "ACTION_REQUIRED", "STARTUP_FAILURE"})
CHECK_EXCLUDED = frozenset({"CANCELLED", "SKIPPED", "NEUTRAL", "STALE"})

STATUS_SUCCESS = frozenset({"SUCCESS"})
STATUS_FAILURE = frozenset({"FAILURE", "ERROR"})
STATUS_PENDING = frozenset({"PENDING", "EXPECTED"})

ExcludeFilter = str | Callable[[], str]


@dataclass(frozen=True)
class CheckRunContext:
    """A check run. ``conclusion`` is None while the run is in progress."""

    name: str | None = None
    conclusion: str | None = None
    status: str | None = None
    workflow_name: str | None = None


@dataclass(frozen=True)
class StatusContext:
    """A commit status reported through the legacy statuses API."""

    context: str | None
    state: str


CIContext = CheckRunContext | StatusContext


@dataclass(frozen=True)
class PageInfo:
    has_more: bool = False
    cursor: str | None = None


@dataclass
class CICounts:
    success: int = 0
    failure: int = 0
    pending: int = 0
    workflows: list[CIWorkflowInfo] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success + self.failure + self.pending


@dataclass
class NormalizedPullRequest:
    """A parsed pull request plus the first-page state needed for enrichment."""

    pull_request: PullRequest
    contexts: list[CIContext] = field(default_factory=list)
    ci_page: PageInfo = field(default_factory=PageInfo)
    thread_page: PageInfo = field(default_factory=PageInfo)

    @property
    def id(self) -> int:
        return self.pull_request.id


def parse_context(node: dict[str, Any] | None) -> CIContext:
    """Resolve a raw context node into its variant.

    Nodes with a ``state`` are status contexts; everything else (including
    nodes with neither field) is a check run, treated as still in progress
    when no conclusion is present.
    """
    node = node or {}
    state = node.get("state")
    if state is not None:
        return StatusContext(context=node.get("context"), state=state)

    workflow_name = None
    check_suite = node.get("checkSuite") or {}
    workflow_run = check_suite.get("workflowRun") or {}
    workflow = workflow_run.get("workflow") or {}
    if workflow.get("name"):
        workflow_name = workflow["name"]

    return CheckRunContext(
        name=node.get("name"),
        conclusion=node.get("conclusion"),
        status=node.get("status"),
        workflow_name=workflow_name,
    )


def _is_excluded(context_name: str | None, exclude_filter: ExcludeFilter) -> bool:
    value = exclude_filter() if callable(exclude_filter) else exclude_filter
    if not value or not context_name:
        return False
    return value.lower() in context_name.lower()


def aggregate_ci_contexts(contexts: Iterable[CIContext], exclude_filter: ExcludeFilter = "") -> CICounts:
    """Count success/failure/pending over contexts given in server order (oldest first).

    Args:
        contexts: Parsed contexts, oldest first
        exclude_filter: Case-insensitive substring; status contexts whose name
            contains it are ignored. A callable is re-evaluated per context.

    Returns:
        CICounts including a per-workflow breakdown
    """
    counts = CICounts()
    seen_check_names: set[str] = set()
    workflows: dict[tuple[str, bool], CIWorkflowInfo] = {}

    def bucket(name: str | None, is_workflow: bool) -> CIWorkflowInfo:
        key = (name or "unknown", is_workflow)
        if key not in workflows:
            workflows[key] = CIWorkflowInfo(name=key[0], is_workflow=is_workflow)
        return workflows[key]

    for context in reversed(list(contexts)):
        if isinstance(context, StatusContext):
            if _is_excluded(context.context, exclude_filter):
                continue
            state = context.state.upper()
            if state in STATUS_SUCCESS:
                outcome = "success"
            elif state in STATUS_FAILURE:
                outcome = "failure"
            elif state in STATUS_PENDING:
                outcome = "pending"
            else:
                continue
            target = bucket(context.context, False)
        else:
            # Skip older runs of a check already counted
            if context.name is not None:
                if context.name in seen_check_names:
                    continue
                seen_check_names.add(context.name)

            conclusion = context.conclusion.upper() if context.conclusion else None
            if conclusion in CHECK_SUCCESS:
                outcome = "success"
            elif conclusion in CHECK_FAILURE:
                outcome = "failure"
            elif conclusion in CHECK_EXCLUDED:
                continue
            else:
                outcome = "pending"
            if context.workflow_name:
                target = bucket(context.workflow_name, True)
            else:
                target = bucket(context.name, False)

        if outcome == "success":
            counts.success += 1
            target.success_count += 1
        elif outcome == "failure":
            counts.failure += 1
            target.failure_count += 1
        else:
            counts.pending += 1
            target.pending_count += 1

    counts.workflows = sorted(workflows.values(), key=lambda w: (not w.is_workflow, w.name.lower()))
    return counts


def derive_ci_status(counts: CICounts, has_rollup: bool) -> CIStatus | None:
    """Derive the overall CI status from local counts, not GitHub's rollup state.

    Returns:
        The derived status, EXPECTED when a rollup exists but nothing was
        counted, or None when the PR has no CI at all
    """
    if counts.failure > 0:
        return CIStatus.FAILURE
    if counts.pending > 0:
        return CIStatus.PENDING
    if counts.success > 0:
        return CIStatus.SUCCESS
    if has_rollup:
        return CIStatus.EXPECTED
    return None


def apply_ci_counts(pr: PullRequest, counts: CICounts, has_rollup: bool) -> PullRequest:
    """Return a copy of ``pr`` with counts, derived status and workflow breakdown set."""
    extended = None
    if counts.workflows:
        extended = CIExtendedInfo(is_running=counts.pending > 0, workflows=counts.workflows)
    return pr.model_copy(
        update={
            "check_success_count": counts.success,
            "check_failure_count": counts.failure,
            "check_pending_count": counts.pending,
            "ci_status": derive_ci_status(counts, has_rollup),
            "ci_extended_info": extended,
        }
    )


def parse_review_threads(nodes: list[dict[str, Any]] | None) -> list[ReviewThread]:
    """Flatten raw review thread nodes and their comments verbatim."""
    threads: list[ReviewThread] = []
    for thread in nodes or []:
        comments = [
            ReviewComment(
                id=comment["id"],
                author=(comment.get("author") or {}).get("login") or "unknown",
                body=comment.get("body") or "",
                created_at=comment["createdAt"],
            )
            for comment in ((thread.get("comments") or {}).get("nodes") or [])
            if comment
        ]
        threads.append(
            ReviewThread(
                id=thread["id"],
                is_resolved=bool(thread.get("isResolved")),
                is_outdated=bool(thread.get("isOutdated")),
                path=thread.get("path"),
                line=thread.get("line"),
                comments=comments,
            )
        )
    return threads


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def my_threads_all_resolved(threads: list[ReviewThread], username: str | None) -> bool:
    # Only true when the viewer started at least one thread and all of them are resolved
    if not username:
        return False
    login = username.lower()
    mine = [t for t in threads if t.comments and t.comments[0].author.lower() == login]
    return bool(mine) and all(t.is_resolved for t in mine)


def _latest_review_request(node: dict[str, Any], username: str | None) -> datetime | None:
    if not username:
        return None
    login = username.lower()
    latest: datetime | None = None
    for event in (node.get("timelineItems") or {}).get("nodes") or []:
        if not event:
            continue
        reviewer = (event.get("requestedReviewer") or {}).get("login")
        created_at = _parse_datetime(event.get("createdAt"))
        if reviewer and reviewer.lower() == login and created_at:
            if latest is None or created_at > latest:
                latest = created_at
    return latest


def normalize_node(
    node: dict[str, Any],
    category: PRCategory,
    username: str | None = None,
    exclude_filter: ExcludeFilter = "",
) -> NormalizedPullRequest | None:
    """Convert one raw search node into a NormalizedPullRequest.

    Args:
        node: Raw ``PullRequest`` node from a search bucket
        category: Category for this bucket
        username: Viewer login, used for the viewer-specific review fields
        exclude_filter: Status context exclude filter

    Returns:
        NormalizedPullRequest, or None for nodes without a ``databaseId``

    Raises:
        KeyError, TypeError, ValueError, ValidationError: On malformed nodes
    """
    database_id = node.get("databaseId")
    if database_id is None:
        logger.debug(f"Skipping search node without databaseId: #{node.get('number')}")
        return None

    thread_container = node.get("reviewThreads") or {}
    review_threads = parse_review_threads(thread_container.get("nodes"))
    thread_page_info = thread_container.get("pageInfo") or {}

    commit_nodes = (node.get("commits") or {}).get("nodes") or []
    last_commit = (commit_nodes[0] or {}).get("commit") or {} if commit_nodes else {}
    rollup = last_commit.get("statusCheckRollup")
    context_container = (rollup or {}).get("contexts") or {}
    contexts = [parse_context(c) for c in context_container.get("nodes") or []]
    ci_page_info = context_container.get("pageInfo") or {}

    review_nodes = (node.get("reviews") or {}).get("nodes") or []
    last_review = review_nodes[-1] if review_nodes else None
    my_last_review_state = None
    my_last_review_at = None
    if last_review:
        try:
            my_last_review_state = ReviewState(last_review.get("state"))
        except ValueError:
            logger.debug(f"Ignoring unknown review state {last_review.get('state')!r}")
        my_last_review_at = _parse_datetime(last_review.get("submittedAt"))

    author = node.get("author") or {}
    repository = node["repository"]
    rollup_state = (rollup or {}).get("state") or None

    try:
        state = PRState(node.get("state"))
    except ValueError:
        state = PRState.OPEN

    pull_request = PullRequest(
        id=database_id,
        number=node["number"],
        title=node["title"],
        author=author.get("login") or "unknown",
        author_avatar_url=author.get("avatarUrl"),
        repository_owner=repository["owner"]["login"],
        repository_name=repository["name"],
        url=node["url"],
        state=state,
        is_draft=bool(node.get("isDraft")),
        created_at=node["createdAt"],
        updated_at=node["updatedAt"],
        merged_at=node.get("mergedAt"),
        last_commit_at=last_commit.get("committedDate"),
        head_commit_oid=last_commit.get("oid"),
        review_threads=review_threads,
        category=category,
        github_ci_state=rollup_state,
        my_last_review_state=my_last_review_state,
        my_last_review_at=my_last_review_at,
        review_requested_at=_latest_review_request(node, username),
        my_threads_all_resolved=my_threads_all_resolved(review_threads, username),
        approval_count=(node.get("approvals") or {}).get("totalCount") or 0,
    )
    pull_request = apply_ci_counts(pull_request, aggregate_ci_contexts(contexts, exclude_filter), rollup is not None)

    return NormalizedPullRequest(
        pull_request=pull_request,
        contexts=contexts,
        ci_page=PageInfo(
            has_more=bool(ci_page_info.get("hasNextPage")),
            cursor=ci_page_info.get("endCursor"),
        ),
        thread_page=PageInfo(
            has_more=bool(thread_page_info.get("hasPreviousPage")),
            cursor=thread_page_info.get("startCursor"),
        ),
    )


def normalize_bucket(
    nodes: list[dict[str, Any]] | None,
    category: PRCategory,
    username: str | None = None,
    exclude_filter: ExcludeFilter = "",
) -> list[NormalizedPullRequest]:
    """Normalize every node of one search bucket, dropping nodes without an id.

    Raises:
        DecodingError: If a node does not match the expected schema
    """
    results: list[NormalizedPullRequest] = []
    for node in nodes or []:
        if not node:
            continue
        try:
            normalized = normalize_node(node, category, username=username, exclude_filter=exclude_filter)
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise DecodingError(e) from e
        if normalized is not None:
            results.append(normalized)
    return results
