from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Base for models persisted in the snapshot cache with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PRCategory(str, Enum):
    """Why a pull request is on the dashboard."""

    AUTHORED = "authored"
    REVIEW_REQUEST = "reviewRequest"


class PRState(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"


class CIStatus(str, Enum):
    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    FAILURE = "FAILURE"
    EXPECTED = "EXPECTED"
    # GitHub reports FAILURE but no failing context could be found
    UNKNOWN = "UNKNOWN"


class ReviewState(str, Enum):
    """Review verdict as returned by the GitHub API."""

    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    COMMENTED = "COMMENTED"
    PENDING = "PENDING"
    DISMISSED = "DISMISSED"


class MyReviewStatus(str, Enum):
    """Display status of the viewer's own review on a review-request PR."""

    WAITING = "waiting"
    CHANGES_REQUESTED = "changesRequested"
    CHANGES_RESOLVED = "changesResolved"
    APPROVED = "approved"


class ReviewComment(_CamelModel):
    id: str
    author: str
    body: str
    created_at: datetime


class ReviewThread(_CamelModel):
    id: str
    is_resolved: bool
    is_outdated: bool
    path: str | None = None
    line: int | None = None
    comments: list[ReviewComment] = Field(default_factory=list)

    @property
    def latest_comment(self) -> ReviewComment | None:
        return self.comments[-1] if self.comments else None

    @property
    def is_unresolved(self) -> bool:
        """Whether the thread counts toward the unresolved badge."""
        return not self.is_resolved and not self.is_outdated


class CIWorkflowInfo(_CamelModel):
    name: str
    # True for GitHub Actions workflows, False for standalone checks and statuses
    is_workflow: bool
    success_count: int = 0
    failure_count: int = 0
    pending_count: int = 0

    @property
    def total_count(self) -> int:
        return self.success_count + self.failure_count + self.pending_count

    @property
    def status(self) -> CIStatus:
        if self.failure_count > 0:
            return CIStatus.FAILURE
        if self.pending_count > 0:
            return CIStatus.PENDING
        if self.success_count > 0:
            return CIStatus.SUCCESS
        return CIStatus.EXPECTED


class CIExtendedInfo(_CamelModel):
    is_running: bool = False
    workflows: list[CIWorkflowInfo] = Field(default_factory=list)


class PullRequest(_CamelModel):
    """Domain model for a pull request shown on the dashboard.

    ``id`` is GitHub's numeric database id. It is stable across polls and is
    the only key used for change detection and caching, so two instances
    compare equal whenever their ids match.
    """

    id: int
    number: int
    title: str
    author: str
    author_avatar_url: str | None = None
    repository_owner: str
    repository_name: str
    url: str
    state: PRState = PRState.OPEN
    is_draft: bool = False
    created_at: datetime
    updated_at: datetime
    merged_at: datetime | None = None
    last_commit_at: datetime | None = None
    head_commit_oid: str | None = None
    review_threads: list[ReviewThread] = Field(default_factory=list)
    category: PRCategory
    ci_status: CIStatus | None = None
    check_success_count: int = 0
    check_failure_count: int = 0
    check_pending_count: int = 0
    github_ci_state: str | None = None  # Raw rollup state: SUCCESS, FAILURE, PENDING, ...
    my_last_review_state: ReviewState | None = None
    my_last_review_at: datetime | None = None
    review_requested_at: datetime | None = None
    my_threads_all_resolved: bool = False
    approval_count: int = 0
    ci_extended_info: CIExtendedInfo | None = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PullRequest):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def repo_full_name(self) -> str:
        return f"{self.repository_owner}/{self.repository_name}"

    @property
    def unresolved_count(self) -> int:
        return sum(1 for thread in self.review_threads if thread.is_unresolved)

    @property
    def check_total_count(self) -> int:
        return self.check_success_count + self.check_failure_count + self.check_pending_count

    @property
    def ci_is_running(self) -> bool:
        return self.ci_extended_info.is_running if self.ci_extended_info else False

    @property
    def ci_workflows(self) -> list[CIWorkflowInfo]:
        return self.ci_extended_info.workflows if self.ci_extended_info else []

    @property
    def my_review_status(self) -> MyReviewStatus | None:
        """Review status for review-request PRs (None for authored PRs).

        A CHANGES_REQUESTED verdict is reported as resolved when all of the
        viewer's threads are resolved, a commit landed after the review, or
        the viewer was asked to review again after it.
        """
        if self.category != PRCategory.REVIEW_REQUEST:
            return None
        state = self.my_last_review_state
        if state is None:
            return MyReviewStatus.WAITING

        if state == ReviewState.APPROVED:
            return MyReviewStatus.APPROVED
        if state == ReviewState.CHANGES_REQUESTED:
            if self.my_threads_all_resolved:
                return MyReviewStatus.CHANGES_RESOLVED
            reviewed_at = self.my_last_review_at
            if reviewed_at and self.last_commit_at and self.last_commit_at > reviewed_at:
                return MyReviewStatus.CHANGES_RESOLVED
            if reviewed_at and self.review_requested_at and self.review_requested_at > reviewed_at:
                return MyReviewStatus.CHANGES_RESOLVED
            return MyReviewStatus.CHANGES_REQUESTED
        if state == ReviewState.DISMISSED:
            return MyReviewStatus.CHANGES_RESOLVED
        return MyReviewStatus.WAITING


class PRList(_CamelModel):
    """Snapshot of the dashboard at a point in time.

    Only ``last_updated`` and the two PR arrays are persisted; ``is_loading``
    and ``error`` are transient and never serialized.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True)

    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    pull_requests: list[PullRequest] = Field(default_factory=list)
    merged_pull_requests: list[PullRequest] = Field(default_factory=list)
    is_loading: bool = Field(default=False, exclude=True)
    error: Exception | None = Field(default=None, exclude=True)

    @field_validator("last_updated")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        """Treat a timestamp without an offset as UTC."""
        return v if v.tzinfo is not None else v.replace(tzinfo=timezone.utc)

    @classmethod
    def empty(cls) -> "PRList":
        return cls()

    @property
    def authored_prs(self) -> list[PullRequest]:
        return [pr for pr in self.pull_requests if pr.category == PRCategory.AUTHORED]

    @property
    def review_request_prs(self) -> list[PullRequest]:
        return [pr for pr in self.pull_requests if pr.category == PRCategory.REVIEW_REQUEST]

    @property
    def total_unresolved_count(self) -> int:
        return sum(pr.unresolved_count for pr in self.pull_requests)

    @property
    def authored_unresolved_count(self) -> int:
        """Unresolved comment count for authored PRs only (menu bar badge)."""
        return sum(pr.unresolved_count for pr in self.authored_prs)

    def to_cache_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_cache_json(cls, data: str | bytes) -> "PRList":
        return cls.model_validate_json(data)

    def with_changes(self, **changes: Any) -> "PRList":
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=changes)


class RateLimitInfo(BaseModel):
    limit: int
    remaining: int
    reset_at: datetime

    @property
    def is_low(self) -> bool:
        return self.remaining < 100

    @classmethod
    def empty(cls) -> "RateLimitInfo":
        return cls(limit=5000, remaining=5000, reset_at=datetime.now(timezone.utc))
