import os

# Keep the developer's environment out of the settings BEFORE any prdashboard imports
for _name in ("GITHUB_TOKEN", "GITHUB_USERNAME"):
    os.environ.pop(_name, None)

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest
from pydantic import SecretStr

from prdashboard.services.configuration import ConfigurationStore
from prdashboard.services.github.client import GitHubAPIClient
from prdashboard.services.github.models import PRCategory, PullRequest, ReviewComment, ReviewThread
from prdashboard.services.snapshot_cache import SnapshotCache

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def mock_client() -> GitHubAPIClient:
    """Create a test GitHub API client for mocking."""
    return GitHubAPIClient(token=SecretStr("test_token"))


@pytest.fixture
def config_store(tmp_path) -> ConfigurationStore:
    return ConfigurationStore(tmp_path / "config.json")


@pytest.fixture
def snapshot_cache(tmp_path) -> SnapshotCache:
    return SnapshotCache(tmp_path / "pr_cache.json")


@pytest.fixture
def check_run() -> Callable[..., dict[str, Any]]:
    """Build a raw CheckRun context node."""

    def build(name: str, conclusion: str | None = "SUCCESS", status: str = "COMPLETED", workflow: str | None = None):
        node: dict[str, Any] = {"name": name, "conclusion": conclusion, "status": status, "checkSuite": None}
        if workflow:
            node["checkSuite"] = {"workflowRun": {"workflow": {"name": workflow}}}
        return node

    return build


@pytest.fixture
def status_context() -> Callable[..., dict[str, Any]]:
    """Build a raw StatusContext node."""

    def build(context: str, state: str = "SUCCESS"):
        return {"context": context, "state": state}

    return build


@pytest.fixture
def pr_node() -> Callable[..., dict[str, Any]]:
    """Build a raw search result node as returned by the combined query."""

    def build(
        database_id: int | None = 1,
        number: int = 1,
        title: str = "Add feature",
        author: str = "octocat",
        owner: str = "acme",
        repo: str = "widgets",
        state: str = "OPEN",
        is_draft: bool = False,
        updated_at: str = "2024-06-01T10:00:00Z",
        merged_at: str | None = None,
        rollup_state: str | None = None,
        contexts: list[dict[str, Any]] | None = None,
        contexts_has_next: bool = False,
        contexts_cursor: str | None = None,
        threads: list[dict[str, Any]] | None = None,
        threads_has_previous: bool = False,
        threads_cursor: str | None = None,
        last_review: dict[str, Any] | None = None,
        review_requests: list[dict[str, Any]] | None = None,
        committed_date: str = "2024-06-01T09:00:00Z",
        approvals: int = 0,
    ) -> dict[str, Any]:
        rollup = None
        if rollup_state is not None:
            rollup = {
                "state": rollup_state,
                "contexts": {
                    "nodes": contexts or [],
                    "pageInfo": {"hasNextPage": contexts_has_next, "endCursor": contexts_cursor},
                },
            }
        node: dict[str, Any] = {
            "number": number,
            "title": title,
            "url": f"https://github.com/{owner}/{repo}/pull/{number}",
            "state": state,
            "isDraft": is_draft,
            "createdAt": "2024-05-30T08:00:00Z",
            "updatedAt": updated_at,
            "mergedAt": merged_at,
            "author": {"login": author, "avatarUrl": f"https://avatars.example/{author}"},
            "repository": {"owner": {"login": owner}, "name": repo},
            "reviewThreads": {
                "nodes": threads or [],
                "pageInfo": {"hasPreviousPage": threads_has_previous, "startCursor": threads_cursor},
            },
            "approvals": {"totalCount": approvals},
            "commits": {
                "nodes": [
                    {
                        "commit": {
                            "oid": f"sha{number}",
                            "committedDate": committed_date,
                            "statusCheckRollup": rollup,
                        }
                    }
                ]
            },
            "reviews": {"nodes": [last_review] if last_review else []},
            "timelineItems": {"nodes": review_requests or []},
        }
        if database_id is not None:
            node["databaseId"] = database_id
        return node

    return build


@pytest.fixture
def thread_node() -> Callable[..., dict[str, Any]]:
    """Build a raw review thread node."""

    def build(
        thread_id: str = "T1",
        is_resolved: bool = False,
        is_outdated: bool = False,
        author: str = "reviewer",
        created_at: str = "2024-06-01T09:30:00Z",
    ) -> dict[str, Any]:
        return {
            "id": thread_id,
            "isResolved": is_resolved,
            "isOutdated": is_outdated,
            "path": "src/app.py",
            "line": 10,
            "comments": {
                "nodes": [
                    {"id": f"{thread_id}-c1", "author": {"login": author}, "body": "Please fix", "createdAt": created_at}
                ]
            },
        }

    return build


@pytest.fixture
def make_pr() -> Callable[..., PullRequest]:
    """Build a domain PullRequest directly."""

    def build(
        pr_id: int = 1,
        unresolved: int = 0,
        category: PRCategory = PRCategory.AUTHORED,
        **fields: Any,
    ) -> PullRequest:
        threads = [
            ReviewThread(
                id=f"T{pr_id}-{i}",
                is_resolved=False,
                is_outdated=False,
                comments=[ReviewComment(id=f"C{i}", author="reviewer", body="Fix", created_at=NOW)],
            )
            for i in range(unresolved)
        ]
        values: dict[str, Any] = {
            "id": pr_id,
            "number": pr_id,
            "title": f"PR {pr_id}",
            "author": "octocat",
            "repository_owner": "acme",
            "repository_name": "widgets",
            "url": f"https://github.com/acme/widgets/pull/{pr_id}",
            "created_at": NOW,
            "updated_at": NOW,
            "review_threads": threads,
            "category": category,
        }
        values.update(fields)
        return PullRequest(**values)

    return build
