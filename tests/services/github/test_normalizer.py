"""Tests for response normalization and CI aggregation."""

import pytest

from prdashboard.errors import DecodingError
from prdashboard.services.github.models import CIStatus, MyReviewStatus, PRCategory, ReviewState
from prdashboard.services.github.normalizer import (
    CheckRunContext,
    StatusContext,
    aggregate_ci_contexts,
    derive_ci_status,
    normalize_bucket,
    normalize_node,
    parse_context,
)


def counts_of(contexts, exclude_filter=""):
    counts = aggregate_ci_contexts([parse_context(c) for c in contexts], exclude_filter)
    return counts.success, counts.failure, counts.pending


def test_parse_context_variants(check_run, status_context):
    assert isinstance(parse_context(check_run("build")), CheckRunContext)
    assert isinstance(parse_context(status_context("ci/jenkins")), StatusContext)
    workflow_run = parse_context(check_run("test", workflow="CI"))
    assert workflow_run.workflow_name == "CI"
    # Neither conclusion nor state: a check run still in progress
    assert parse_context({"name": "lint"}) == CheckRunContext(name="lint")


def test_rerun_dedup_keeps_newest(check_run):
    # Server order is oldest first; the newest "build" succeeded
    contexts = [check_run("build", "FAILURE"), check_run("test", "SUCCESS"), check_run("build", "SUCCESS")]
    assert counts_of(contexts) == (2, 0, 0)


def test_rerun_dedup_newest_failure_wins(check_run):
    contexts = [check_run("build", "SUCCESS"), check_run("build", "FAILURE")]
    assert counts_of(contexts) == (0, 1, 0)


@pytest.mark.parametrize("conclusion", ["FAILURE", "TIMED_OUT", "ACTION_REQUIRED", "STARTUP_FAILURE"])
def test_check_failure_conclusions(check_run, conclusion):
    assert counts_of([check_run("build", conclusion)]) == (0, 1, 0)


@pytest.mark.parametrize("conclusion", ["CANCELLED", "SKIPPED", "NEUTRAL", "STALE"])
def test_check_excluded_conclusions(check_run, conclusion):
    assert counts_of([check_run("build", conclusion)]) == (0, 0, 0)


def test_check_without_conclusion_is_pending(check_run):
    assert counts_of([check_run("build", None, status="IN_PROGRESS")]) == (0, 0, 1)


def test_status_contexts(status_context):
    contexts = [
        status_context("a", "SUCCESS"),
        status_context("b", "FAILURE"),
        status_context("c", "ERROR"),
        status_context("d", "PENDING"),
        status_context("e", "EXPECTED"),
        status_context("f", "WEIRD"),
    ]
    assert counts_of(contexts) == (1, 2, 2)


def test_status_contexts_are_not_deduplicated(status_context):
    assert counts_of([status_context("ci", "FAILURE"), status_context("ci", "SUCCESS")]) == (1, 1, 0)


def test_exclude_filter_is_case_insensitive_substring(status_context, check_run):
    contexts = [status_context("CodeRabbit review", "PENDING"), status_context("ci/build", "SUCCESS")]
    assert counts_of(contexts, "coderabbit") == (1, 0, 0)
    # Check runs are never subject to the exclude filter
    assert counts_of([check_run("coderabbit", "FAILURE")], "coderabbit") == (0, 1, 0)


def test_exclude_filter_callable_is_reevaluated(status_context):
    calls = []

    def current_filter() -> str:
        calls.append(1)
        return "bot"

    counts = aggregate_ci_contexts(
        [parse_context(status_context("bot-a", "FAILURE")), parse_context(status_context("ci", "SUCCESS"))],
        current_filter,
    )
    assert (counts.success, counts.failure) == (1, 0)
    assert len(calls) == 2


def test_aggregation_order_independent_across_names(check_run, status_context):
    contexts = [
        check_run("build", "FAILURE"),
        check_run("build", "SUCCESS"),
        check_run("lint", "SUCCESS"),
        status_context("deploy", "PENDING"),
    ]
    reordered = [contexts[2], contexts[3], contexts[0], contexts[1]]
    assert counts_of(contexts) == counts_of(reordered) == (2, 0, 1)


def test_workflow_breakdown(check_run, status_context):
    counts = aggregate_ci_contexts(
        [
            parse_context(check_run("unit", "SUCCESS", workflow="CI")),
            parse_context(check_run("lint", "FAILURE", workflow="CI")),
            parse_context(check_run("codecov", "SUCCESS")),
            parse_context(status_context("ci/jenkins", "PENDING")),
        ]
    )
    names = [(w.name, w.is_workflow) for w in counts.workflows]
    assert names == [("CI", True), ("ci/jenkins", False), ("codecov", False)]
    ci = counts.workflows[0]
    assert (ci.success_count, ci.failure_count, ci.status) == (1, 1, CIStatus.FAILURE)


@pytest.mark.parametrize(
    "success,failure,pending,has_rollup,expected",
    [
        (3, 1, 1, True, CIStatus.FAILURE),
        (3, 0, 1, True, CIStatus.PENDING),
        (3, 0, 0, True, CIStatus.SUCCESS),
        (0, 0, 0, True, CIStatus.EXPECTED),
        (0, 0, 0, False, None),
    ],
)
def test_derive_ci_status(success, failure, pending, has_rollup, expected):
    from prdashboard.services.github.normalizer import CICounts

    assert derive_ci_status(CICounts(success, failure, pending), has_rollup) == expected


def test_normalize_node_maps_fields(pr_node, thread_node, check_run):
    node = pr_node(
        database_id=101,
        number=7,
        rollup_state="SUCCESS",
        contexts=[check_run("build")],
        threads=[thread_node("T1"), thread_node("T2", is_resolved=True), thread_node("T3", is_outdated=True)],
        approvals=2,
    )
    normalized = normalize_node(node, PRCategory.AUTHORED, username="octocat")

    pr = normalized.pull_request
    assert pr.id == 101
    assert pr.number == 7
    assert pr.repo_full_name == "acme/widgets"
    assert pr.author == "octocat"
    assert pr.head_commit_oid == "sha7"
    assert pr.ci_status == CIStatus.SUCCESS
    assert pr.github_ci_state == "SUCCESS"
    assert pr.check_success_count == 1
    assert pr.approval_count == 2
    assert len(pr.review_threads) == 3
    assert pr.unresolved_count == 1
    assert pr.review_threads[0].comments[0].author == "reviewer"
    assert pr.category == PRCategory.AUTHORED


def test_normalize_node_without_rollup_has_no_ci(pr_node):
    pr = normalize_node(pr_node(rollup_state=None), PRCategory.AUTHORED).pull_request
    assert pr.ci_status is None
    assert pr.ci_extended_info is None


def test_normalize_node_keeps_pagination_cursors(pr_node):
    node = pr_node(
        rollup_state="FAILURE",
        contexts_has_next=True,
        contexts_cursor="ci-cursor",
        threads_has_previous=True,
        threads_cursor="thread-cursor",
    )
    normalized = normalize_node(node, PRCategory.AUTHORED)
    assert normalized.ci_page.has_more and normalized.ci_page.cursor == "ci-cursor"
    assert normalized.thread_page.has_more and normalized.thread_page.cursor == "thread-cursor"


def test_normalize_node_without_database_id_is_dropped(pr_node):
    assert normalize_node(pr_node(database_id=None), PRCategory.AUTHORED) is None
    assert normalize_bucket([pr_node(database_id=None), pr_node(database_id=5)], PRCategory.AUTHORED)[0].id == 5


def test_normalize_bucket_malformed_node_raises_decoding_error(pr_node):
    node = pr_node()
    del node["repository"]
    with pytest.raises(DecodingError):
        normalize_bucket([node], PRCategory.AUTHORED)


def test_normalize_bucket_handles_empty_input():
    assert normalize_bucket(None, PRCategory.AUTHORED) == []
    assert normalize_bucket([None, {}], PRCategory.AUTHORED) == []


def test_viewer_review_fields(pr_node, thread_node):
    node = pr_node(
        author="alice",
        last_review={"state": "CHANGES_REQUESTED", "submittedAt": "2024-06-01T08:00:00Z"},
        review_requests=[
            {"createdAt": "2024-05-31T08:00:00Z", "requestedReviewer": {"login": "octocat"}},
            {"createdAt": "2024-06-01T09:00:00Z", "requestedReviewer": {"login": "someone-else"}},
        ],
        threads=[thread_node("T1", is_resolved=True, author="octocat"), thread_node("T2", author="bob")],
        committed_date="2024-06-01T07:00:00Z",
    )
    pr = normalize_node(node, PRCategory.REVIEW_REQUEST, username="octocat").pull_request

    assert pr.my_last_review_state == ReviewState.CHANGES_REQUESTED
    assert pr.review_requested_at.isoformat() == "2024-05-31T08:00:00+00:00"
    assert pr.my_threads_all_resolved is True
    assert pr.my_review_status == MyReviewStatus.CHANGES_RESOLVED


def test_my_threads_all_resolved_requires_own_threads(pr_node, thread_node):
    node = pr_node(threads=[thread_node("T1", is_resolved=True, author="bob")])
    assert normalize_node(node, PRCategory.REVIEW_REQUEST, username="octocat").pull_request.my_threads_all_resolved is False


def test_unknown_review_state_is_ignored(pr_node):
    node = pr_node(last_review={"state": "SOMETHING_NEW", "submittedAt": "2024-06-01T08:00:00Z"})
    pr = normalize_node(node, PRCategory.REVIEW_REQUEST, username="octocat").pull_request
    assert pr.my_last_review_state is None
    assert pr.my_review_status == MyReviewStatus.WAITING
