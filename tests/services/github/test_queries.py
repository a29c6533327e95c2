"""Tests for GraphQL query construction."""

from datetime import datetime, timezone

import pytest

from prdashboard.errors import ConfigurationError
from prdashboard.services.github.queries import (
    CI_CONTEXTS_QUERY,
    REVIEW_THREADS_QUERY,
    build_combined_query,
    merged_since_date,
    validate_username,
)

NOW = datetime(2024, 6, 1, 1, 30, tzinfo=timezone.utc)


def test_combined_query_has_four_buckets():
    query = build_combined_query("octocat", now=NOW)
    for alias in ("authored:", "reviewRequested:", "reviewedBy:", "mergedInvolved:"):
        assert alias in query
    assert query.count("type: ISSUE, first: 50") == 4


def test_combined_query_search_strings():
    query = build_combined_query("octocat", now=NOW)
    assert '"is:pr is:open author:octocat"' in query
    assert '"is:pr is:open -author:octocat review-requested:octocat"' in query
    assert '"is:pr is:open -author:octocat reviewed-by:octocat"' in query
    assert '"is:pr is:merged involves:octocat merged:>=2024-05-30"' in query


def test_combined_query_fragment_limits():
    query = build_combined_query("octocat", now=NOW)
    assert "reviewThreads(last: 20)" in query
    assert "comments(first: 5)" in query
    assert "contexts(first: 20)" in query
    assert "commits(last: 1)" in query
    assert "approvals: reviews(states: APPROVED)" in query
    assert "REVIEW_REQUESTED_EVENT" in query


def test_review_author_defaults_to_username():
    assert 'reviews(author: "octocat", last: 1)' in build_combined_query("octocat", now=NOW)
    assert 'reviews(author: "hubot", last: 1)' in build_combined_query("octocat", review_author="hubot", now=NOW)


def test_combined_query_is_pure():
    assert build_combined_query("octocat", now=NOW) == build_combined_query("octocat", now=NOW)


@pytest.mark.parametrize("username", ["octocat", "a", "my-user-1", "A" * 39])
def test_validate_username_accepts_logins(username):
    assert validate_username(username) == username


@pytest.mark.parametrize(
    "username",
    ['octo"cat', "octo cat", "-octocat", "octocat-", "octo--cat", "", "A" * 40, 'x") { viewer { login } } #'],
)
def test_validate_username_rejects_unsafe_values(username):
    with pytest.raises(ConfigurationError):
        validate_username(username)


def test_combined_query_rejects_quotes():
    with pytest.raises(ConfigurationError):
        build_combined_query('octocat" author:someone')


def test_merged_since_date_is_utc_aligned():
    local = datetime(2024, 6, 1, 1, 30, tzinfo=timezone.utc).astimezone()
    assert merged_since_date(2, local) == "2024-05-30"
    assert merged_since_date(0, datetime(2024, 6, 1, 23, 59)) == "2024-06-01"


def test_follow_up_queries_use_variables():
    assert "after: $cursor" in CI_CONTEXTS_QUERY
    assert "first: 100" in CI_CONTEXTS_QUERY
    assert "$oid: GitObjectID!" in CI_CONTEXTS_QUERY
    assert "before: $cursor" in REVIEW_THREADS_QUERY
    assert "last: 20" in REVIEW_THREADS_QUERY
    assert "hasPreviousPage" in REVIEW_THREADS_QUERY
