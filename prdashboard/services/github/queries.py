"""GraphQL queries for the GitHub API."""

import re
from datetime import datetime, timedelta, timezone

from prdashboard.errors import ConfigurationError

# GitHub logins: alphanumerics and single hyphens, no leading hyphen, max 39 chars
_USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9]|-(?=[A-Za-z0-9])){0,38}$")

SEARCH_PAGE_SIZE = 50
REVIEW_THREADS_PAGE_SIZE = 20
REVIEW_COMMENTS_PAGE_SIZE = 5
CI_CONTEXTS_FIRST_PAGE_SIZE = 20
CI_CONTEXTS_PAGE_SIZE = 100
REVIEW_REQUEST_EVENTS = 10

_CONTEXT_FIELDS = """
                nodes {
                    ... on CheckRun {
                        name
                        conclusion
                        status
                        checkSuite {
                            workflowRun {
                                workflow {
                                    name
                                }
                            }
                        }
                    }
                    ... on StatusContext {
                        context
                        state
                    }
                }
                pageInfo {
                    hasNextPage
                    endCursor
                }"""

_THREAD_FIELDS = f"""
                nodes {{
                    id
                    isResolved
                    isOutdated
                    path
                    line
                    comments(first: {REVIEW_COMMENTS_PAGE_SIZE}) {{
                        nodes {{
                            id
                            author {{
                                login
                            }}
                            body
                            createdAt
                        }}
                    }}
                }}
                pageInfo {{
                    hasPreviousPage
                    startCursor
                }}"""


def validate_username(username: str) -> str:
    """Ensure a login is safe to interpolate into a GraphQL string literal.

    Args:
        username: GitHub login

    Returns:
        The unchanged username

    Raises:
        ConfigurationError: If the value is not a valid GitHub login
    """
    if not isinstance(username, str) or not _USERNAME_PATTERN.match(username):
        raise ConfigurationError(f"Invalid GitHub username: {username!r}")
    return username


def merged_since_date(days_back: int, now: datetime | None = None) -> str:
    """Return the UTC calendar date ``days_back`` days before ``now`` (YYYY-MM-DD)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    since = now.astimezone(timezone.utc) - timedelta(days=days_back)
    return since.strftime("%Y-%m-%d")


def _pull_request_fragment(review_author: str) -> str:
    return f"""
        nodes {{
            ... on PullRequest {{
                databaseId
                number
                title
                url
                state
                isDraft
                createdAt
                updatedAt
                mergedAt
                author {{
                    login
                    avatarUrl
                }}
                repository {{
                    owner {{
                        login
                    }}
                    name
                }}
                reviewThreads(last: {REVIEW_THREADS_PAGE_SIZE}) {{{_THREAD_FIELDS}
                }}
                approvals: reviews(states: APPROVED) {{
                    totalCount
                }}
                commits(last: 1) {{
                    nodes {{
                        commit {{
                            oid
                            committedDate
                            statusCheckRollup {{
                                state
                                contexts(first: {CI_CONTEXTS_FIRST_PAGE_SIZE}) {{{_CONTEXT_FIELDS}
                                }}
                            }}
                        }}
                    }}
                }}
                reviews(author: "{review_author}", last: 1) {{
                    nodes {{
                        state
                        submittedAt
                    }}
                }}
                timelineItems(last: {REVIEW_REQUEST_EVENTS}, itemTypes: [REVIEW_REQUESTED_EVENT]) {{
                    nodes {{
                        ... on ReviewRequestedEvent {{
                            createdAt
                            requestedReviewer {{
                                ... on User {{
                                    login
                                }}
                            }}
                        }}
                    }}
                }}
            }}
        }}"""


def build_combined_query(
    username: str,
    review_author: str | None = None,
    merged_days_back: int = 2,
    now: datetime | None = None,
) -> str:
    """Build the single query fetching all four pull request buckets.

    The buckets are GraphQL aliases over the search API: open PRs authored by
    the user, open PRs requesting or already reviewed by the user, and PRs the
    user was involved in that merged since a UTC-midnight aligned cutoff.

    Args:
        username: GitHub login of the viewer
        review_author: Login whose last review is fetched (defaults to username)
        merged_days_back: Server-side window for the merged bucket, in days
        now: Reference time for the merged cutoff (default: current time)

    Returns:
        GraphQL query string

    Raises:
        ConfigurationError: If either login is unsafe for interpolation
    """
    user = validate_username(username)
    reviewer = validate_username(review_author) if review_author else user
    fragment = _pull_request_fragment(reviewer)
    merged_since = merged_since_date(merged_days_back, now)

    searches = {
        "authored": f"is:pr is:open author:{user}",
        "reviewRequested": f"is:pr is:open -author:{user} review-requested:{user}",
        "reviewedBy": f"is:pr is:open -author:{user} reviewed-by:{user}",
        "mergedInvolved": f"is:pr is:merged involves:{user} merged:>={merged_since}",
    }

    parts = [
        f'    {alias}: search(query: "{search}", type: ISSUE, first: {SEARCH_PAGE_SIZE}) {{{fragment}\n    }}'
        for alias, search in searches.items()
    ]
    return "query {\n" + "\n".join(parts) + "\n}\n"


CI_CONTEXTS_QUERY = f"""
query($owner: String!, $name: String!, $oid: GitObjectID!, $cursor: String) {{
  repository(owner: $owner, name: $name) {{
    object(oid: $oid) {{
      ... on Commit {{
        statusCheckRollup {{
            contexts(first: {CI_CONTEXTS_PAGE_SIZE}, after: $cursor) {{{_CONTEXT_FIELDS}
            }}
        }}
      }}
    }}
  }}
}}
"""

REVIEW_THREADS_QUERY = f"""
query($owner: String!, $name: String!, $number: Int!, $cursor: String) {{
  repository(owner: $owner, name: $name) {{
    pullRequest(number: $number) {{
        reviewThreads(last: {REVIEW_THREADS_PAGE_SIZE}, before: $cursor) {{{_THREAD_FIELDS}
        }}
    }}
  }}
}}
"""

VIEWER_QUERY = """
query {
  viewer {
    login
  }
}
"""
