from datetime import datetime, timezone
from logging import getLogger

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .github.models import CIStatus, MyReviewStatus, PRList, PullRequest, RateLimitInfo

logger = getLogger(__name__)

_CI_BADGES = {
    CIStatus.SUCCESS: "[green]passing[/green]",
    CIStatus.FAILURE: "[red]failing[/red]",
    CIStatus.PENDING: "[yellow]running[/yellow]",
    CIStatus.EXPECTED: "[dim]expected[/dim]",
    CIStatus.UNKNOWN: "[magenta]unknown[/magenta]",
}

_REVIEW_BADGES = {
    MyReviewStatus.WAITING: "[yellow]waiting[/yellow]",
    MyReviewStatus.CHANGES_REQUESTED: "[red]changes requested[/red]",
    MyReviewStatus.CHANGES_RESOLVED: "[cyan]changes resolved[/cyan]",
    MyReviewStatus.APPROVED: "[green]approved[/green]",
}


def format_ci_badge(pr: PullRequest) -> str:
    """Return a colored CI badge, with failing/total counts when checks ran."""
    if pr.ci_status is None:
        return "-"
    badge = _CI_BADGES[pr.ci_status]
    if pr.check_total_count:
        if pr.ci_status == CIStatus.FAILURE:
            return f"{badge} {pr.check_failure_count}/{pr.check_total_count}"
        return f"{badge} {pr.check_success_count}/{pr.check_total_count}"
    return badge


def format_review_badge(pr: PullRequest) -> str:
    status = pr.my_review_status
    if status is None:
        return f"{pr.approval_count} approval(s)" if pr.approval_count else "-"
    return _REVIEW_BADGES[status]


def _format_age(moment: datetime, now: datetime) -> str:
    seconds = max(0, int((now - moment).total_seconds()))
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def _pr_table(
    title: str,
    pull_requests: list[PullRequest],
    show_urls: bool,
    show_review_status: bool,
    merged: bool,
    now: datetime,
) -> Table:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Repository", style="white")
    table.add_column("PR #", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Author", style="white", no_wrap=True)
    if not merged:
        table.add_column("CI", no_wrap=True)
        table.add_column("Unresolved", justify="right", no_wrap=True)
    if show_review_status:
        table.add_column("Review", no_wrap=True)
    table.add_column("Merged" if merged else "Updated", style="dim", no_wrap=True)
    if show_urls:
        table.add_column("URL", style="dim")

    for pr in pull_requests:
        title_display = f"[dim]{pr.title} (draft)[/dim]" if pr.is_draft else pr.title
        row = [pr.repo_full_name, str(pr.number), title_display, pr.author]
        if not merged:
            row.append(format_ci_badge(pr))
            unresolved = pr.unresolved_count
            row.append(f"[bold red]{unresolved}[/bold red]" if unresolved else "0")
        if show_review_status:
            row.append(format_review_badge(pr))
        row.append(_format_age(pr.merged_at or pr.updated_at if merged else pr.updated_at, now))
        if show_urls:
            row.append(pr.url)
        table.add_row(*row)

    return table


def format_snapshot(
    snapshot: PRList,
    show_urls: bool = False,
    show_review_status: bool = True,
    console: Console | None = None,
) -> None:
    """Display a snapshot as authored, review request and recently merged tables.

    Args:
        snapshot: Snapshot to display
        show_urls: Whether to display PR URLs (default: False)
        show_review_status: Whether to display the review column (default: True)
        console: Console to print to (default: a new stdout console)
    """
    console = console or Console()
    now = datetime.now(timezone.utc)

    if snapshot.error is not None:
        stale = " Showing cached data." if snapshot.pull_requests else ""
        console.print(
            Panel(
                f"[red]{snapshot.error}[/red]{stale}",
                title="Refresh Failed",
                border_style="red",
            )
        )

    if not snapshot.pull_requests and not snapshot.merged_pull_requests:
        if snapshot.error is None:
            console.print(
                Panel(
                    "[yellow]No open pull requests or review requests.[/yellow]",
                    title="No Results",
                    border_style="yellow",
                )
            )
        return

    sections = [
        ("Authored", snapshot.authored_prs, False),
        ("Review Requests", snapshot.review_request_prs, False),
        ("Merged (24h)", snapshot.merged_pull_requests, True),
    ]
    for title, prs, merged in sections:
        if prs:
            console.print(_pr_table(title, prs, show_urls, show_review_status, merged, now))

    console.print(
        f"\n[bold]Total:[/bold] {len(snapshot.pull_requests)} open, "
        f"{len(snapshot.merged_pull_requests)} merged, "
        f"{snapshot.authored_unresolved_count} unresolved on your PRs"
    )
    console.print(f"[dim]Last updated {snapshot.last_updated.astimezone().strftime('%Y-%m-%d %H:%M:%S')}[/dim]")


def format_rate_limit(info: RateLimitInfo, console: Console | None = None) -> None:
    console = console or Console()
    color = "red" if info.is_low else "dim"
    reset = info.reset_at.astimezone().strftime("%H:%M")
    console.print(f"[{color}]API rate limit: {info.remaining}/{info.limit} remaining, resets at {reset}[/{color}]")


def show_progress(message: str) -> Progress:
    """Create and return a progress spinner.

    Args:
        message: Message to display with spinner

    Returns:
        Progress context manager
    """
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
    )
    progress.add_task(description=message, total=None)
    return progress
