import asyncio
from collections.abc import Callable
from functools import wraps
from logging import getLogger
from typing import Any

import typer
from rich.console import Console

from .errors import PRDashboardError
from .services.configuration import ConfigurationStore, parse_field_value
from .services.formatter import format_rate_limit, format_snapshot, show_progress
from .services.github.auth import AuthProvider, authenticate_from_settings
from .services.github.client import GitHubAPIClient
from .services.github.enrichment import EnrichmentFetcher
from .services.github.models import PRList
from .services.github.pullrequests import PullRequestCollector
from .services.manager import PRManager
from .services.notifications import ConsoleNotificationSink, ThrottledNotifier
from .services.snapshot_cache import SnapshotCache
from .settings import settings

app = typer.Typer()
config_app = typer.Typer(help="Show or change the dashboard configuration.")
cache_app = typer.Typer(help="Manage the snapshot cache.")
app.add_typer(config_app, name="config")
app.add_typer(cache_app, name="cache")

logger = getLogger(__name__)
console = Console()


def syncify(f: Callable[..., Any]) -> Callable[..., Any]:
    """This simple decorator converts an async function into a sync function,
    allowing it to work with Typer.
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


def _config_store() -> ConfigurationStore:
    store = ConfigurationStore(settings.config_file)
    store.load()
    return store


def _snapshot_cache() -> SnapshotCache:
    return SnapshotCache(settings.snapshot_file, max_age=settings.cache_max_age)


def _api_client() -> GitHubAPIClient:
    return GitHubAPIClient(
        graphql_url=settings.github_graphql_url,
        timeout=settings.github_request_timeout,
    )


def _collector(client: GitHubAPIClient) -> PullRequestCollector:
    enrichment = EnrichmentFetcher(client, concurrency=settings.github_enrichment_concurrency)
    return PullRequestCollector(client, enrichment=enrichment)


def _has_content(snapshot: PRList) -> bool:
    return bool(snapshot.pull_requests or snapshot.merged_pull_requests)


@app.command(help=f"Display the current installed version of {settings.project_name}.")
def version() -> None:
    from . import __version__

    typer.echo(f"{settings.project_name} - {__version__}")


@app.command(name="list", help="List open pull requests, review requests and recently merged pull requests.")
@syncify
async def list_pull_requests(
    token: str | None = typer.Option(
        None,
        "--token",
        help="GitHub token (overrides GITHUB_TOKEN)",
    ),
    username: str | None = typer.Option(
        None,
        "--username",
        help="GitHub login to show (default: GITHUB_USERNAME or the token owner)",
    ),
    show_urls: bool = typer.Option(
        False,
        "--show-urls",
        help="Display PR URLs in output",
    ),
    use_cache: bool = typer.Option(
        False,
        "--use-cache/--no-cache",
        help="Show the cached snapshot without querying GitHub if it is fresh",
    ),
) -> None:
    """List the dashboard's pull requests once."""
    config_store = _config_store()
    configuration = config_store.configuration
    cache = _snapshot_cache()

    if use_cache:
        snapshot = cache.load()
        if snapshot is not None:
            format_snapshot(
                snapshot, show_urls=show_urls, show_review_status=configuration.show_review_status, console=console
            )
            return
        console.print("[dim]No fresh cached snapshot, querying GitHub.[/dim]")

    error: Exception | None = None
    try:
        async with _api_client() as client:
            with show_progress("Authenticating with GitHub..."):
                state = await authenticate_from_settings(settings, client, token, username)

            manager = PRManager(client, AuthProvider(state), config_store, cache, collector=_collector(client))
            with show_progress(f"Collecting pull requests for {state.username}..."):
                snapshot = await manager.refresh()
    except PRDashboardError as e:
        error = e
    except Exception as e:
        logger.exception("Unexpected error during PR collection")
        error = e

    if error is not None:
        console.print(f"[red]Error:[/red] {error}")
        raise typer.Exit(1)

    if snapshot.error is not None and not _has_content(snapshot):
        console.print(f"[red]Error:[/red] {snapshot.error}")
        raise typer.Exit(1)

    format_snapshot(snapshot, show_urls=show_urls, show_review_status=configuration.show_review_status, console=console)
    format_rate_limit(manager.rate_limit_info, console=console)


def _print_summary(snapshot: PRList) -> None:
    if snapshot.is_loading:
        return
    timestamp = snapshot.last_updated.astimezone().strftime("%H:%M:%S")
    if snapshot.error is not None:
        console.print(f"[dim]{timestamp}[/dim] [red]Error:[/red] {snapshot.error}")
        if not _has_content(snapshot):
            return
    console.print(
        f"[dim]{timestamp}[/dim] {len(snapshot.authored_prs)} authored "
        f"([bold]{snapshot.authored_unresolved_count}[/bold] unresolved), "
        f"{len(snapshot.review_request_prs)} review requests, "
        f"{len(snapshot.merged_pull_requests)} merged"
    )


@app.command(help="Poll GitHub and print notifications until interrupted.")
@syncify
async def watch(
    token: str | None = typer.Option(
        None,
        "--token",
        help="GitHub token (overrides GITHUB_TOKEN)",
    ),
    username: str | None = typer.Option(
        None,
        "--username",
        help="GitHub login to watch (default: GITHUB_USERNAME or the token owner)",
    ),
    low_power: bool = typer.Option(
        False,
        "--low-power",
        help="Start in low power mode (pauses polling if configured)",
    ),
    expensive_network: bool = typer.Option(
        False,
        "--expensive-network",
        help="Start on an expensive network (pauses polling if configured)",
    ),
) -> None:
    """Run the polling scheduler in the foreground."""
    config_store = _config_store()
    cache = _snapshot_cache()

    error: Exception | None = None
    try:
        async with _api_client() as client:
            state = await authenticate_from_settings(settings, client, token, username)
            notifier = ThrottledNotifier(ConsoleNotificationSink(console))
            manager = PRManager(
                client,
                AuthProvider(state),
                config_store,
                cache,
                notifier=notifier,
                collector=_collector(client),
            )
            manager.subscribe(_print_summary)
            manager.set_low_power_mode(low_power)
            manager.set_expensive_network(expensive_network)

            console.print(
                f"Watching pull requests for [bold]{state.username}[/bold] "
                f"every {manager.scheduler.interval:.0f}s (Ctrl+C to stop)"
            )
            manager.start()
            if manager.scheduler.is_paused:
                console.print("[yellow]Polling is paused by power or network conditions.[/yellow]")
            try:
                await asyncio.Event().wait()
            finally:
                manager.stop()
    except PRDashboardError as e:
        error = e

    if error is not None:
        console.print(f"[red]Error:[/red] {error}")
        raise typer.Exit(1)


@config_app.command("show", help="Print the configuration as JSON.")
def config_show() -> None:
    console.print_json(_config_store().configuration.to_json())


@config_app.command("set", help="Set one configuration field (VALUE is parsed as JSON when possible).")
def config_set(
    key: str = typer.Argument(..., help="Field name, e.g. refreshInterval or show_drafts"),
    value: str = typer.Argument(..., help="New value; repositories accepts a comma separated list"),
) -> None:
    store = _config_store()
    try:
        name, parsed = parse_field_value(key, value)
        store.update(**{name: parsed})
    except PRDashboardError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"Set [bold]{name}[/bold] = {getattr(store.configuration, name)!r}")


@cache_app.command("clear", help="Delete the snapshot cache file.")
def cache_clear() -> None:
    cache = _snapshot_cache()
    cache.clear()
    typer.echo(f"Cleared snapshot cache at {cache.path}")


if __name__ == "__main__":
    app()
