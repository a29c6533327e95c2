"""Refresh manager: the single owner of the snapshot and the previous-PR map."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from logging import getLogger

from prdashboard.errors import ConfigurationError, PRDashboardError
from prdashboard.services.changes import ChangeDetector
from prdashboard.services.configuration import Configuration, ConfigurationStore
from prdashboard.services.events import EventEmitter
from prdashboard.services.github.auth import AuthProvider, AuthState
from prdashboard.services.github.client import GitHubAPIClient
from prdashboard.services.github.models import PRList, PullRequest, RateLimitInfo
from prdashboard.services.github.pullrequests import PullRequestCollector
from prdashboard.services.notifications import ThrottledNotifier
from prdashboard.services.scheduler import PollingScheduler
from prdashboard.services.snapshot_cache import SnapshotCache

logger = getLogger(__name__)


class RefreshState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"


def filter_pull_requests(prs: list[PullRequest], configuration: Configuration) -> list[PullRequest]:
    """Apply the repository allow-list and draft visibility."""
    return [
        pr
        for pr in prs
        if configuration.matches_repository(pr.repo_full_name) and (configuration.show_drafts or not pr.is_draft)
    ]


class PRManager:
    """Runs refresh cycles and publishes snapshots.

    Every mutation of the snapshot, the change detector and the cache happens
    here, after the network call resolves. Nothing raised during a refresh
    escapes :meth:`refresh`; failures are attached to the snapshot instead.
    """

    def __init__(
        self,
        client: GitHubAPIClient,
        auth: AuthProvider,
        config_store: ConfigurationStore,
        cache: SnapshotCache,
        notifier: ThrottledNotifier | None = None,
        collector: PullRequestCollector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the manager and wire auth and configuration events.

        Args:
            client: GitHub API client (entered by the caller)
            auth: Source of the current credential
            config_store: Source of the current configuration
            cache: Snapshot cache used for cold start and error fallback
            notifier: Destination for change notifications (None disables delivery)
            collector: Pull request collector (default: one built on ``client``)
            sleep: Sleep used by the polling timer
        """
        self.client = client
        self.auth = auth
        self.config_store = config_store
        self.cache = cache
        self.notifier = notifier
        self.collector = collector or PullRequestCollector(client)
        self.detector = ChangeDetector()

        self.snapshot = PRList.empty()
        self.rate_limit_info = client.rate_limit_info
        self.refresh_state = RefreshState.IDLE
        self._snapshots: EventEmitter[PRList] = EventEmitter("snapshot")

        self.scheduler = PollingScheduler(
            refresh=self.refresh,
            is_authenticated=lambda: self.auth.is_authenticated,
            snapshot=lambda: self.snapshot,
            configuration=lambda: self.config_store.configuration,
            sleep=sleep,
        )

        self.client.update_token(auth.access_token)
        auth.subscribe(self._on_auth_change)
        config_store.subscribe(self.scheduler.configuration_changed)

    @property
    def configuration(self) -> Configuration:
        return self.config_store.configuration

    def subscribe(self, callback: Callable[[PRList], None]) -> Callable[[], None]:
        """Register for every published snapshot."""
        return self._snapshots.subscribe(callback)

    def _publish(self, snapshot: PRList) -> None:
        self.snapshot = snapshot
        self._snapshots.emit(snapshot)

    def _on_auth_change(self, state: AuthState) -> None:
        self.client.update_token(state.access_token)
        if state.is_authenticated:
            self.scheduler.enable_polling(True)
            return

        self.scheduler.enable_polling(False)
        self.detector.reset()
        self.cache.clear()
        self.refresh_state = RefreshState.IDLE
        self._publish(PRList.empty())

    def load_cached_data(self) -> bool:
        """Show the cached snapshot and seed change detection from it.

        Returns:
            True if a fresh cached snapshot was found
        """
        cached = self.cache.load()
        if cached is None:
            return False
        logger.info(f"Loaded {len(cached.pull_requests)} PRs from cache")
        self.detector.seed(cached.pull_requests)
        self._publish(cached)
        return True

    def start(self) -> None:
        """Cold start: cached data first, then polling if signed in."""
        self.load_cached_data()
        if self.auth.is_authenticated:
            self.scheduler.enable_polling(True)

    def stop(self) -> None:
        self.scheduler.stop()

    def update_configuration(self, configuration: Configuration) -> None:
        """Persist a new configuration; the scheduler is notified by the store.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.config_store.save(configuration)

    def set_low_power_mode(self, enabled: bool) -> None:
        self.scheduler.set_low_power_mode(enabled)

    def set_expensive_network(self, expensive: bool) -> None:
        self.scheduler.set_expensive_network(expensive)

    async def refresh(self) -> PRList:
        """Run one refresh cycle and publish the resulting snapshot.

        Returns:
            The snapshot published by this cycle
        """
        state = self.auth.state
        if not state.is_authenticated or not state.username:
            logger.debug("Refresh skipped: not authenticated")
            return self.snapshot

        configuration = self.config_store.configuration
        try:
            configuration.validate_values()
        except ConfigurationError as e:
            logger.error(f"Refresh skipped: {e}")
            self.refresh_state = RefreshState.ERROR
            self._publish(PRList(last_updated=datetime.now(timezone.utc), error=e))
            return self.snapshot

        self.refresh_state = RefreshState.LOADING
        self._publish(self.snapshot.with_changes(is_loading=True, error=None))

        try:
            result = await self.collector.collect(
                state.username,
                exclude_filter=lambda: self.config_store.configuration.ci_status_exclude_filter,
            )
        except PRDashboardError as e:
            logger.error(f"Refresh failed: {e}")
            return self._refresh_failed(e, state)
        except Exception as e:
            logger.exception("Unexpected error during refresh")
            return self._refresh_failed(e, state)
        finally:
            self.rate_limit_info = self.client.rate_limit_info

        if self._session_changed(state):
            return self.snapshot

        logger.info(f"API returned: {len(result.open_prs)} open PRs, {len(result.merged_prs)} merged PRs")

        # Re-read so edits made during the fetch apply to this cycle's filters
        configuration = self.config_store.configuration
        prs = filter_pull_requests(result.open_prs, configuration)
        merged = filter_pull_requests(result.merged_prs, configuration)
        logger.info(f"After filters: {len(prs)} open PRs, {len(merged)} merged PRs")

        intents = self.detector.process(prs, notify=configuration.notifications_enabled)
        if intents and self.notifier is not None:
            self.notifier.dispatch(intents)

        snapshot = PRList(last_updated=datetime.now(timezone.utc), pull_requests=prs, merged_pull_requests=merged)
        self.refresh_state = RefreshState.IDLE
        self._publish(snapshot)
        self.cache.save(snapshot)
        return snapshot

    def _session_changed(self, state: AuthState) -> bool:
        # A sign-out or account switch during the fetch invalidates its result
        if self.auth.state is state:
            return False
        logger.info("Session changed during refresh, discarding result")
        return True

    def _refresh_failed(self, error: Exception, state: AuthState) -> PRList:
        if self._session_changed(state):
            return self.snapshot
        self.refresh_state = RefreshState.ERROR
        current = self.snapshot
        if not current.pull_requests:
            cached = self.cache.load(ignore_expiry=True)
            if cached is not None:
                logger.info("Showing stale cached data after failed refresh")
                self._publish(cached.with_changes(is_loading=False, error=error))
                return self.snapshot
        self._publish(current.with_changes(is_loading=False, error=error))
        return self.snapshot
