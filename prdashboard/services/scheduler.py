"""Adaptive polling: decides when to refresh based on auth, power and network state."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from logging import getLogger

from prdashboard.services.configuration import Configuration
from prdashboard.services.github.models import PRList

logger = getLogger(__name__)

MIN_TIMER_INTERVAL = 60


class SchedulerState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"
    REFRESHING = "refreshing"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PollingScheduler:
    """Owns the refresh timer and the in-flight refresh task.

    The timer is a single asyncio task; re-arming always cancels it first.
    Triggers arriving while a refresh is running are dropped, and a running
    refresh is never cancelled by the scheduler.
    """

    def __init__(
        self,
        refresh: Callable[[], Awaitable[object]],
        is_authenticated: Callable[[], bool],
        snapshot: Callable[[], PRList],
        configuration: Callable[[], Configuration],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the scheduler.

        Args:
            refresh: Coroutine function performing one refresh cycle
            is_authenticated: Returns whether a session is signed in
            snapshot: Returns the current snapshot (for the refresh-on-entry policy)
            configuration: Returns the current configuration, read at every decision
            sleep: Awaitable sleep used by the timer
            clock: Current time, compared against the snapshot's ``last_updated``
        """
        self._refresh = refresh
        self._is_authenticated = is_authenticated
        self._snapshot = snapshot
        self._configuration = configuration
        self._sleep = sleep
        self._clock = clock

        self.polling_requested = False
        self.low_power_mode = False
        self.expensive_network = False
        self._timer: asyncio.Task[None] | None = None
        self._refresh_task: asyncio.Task[None] | None = None

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def is_refreshing(self) -> bool:
        return self._refresh_task is not None and not self._refresh_task.done()

    @property
    def is_paused(self) -> bool:
        """Whether either pause condition currently applies."""
        config = self._configuration()
        return (self.low_power_mode and config.pause_polling_in_low_power_mode) or (
            self.expensive_network and config.pause_polling_on_expensive_network
        )

    @property
    def state(self) -> SchedulerState:
        if self.is_refreshing:
            return SchedulerState.REFRESHING
        if self.timer_armed:
            return SchedulerState.ACTIVE
        if self.polling_requested and self.is_paused:
            return SchedulerState.PAUSED
        return SchedulerState.IDLE

    @property
    def interval(self) -> float:
        return max(self._configuration().refresh_interval, MIN_TIMER_INTERVAL)

    def should_refresh_on_entry(self) -> bool:
        """First open, refresh-on-open, or a snapshot older than the configured interval."""
        snapshot = self._snapshot()
        config = self._configuration()
        first_open = not snapshot.pull_requests and snapshot.error is None and not snapshot.is_loading
        age = (self._clock() - snapshot.last_updated).total_seconds()
        return first_open or config.refresh_on_open or age >= config.refresh_interval

    def enable_polling(self, enabled: bool = True) -> None:
        """Start or stop polling.

        Enabling with an authenticated session that is not paused refreshes
        if needed and arms the timer when none is armed. Disabling tears the
        timer down unconditionally.
        """
        if not enabled:
            self.polling_requested = False
            self._cancel_timer()
            logger.info("Polling disabled")
            return

        self.polling_requested = True
        self._enter()

    def _enter(self, force_refresh: bool = False) -> None:
        if not self._is_authenticated():
            logger.debug("Not authenticated, polling not started")
            return
        if self.is_paused:
            logger.info("Polling paused by power or network conditions")
            return

        if force_refresh or self.should_refresh_on_entry():
            self.trigger_refresh()

        if self.timer_armed:
            return
        self._arm_timer()

    def _arm_timer(self) -> None:
        self._cancel_timer()
        interval = self.interval
        logger.info(f"Polling every {interval:.0f}s")
        self._timer = asyncio.get_running_loop().create_task(self._run_timer(interval))

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run_timer(self, interval: float) -> None:
        while True:
            await self._sleep(interval)
            self.trigger_refresh()

    def trigger_refresh(self) -> asyncio.Task[None] | None:
        """Start a refresh unless one is already in flight.

        Returns:
            The new refresh task, or None if the trigger was coalesced
        """
        if self.is_refreshing:
            logger.debug("Refresh already in flight, trigger coalesced")
            return None
        self._refresh_task = asyncio.get_running_loop().create_task(self._run_refresh())
        return self._refresh_task

    async def _run_refresh(self) -> None:
        try:
            await self._refresh()
        except Exception:
            logger.exception("Refresh failed")

    async def wait_for_refresh(self) -> None:
        """Wait for the in-flight refresh, if any, to finish."""
        if self._refresh_task is not None:
            await asyncio.shield(self._refresh_task)

    def _pause_condition_changed(self, now_active: bool, was_active: bool, toggle: bool, name: str) -> None:
        if not toggle:
            return
        if now_active and not was_active:
            logger.info(f"{name} detected, pausing polling")
            self._cancel_timer()
        elif not now_active and was_active:
            if self.polling_requested and self._is_authenticated():
                logger.info(f"{name} ended, resuming polling")
                self._enter(force_refresh=not self.is_paused)

    def set_low_power_mode(self, enabled: bool) -> None:
        was = self.low_power_mode
        self.low_power_mode = enabled
        self._pause_condition_changed(
            enabled, was, self._configuration().pause_polling_in_low_power_mode, "Low power mode"
        )

    def set_expensive_network(self, expensive: bool) -> None:
        was = self.expensive_network
        self.expensive_network = expensive
        self._pause_condition_changed(
            expensive, was, self._configuration().pause_polling_on_expensive_network, "Expensive network"
        )

    def configuration_changed(self, configuration: Configuration) -> None:
        """Rebuild the timer with the new interval; an in-flight refresh is left alone."""
        if not self.polling_requested:
            return
        self._cancel_timer()
        self._enter()

    def stop(self) -> None:
        self.enable_polling(False)
