"""Notification sinks and the per-PR throttle in front of them."""

import time
from collections.abc import Callable, Iterable
from logging import getLogger
from typing import Protocol

from rich.console import Console

from prdashboard.services.changes import ChangeIntent, CIStatusChanged, UnresolvedCommentsIncreased
from prdashboard.services.github.models import CIStatus, PullRequest

logger = getLogger(__name__)

THROTTLE_INTERVAL = 600  # 10 minutes


def notification_title(pr: PullRequest) -> str:
    return f"{pr.repo_full_name} #{pr.number}"


def unresolved_body(pr: PullRequest, count: int) -> str:
    plural = "" if count == 1 else "s"
    return f'{count} new unresolved comment{plural} on "{pr.title}"'


def ci_status_body(pr: PullRequest, status: CIStatus) -> str | None:
    if status == CIStatus.SUCCESS:
        return f'All CI checks passed on "{pr.title}"'
    if status == CIStatus.FAILURE:
        return f'CI checks failed on "{pr.title}"'
    return None


class NotificationSink(Protocol):
    def notify_unresolved(self, pr: PullRequest, count: int) -> None: ...

    def notify_ci_status(self, pr: PullRequest, status: CIStatus) -> None: ...


class ConsoleNotificationSink:
    """Print notifications to a rich console."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def notify_unresolved(self, pr: PullRequest, count: int) -> None:
        self.console.print(f"[bold yellow]{notification_title(pr)}[/bold yellow] {unresolved_body(pr, count)}")
        self.console.print(f"  [dim]{pr.url}[/dim]")

    def notify_ci_status(self, pr: PullRequest, status: CIStatus) -> None:
        body = ci_status_body(pr, status)
        if body is None:
            return
        color = "green" if status == CIStatus.SUCCESS else "red"
        self.console.print(f"[bold {color}]{notification_title(pr)}[/bold {color}] {body}")
        self.console.print(f"  [dim]{pr.url}[/dim]")


class LoggingNotificationSink:
    """Write notifications to the log."""

    def notify_unresolved(self, pr: PullRequest, count: int) -> None:
        logger.info(f"{notification_title(pr)}: {unresolved_body(pr, count)}")

    def notify_ci_status(self, pr: PullRequest, status: CIStatus) -> None:
        body = ci_status_body(pr, status)
        if body is not None:
            logger.info(f"{notification_title(pr)}: {body}")


class ThrottledNotifier:
    """Forward intents to a sink, at most once per PR per throttle interval.

    Both notification kinds share the per-PR throttle. Muted PRs are dropped.
    """

    def __init__(
        self,
        sink: NotificationSink,
        throttle: float = THROTTLE_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sink = sink
        self.throttle = throttle
        self.clock = clock
        self.muted: set[int] = set()
        self._last_sent: dict[int, float] = {}

    def mute(self, pr_id: int) -> None:
        self.muted.add(pr_id)

    def unmute(self, pr_id: int) -> None:
        self.muted.discard(pr_id)

    def is_muted(self, pr_id: int) -> bool:
        return pr_id in self.muted

    def _allow(self, pr: PullRequest) -> bool:
        if pr.id in self.muted:
            logger.debug(f"Notification for muted PR {pr.id} dropped")
            return False
        now = self.clock()
        last = self._last_sent.get(pr.id)
        if last is not None and now - last < self.throttle:
            logger.debug(f"Notification for PR {pr.id} throttled")
            return False
        self._last_sent[pr.id] = now
        return True

    def notify_unresolved(self, pr: PullRequest, count: int) -> bool:
        if not self._allow(pr):
            return False
        self.sink.notify_unresolved(pr, count)
        return True

    def notify_ci_status(self, pr: PullRequest, status: CIStatus) -> bool:
        if status not in (CIStatus.SUCCESS, CIStatus.FAILURE):
            return False
        if not self._allow(pr):
            return False
        self.sink.notify_ci_status(pr, status)
        return True

    def dispatch(self, intents: Iterable[ChangeIntent]) -> int:
        """Deliver intents in order and return how many reached the sink."""
        delivered = 0
        for intent in intents:
            if isinstance(intent, UnresolvedCommentsIncreased):
                sent = self.notify_unresolved(intent.pull_request, intent.delta)
            elif isinstance(intent, CIStatusChanged):
                sent = self.notify_ci_status(intent.pull_request, intent.status)
            else:
                continue
            delivered += int(sent)
        return delivered
