"""Diffing of consecutive open-PR lists into notification intents."""

from collections.abc import Iterable
from dataclasses import dataclass
from logging import getLogger

from prdashboard.services.github.models import CIStatus, PullRequest

logger = getLogger(__name__)

NOTIFIABLE_CI_STATUSES = frozenset({CIStatus.SUCCESS, CIStatus.FAILURE})


@dataclass(frozen=True)
class UnresolvedCommentsIncreased:
    pull_request: PullRequest
    delta: int


@dataclass(frozen=True)
class CIStatusChanged:
    pull_request: PullRequest
    status: CIStatus


ChangeIntent = UnresolvedCommentsIncreased | CIStatusChanged


class ChangeDetector:
    """Compare each refresh against the previous one, keyed by PR id.

    Only one prior generation is kept. PRs not present in the previous
    generation never produce intents, so the first poll after sign-in or cold
    start is silent.
    """

    def __init__(self) -> None:
        self.previous: dict[int, PullRequest] = {}

    def seed(self, prs: Iterable[PullRequest]) -> None:
        """Load a prior generation, e.g. from the snapshot cache."""
        self.previous = {pr.id: pr for pr in prs}

    def detect(self, new_prs: Iterable[PullRequest]) -> list[ChangeIntent]:
        intents: list[ChangeIntent] = []
        for pr in new_prs:
            before = self.previous.get(pr.id)
            if before is None:
                continue

            if pr.unresolved_count > before.unresolved_count:
                intents.append(UnresolvedCommentsIncreased(pr, pr.unresolved_count - before.unresolved_count))

            if pr.ci_status != before.ci_status and pr.ci_status in NOTIFIABLE_CI_STATUSES:
                intents.append(CIStatusChanged(pr, pr.ci_status))

        if intents:
            logger.info(f"Detected {len(intents)} change(s) since the previous refresh")
        return intents

    def commit(self, new_prs: Iterable[PullRequest]) -> None:
        """Make ``new_prs`` the previous generation, dropping everything else."""
        self.previous = {pr.id: pr for pr in new_prs}

    def process(self, new_prs: list[PullRequest], notify: bool = True) -> list[ChangeIntent]:
        """Detect (when ``notify`` is set) and always commit."""
        intents = self.detect(new_prs) if notify else []
        self.commit(new_prs)
        return intents

    def reset(self) -> None:
        self.previous = {}
