"""On-disk cache of the last successful snapshot, used for cold start and error fallback."""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from logging import getLogger
from pathlib import Path

from pydantic import ValidationError

from prdashboard.services.github.models import PRList

logger = getLogger(__name__)

DEFAULT_MAX_AGE = 3600  # 1 hour


class SnapshotCache:
    """JSON file holding ``lastUpdated``, ``pullRequests`` and ``mergedPullRequests``."""

    def __init__(self, path: Path | str, max_age: float = DEFAULT_MAX_AGE) -> None:
        """Initialize the snapshot cache.

        Args:
            path: Cache file location
            max_age: Seconds after which a snapshot is treated as a miss
        """
        self.path = Path(path)
        self.max_age = timedelta(seconds=max_age)

    def load(self, ignore_expiry: bool = False, now: datetime | None = None) -> PRList | None:
        """Read the cached snapshot.

        Args:
            ignore_expiry: Return an expired snapshot too (fallback after a failed refresh)
            now: Reference time for the expiry check (default: current time)

        Returns:
            The snapshot, or None on a miss. A file that cannot be decoded is deleted.
        """
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read snapshot cache {self.path}: {e}")
            return None

        try:
            snapshot = PRList.from_cache_json(data)
        except ValidationError as e:
            logger.warning(f"Deleting corrupt snapshot cache {self.path}: {e.error_count()} error(s)")
            self.clear()
            return None

        if not ignore_expiry:
            now = now or datetime.now(timezone.utc)
            if now - snapshot.last_updated > self.max_age:
                logger.info(f"Snapshot cache is older than {int(self.max_age.total_seconds())}s, ignoring")
                return None

        logger.debug(
            f"Loaded snapshot cache: {len(snapshot.pull_requests)} open, "
            f"{len(snapshot.merged_pull_requests)} merged"
        )
        return snapshot

    def save(self, snapshot: PRList) -> None:
        """Atomically replace the cache file with ``snapshot``'s persisted fields.

        Failures are logged; the in-memory snapshot stays authoritative.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".pr_cache-", suffix=".tmp")
        except OSError as e:
            logger.warning(f"Could not write snapshot cache {self.path}: {e}")
            return

        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(snapshot.to_cache_json())
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            logger.warning(f"Could not write snapshot cache {self.path}: {e}")

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not delete snapshot cache {self.path}: {e}")
