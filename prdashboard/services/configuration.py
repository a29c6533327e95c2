"""User configuration: the immutable settings snapshot and its JSON file store."""

import json
import os
import tempfile
from collections.abc import Callable
from logging import getLogger
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from prdashboard.errors import ConfigurationError

from .events import EventEmitter

logger = getLogger(__name__)

MIN_REFRESH_INTERVAL = 15
MAX_REFRESH_INTERVAL = 3600
DEFAULT_REFRESH_INTERVAL = 60


class Configuration(BaseModel):
    """Immutable user configuration, read by every refresh cycle.

    The refresh interval is not range-checked at construction so that a file
    written by an older version still loads; :meth:`validate_values` is
    enforced on save and before every refresh.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore")

    repositories: list[str] = Field(default_factory=list)
    show_drafts: bool = True
    notifications_enabled: bool = True
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    refresh_on_open: bool = False
    ci_status_exclude_filter: str = ""
    pause_polling_in_low_power_mode: bool = True
    pause_polling_on_expensive_network: bool = True
    show_review_status: bool = True

    @property
    def is_valid(self) -> bool:
        return MIN_REFRESH_INTERVAL <= self.refresh_interval <= MAX_REFRESH_INTERVAL

    def validate_values(self) -> None:
        """Raise ConfigurationError if the configuration cannot drive a refresh."""
        if not self.is_valid:
            raise ConfigurationError(
                f"Refresh interval must be between {MIN_REFRESH_INTERVAL} and {MAX_REFRESH_INTERVAL} seconds"
            )

    def matches_repository(self, full_name: str) -> bool:
        """Check a repository against the allow-list.

        An empty list allows everything. An entry ending in ``/`` matches every
        repository of that owner, any other entry must match exactly. Both
        comparisons are case-insensitive.
        """
        if not self.repositories:
            return True
        name = full_name.lower()
        for entry in self.repositories:
            pattern = entry.strip().lower()
            if not pattern:
                continue
            if pattern.endswith("/"):
                if name.startswith(pattern):
                    return True
            elif name == pattern:
                return True
        return False

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class ConfigurationStore:
    """JSON file backed holder of the current Configuration.

    Saves replace the snapshot atomically and notify subscribers.
    """

    def __init__(self, path: Path | str, configuration: Configuration | None = None) -> None:
        self.path = Path(path)
        self._configuration = configuration or Configuration()
        self._changes: EventEmitter[Configuration] = EventEmitter("configuration")

    @property
    def configuration(self) -> Configuration:
        return self._configuration

    def subscribe(self, callback: Callable[[Configuration], None]) -> Callable[[], None]:
        return self._changes.subscribe(callback)

    def load(self) -> Configuration:
        """Load the configuration file, falling back to defaults if missing or corrupt."""
        if not self.path.exists():
            logger.debug(f"No configuration file at {self.path}, using defaults")
            self._configuration = Configuration()
            return self._configuration

        try:
            self._configuration = Configuration.model_validate_json(self.path.read_text())
        except (OSError, ValidationError) as e:
            logger.warning(f"Could not read configuration from {self.path}, using defaults: {e}")
            self._configuration = Configuration()
        return self._configuration

    def save(self, configuration: Configuration) -> None:
        """Validate, persist and publish a new configuration.

        Raises:
            ConfigurationError: If the configuration is invalid or cannot be written
        """
        configuration.validate_values()

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".config-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as handle:
                handle.write(configuration.to_json())
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise ConfigurationError(f"Could not write configuration to {self.path}: {e}") from e

        self._configuration = configuration
        logger.info(f"Saved configuration to {self.path}")
        self._changes.emit(configuration)

    def update(self, **changes: Any) -> Configuration:
        """Save a copy of the current configuration with ``changes`` applied.

        Raises:
            ConfigurationError: If a value has the wrong type or the result is invalid
        """
        unknown = set(changes) - set(Configuration.model_fields)
        if unknown:
            raise ConfigurationError(f"Unknown configuration field(s): {', '.join(sorted(unknown))}")
        try:
            updated = Configuration.model_validate({**self._configuration.model_dump(), **changes})
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e
        self.save(updated)
        return updated


def parse_field_value(key: str, raw: str) -> tuple[str, Any]:
    """Turn a command line ``KEY VALUE`` pair into a Configuration field update.

    ``key`` may be given in snake_case or camelCase. ``raw`` is parsed as JSON,
    falling back to a plain string; ``repositories`` also accepts a comma
    separated list.

    Raises:
        ConfigurationError: If the key is not a configuration field
    """
    fields = Configuration.model_fields
    name = key if key in fields else next((f for f, info in fields.items() if info.alias == key), None)
    if name is None:
        raise ConfigurationError(f"Unknown configuration field: {key}")

    try:
        value: Any = json.loads(raw)
    except json.JSONDecodeError:
        value = raw

    if name == "repositories" and isinstance(value, str):
        value = [part.strip() for part in value.split(",") if part.strip()]
    return name, value
