"""Configuration classes for fastapi-fetcheable."""

import dataclasses
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Callable

from dateutil.parser import parse

from fastapi_fetcheable.exceptions import ConfigError


class PageNumberPolicy(StrEnum):
    """What to do with non-numeric ``page[number]`` / ``page[size]`` values."""

    COERCE = "coerce"  # leading-integer coercion, "abc" -> 0
    REJECT = "reject"  # raise ParameterTypeError


def parse_epoch_datetime(raw: str) -> datetime:
    """
    Parse a filter token as a timestamp.

    Tokens are read as Unix epoch seconds (UTC). Anything that is not an
    integer falls back to dateutil so ISO-8601 strings keep working.

    Args:
        raw: Raw filter token

    Returns:
        datetime: Parsed timestamp

    Raises:
        ValueError: If the token cannot be read as a timestamp
    """
    try:
        seconds = int(raw)
    except ValueError:
        try:
            return parse(raw)
        except OverflowError as e:
            raise ValueError(f"Timestamp out of range: {raw}") from e
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Timestamp out of range: {raw}") from e


@dataclass(frozen=True)
class FetcheableConfig:
    """
    Process-wide defaults for filtering, sorting and pagination.

    Instances are immutable. Set the process-wide instance once at startup
    with ``configure()``, or pass an instance to the engines explicitly.

    Attributes:
        default_page_size: Page size used when ``page[size]`` is omitted (default: 25)
        page_number_policy: Handling of non-numeric pagination values (default: coerce)
        datetime_parser: Converts filter tokens of ``datetime`` fields

    Example:
        configure(default_page_size=50)

        pipeline = FetchPipeline(filters, sorts, config=FetcheableConfig(default_page_size=10))
    """

    default_page_size: int = 25
    page_number_policy: PageNumberPolicy = PageNumberPolicy.COERCE
    datetime_parser: Callable[[str], Any] = parse_epoch_datetime

    def __post_init__(self):
        """Validate configuration values."""
        if isinstance(self.default_page_size, bool) or not isinstance(
            self.default_page_size, int
        ):
            raise ConfigError("default_page_size must be an integer")
        if self.default_page_size < 1:
            raise ConfigError("default_page_size must be >= 1")
        try:
            policy = PageNumberPolicy(self.page_number_policy)
        except ValueError as e:
            raise ConfigError(
                f"page_number_policy must be one of: {', '.join(PageNumberPolicy)}"
            ) from e
        object.__setattr__(self, "page_number_policy", policy)
        if not callable(self.datetime_parser):
            raise ConfigError("datetime_parser must be callable")


_config_lock = threading.Lock()
_config = FetcheableConfig()


def get_config() -> FetcheableConfig:
    """Return the current process-wide configuration."""
    return _config


def configure(**changes: Any) -> FetcheableConfig:
    """
    Replace the process-wide configuration.

    Meant for application startup. The new configuration is built and
    validated before it is swapped in, so readers never see a partial update.

    Args:
        **changes: Fields of FetcheableConfig to override

    Returns:
        FetcheableConfig: The configuration now in effect

    Raises:
        ConfigError: If an option is unknown or invalid
    """
    global _config
    unknown = set(changes) - {f.name for f in dataclasses.fields(FetcheableConfig)}
    if unknown:
        raise ConfigError(f"Unknown configuration options: {', '.join(sorted(unknown))}")
    with _config_lock:
        _config = dataclasses.replace(_config, **changes)
        return _config


def reset_config() -> FetcheableConfig:
    """Restore the default process-wide configuration."""
    global _config
    with _config_lock:
        _config = FetcheableConfig()
        return _config
