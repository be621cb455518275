"""Configuration constants with environment overrides."""

import os
from dataclasses import dataclass
from pathlib import Path


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


# Where Claude Code keeps per-project session logs
PROJECTS_DIR = Path(
    os.environ.get("SESSION_INSPECTOR_PROJECTS_DIR", Path.home() / ".claude" / "projects")
).expanduser()

PAGE_SIZE = 200
SEARCH_DEBOUNCE_SECONDS = 0.3
SEARCH_MAX_RESULTS = 1000
BACKEND_SEARCH_MAX_RESULTS = 10000
FLASH_DURATION_SECONDS = 0.9
WATCH_POLL_SECONDS = 0.5
LOAD_MORE_THRESHOLD = 5
PREVIEW_MAX_CHARS = 500
SNIPPET_CONTEXT_CHARS = 60


@dataclass
class InspectorConfig:
    """Runtime settings shared by the backend and the controller."""

    projects_dir: Path = PROJECTS_DIR
    page_size: int = PAGE_SIZE
    search_debounce: float = SEARCH_DEBOUNCE_SECONDS
    search_max_results: int = SEARCH_MAX_RESULTS
    flash_duration: float = FLASH_DURATION_SECONDS
    watch_poll_interval: float = WATCH_POLL_SECONDS
    load_more_threshold: int = LOAD_MORE_THRESHOLD

    @classmethod
    def from_env(cls) -> "InspectorConfig":
        """Build a config, letting SESSION_INSPECTOR_* variables override defaults."""
        return cls(
            projects_dir=Path(
                os.environ.get("SESSION_INSPECTOR_PROJECTS_DIR", PROJECTS_DIR)
            ).expanduser(),
            page_size=_env_int("SESSION_INSPECTOR_PAGE_SIZE", PAGE_SIZE),
            search_debounce=_env_float("SESSION_INSPECTOR_SEARCH_DEBOUNCE", SEARCH_DEBOUNCE_SECONDS),
            search_max_results=_env_int("SESSION_INSPECTOR_SEARCH_MAX_RESULTS", SEARCH_MAX_RESULTS),
            flash_duration=_env_float("SESSION_INSPECTOR_FLASH_DURATION", FLASH_DURATION_SECONDS),
            watch_poll_interval=_env_float("SESSION_INSPECTOR_WATCH_POLL", WATCH_POLL_SECONDS),
        )
