"""UI components for the session inspector."""

from .widgets import (
    DetailPanel,
    EventItem,
    FileEditItem,
)
from .styles import APP_CSS

__all__ = [
    "DetailPanel",
    "EventItem",
    "FileEditItem",
    "APP_CSS",
]
