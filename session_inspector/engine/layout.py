"""Pane sizing for the main / sub-agent / detail layout."""

from dataclasses import dataclass
from enum import Enum


class Pane(str, Enum):
    MAIN = "main"
    SUB = "sub"
    DETAIL = "detail"


@dataclass(frozen=True)
class PanelLayout:
    """Pane widths in percent; 0 means collapsed."""

    main: int
    sub: int
    detail: int

    def size_of(self, pane: Pane) -> int:
        return getattr(self, pane.value)

    def is_collapsed(self, pane: Pane) -> bool:
        return self.size_of(pane) == 0


_LAYOUTS = {
    (False, False): PanelLayout(100, 0, 0),
    (True, False): PanelLayout(60, 40, 0),
    (False, True): PanelLayout(60, 0, 40),
    (True, True): PanelLayout(34, 33, 33),
}


def compute_layout(sub_open: bool, detail_open: bool) -> PanelLayout:
    return _LAYOUTS[(bool(sub_open), bool(detail_open))]
