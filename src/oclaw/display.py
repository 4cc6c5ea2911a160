"""Scroll/follow state for the log panel, with change detection and wrap caching."""

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum

from rich.cells import cell_len, chop_cells

logger = logging.getLogger(__name__)

# Title + separator lines the log panel draws above the text
DEFAULT_CHROME = 3


class ScrollTo(Enum):
    """Explicit scroll targets, resolved against the current max offset."""
    TOP = "top"
    BOTTOM = "bottom"


@dataclass
class Viewport:
    """Size of the log panel's text area."""

    width: int = 80
    height: int = 24
    chrome: int = DEFAULT_CHROME


def content_fingerprint(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8", errors="replace")).hexdigest()


def wrap_lines(content: str, width: int) -> list[str]:
    """Split content into lines, chunking any line wider than width terminal cells."""
    wrapped: list[str] = []
    for line in content.split("\n"):
        if width > 0 and cell_len(line) > width:
            wrapped.extend(chop_cells(line, width))
        else:
            wrapped.append(line)
    return wrapped


class DisplayBuffer:
    """Rendered log text plus scroll offset and follow mode.

    The wrapped-lines cache is keyed by (content, width) and recomputed lazily
    whenever either changes.
    """

    def __init__(self, viewport: Viewport | None = None) -> None:
        self.viewport = viewport or Viewport()
        self.content: str = ""
        self.fingerprint: str = ""
        self.query: str = ""
        self.scroll_offset: int = 0
        self.follow: bool = True
        self._wrapped: list[str] = []
        self._wrap_key: tuple[str, int] | None = None

    # --- geometry -------------------------------------------------------

    @property
    def visible_height(self) -> int:
        height = self.viewport.height - self.viewport.chrome
        if self.query:
            height -= 1
        return max(1, height)

    @property
    def wrapped_lines(self) -> list[str]:
        key = (self.content, self.viewport.width)
        if self._wrap_key != key:
            self._wrapped = wrap_lines(self.content, self.viewport.width) if self.content else []
            self._wrap_key = key
        return self._wrapped

    def max_scroll(self) -> int:
        return max(0, len(self.wrapped_lines) - self.visible_height)

    def at_bottom(self) -> bool:
        """At or within one line of the bottom."""
        return self.scroll_offset >= self.max_scroll() - 1

    def visible_lines(self) -> list[str]:
        lines = self.wrapped_lines
        start = min(self.scroll_offset, self.max_scroll())
        return lines[start:start + self.visible_height]

    def resize(self, width: int, height: int) -> None:
        self.viewport.width = width
        self.viewport.height = height
        if self.follow:
            self.scroll_to(ScrollTo.BOTTOM)
        else:
            self._clamp()

    # --- content --------------------------------------------------------

    def update(self, content: str, query: str | None = None) -> bool:
        """Swap in new content. Returns False when nothing changed.

        With follow on, growing content scrolls to the bottom. With follow off,
        the distance from the bottom is preserved so appended text does not move
        the lines already on screen.
        """
        new_fingerprint = content_fingerprint(content)
        if new_fingerprint == self.fingerprint:
            if query is not None:
                self.query = query
            return False

        old_content = self.content
        old_distance = self.max_scroll() - self.scroll_offset

        self.content = content
        self.fingerprint = new_fingerprint
        if query is not None:
            self.query = query
        self._wrap_key = None

        if self.follow:
            if len(content) > len(old_content) or not old_content:
                self.scroll_to(ScrollTo.BOTTOM)
            else:
                self._clamp()
        else:
            self.scroll_offset = max(0, self.max_scroll() - old_distance)
        return True

    def append(self, text: str) -> None:
        """Append text locally (e.g. echo of a sent message) ahead of the next poll."""
        self.update(self.content + text, self.query)

    def reset(self) -> None:
        """Clear for a new selection: empty, top, following."""
        self.content = ""
        self.fingerprint = ""
        self.query = ""
        self.scroll_offset = 0
        self.follow = True
        self._wrap_key = None
        self._wrapped = []

    # --- scrolling ------------------------------------------------------

    def scroll_to(self, target: ScrollTo) -> None:
        self.scroll_offset = self.max_scroll() if target == ScrollTo.BOTTOM else 0

    def scroll_up(self, lines: int = 1) -> None:
        """Scrolling up always leaves follow mode."""
        self.scroll_offset = max(0, self.scroll_offset - lines)
        self._clamp()
        self.follow = False

    def scroll_down(self, lines: int = 1) -> None:
        """Scrolling back to the bottom resumes follow mode."""
        self.scroll_offset += lines
        self._clamp()
        if self.at_bottom():
            self.follow = True

    @property
    def page_size(self) -> int:
        return max(1, self.visible_height - DEFAULT_CHROME)

    def page_up(self) -> None:
        self.scroll_up(self.page_size)

    def page_down(self) -> None:
        self.scroll_down(self.page_size)

    def set_follow(self, follow: bool) -> None:
        self.follow = follow
        if follow:
            self.scroll_to(ScrollTo.BOTTOM)

    def toggle_follow(self) -> None:
        self.set_follow(not self.follow)

    def _clamp(self) -> None:
        if not self.content:
            self.scroll_offset = 0
            return
        self.scroll_offset = min(self.scroll_offset, self.max_scroll())

    @property
    def position_label(self) -> str:
        """Scroll indicator for the panel title: "follow" or "123/456"."""
        if self.follow:
            return "follow"
        total = len(self.wrapped_lines)
        return f"{min(self.scroll_offset + self.visible_height, total)}/{total}"
