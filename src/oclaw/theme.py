"""Colors and status glyphs for the dashboard.

A theme is an immutable value handed to the app; rendering helpers take it as
an argument instead of reading module globals.
"""

from dataclasses import dataclass

from rich.text import Text


@dataclass(frozen=True)
class Theme:
    """Rich style strings used by the dashboard widgets."""

    accent: str = "bold #7aa2f7"
    dim: str = "#565f89"
    title: str = "bold #c0caf5"
    query: str = "italic #e0af68"
    running: str = "#9ece6a"
    thinking: str = "#e0af68"
    failed: str = "#f7768e"
    idle: str = "#565f89"
    selected: str = "bold #ffffff on #3b82f6"
    status_bar: str = "#a9b1d6 on #24283b"
    active_tab: str = "bold underline #7aa2f7"
    inactive_tab: str = "#565f89"


DEFAULT_THEME = Theme()


def status_style(theme: Theme, status: str) -> str:
    if status in ("running", "active", "warm"):
        return theme.running
    if status in ("thinking", "working"):
        return theme.thinking
    if status in ("failed", "error"):
        return theme.failed
    if status in ("completed", "done", "idle"):
        return theme.idle
    return theme.dim


def status_indicator(theme: Theme, status: str) -> Text:
    """● for live or failed sessions, ○ otherwise."""
    if status in ("running", "active", "warm", "thinking", "working", "failed", "error"):
        return Text("●", style=status_style(theme, status))
    return Text("○", style=theme.dim)


def process_indicator(theme: Theme, status: str) -> Text:
    if status in ("running", "active"):
        return Text("▶", style=theme.running)
    if status in ("failed", "error"):
        return Text("■", style=theme.failed)
    return Text("■", style=theme.dim)
