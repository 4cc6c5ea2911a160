"""Textual TUI for oclaw."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any, Callable

from rich.text import Text as RichText
from textual import events, on
from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.css.query import NoMatches
from textual.message import Message
from textual.widgets import Static

from .client import GatewayError
from .config import Config
from .display import Viewport
from .interaction import (
    Dashboard,
    FetchLog,
    FetchModels,
    Intent,
    KillProcess,
    Messaging,
    Normal,
    Panel,
    Quit,
    Searching,
    SendMessage,
    SpawnField,
    Spawning,
    SpawnSession,
    Tab,
)
from .models import (
    ArchivedRun,
    CanonicalMessage,
    Health,
    ModelOption,
    Process,
    Session,
    SpawnResult,
    format_duration,
    format_tokens,
    model_alias,
    session_status,
)
from .theme import DEFAULT_THEME, Theme, process_indicator, status_indicator

if TYPE_CHECKING:
    from .client import GatewayClient

logger = logging.getLogger(__name__)

TAB_TITLES = {Tab.SESSIONS: "Sessions", Tab.PROCESSES: "Processes", Tab.HISTORY: "History"}

KEY_HELP = {
    Normal: "j/k:move  enter:open  tab:panel  1-3:tabs  /:search  m:msg  s:spawn  x:kill  v:verbose  c:source  f:follow  q:quit",
    Searching: "type to filter  enter:keep  esc:clear",
    Messaging: "enter:send  esc:cancel",
    Spawning: "tab:next field  up/down:model  enter:spawn  esc:cancel",
}

# CSS Styles
CSS = """
Screen {
    layout: vertical;
}

#header {
    height: 1;
    padding: 0 1;
}

#main-content {
    height: 1fr;
}

#list-panel {
    width: 40%;
    border: round $primary-darken-2;
    padding: 0 1;
}

#log-panel {
    width: 1fr;
    border: round $primary-darken-2;
    padding: 0 1;
}

#list-panel.panel-focused, #log-panel.panel-focused {
    border: round $accent;
}

#overlay {
    height: auto;
    display: none;
    border: round $accent;
    padding: 0 1;
}

#overlay.visible {
    display: block;
}

#status-bar {
    height: 1;
    padding: 0 1;
}
"""


def log_viewport_size(width: int, height: int) -> tuple[int, int]:
    """Text area of the log panel for a terminal of the given size."""
    list_width = width * 2 // 5 - 2
    return max(20, width - list_width - 6), max(1, height - 4)


def key_name(event: events.Key) -> str:
    """Printable keys by their character ("/" not "slash"), others by name."""
    if event.character and len(event.character) == 1 and event.character.isprintable():
        return event.character
    return event.key


def _age_label(seconds: float | None) -> str:
    return format_duration(seconds) if seconds is not None else "-"


def _size_label(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f}M"
    if size >= 1024:
        return f"{size // 1024}K"
    return f"{size}B"


class HeaderBar(Static):
    """Tab strip, filter and gateway health."""

    def update_header(self, dashboard: Dashboard, theme: Theme) -> None:
        text = RichText()
        text.append("oclaw ", style=theme.title)
        for tab in Tab:
            count = len(dashboard.filtered_items(tab))
            style = theme.active_tab if tab == dashboard.active_tab else theme.inactive_tab
            text.append(f" {tab.value} {TAB_TITLES[tab]} ({count}) ", style=style)
        if dashboard.filter:
            text.append(f"  /{dashboard.filter}", style=theme.query)
        health = dashboard.health
        if health is None:
            text.append("  gateway ?", style=theme.dim)
        elif health.ok:
            text.append(f"  gateway ✓ {health.duration_ms}ms", style=theme.running)
        else:
            text.append("  gateway ✗", style=theme.failed)
        self.update(text)


class ListPanel(Static):
    """Sessions, processes or archived runs for the active tab."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._last_snapshot: Any = None  # fingerprint to skip no-op re-renders

    def update_list(self, dashboard: Dashboard, theme: Theme, now_ms: int) -> None:
        items = dashboard.filtered_items()
        snapshot = (dashboard.active_tab, dashboard.cursor, dashboard.selected_id, now_ms // 1000, repr(items))
        if snapshot == self._last_snapshot:
            return
        self._last_snapshot = snapshot

        text = RichText()
        if not items:
            text.append("Nothing here yet.", style=theme.dim)
            self.update(text)
            return

        for i, item in enumerate(items):
            if i:
                text.append("\n")
            line = self._render_item(item, theme, now_ms)
            if i == dashboard.cursor:
                line.stylize(theme.selected)
            text.append_text(line)
        self.update(text)

    def _render_item(self, item: Session | Process | ArchivedRun, theme: Theme, now_ms: int) -> RichText:
        line = RichText()
        if isinstance(item, Session):
            line.append_text(status_indicator(theme, session_status(item, now_ms)))
            line.append(f" {item.display_name}")
            if item.model:
                line.append(f"  {model_alias(item.model)}", style=theme.dim)
            line.append(f"  {_age_label(item.age_seconds(now_ms))}", style=theme.dim)
            tokens = format_tokens(item.total_tokens)
            if tokens:
                line.append(f"  {tokens}", style=theme.dim)
        elif isinstance(item, Process):
            line.append_text(process_indicator(theme, item.status))
            line.append(f" {item.session_name}")
            if item.runtime:
                line.append(f"  {item.runtime}", style=theme.dim)
            if item.command:
                line.append(f"  {item.command}", style=theme.dim)
        else:
            age = max(0, now_ms - item.modified_at) / 1000
            line.append(item.display_label)
            line.append(f"  {format_duration(age)}  {_size_label(item.size)}", style=theme.dim)
        line.no_wrap = True
        line.overflow = "ellipsis"
        return line


class LogPanel(Static):
    """The visible window of the display buffer."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._last_snapshot: Any = None

    def update_log(self, dashboard: Dashboard, theme: Theme) -> None:
        buffer = dashboard.buffer
        snapshot = (
            buffer.fingerprint, buffer.scroll_offset, buffer.follow, buffer.query,
            buffer.viewport.width, buffer.viewport.height,
            dashboard.selected_id, dashboard.verbose, dashboard.source_filter,
        )
        if snapshot == self._last_snapshot:
            return
        self._last_snapshot = snapshot

        text = RichText()
        title = dashboard.selected_id or "no selection"
        text.append(title, style=theme.title)
        text.append(f"  [{dashboard.verbose.value}]", style=theme.dim)
        if dashboard.source_filter:
            text.append(f" [{dashboard.source_filter}]", style=theme.dim)
        text.append(f"  {buffer.position_label}", style=theme.accent if buffer.follow else theme.dim)
        text.append("\n" + "─" * max(1, buffer.viewport.width), style=theme.dim)
        if buffer.query:
            text.append(f"\n» {buffer.query}", style=theme.query)
        for line in buffer.visible_lines():
            text.append("\n" + line)
        text.no_wrap = True
        text.overflow = "crop"
        self.update(text)


class OverlayPanel(Static):
    """Search, message and spawn inputs, shown only while their mode is active."""

    def update_overlay(self, dashboard: Dashboard, theme: Theme) -> None:
        mode = dashboard.mode
        if not isinstance(mode, (Searching, Messaging, Spawning)):
            self.remove_class("visible")
            return
        self.add_class("visible")

        text = RichText()
        if isinstance(mode, Searching):
            text.append("Search: ", style=theme.accent)
            text.append(mode.field + "▏")
        elif isinstance(mode, Messaging):
            text.append(f"Message {mode.target_name}: ", style=theme.accent)
            text.append(mode.field + "▏")
        else:
            labels = dashboard.spawn_model_labels()
            model_label = labels[mode.model_index % len(labels)]
            fields = (
                (SpawnField.PROMPT, "Prompt", mode.prompt + ("▏" if mode.focus == SpawnField.PROMPT else "")),
                (SpawnField.MODEL, "Model ", f"◀ {model_label} ▶"),
                (SpawnField.LABEL, "Label ", mode.label + ("▏" if mode.focus == SpawnField.LABEL else "")),
            )
            text.append("Spawn agent", style=theme.title)
            for spawn_field, label, value in fields:
                marker = "▸ " if mode.focus == spawn_field else "  "
                style = theme.accent if mode.focus == spawn_field else theme.dim
                text.append(f"\n{marker}{label}: ", style=style)
                text.append(value)
            if mode.error:
                text.append(f"\n{mode.error}", style=theme.failed)
        self.update(text)


class StatusBar(Static):
    """Confirmation prompt, busy indicator or last error, plus key help."""

    def update_status(self, dashboard: Dashboard, theme: Theme) -> None:
        status = dashboard.status_line()
        text = RichText(style=theme.status_bar)
        if status.confirm:
            text.append(status.confirm, style=theme.thinking)
        elif status.busy:
            text.append(status.busy, style=theme.thinking)
        elif status.error:
            text.append(status.error, style=theme.failed)
        elif status.notice:
            text.append(status.notice, style=theme.running)
        help_text = KEY_HELP.get(type(dashboard.mode), "y:confirm  n:cancel")
        if text.plain:
            text.append("  ")
        text.append(help_text, style=theme.dim)
        text.no_wrap = True
        text.overflow = "ellipsis"
        self.update(text)


class OclawApp(App):
    """Textual TUI for oclaw."""

    CSS = CSS
    ENABLE_COMMAND_PALETTE = False

    # Custom messages for thread-safe updates
    class SessionsLoaded(Message):
        def __init__(self, sessions: list[Session]) -> None:
            super().__init__()
            self.sessions = sessions

    class ProcessesLoaded(Message):
        def __init__(self, processes: list[Process]) -> None:
            super().__init__()
            self.processes = processes

    class ArchivedLoaded(Message):
        def __init__(self, runs: list[ArchivedRun]) -> None:
            super().__init__()
            self.runs = runs

    class HealthLoaded(Message):
        def __init__(self, health: Health) -> None:
            super().__init__()
            self.health = health

    class TranscriptLoaded(Message):
        def __init__(self, messages: list[CanonicalMessage]) -> None:
            super().__init__()
            self.messages = messages

    class ProcessLogLoaded(Message):
        def __init__(self, text: str) -> None:
            super().__init__()
            self.text = text

    class ReplyReceived(Message):
        def __init__(self, reply: str) -> None:
            super().__init__()
            self.reply = reply

    class SpawnCompleted(Message):
        def __init__(self, result: SpawnResult) -> None:
            super().__init__()
            self.result = result

    class ModelsLoaded(Message):
        def __init__(self, options: list[ModelOption]) -> None:
            super().__init__()
            self.options = options

    class ActionFailed(Message):
        """Any background call that failed; the text becomes the status-bar error."""
        def __init__(self, error: str) -> None:
            super().__init__()
            self.error = error

    def __init__(
        self,
        client: "GatewayClient",
        config: Config | None = None,
        theme: Theme = DEFAULT_THEME,
        executor: Executor | None = None,
    ) -> None:
        super().__init__()
        self.client = client
        self._config = config or Config()
        self.oclaw_theme = theme
        self.dashboard = Dashboard.create(
            verbose=self._config.verbose,
            viewport=Viewport(),
            log_interval=self._config.poll.logs,
        )
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="oclaw-io")

    def compose(self) -> ComposeResult:
        yield HeaderBar(id="header")
        with Horizontal(id="main-content"):
            yield ListPanel(id="list-panel")
            yield LogPanel(id="log-panel")
        yield OverlayPanel(id="overlay")
        yield StatusBar(id="status-bar")

    def on_mount(self) -> None:
        self._resize_buffer()
        self._refresh_view()
        poll = self._config.poll
        self._poll_sessions()
        self._poll_processes()
        self._poll_health()
        self.set_interval(poll.sessions, self._poll_sessions)
        self.set_interval(poll.processes, self._poll_processes)
        self.set_interval(poll.health, self._poll_health)
        self.set_interval(poll.logs, self._tick_logs)

    def on_unmount(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self.client.close()

    def on_resize(self, event: events.Resize) -> None:
        self._resize_buffer()
        self._refresh_view()

    def _resize_buffer(self) -> None:
        width, height = log_viewport_size(self.size.width, self.size.height)
        self.dashboard.buffer.resize(width, height)

    # --- Keys -------------------------------------------------------------

    def on_key(self, event: events.Key) -> None:
        """Every key goes through the dashboard's mode machine."""
        event.stop()
        event.prevent_default()
        intents = self.dashboard.handle_key(key_name(event), event.character)
        self._dispatch(intents)
        self._refresh_view()

    # --- Background work --------------------------------------------------

    def _submit(self, label: str, fn: Callable[[], Message | None]) -> None:
        """Run fn on the worker pool and post its message back to the app."""
        def task() -> None:
            try:
                message = fn()
            except GatewayError as e:
                logger.debug(f"{label} failed: {e}")
                self.post_message(self.ActionFailed(f"{label}: {e}"))
                return
            except Exception as e:
                logger.exception(f"{label} failed")
                self.post_message(self.ActionFailed(f"{label}: {type(e).__name__}: {e}"))
                return
            if message is not None:
                self.post_message(message)

        self._executor.submit(task)

    def _dispatch(self, intents: list[Intent]) -> None:
        for intent in intents:
            if isinstance(intent, Quit):
                self.exit()
            elif isinstance(intent, FetchLog):
                self._fetch_log(intent)
            elif isinstance(intent, SendMessage):
                self._submit("send", lambda i=intent: self.ReplyReceived(
                    self.client.send_message(i.session_id, i.text)))
            elif isinstance(intent, SpawnSession):
                self._submit("spawn", lambda i=intent: self.SpawnCompleted(
                    self.client.spawn_session(i.root_session_id, i.prompt, i.model, i.label)))
            elif isinstance(intent, KillProcess):
                self._submit(f"kill({intent.target})", lambda i=intent: self._kill(i.target))
            elif isinstance(intent, FetchModels):
                self._submit("models", self._load_models)

    def _load_models(self) -> Message:
        """Configured models for the spawn form; an unreadable config just means none."""
        try:
            options = self.client.fetch_configured_models()
        except GatewayError as e:
            logger.debug(f"No model options: {e}")
            options = []
        return self.ModelsLoaded(options)

    def _kill(self, target: str) -> Message:
        self.client.kill_process(target)
        return self.ProcessesLoaded(self.client.fetch_processes())

    def _fetch_log(self, intent: FetchLog) -> None:
        limit = self._config.history_limit
        label = f"{intent.tab.name.lower()}({intent.item_id})"
        if intent.tab == Tab.SESSIONS:
            self._submit(label, lambda: self.TranscriptLoaded(
                self.client.fetch_transcript_messages(intent.item_id, limit, intent.session_id)))
        elif intent.tab == Tab.HISTORY:
            self._submit(label, lambda: self.TranscriptLoaded(
                self.client.read_transcript_file(intent.item_id)))
        else:
            self._submit(label, lambda: self.ProcessLogLoaded(
                self.client.fetch_process_log(intent.item_id, limit)))

    def _poll_sessions(self) -> None:
        self._submit("sessions", lambda: self.SessionsLoaded(self.client.fetch_sessions()))

    def _poll_processes(self) -> None:
        self._submit("processes", lambda: self.ProcessesLoaded(self.client.fetch_processes()))

    def _poll_health(self) -> None:
        self._submit("health", lambda: self.HealthLoaded(self.client.fetch_health()))

    def _tick_logs(self) -> None:
        self._dispatch(self.dashboard.log_tick(time.monotonic()))

    # --- Results (main thread) ---------------------------------------------

    @on(SessionsLoaded)
    def handle_sessions(self, message: SessionsLoaded) -> None:
        self.dashboard.apply_sessions(message.sessions)
        sessions = message.sessions
        self._submit("archived", lambda: self.ArchivedLoaded(self.client.fetch_archived_runs(sessions)))
        self._refresh_view()

    @on(ProcessesLoaded)
    def handle_processes(self, message: ProcessesLoaded) -> None:
        self.dashboard.apply_processes(message.processes)
        self._refresh_view()

    @on(ArchivedLoaded)
    def handle_archived(self, message: ArchivedLoaded) -> None:
        self.dashboard.apply_archived(message.runs)
        self._refresh_view()

    @on(HealthLoaded)
    def handle_health(self, message: HealthLoaded) -> None:
        self.dashboard.apply_health(message.health)
        self._refresh_view()

    @on(TranscriptLoaded)
    def handle_transcript(self, message: TranscriptLoaded) -> None:
        self.dashboard.apply_transcript(message.messages)
        self._refresh_view()

    @on(ProcessLogLoaded)
    def handle_process_log(self, message: ProcessLogLoaded) -> None:
        self.dashboard.apply_process_log(message.text)
        self._refresh_view()

    @on(ReplyReceived)
    def handle_reply(self, message: ReplyReceived) -> None:
        self._dispatch(self.dashboard.apply_reply(message.reply))
        self._refresh_view()

    @on(SpawnCompleted)
    def handle_spawned(self, message: SpawnCompleted) -> None:
        self.dashboard.apply_spawned(message.result)
        self._poll_sessions()
        self._refresh_view()

    @on(ModelsLoaded)
    def handle_models(self, message: ModelsLoaded) -> None:
        self.dashboard.apply_models(message.options)
        self._refresh_view()

    @on(ActionFailed)
    def handle_failure(self, message: ActionFailed) -> None:
        self.dashboard.apply_error(message.error)
        self._refresh_view()

    # --- Rendering ----------------------------------------------------------

    def _refresh_view(self) -> None:
        """Re-render every widget from dashboard state."""
        theme = self.oclaw_theme
        now_ms = int(time.time() * 1000)
        try:
            header = self.query_one("#header", HeaderBar)
        except NoMatches:
            return
        header.update_header(self.dashboard, theme)
        self.query_one("#list-panel", ListPanel).update_list(self.dashboard, theme, now_ms)
        self.query_one("#log-panel", LogPanel).update_log(self.dashboard, theme)
        self.query_one("#overlay", OverlayPanel).update_overlay(self.dashboard, theme)
        self.query_one("#status-bar", StatusBar).update_status(self.dashboard, theme)

        logs_focused = self.dashboard.active_panel == Panel.LOGS
        self.query_one("#list-panel").set_class(not logs_focused, "panel-focused")
        self.query_one("#log-panel").set_class(logs_focused, "panel-focused")
