"""Dashboard state and the modal key-handling state machine.

Exactly one mode owns keyboard input at a time. Keys either change local view
state (cursor, filter, scroll) or produce intents that the app executes
against the gateway; their results come back through the ``apply_*`` methods.
"""

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from .display import DisplayBuffer, ScrollTo, Viewport
from .formatting import (
    clean_content,
    next_source_filter,
    render_process_log,
    render_transcript,
)
from .models import (
    ArchivedRun,
    CanonicalMessage,
    Health,
    ModelOption,
    Process,
    Session,
    SpawnResult,
    VerboseLevel,
)

logger = logging.getLogger(__name__)

LOG_FETCH_INTERVAL = 2.0
DEFAULT_MODEL_LABEL = "(default)"


class Tab(Enum):
    SESSIONS = 1
    PROCESSES = 2
    HISTORY = 3


class Panel(Enum):
    LIST = "list"
    LOGS = "logs"


class SpawnField(Enum):
    PROMPT = 0
    MODEL = 1
    LABEL = 2

    def next(self) -> "SpawnField":
        order = list(SpawnField)
        return order[(order.index(self) + 1) % len(order)]


# --- Modes ----------------------------------------------------------------


@dataclass(frozen=True)
class Normal:
    """List navigation, panel switching and scrolling."""


@dataclass(frozen=True)
class Searching:
    """Editing the list filter; the filter updates live."""

    field: str = ""


@dataclass(frozen=True)
class Messaging:
    """Composing a message to a session."""

    target_id: str
    target_name: str
    field: str = ""


@dataclass(frozen=True)
class Spawning:
    """The spawn form: prompt, model selector and label."""

    prompt: str = ""
    model_index: int = 0
    label: str = ""
    focus: SpawnField = SpawnField.PROMPT
    error: str = ""


@dataclass(frozen=True)
class Confirming:
    """Waiting for y/n before killing a process."""

    target: str


Mode = Union[Normal, Searching, Messaging, Spawning, Confirming]


# --- Intents --------------------------------------------------------------


@dataclass(frozen=True)
class FetchLog:
    """Load the transcript or process log for the selected item."""

    item_id: str
    tab: Tab
    session_id: str = ""


@dataclass(frozen=True)
class SendMessage:
    session_id: str
    text: str


@dataclass(frozen=True)
class SpawnSession:
    root_session_id: str
    prompt: str
    model: str
    label: str


@dataclass(frozen=True)
class KillProcess:
    target: str


@dataclass(frozen=True)
class FetchModels:
    pass


@dataclass(frozen=True)
class Quit:
    pass


Intent = Union[FetchLog, SendMessage, SpawnSession, KillProcess, FetchModels, Quit]


@dataclass(frozen=True)
class StatusLine:
    """Everything the status bar shows besides key help."""

    error: str = ""
    notice: str = ""
    busy: str = ""
    confirm: str = ""


def edit_field(value: str, key: str, character: str | None) -> str:
    """Apply a key press to a single-line text field."""
    if key == "backspace":
        return value[:-1]
    if key == "ctrl+u":
        return ""
    if character and character.isprintable():
        return value + character
    return value


def _matches(needle: str, *haystack: str) -> bool:
    return any(needle in h.lower() for h in haystack)


@dataclass
class Dashboard:
    """All dashboard state, owned by the control loop."""

    verbose: VerboseLevel = VerboseLevel.SUMMARY
    log_interval: float = LOG_FETCH_INTERVAL
    buffer: DisplayBuffer = field(default_factory=DisplayBuffer)
    mode: Mode = field(default_factory=Normal)
    sessions: list[Session] = field(default_factory=list)
    processes: list[Process] = field(default_factory=list)
    archived: list[ArchivedRun] = field(default_factory=list)
    health: Health | None = None
    model_options: list[ModelOption] = field(default_factory=list)
    active_tab: Tab = Tab.SESSIONS
    active_panel: Panel = Panel.LIST
    cursors: dict[Tab, int] = field(default_factory=lambda: {tab: 0 for tab in Tab})
    filter: str = ""
    source_filter: str = ""
    selected_id: str = ""
    selected_tab: Tab | None = None
    cached_messages: list[CanonicalMessage] = field(default_factory=list)
    sending: bool = False
    sending_to: str = ""
    spinning: bool = False
    last_error: str = ""
    notice: str = ""
    last_log_fetch: float = float("-inf")

    @classmethod
    def create(cls, verbose: VerboseLevel = VerboseLevel.SUMMARY, viewport: Viewport | None = None,
               log_interval: float = LOG_FETCH_INTERVAL) -> "Dashboard":
        return cls(verbose=verbose, log_interval=log_interval, buffer=DisplayBuffer(viewport))

    # --- Filtered lists ---------------------------------------------------

    def filtered_sessions(self) -> list[Session]:
        if not self.filter:
            return self.sessions
        f = self.filter.lower()
        return [
            s for s in self.sessions
            if _matches(f, s.key, s.model, s.kind, s.display_name, s.label, s.channel)
        ]

    def filtered_processes(self) -> list[Process]:
        if not self.filter:
            return self.processes
        f = self.filter.lower()
        return [p for p in self.processes if _matches(f, p.session_name, p.command)]

    def filtered_archived(self) -> list[ArchivedRun]:
        if not self.filter:
            return self.archived
        f = self.filter.lower()
        return [a for a in self.archived if _matches(f, a.label, a.session_id)]

    def filtered_items(self, tab: Tab | None = None) -> list[Session] | list[Process] | list[ArchivedRun]:
        tab = tab or self.active_tab
        if tab == Tab.SESSIONS:
            return self.filtered_sessions()
        if tab == Tab.HISTORY:
            return self.filtered_archived()
        return self.filtered_processes()

    @property
    def cursor(self) -> int:
        return self.cursors[self.active_tab]

    def selected_item(self) -> Session | Process | ArchivedRun | None:
        items = self.filtered_items()
        if 0 <= self.cursor < len(items):
            return items[self.cursor]
        return None

    def selected_item_id(self) -> str:
        item = self.selected_item()
        if isinstance(item, Session):
            return item.key
        if isinstance(item, ArchivedRun):
            return item.path
        if isinstance(item, Process):
            return item.session_name
        return ""

    def move_cursor(self, delta: int) -> None:
        length = len(self.filtered_items())
        if length == 0:
            return
        self.cursors[self.active_tab] = max(0, min(self.cursor + delta, length - 1))

    def clamp_cursors(self) -> None:
        for tab in Tab:
            length = len(self.filtered_items(tab))
            self.cursors[tab] = max(0, min(self.cursors[tab], length - 1))

    def root_session(self) -> Session | None:
        return next((s for s in self.sessions if s.is_main), None)

    def spawn_model_labels(self) -> list[str]:
        return [DEFAULT_MODEL_LABEL] + [m.display for m in self.model_options]

    # --- Keys -------------------------------------------------------------

    def handle_key(self, key: str, character: str | None = None) -> list[Intent]:
        """Route a key press to the active mode."""
        if character is None and len(key) == 1:
            character = key
        if isinstance(self.mode, Searching):
            return self._key_searching(self.mode, key, character)
        if isinstance(self.mode, Messaging):
            return self._key_messaging(self.mode, key, character)
        if isinstance(self.mode, Spawning):
            return self._key_spawning(self.mode, key, character)
        if isinstance(self.mode, Confirming):
            return self._key_confirming(self.mode, key)
        return self._key_normal(key)

    def _key_searching(self, mode: Searching, key: str, character: str | None) -> list[Intent]:
        if key == "escape":
            self.filter = ""
            self.mode = Normal()
        elif key == "enter":
            self.filter = mode.field
            self.mode = Normal()
        else:
            value = edit_field(mode.field, key, character)
            self.mode = Searching(field=value)
            self.filter = value
        self.clamp_cursors()
        return []

    def _key_messaging(self, mode: Messaging, key: str, character: str | None) -> list[Intent]:
        if key == "escape":
            self.mode = Normal()
            return []
        if key == "enter":
            self.mode = Normal()
            if not mode.field.strip():
                return []
            self.sending = True
            self.sending_to = mode.target_name
            return [SendMessage(session_id=mode.target_id, text=mode.field)]
        self.mode = dataclasses.replace(mode, field=edit_field(mode.field, key, character))
        return []

    def _key_spawning(self, mode: Spawning, key: str, character: str | None) -> list[Intent]:
        if key == "escape":
            self.mode = Normal()
            return []
        if key == "tab":
            self.mode = dataclasses.replace(mode, focus=mode.focus.next())
            return []
        if mode.focus == SpawnField.MODEL and key in ("up", "down"):
            count = len(self.spawn_model_labels())
            step = -1 if key == "up" else 1
            self.mode = dataclasses.replace(mode, model_index=(mode.model_index + step) % count)
            return []
        if key == "enter":
            return self._submit_spawn(mode)
        if mode.focus == SpawnField.PROMPT:
            self.mode = dataclasses.replace(mode, prompt=edit_field(mode.prompt, key, character))
        elif mode.focus == SpawnField.LABEL:
            self.mode = dataclasses.replace(mode, label=edit_field(mode.label, key, character))
        return []

    def _submit_spawn(self, mode: Spawning) -> list[Intent]:
        if not mode.prompt.strip():
            self.mode = dataclasses.replace(mode, error="prompt is required")
            return []
        root = self.root_session()
        if root is None:
            self.mode = dataclasses.replace(mode, error="no main session found")
            return []
        model = ""
        if 0 < mode.model_index <= len(self.model_options):
            model = self.model_options[mode.model_index - 1].id
        self.spinning = True
        self.last_error = ""
        self.mode = Normal()
        return [SpawnSession(
            root_session_id=root.session_id,
            prompt=mode.prompt,
            model=model,
            label=mode.label,
        )]

    def _key_confirming(self, mode: Confirming, key: str) -> list[Intent]:
        if key == "y":
            self.mode = Normal()
            return [KillProcess(target=mode.target)]
        if key in ("n", "escape"):
            self.mode = Normal()
        return []

    def _key_normal(self, key: str) -> list[Intent]:
        in_logs = self.active_panel == Panel.LOGS

        if key in ("q", "ctrl+c"):
            return [Quit()]
        if key in ("up", "k"):
            if in_logs:
                self.buffer.scroll_up()
            else:
                self.move_cursor(-1)
        elif key in ("down", "j"):
            if in_logs:
                self.buffer.scroll_down()
            else:
                self.move_cursor(1)
        elif key == "pageup" and in_logs:
            self.buffer.page_up()
        elif key == "pagedown" and in_logs:
            self.buffer.page_down()
        elif key == "g" and in_logs:
            self.buffer.set_follow(False)
            self.buffer.scroll_to(ScrollTo.TOP)
        elif key == "G" and in_logs:
            self.buffer.set_follow(True)
        elif key == "tab":
            self.active_panel = Panel.LIST if in_logs else Panel.LOGS
        elif key in ("left", "h"):
            self.active_panel = Panel.LIST
        elif key in ("right", "l"):
            self.active_panel = Panel.LOGS
        elif key == "escape":
            self.active_panel = Panel.LIST
        elif key in ("1", "2", "3"):
            self.active_tab = Tab(int(key))
        elif key == "enter":
            return self._select()
        elif key == "x":
            target = self.selected_item_id()
            if target and self.active_tab == Tab.PROCESSES:
                self.mode = Confirming(target=target)
        elif key == "/":
            self.mode = Searching(field=self.filter)
        elif key == "f":
            self.buffer.toggle_follow()
        elif key == "v":
            self.verbose = self.verbose.next()
            self.rerender()
        elif key == "c":
            self.source_filter = next_source_filter(self.source_filter)
            self.rerender()
        elif key == "m":
            item = self.selected_item()
            if self.active_tab == Tab.SESSIONS and isinstance(item, Session):
                self.mode = Messaging(target_id=item.session_id, target_name=item.display_name)
        elif key == "s":
            self.mode = Spawning()
            return [FetchModels()]
        return []

    def _select(self) -> list[Intent]:
        item_id = self.selected_item_id()
        if not item_id:
            return []
        self.selected_id = item_id
        self.selected_tab = self.active_tab
        self.active_panel = Panel.LOGS
        self.cached_messages = []
        self.buffer.reset()
        return [self._fetch_log(time.monotonic())]

    def _fetch_log(self, now: float) -> FetchLog:
        self.last_log_fetch = now
        session_id = ""
        if self.selected_tab == Tab.SESSIONS:
            session = next((s for s in self.sessions if s.key == self.selected_id), None)
            session_id = session.session_id if session else ""
        return FetchLog(item_id=self.selected_id, tab=self.selected_tab or Tab.SESSIONS, session_id=session_id)

    def log_tick(self, now: float | None = None) -> list[Intent]:
        """Periodic log refresh: only while following, and throttled."""
        now = time.monotonic() if now is None else now
        if not self.selected_id or not self.buffer.follow:
            return []
        if now - self.last_log_fetch < self.log_interval:
            return []
        return [self._fetch_log(now)]

    def refresh_selected_log(self) -> list[Intent]:
        if not self.selected_id:
            return []
        return [self._fetch_log(time.monotonic())]

    # --- Results ----------------------------------------------------------

    def rerender(self) -> None:
        """Re-run the pipeline over cached messages after a verbosity/source change."""
        if self.selected_tab in (None, Tab.PROCESSES) or not self.cached_messages:
            return
        content, query = render_transcript(self.cached_messages, self.verbose, self.source_filter)
        self.buffer.update(content, query)
        if self.buffer.follow:
            self.buffer.scroll_to(ScrollTo.BOTTOM)

    def apply_sessions(self, sessions: list[Session]) -> None:
        self.sessions = sessions
        self.last_error = ""
        self.clamp_cursors()

    def apply_processes(self, processes: list[Process]) -> None:
        self.processes = processes
        self.last_error = ""
        self.clamp_cursors()

    def apply_archived(self, runs: list[ArchivedRun]) -> None:
        self.archived = runs
        self.clamp_cursors()

    def apply_health(self, health: Health) -> None:
        self.health = health
        self.last_error = ""

    def apply_transcript(self, messages: list[CanonicalMessage]) -> bool:
        self.cached_messages = messages
        content, query = render_transcript(messages, self.verbose, self.source_filter)
        return self.buffer.update(content, query)

    def apply_process_log(self, text: str) -> bool:
        self.cached_messages = []
        content, query = render_process_log(text)
        return self.buffer.update(content, query)

    def apply_reply(self, reply: str) -> list[Intent]:
        self.sending = False
        self.buffer.append(clean_content(f"\n─── SENT ───\n{reply}\n"))
        if self.buffer.follow:
            self.buffer.scroll_to(ScrollTo.BOTTOM)
        return self.refresh_selected_log()

    def apply_spawned(self, result: SpawnResult) -> None:
        self.spinning = False
        self.last_error = ""
        if result.session_id:
            self.notice = f"Spawned: {result.session_id}"

    def apply_models(self, options: list[ModelOption]) -> None:
        self.model_options = options
        if isinstance(self.mode, Spawning):
            self.mode = dataclasses.replace(self.mode, model_index=0)

    def apply_error(self, message: str) -> None:
        self.sending = False
        self.spinning = False
        self.last_error = message
        logger.debug(f"Dashboard error: {message}")

    # --- Rendering surface ------------------------------------------------

    def status_line(self) -> StatusLine:
        busy = ""
        if self.sending:
            busy = f"sending to {self.sending_to}..."
        elif self.spinning:
            busy = "spawning..."
        confirm = ""
        if isinstance(self.mode, Confirming):
            confirm = f"Kill {self.mode.target}? [y/n]"
        return StatusLine(error=self.last_error, notice=self.notice, busy=busy, confirm=confirm)
