"""Tests for the Textual app wiring: polling, keys, background results."""

import pytest

from oclaw.client import GatewayError
from oclaw.config import Config
from oclaw.interaction import Confirming, Normal, Spawning, Tab
from oclaw.models import CanonicalMessage, Health, ModelOption, Process, Session, SpawnResult
from oclaw.tui_textual import OclawApp, OverlayPanel, log_viewport_size


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.shut_down = False

    def submit(self, fn, *args, **kwargs):
        fn(*args, **kwargs)

    def shutdown(self, wait=True, cancel_futures=False):
        self.shut_down = True


class StubClient:
    """In-memory stand-in for GatewayClient that records its calls."""

    def __init__(self, health_error=None, models_error=None):
        self.sessions = [
            Session(key="agent:main:main", kind="main", session_id="root-1", model="anthropic/claude-sonnet-4"),
            Session(key="agent:main:signal:+1555", kind="group", channel="signal", session_id="s2"),
        ]
        self.processes = [Process(session_name="pid:42", status="running", runtime="01:00", command="openclaw gateway")]
        self.health_error = health_error
        self.models_error = models_error
        self.history_calls = []
        self.sent = []
        self.spawned = []
        self.killed = []
        self.closed = False

    def fetch_sessions(self):
        return list(self.sessions)

    def fetch_processes(self):
        return list(self.processes)

    def fetch_health(self):
        if self.health_error:
            raise GatewayError(self.health_error)
        return Health(ok=True, duration_ms=3, ts=0)

    def fetch_archived_runs(self, active):
        return []

    def fetch_transcript_messages(self, key, limit=200, session_id=""):
        self.history_calls.append((key, limit, session_id))
        return [
            CanonicalMessage(role="user", text="What is running?"),
            CanonicalMessage(role="assistant", text="hello there"),
        ]

    def read_transcript_file(self, path):
        return []

    def fetch_process_log(self, process_id, limit=200):
        return "\x1b[1mbuilding\x1b[0m\ndone"

    def kill_process(self, process_id):
        self.killed.append(process_id)
        self.processes = []

    def fetch_configured_models(self):
        if self.models_error:
            raise GatewayError(self.models_error)
        return [ModelOption(id="openai/gpt-4o", alias="4o")]

    def send_message(self, session_id, text):
        self.sent.append((session_id, text))
        return "ack"

    def spawn_session(self, root_session_id, prompt, model="", label=""):
        self.spawned.append((root_session_id, prompt, model, label))
        return SpawnResult(session_id="new-1", label=label, model=model)

    def close(self):
        self.closed = True


def _make_app(client=None, executor=None):
    return OclawApp(
        client=client or StubClient(),
        config=Config(),
        executor=executor or InlineExecutor(),
    )


def test_log_viewport_size():
    assert log_viewport_size(120, 30) == (120 - 46 - 6, 26)
    assert log_viewport_size(10, 2) == (20, 1)


@pytest.mark.asyncio
async def test_mount_polls_everything():
    app = _make_app()

    async with app.run_test(size=(120, 30)) as pilot:
        await pilot.pause()
        assert [s.key for s in app.dashboard.sessions] == ["agent:main:main", "agent:main:signal:+1555"]
        assert [p.session_name for p in app.dashboard.processes] == ["pid:42"]
        assert app.dashboard.health.ok is True
        assert app.dashboard.buffer.viewport.width == log_viewport_size(120, 30)[0]


@pytest.mark.asyncio
async def test_enter_loads_transcript():
    client = StubClient()
    app = _make_app(client)

    async with app.run_test(size=(120, 30)) as pilot:
        await pilot.pause()
        await pilot.press("enter")
        await pilot.pause()

        assert client.history_calls == [("agent:main:main", 200, "root-1")]
        assert app.dashboard.selected_id == "agent:main:main"
        assert "hello there" in app.dashboard.buffer.content
        assert app.dashboard.buffer.query == "What is running?"


@pytest.mark.asyncio
async def test_process_tab_loads_log():
    app = _make_app()

    async with app.run_test(size=(120, 30)) as pilot:
        await pilot.pause()
        await pilot.press("2", "enter")
        await pilot.pause()

        assert app.dashboard.active_tab == Tab.PROCESSES
        assert app.dashboard.buffer.content == "building\ndone"


@pytest.mark.asyncio
async def test_search_overlay():
    app = _make_app()

    async with app.run_test(size=(120, 30)) as pilot:
        await pilot.pause()
        overlay = app.query_one("#overlay", OverlayPanel)
        assert not overlay.has_class("visible")

        await pilot.press("slash")
        await pilot.pause()
        assert overlay.has_class("visible")

        await pilot.press("s", "i", "g", "enter")
        await pilot.pause()
        assert not overlay.has_class("visible")
        assert app.dashboard.filter == "sig"
        assert [s.session_id for s in app.dashboard.filtered_sessions()] == ["s2"]


@pytest.mark.asyncio
async def test_send_message():
    client = StubClient()
    app = _make_app(client)

    async with app.run_test(size=(120, 30)) as pilot:
        await pilot.pause()
        await pilot.press("j", "m", "h", "i", "enter")
        await pilot.pause()

        assert client.sent == [("s2", "hi")]
        assert app.dashboard.sending is False
        assert isinstance(app.dashboard.mode, Normal)


@pytest.mark.asyncio
async def test_spawn_agent():
    client = StubClient()
    app = _make_app(client)

    async with app.run_test(size=(120, 30)) as pilot:
        await pilot.pause()
        await pilot.press("s")
        await pilot.pause()
        assert app.dashboard.model_options == [ModelOption(id="openai/gpt-4o", alias="4o")]

        await pilot.press("g", "o", "tab", "down", "enter")
        await pilot.pause()

        assert client.spawned == [("root-1", "go", "openai/gpt-4o", "")]
        assert app.dashboard.notice == "Spawned: new-1"
        assert app.dashboard.spinning is False


@pytest.mark.asyncio
async def test_kill_requires_confirmation():
    client = StubClient()
    app = _make_app(client)

    async with app.run_test(size=(120, 30)) as pilot:
        await pilot.pause()
        await pilot.press("2", "x")
        await pilot.pause()
        assert app.dashboard.mode == Confirming(target="pid:42")
        assert client.killed == []

        await pilot.press("y")
        await pilot.pause()
        assert client.killed == ["pid:42"]
        assert app.dashboard.processes == []


@pytest.mark.asyncio
async def test_failed_call_shows_error():
    app = _make_app(StubClient(health_error="connection refused"))

    async with app.run_test(size=(120, 30)) as pilot:
        await pilot.pause()
        assert app.dashboard.last_error == "health: connection refused"
        assert app.dashboard.status_line().error == "health: connection refused"


@pytest.mark.asyncio
async def test_unmount_releases_resources():
    client = StubClient()
    executor = InlineExecutor()
    app = _make_app(client, executor)

    async with app.run_test(size=(120, 30)) as pilot:
        await pilot.pause()

    assert client.closed is True
    assert executor.shut_down is True


@pytest.mark.asyncio
async def test_missing_model_config_is_not_an_error():
    client = StubClient(models_error="models: no such file")
    app = _make_app(client)

    async with app.run_test(size=(120, 30)) as pilot:
        await pilot.pause()
        app.dashboard.sending = True
        app.dashboard.sending_to = "group#s2"
        await pilot.press("s")
        await pilot.pause()

        assert isinstance(app.dashboard.mode, Spawning)
        assert app.dashboard.model_options == []
        assert app.dashboard.last_error == ""
        assert app.dashboard.sending is True
