"""HTTP and CLI client for the OpenClaw gateway.

Every call here blocks; the app runs them on a worker pool and posts the
results back to the UI thread.
"""

import json
import logging
import subprocess
import time
from pathlib import Path
from typing import Any

import requests

from .config import Config, OPENCLAW_CONFIG_FILE
from .formatting import strip_ansi
from .models import (
    ArchivedRun,
    CanonicalMessage,
    Health,
    ModelOption,
    Process,
    Session,
    SpawnResult,
    _truncate,
)
from .transcript import normalize_records, read_transcript, read_transcript_label

logger = logging.getLogger(__name__)

OPENCLAW_DIR = Path.home() / ".openclaw"
PROCESS_LIST_FILE = OPENCLAW_DIR / "process-list.json"
SESSIONS_DIR = OPENCLAW_DIR / "agents" / "main" / "sessions"

PROCESS_MARKERS = ("claude", "openclaw", "oclaw")
PROCESS_NOISE = ("chrome", "chromium", "firefox", "electron")
COMMAND_MAX_LEN = 60
CLI_TIMEOUT = 300


class GatewayError(Exception):
    """Raised when a gateway call, its response, or a CLI action fails."""


class AccessDeniedError(GatewayError):
    """Raised when the gateway refuses to show a session's history."""


def _is_access_denied(status: int, text: str) -> bool:
    lower = text.lower()
    return status == 403 or "forbidden" in lower or "visibility" in lower


def _text_content(result: Any) -> str:
    """Concatenate the text items of a tool result's content list."""
    if not isinstance(result, dict):
        return ""
    content = result.get("content")
    if not isinstance(content, list):
        return ""
    return "".join(
        item.get("text", "") for item in content
        if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
    )


def parse_ps_output(output: str) -> list[Process]:
    """Pick OpenClaw-related processes out of ``ps axo pid,etime,command``."""
    procs: list[Process] = []
    for line in output.split("\n"):
        line = line.strip()
        lower = line.lower()
        if not any(marker in lower for marker in PROCESS_MARKERS):
            continue
        if any(noise in lower for noise in PROCESS_NOISE):
            continue
        if line.startswith("PID") or "ps axo" in line:
            continue
        fields = line.split()
        if len(fields) < 3:
            continue
        procs.append(Process(
            session_name=f"pid:{fields[0]}",
            status="running",
            runtime=fields[1],
            command=_truncate(" ".join(fields[2:]), COMMAND_MAX_LEN),
        ))
    return procs


def parse_model_options(data: Any) -> list[ModelOption]:
    """Primary model first, then fallbacks, then the rest of the models map."""
    defaults = {}
    if isinstance(data, dict):
        defaults = data.get("agents", {}).get("defaults", {}) or {}
    model_cfg = defaults.get("model", {}) or {}
    models = defaults.get("models", {}) or {}

    def alias_of(model_id: str) -> str:
        entry = models.get(model_id)
        return entry.get("alias", "") if isinstance(entry, dict) else ""

    ordered: list[str] = []
    primary = model_cfg.get("primary")
    if isinstance(primary, str) and primary:
        ordered.append(primary)
    for fallback in model_cfg.get("fallbacks", []) or []:
        if isinstance(fallback, str) and fallback:
            ordered.append(fallback)
    ordered.extend(models)

    options: list[ModelOption] = []
    seen: set[str] = set()
    for model_id in ordered:
        if model_id in seen:
            continue
        seen.add(model_id)
        options.append(ModelOption(id=model_id, alias=alias_of(model_id)))
    return options


def find_archived_runs(sessions_dir: Path, active: list[Session]) -> list[ArchivedRun]:
    """Transcript files on disk whose session is no longer active, newest first."""
    try:
        entries = list(sessions_dir.iterdir())
    except OSError:
        return []

    active_ids = {s.session_id for s in active if s.session_id}
    runs: list[ArchivedRun] = []
    for path in entries:
        if path.suffix != ".jsonl" or not path.is_file():
            continue
        if path.stem in active_ids:
            continue
        try:
            stat = path.stat()
        except OSError:
            continue
        runs.append(ArchivedRun(
            session_id=path.stem,
            label=read_transcript_label(path),
            size=stat.st_size,
            modified_at=int(stat.st_mtime * 1000),
            path=str(path),
        ))
    runs.sort(key=lambda r: r.modified_at, reverse=True)
    return runs


class GatewayClient:
    """Talks to the gateway's ``/tools/invoke`` endpoint and the ``openclaw`` CLI."""

    def __init__(
        self,
        config: Config,
        sessions_dir: Path = SESSIONS_DIR,
        process_list_file: Path = PROCESS_LIST_FILE,
        openclaw_config_file: Path = OPENCLAW_CONFIG_FILE,
    ):
        self.base_url = config.gateway_url.rstrip("/")
        self.timeout = config.request_timeout
        self.sessions_dir = sessions_dir
        self.process_list_file = process_list_file
        self.openclaw_config_file = openclaw_config_file
        self._http = requests.Session()
        self._http.headers["Content-Type"] = "application/json"
        if config.token:
            self._http.headers["Authorization"] = f"Bearer {config.token}"

    def close(self) -> None:
        self._http.close()

    # --- Gateway API ------------------------------------------------------

    def invoke(self, tool: str, args: dict[str, Any]) -> Any:
        """Call a gateway tool and return its ``result`` payload.

        Raises:
            AccessDeniedError: If the gateway refuses access.
            GatewayError: On network errors, non-200 responses or bad JSON.
        """
        try:
            response = self._http.post(
                f"{self.base_url}/tools/invoke",
                json={"tool": tool, "args": args},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            raise GatewayError("gateway request timed out")
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"gateway request: {e}")

        if response.status_code != 200:
            body = response.text.strip()
            if _is_access_denied(response.status_code, body):
                raise AccessDeniedError(f"gateway {response.status_code}: {body}")
            raise GatewayError(f"gateway {response.status_code}: {body}")

        try:
            data = response.json()
        except ValueError as e:
            raise GatewayError(f"parse {tool} response: {e}")
        if not isinstance(data, dict):
            raise GatewayError(f"{tool}: unexpected response shape")
        if not data.get("ok"):
            error = data.get("error")
            text = json.dumps(error) if isinstance(error, (dict, list)) else str(error or "")
            if _is_access_denied(0, text):
                raise AccessDeniedError(f"{tool}: {text}")
            raise GatewayError(f"{tool}: API returned ok=false")
        return data.get("result")

    def fetch_sessions(self) -> list[Session]:
        result = self.invoke("sessions_list", {})
        details = result.get("details") if isinstance(result, dict) else None
        raw = details.get("sessions") if isinstance(details, dict) else None
        if not isinstance(raw, list):
            raise GatewayError("parse sessions result: no sessions list")

        sessions: list[Session] = []
        dropped = 0
        for entry in raw:
            try:
                sessions.append(Session.from_dict(entry))
            except ValueError:
                dropped += 1
        if dropped:
            logger.warning(f"Dropped {dropped} malformed session entries")
        return sessions

    def fetch_transcript_messages(self, key: str, limit: int = 200, session_id: str = "") -> list[CanonicalMessage]:
        """History for a session, falling back to its transcript file when access is denied."""
        try:
            result = self.invoke("sessions_history", {
                "sessionKey": key,
                "limit": limit,
                "includeTools": True,
            })
        except AccessDeniedError as e:
            if not session_id:
                raise
            logger.debug(f"History for {key} denied ({e}), reading transcript file")
            return self.read_transcript_file(self.sessions_dir / f"{session_id}.jsonl")

        details = result.get("details") if isinstance(result, dict) else None
        raw = details.get("messages") if isinstance(details, dict) else None
        if not isinstance(raw, list):
            raise GatewayError("parse history details: no messages list")
        normalized = normalize_records(raw)
        if normalized.skipped:
            logger.debug(f"Dropped {normalized.skipped} malformed history records for {key}")
        return normalized.messages

    def read_transcript_file(self, path: str | Path) -> list[CanonicalMessage]:
        try:
            return read_transcript(path).messages
        except OSError as e:
            raise GatewayError(f"read transcript {Path(path).name}: {e}")

    def fetch_process_log(self, process_id: str, limit: int = 200) -> str:
        try:
            result = self.invoke("process", {
                "action": "log",
                "sessionId": process_id,
                "limit": limit,
            })
        except GatewayError as e:
            raise GatewayError(f"process log unavailable: {e}")
        return strip_ansi(_text_content(result))

    def kill_process(self, process_id: str) -> None:
        self.invoke("process", {"action": "kill", "sessionId": process_id})

    def fetch_health(self) -> Health:
        start = time.monotonic()
        try:
            response = self._http.get(f"{self.base_url}/health", timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"health check: {e}")
        duration_ms = int((time.monotonic() - start) * 1000)
        return Health(
            ok=response.status_code == 200,
            duration_ms=duration_ms,
            ts=int(time.time() * 1000),
        )

    # --- Local state ------------------------------------------------------

    def fetch_processes(self) -> list[Process]:
        """Processes from the agent-maintained list, else a ``ps`` scan."""
        procs = self._read_process_list()
        if procs:
            return procs
        try:
            result = subprocess.run(
                ["ps", "axo", "pid,etime,command"],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"ps scan failed: {e}")
            return []
        return parse_ps_output(result.stdout)

    def _read_process_list(self) -> list[Process]:
        try:
            with open(self.process_list_file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError):
            return []
        entries = data.get("processes") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            return []
        return [
            Process(
                session_name=str(p.get("name", "")),
                status=str(p.get("status", "")),
                runtime=str(p.get("runtime", "")),
                command=str(p.get("command", "")),
            )
            for p in entries
            if isinstance(p, dict) and p.get("name")
        ]

    def fetch_archived_runs(self, active: list[Session]) -> list[ArchivedRun]:
        return find_archived_runs(self.sessions_dir, active)

    def fetch_configured_models(self) -> list[ModelOption]:
        try:
            with open(self.openclaw_config_file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise GatewayError(f"models: {e}")
        return parse_model_options(data)

    # --- openclaw CLI -----------------------------------------------------

    def _run_agent(self, args: list[str]) -> str:
        try:
            result = subprocess.run(
                ["openclaw", "agent", *args, "--json"],
                capture_output=True,
                text=True,
                timeout=CLI_TIMEOUT,
            )
        except FileNotFoundError:
            raise GatewayError("openclaw agent: openclaw is not installed or not on PATH")
        except (subprocess.TimeoutExpired, OSError) as e:
            raise GatewayError(f"openclaw agent: {e}")
        output = (result.stdout + result.stderr).strip()
        if result.returncode != 0:
            raise GatewayError(f"openclaw agent: {output}")
        return result.stdout

    def send_message(self, session_id: str, text: str) -> str:
        """Send a message to a session and return the agent's reply output."""
        return self._run_agent(["--session-id", session_id, "--message", text]).strip()

    def spawn_session(self, root_session_id: str, prompt: str, model: str = "", label: str = "") -> SpawnResult:
        """Start a new agent run.

        The CLI always runs under the main agent's configured model; ``model``
        is carried on the result for display only.
        """
        args = ["--message", prompt]
        if label:
            args += ["--session-id", label]
        logger.info(f"Spawning agent from {root_session_id} (label={label or '-'})")
        output = self._run_agent(args)

        result = SpawnResult(label=label, model=model)
        try:
            data = json.loads(output)
        except json.JSONDecodeError:
            return result
        if isinstance(data, dict):
            result.session_id = str(data.get("sessionId") or data.get("session") or "")
        return result
