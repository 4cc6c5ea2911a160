"""Configuration management for oclaw."""

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# Use tomllib on Python 3.11+, fall back to tomli for 3.10
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomli_w

from .models import VerboseLevel

logger = logging.getLogger(__name__)

DEFAULT_GATEWAY_URL = "http://127.0.0.1:18789"

# Config file path
CONFIG_DIR = Path.home() / ".oclaw"
CONFIG_FILE = CONFIG_DIR / "config.toml"
# Written by OpenClaw itself; we only read the gateway token and model list from it
OPENCLAW_CONFIG_FILE = Path.home() / ".openclaw" / "openclaw.json"

_TRUTHY = ("true", "1", "yes")


@dataclass
class PollConfig:
    """Polling cadences, in seconds."""

    sessions: float = 5.0
    processes: float = 3.0
    health: float = 30.0
    logs: float = 2.0         # Also the minimum gap between two log fetches


@dataclass
class Config:
    """oclaw configuration."""

    gateway_url: str = DEFAULT_GATEWAY_URL
    token: str = ""                     # Never written to the config file
    verbose: VerboseLevel = VerboseLevel.SUMMARY
    debug_logging: bool = False         # Enable debug logging to file (opt-in)
    request_timeout: float = 10.0
    history_limit: int = 200
    poll: PollConfig = field(default_factory=PollConfig)


def _read_toml(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Ignoring unreadable config {path}: {e}")
        return None


def read_openclaw_token(path: Path = OPENCLAW_CONFIG_FILE) -> str:
    """Gateway token from OpenClaw's own config (``gateway.auth.token``)."""
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return ""
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable OpenClaw config {path}: {e}")
        return ""
    try:
        token = data["gateway"]["auth"]["token"]
    except (KeyError, TypeError):
        return ""
    return token if isinstance(token, str) else ""


def load_config(
    url: str | None = None,
    token: str | None = None,
    config_file: Path = CONFIG_FILE,
    openclaw_config_file: Path = OPENCLAW_CONFIG_FILE,
) -> Config:
    """Load configuration from flags, environment, files, or defaults.

    Priority (highest to lowest):
    1. Explicit flag values (url, token)
    2. Environment variables (OPENCLAW_GATEWAY_TOKEN, OPENCLAW_GATEWAY_URL, OCLAW_*)
    3. Gateway token from ~/.openclaw/openclaw.json
    4. Config file (~/.oclaw/config.toml)
    5. Hardcoded defaults
    """
    config = Config()

    data = _read_toml(config_file)
    if data is not None:
        config.gateway_url = data.get("gateway_url", config.gateway_url)
        config.verbose = VerboseLevel.parse(data.get("verbose"), config.verbose)
        config.debug_logging = data.get("debug_logging", config.debug_logging)
        config.request_timeout = data.get("request_timeout", config.request_timeout)
        config.history_limit = data.get("history_limit", config.history_limit)

        poll_data = data.get("poll", {})
        if poll_data:
            config.poll = PollConfig(
                sessions=poll_data.get("sessions", 5.0),
                processes=poll_data.get("processes", 3.0),
                health=poll_data.get("health", 30.0),
                logs=poll_data.get("logs", 2.0),
            )

    config.token = read_openclaw_token(openclaw_config_file) or config.token

    # Environment variables override files
    config.token = os.getenv("OPENCLAW_GATEWAY_TOKEN") or config.token
    config.gateway_url = os.getenv("OPENCLAW_GATEWAY_URL") or config.gateway_url
    debug_logging_env = os.getenv("OCLAW_DEBUG_LOGGING")
    if debug_logging_env is not None:
        config.debug_logging = debug_logging_env.lower() in _TRUTHY
    config.verbose = VerboseLevel.parse(os.getenv("OCLAW_VERBOSE"), config.verbose)

    # CLI flags override everything
    if token:
        config.token = token
    if url:
        config.gateway_url = url

    return config


def save_config(config: Config, config_file: Path = CONFIG_FILE) -> None:
    """Save configuration to file.

    Note: the gateway token is never saved to the config file.
    """
    config_file.parent.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "gateway_url": config.gateway_url,
        "verbose": config.verbose.value,
        "debug_logging": config.debug_logging,
        "request_timeout": config.request_timeout,
        "history_limit": config.history_limit,
    }

    # Save poll cadences only if non-default
    if config.poll != PollConfig():
        data["poll"] = {
            "sessions": config.poll.sessions,
            "processes": config.poll.processes,
            "health": config.poll.health,
            "logs": config.poll.logs,
        }

    with open(config_file, "wb") as f:
        tomli_w.dump(data, f)
