"""oclaw - A terminal dashboard for OpenClaw agent sessions."""

try:
    from importlib.metadata import version

    __version__ = version("oclaw")
except Exception:
    __version__ = "0.0.0+unknown"
