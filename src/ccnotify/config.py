"""Application configuration — reads env vars with .env support.

Loads the state directory, the window-handle hint, registry retention,
OS query timeouts and terminal-emulator signatures from environment
variables. .env loading priority: local .env (cwd) > $CCNOTIFY_DIR/.env
(default ~/.ccnotify).

Unlike a bot config, nothing here is required: hooks run inside arbitrary
terminals and must never fail on a missing or malformed setting, so bad
values log a warning and fall back to their defaults.

Key class: Config.
"""

import logging
import os
import sys
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

from .utils import ccnotify_dir, parse_window_handle

logger = logging.getLogger(__name__)

DEFAULT_HINT_VAR = "CLAUDE_WT_HWND"
DEFAULT_RETENTION_DAYS = 7.0
DEFAULT_QUERY_TIMEOUT = 3.0
DEFAULT_SINK_TIMEOUT = 5.0
DEFAULT_LOCK_TIMEOUT = 5.0
DEFAULT_RESOLVE_BUDGET = 6.0

_COMM_LEN = 15

_WINDOWS_TERMINALS = ("WindowsTerminal.exe",)
_WINDOWS_WINDOW_CLASS = "CASCADIA_HOSTING_WINDOW_CLASS"

_MACOS_TERMINALS = ("Terminal", "iTerm2")

_LINUX_TERMINALS = (
    "gnome-terminal-server",
    "konsole",
    "xterm",
    "alacritty",
    "kitty",
    "wezterm-gui",
    "xfce4-terminal",
    "tilix",
    "terminator",
)


def default_terminal_names(platform: str = sys.platform) -> tuple[str, ...]:
    """Terminal-host process names for the given platform."""
    if platform == "win32":
        return _WINDOWS_TERMINALS
    if platform == "darwin":
        return _MACOS_TERMINALS
    return _LINUX_TERMINALS


def default_window_class(platform: str = sys.platform) -> str:
    """Window class signature of the terminal emulator ("" matches any)."""
    if platform == "win32":
        return _WINDOWS_WINDOW_CLASS
    return ""


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%r, using %s", name, raw, default)
        return default
    return value


class Config:
    """Hook configuration loaded from environment variables."""

    def __init__(self) -> None:
        self.config_dir = ccnotify_dir()

        # Load .env: local (cwd) takes priority over config_dir
        # load_dotenv default override=False means first-loaded wins
        local_env = Path(".env")
        global_env = self.config_dir / ".env"
        if local_env.is_file():
            load_dotenv(local_env)
            logger.debug("Loaded env from %s", local_env.resolve())
        if global_env.is_file():
            load_dotenv(global_env)
            logger.debug("Loaded env from %s", global_env)

        # The hint is read once here, at process start
        self.hint_var = os.getenv("CCNOTIFY_HINT_VAR") or DEFAULT_HINT_VAR
        self.window_hint: str | None = os.getenv(self.hint_var) or None
        if self.window_hint and parse_window_handle(self.window_hint) is None:
            logger.warning(
                "%s=%r is not a window handle, ignoring", self.hint_var, self.window_hint
            )

        self.retention = timedelta(
            days=_float_env("CCNOTIFY_RETENTION_DAYS", DEFAULT_RETENTION_DAYS)
        )
        self.query_timeout = _float_env("CCNOTIFY_QUERY_TIMEOUT", DEFAULT_QUERY_TIMEOUT)
        self.sink_timeout = _float_env("CCNOTIFY_SINK_TIMEOUT", DEFAULT_SINK_TIMEOUT)
        self.lock_timeout = _float_env("CCNOTIFY_LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT)
        # Strategies are not started once this much of a resolution has elapsed
        self.resolve_budget = _float_env(
            "CCNOTIFY_RESOLVE_BUDGET", DEFAULT_RESOLVE_BUDGET
        )

        names = os.getenv("CCNOTIFY_TERMINAL_NAMES", "")
        self.terminal_names: tuple[str, ...] = (
            tuple(n.strip() for n in names.split(",") if n.strip())
            or default_terminal_names()
        )
        window_class = os.getenv("CCNOTIFY_WINDOW_CLASS")
        self.window_class = (
            window_class if window_class is not None else default_window_class()
        )

        # All state files live under config_dir
        self.registry_file = self.config_dir / "session_registry.json"
        self.lock_file = self.config_dir / "session_registry.lock"
        self.log_file = self.config_dir / "logs" / "ccnotify.log"
        toast_script = os.getenv("CCNOTIFY_TOAST_SCRIPT", "")
        self.toast_script = (
            Path(toast_script).expanduser()
            if toast_script
            else self.config_dir / "scripts" / "notify-toast.ps1"
        )

        logger.debug(
            "Config initialized: dir=%s, hint_var=%s, hint=%s, terminals=%s, class=%r",
            self.config_dir,
            self.hint_var,
            self.window_hint,
            ",".join(self.terminal_names),
            self.window_class,
        )

    @property
    def hint_handle(self) -> int | None:
        """The environment hint as a window handle, if it parses as one."""
        return parse_window_handle(self.window_hint)

    def is_terminal_host(self, process_name: str) -> bool:
        """Check whether a process name is one of the terminal-host names."""
        name = process_name.lower()
        for terminal in self.terminal_names:
            candidate = terminal.lower()
            if name == candidate:
                return True
            # Linux ps truncates comm to 15 chars (gnome-terminal-server)
            if len(name) == _COMM_LEN and candidate.startswith(name):
                return True
        return False
