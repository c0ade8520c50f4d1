"""Desktop notification sink — hand a message and window to the OS.

The sink is best-effort and time-bounded: every platform call runs with
sink_timeout, and any failure is logged and swallowed so the hook still
exits cleanly.

  - Windows: writes <CCNOTIFY_DIR>/notify-data-<session>.json and runs the
    toast script (PowerShell 7 if installed, else Windows PowerShell),
    which reads the file and flashes the target window. Falls back to a
    plain BurntToast toast when the script is missing or fails.
  - macOS: terminal-notifier if installed, else osascript.
  - Linux: notify-send.

The data file is per session so concurrent sessions never read each
other's message.

Key class: DesktopSink.
"""

import logging
import re
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Protocol

from .config import Config
from .utils import atomic_write_json

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = "Claude Code"

_PWSH7 = Path(r"C:\Program Files\PowerShell\7\pwsh.exe")
_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]")
_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)


class NotificationSink(Protocol):
    def notify(
        self, message: str, window_handle: int | None, cwd: str, session_id: str
    ) -> bool: ...


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


class DesktopSink:
    """Platform desktop notifications."""

    def __init__(self, config: Config, platform: str = sys.platform) -> None:
        self.config = config
        self.platform = platform

    def _run(self, args: list[str], cwd: Path | None = None) -> bool:
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.config.sink_timeout,
                check=False,
                cwd=str(cwd) if cwd else None,
                creationflags=_NO_WINDOW,
            )
        except subprocess.TimeoutExpired:
            logger.warning(
                "%s timed out after %ss", args[0], self.config.sink_timeout
            )
            return False
        except OSError as e:
            logger.warning("Failed to run %s: %s", args[0], e)
            return False
        if result.returncode != 0:
            logger.warning(
                "%s exited %d: %s", args[0], result.returncode, result.stderr.strip()
            )
            return False
        return True

    def data_file(self, session_id: str) -> Path:
        safe = _UNSAFE_FILENAME_RE.sub("_", session_id) or "default"
        return self.config.config_dir / f"notify-data-{safe}.json"

    def notify(
        self, message: str, window_handle: int | None, cwd: str, session_id: str
    ) -> bool:
        """Show a notification; returns whether the platform call succeeded."""
        logger.info(
            "Notifying: %r (hwnd=%s, cwd=%s, session=%s)",
            message,
            window_handle,
            cwd,
            session_id,
        )
        if self.platform == "win32":
            return self._notify_windows(message, window_handle, cwd, session_id)
        if self.platform == "darwin":
            return self._notify_macos(message)
        return self._notify_linux(message)

    def _notify_windows(
        self, message: str, window_handle: int | None, cwd: str, session_id: str
    ) -> bool:
        data_file = self.data_file(session_id)
        try:
            atomic_write_json(
                data_file,
                {
                    "message": message,
                    "wtWindowHandle": window_handle,
                    "cwd": cwd,
                    "sessionId": session_id,
                },
            )
        except OSError as e:
            logger.warning("Failed to write %s: %s", data_file, e)
            return self._burnt_toast(message)

        script = self.config.toast_script
        if not script.is_file():
            logger.warning("Toast script %s not found, using plain toast", script)
            return self._burnt_toast(message)

        shell = str(_PWSH7) if _PWSH7.exists() else "powershell"
        ok = self._run(
            [
                shell,
                "-NoProfile",
                "-ExecutionPolicy",
                "Bypass",
                "-File",
                str(script),
                "-SessionId",
                session_id,
                "-DataFile",
                str(data_file),
            ],
            cwd=self.config.config_dir,
        )
        return ok or self._burnt_toast(message)

    def _burnt_toast(self, message: str) -> bool:
        quoted = message.replace("'", "''")
        return self._run(
            [
                "powershell",
                "-NoProfile",
                "-Command",
                f"New-BurntToastNotification -Text '{NOTIFICATION_TITLE}', '{quoted}'",
            ]
        )

    def _notify_macos(self, message: str) -> bool:
        notifier = shutil.which("terminal-notifier")
        if notifier:
            return self._run(
                [notifier, "-title", NOTIFICATION_TITLE, "-message", message]
            )
        script = (
            f"display notification {_applescript_quote(message)} "
            f"with title {_applescript_quote(NOTIFICATION_TITLE)}"
        )
        return self._run(["osascript", "-e", script])

    def _notify_linux(self, message: str) -> bool:
        notify_send = shutil.which("notify-send")
        if notify_send is None:
            logger.warning("notify-send not found, skipping notification")
            return False
        return self._run([notify_send, NOTIFICATION_TITLE, message])
