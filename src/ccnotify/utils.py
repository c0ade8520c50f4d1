"""Shared utility functions used across multiple CCNotify modules.

Provides:
  - ccnotify_dir(): resolve state directory from CCNOTIFY_DIR env var.
  - atomic_write_json(): crash-safe JSON file writes via temp+rename.
  - parse_window_handle(): validate a window handle from text or JSON.
  - run_query(): time-bounded subprocess call for OS state queries.
"""

import base64
import json
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Any

from .errors import StrategyTimeout, StrategyUnavailable

CCNOTIFY_DIR_ENV = "CCNOTIFY_DIR"


def ccnotify_dir() -> Path:
    """Resolve state directory from CCNOTIFY_DIR env var or default ~/.ccnotify."""
    raw = os.environ.get(CCNOTIFY_DIR_ENV, "")
    return Path(raw) if raw else Path.home() / ".ccnotify"


def atomic_write_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write JSON data to a file atomically.

    Writes to a temporary file in the same directory, then renames it
    to the target path. Readers never observe a half-written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=indent)

    # Same directory as the target so os.replace stays on one filesystem
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), suffix=".tmp", prefix=f".{path.name}."
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def parse_window_handle(value: Any) -> int | None:
    """Return a positive integer window handle, or None if value isn't one.

    Accepts ints and decimal or 0x-prefixed hex strings (wmctrl and xdotool
    report X11 window ids in hex).
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        handle = int(text, 16) if text.lower().startswith("0x") else int(text)
    except ValueError:
        return None
    return handle if handle > 0 else None


# Hide the console flash when shelling out to powershell from a hook
_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)


def run_query(args: list[str], timeout: float) -> str:
    """Run an OS query command and return its stdout.

    Raises StrategyTimeout when the bound expires (the child is killed and
    abandoned) and StrategyUnavailable when the tool is missing or exits
    non-zero. Output is decoded as UTF-8; undecodable bytes (a Latin-1
    window title, say) become U+FFFD instead of failing the query.
    """
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
            creationflags=_NO_WINDOW,
        )
    except subprocess.TimeoutExpired as e:
        raise StrategyTimeout(f"{args[0]} timed out after {timeout}s") from e
    except OSError as e:
        raise StrategyUnavailable(f"{args[0]}: {e}") from e
    if result.returncode != 0:
        raise StrategyUnavailable(
            f"{args[0]} exited {result.returncode}: {result.stderr.strip()[:200]}"
        )
    return result.stdout


def powershell_command(script: str) -> list[str]:
    """Build a non-interactive Windows PowerShell invocation for a script.

    The script travels base64-encoded (UTF-16LE) so quotes and here-strings
    survive Windows command-line quoting untouched.
    """
    encoded = base64.b64encode(script.encode("utf-16-le")).decode("ascii")
    return ["powershell", "-NoProfile", "-NonInteractive", "-EncodedCommand", encoded]
