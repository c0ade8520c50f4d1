"""Hook subcommand for Claude Code session events.

Called by Claude Code's SessionStart, Stop and Notification hooks with
the event JSON on stdin:
  - SessionStart: resolve the terminal window hosting the session and
    register session_id -> window handle in the session registry.
  - Stop / Notification: look up (or re-resolve) the session's window and
    show a desktop notification targeted at it.

The hook never fails its caller: every problem is logged and the process
exits 0, so a broken notification can't interrupt a session.

Also provides `--install` / `--uninstall` / `--status` to manage the hook
entries in ~/.claude/settings.json.

Key functions: hook_main() (CLI entry), dispatch_event(), _install_hook().
"""

import json
import logging
import os
import re
import shutil
import sys
from pathlib import Path
from typing import Any

from .config import Config
from .notify_message import extract_message
from .resolver import (
    EnvironmentHintStrategy,
    ResolutionRequest,
    WindowResolver,
    build_resolver,
)
from .sink import DesktopSink, NotificationSink

logger = logging.getLogger(__name__)

_CLAUDE_SETTINGS_FILE = Path.home() / ".claude" / "settings.json"

SESSION_START = "SessionStart"
NOTIFY_EVENTS = frozenset({"Stop", "SubagentStop", "Notification"})
HOOK_EVENTS = (SESSION_START, "Stop", "Notification")

_IDLE_PROMPT = "idle_prompt"

# Matches "ccnotify hook", "/path/to/ccnotify hook" and shell-wrapped variants
_HOOK_COMMAND_RE = re.compile(r"(?:^|[\s/\\])ccnotify(?:\.exe)? hook(?:\s|$)")
# Above the worst case: resolve budget, one strategy still in flight
# (snapshot plus enumeration), transcript settle, then the sink call
_HOOK_TIMEOUT_SECONDS = 30


def _find_ccnotify_path() -> str:
    """Find the full path to the ccnotify executable.

    Priority:
    1. shutil.which("ccnotify") - if ccnotify is in PATH
    2. Same directory as the Python interpreter (for venv installs)
    """
    found = shutil.which("ccnotify")
    if found:
        return found

    python_dir = Path(sys.executable).parent
    for name in ("ccnotify", "ccnotify.exe"):
        candidate = python_dir / name
        if candidate.exists():
            return str(candidate)

    # Last resort: assume it will be in PATH
    return "ccnotify"


def _is_ccnotify_command(command: Any) -> bool:
    return isinstance(command, str) and bool(_HOOK_COMMAND_RE.search(command))


def _is_hook_installed(settings: dict, event: str = SESSION_START) -> bool:
    """Check if the ccnotify hook is configured for an event."""
    hooks = settings.get("hooks", {})
    if not isinstance(hooks, dict):
        return False
    for entry in hooks.get(event, []):
        if not isinstance(entry, dict):
            continue
        for h in entry.get("hooks", []):
            if isinstance(h, dict) and _is_ccnotify_command(h.get("command")):
                return True
    return False


def _read_settings(settings_file: Path) -> dict:
    if not settings_file.exists():
        return {}
    settings = json.loads(settings_file.read_text(encoding="utf-8"))
    if not isinstance(settings, dict):
        raise ValueError(f"{settings_file} is not a JSON object")
    return settings


def _write_settings(settings_file: Path, settings: dict) -> None:
    settings_file.parent.mkdir(parents=True, exist_ok=True)
    settings_file.write_text(
        json.dumps(settings, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
    )


def _install_hook() -> int:
    """Install the ccnotify hook for every handled event.

    Returns 0 on success, 1 on error.
    """
    settings_file = _CLAUDE_SETTINGS_FILE
    try:
        settings = _read_settings(settings_file)
    except (json.JSONDecodeError, OSError, ValueError) as e:
        logger.exception("Error reading %s", settings_file)
        print(f"Error reading {settings_file}: {e}", file=sys.stderr)
        return 1

    missing = [event for event in HOOK_EVENTS if not _is_hook_installed(settings, event)]
    if not missing:
        print(f"Hook already installed in {settings_file}")
        return 0

    hook_command = f"{_find_ccnotify_path()} hook"
    logger.info("Installing hook command %s for %s", hook_command, ", ".join(missing))
    hooks = settings.setdefault("hooks", {})
    for event in missing:
        hooks.setdefault(event, []).append(
            {
                "hooks": [
                    {
                        "type": "command",
                        "command": hook_command,
                        "timeout": _HOOK_TIMEOUT_SECONDS,
                    }
                ]
            }
        )

    try:
        _write_settings(settings_file, settings)
    except OSError as e:
        logger.exception("Error writing %s", settings_file)
        print(f"Error writing {settings_file}: {e}", file=sys.stderr)
        return 1

    print(f"Hook installed successfully in {settings_file}")
    return 0


def _uninstall_hook() -> int:
    """Remove ccnotify hook commands, keeping everything else.

    Matcher groups left without hooks are dropped. Returns 0 on success,
    1 on error.
    """
    settings_file = _CLAUDE_SETTINGS_FILE
    if not settings_file.exists():
        print(f"Nothing to uninstall ({settings_file} does not exist)")
        return 0
    try:
        settings = _read_settings(settings_file)
    except (json.JSONDecodeError, OSError, ValueError) as e:
        print(f"Error reading {settings_file}: {e}", file=sys.stderr)
        return 1

    hooks = settings.get("hooks", {})
    removed = 0
    if isinstance(hooks, dict):
        for event in HOOK_EVENTS:
            groups = hooks.get(event)
            if not isinstance(groups, list):
                continue
            kept_groups = []
            for group in groups:
                if not isinstance(group, dict):
                    kept_groups.append(group)
                    continue
                inner = group.get("hooks", [])
                kept = [
                    h
                    for h in inner
                    if not (isinstance(h, dict) and _is_ccnotify_command(h.get("command")))
                ]
                removed += len(inner) - len(kept)
                if kept:
                    kept_groups.append({**group, "hooks": kept})
            hooks[event] = kept_groups

    if not removed:
        print(f"Hook not installed in {settings_file}")
        return 0

    try:
        _write_settings(settings_file, settings)
    except OSError as e:
        print(f"Error writing {settings_file}: {e}", file=sys.stderr)
        return 1
    print(f"Hook removed from {settings_file}")
    return 0


def _hook_status() -> int:
    """Print installation status per event. Returns 0 only if fully installed."""
    settings_file = _CLAUDE_SETTINGS_FILE
    try:
        settings = _read_settings(settings_file)
    except (json.JSONDecodeError, OSError, ValueError):
        settings = {}

    installed = [event for event in HOOK_EVENTS if _is_hook_installed(settings, event)]
    if len(installed) == len(HOOK_EVENTS):
        print(f"Installed in {settings_file}")
        return 0
    if installed:
        missing = [e for e in HOOK_EVENTS if e not in installed]
        print(f"Not installed for {', '.join(missing)} in {settings_file}")
        return 1
    print(f"Not installed in {settings_file}")
    return 1


def _event_kind(payload: dict[str, Any]) -> str:
    kind = payload.get("hook_event_name") or payload.get("type") or ""
    return kind if isinstance(kind, str) else ""


def _is_idle_prompt(payload: dict[str, Any]) -> bool:
    return _IDLE_PROMPT in (payload.get("type"), payload.get("notification_type"))


def _string_field(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    return value if isinstance(value, str) and value else None


def handle_session_start(
    resolver: WindowResolver, session_id: str | None, cwd: str
) -> None:
    """Resolve the session's window and record it in the registry."""
    if not session_id:
        logger.warning("SessionStart without session_id, cannot register")
        return
    request = ResolutionRequest(session_id=session_id, cwd=cwd)
    resolution = resolver.resolve(request)
    if resolution.strategy == EnvironmentHintStrategy.name:
        resolver.register(request, resolution)
    if not resolution.found:
        logger.warning("Could not determine a window for session %s", session_id)


def handle_notify(
    resolver: WindowResolver,
    sink: NotificationSink,
    payload: dict[str, Any],
    session_id: str | None,
    cwd: str,
) -> None:
    """Resolve the session's window and notify, targeted when possible."""
    message = extract_message(payload)
    resolution = resolver.resolve(ResolutionRequest(session_id=session_id, cwd=cwd))
    sink.notify(message, resolution.handle, cwd, session_id or "default")


def dispatch_event(
    payload: dict[str, Any],
    resolver: WindowResolver,
    sink: NotificationSink,
) -> None:
    """Route one hook event to its handler."""
    kind = _event_kind(payload)
    session_id = _string_field(payload, "session_id")
    cwd = _string_field(payload, "cwd") or os.getcwd()
    logger.debug(
        "Event received: kind=%s, session_id=%s, cwd=%s, keys=%s",
        kind,
        session_id,
        cwd,
        ",".join(sorted(payload)),
    )

    if _is_idle_prompt(payload):
        logger.debug("Skipping idle_prompt event")
        return
    if kind == SESSION_START:
        handle_session_start(resolver, session_id, cwd)
    elif kind in NOTIFY_EVENTS:
        handle_notify(resolver, sink, payload, session_id, cwd)
    else:
        logger.debug("Ignoring event kind %r", kind)


def hook_main(
    install: bool = False, uninstall: bool = False, status: bool = False
) -> None:
    """Process a Claude Code hook event from stdin, or manage the hook install."""
    if install:
        logger.info("Hook install requested")
        sys.exit(_install_hook())
    if uninstall:
        logger.info("Hook uninstall requested")
        sys.exit(_uninstall_hook())
    if status:
        sys.exit(_hook_status())

    logger.debug("Processing hook event from stdin")
    try:
        payload = json.load(sys.stdin)
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning("Failed to parse stdin JSON: %s", e)
        return
    if not isinstance(payload, dict):
        logger.warning("Hook payload is not a JSON object, ignoring")
        return

    try:
        config = Config()
        dispatch_event(payload, build_resolver(config), DesktopSink(config))
    except Exception:
        # The hook contract is exit 0 whatever happens; the log keeps the trace
        logger.exception("Hook failed, exiting quietly")
