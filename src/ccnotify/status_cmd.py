"""CLI `ccnotify status` — show the session registry.

Prints one line per registered session: window handle, how it was
resolved, when it was last seen (stale entries flagged), and its working
directory.
"""

from datetime import UTC, datetime

from .config import Config
from .registry import SessionEntry, SessionRegistry


def _age(entry: SessionEntry, now: datetime) -> str:
    seconds = int((now - entry.last_seen).total_seconds())
    if seconds < 60:
        return f"{max(seconds, 0)}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def format_entry(entry: SessionEntry, now: datetime, retention_cutoff: datetime) -> str:
    stale = "  (stale)" if entry.last_seen < retention_cutoff else ""
    return (
        f"  {entry.session_id:<36}  hwnd {entry.window_handle:<10} "
        f"{entry.source.value:<12} {_age(entry, now):>8}  {entry.cwd}{stale}"
    )


def status_main() -> None:
    """Entry point for `ccnotify status`."""
    from . import __version__

    config = Config()
    registry = SessionRegistry(config.registry_file, config.lock_file)
    entries = registry.entries()

    print(f"ccnotify {__version__}")
    print(f"Registry: {config.registry_file}")
    hint = config.window_hint or "not set"
    print(f"Window hint ({config.hint_var}): {hint}")
    print(f"Registered sessions: {len(entries)}")

    if not entries:
        return

    print()
    now = datetime.now(UTC)
    cutoff = now - config.retention
    for entry in entries:
        print(format_entry(entry, now, cutoff))
