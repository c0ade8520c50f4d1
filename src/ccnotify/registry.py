"""Session registry — durable session_id -> window handle mapping.

Persists SessionEntry records to <CCNOTIFY_DIR>/session_registry.json so
a Stop hook can find the window its SessionStart hook resolved. Every hook
invocation is its own short-lived process, and two sessions may start at
once, so every read-modify-write happens under an exclusive FileLock on
session_registry.lock and the file itself is replaced atomically.

Rules:
  - A session's window handle and source are write-once. Registering a
    known session again only refreshes last_seen, so a noisy fallback
    (a foreground window that happened to have focus) can't overwrite an
    earlier, better resolution.
  - Entries unseen for longer than the retention period are purged
    whenever the file is rewritten.
  - A corrupt file reads as an empty registry and is overwritten by the
    next successful write.
  - Lookups by directory are derived from the session entries (newest
    last_seen wins) and never contradict a session's own entry.

Key classes: SessionRegistry, SessionEntry, ResolutionSource.
"""

import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from .errors import RegistryCorrupt, RegistryWriteConflict
from .utils import atomic_write_json, parse_window_handle

logger = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=7)


class ResolutionSource(StrEnum):
    """How a window handle was found, strongest first."""

    ENVIRONMENT_HINT = "env"
    PROCESS_TREE = "process_tree"
    TITLE_MATCH = "title"
    FOREGROUND = "foreground"


def _now() -> datetime:
    return datetime.now(UTC)


def _parse_time(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    # Naive timestamps are taken as UTC
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass
class SessionEntry:
    """One registered session."""

    session_id: str
    window_handle: int
    cwd: str
    first_seen: datetime
    last_seen: datetime
    source: ResolutionSource

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON serialization (keyed by session_id outside)."""
        return {
            "hwnd": self.window_handle,
            "cwd": self.cwd,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, session_id: str, data: dict[str, Any]) -> "SessionEntry | None":
        """Create from dict, or None if the record is unusable."""
        handle = parse_window_handle(data.get("hwnd"))
        last_seen = _parse_time(data.get("last_seen"))
        if handle is None or last_seen is None:
            return None
        first_seen = _parse_time(data.get("first_seen")) or last_seen
        try:
            source = ResolutionSource(data.get("source"))
        except ValueError:
            # Unknown provenance is treated as the weakest
            source = ResolutionSource.FOREGROUND
        cwd = data.get("cwd")
        return cls(
            session_id=session_id,
            window_handle=handle,
            cwd=cwd if isinstance(cwd, str) else "",
            first_seen=first_seen,
            last_seen=last_seen,
            source=source,
        )


def parse_registry(text: str) -> dict[str, SessionEntry]:
    """Parse registry file content.

    Raises RegistryCorrupt when the document isn't a JSON object. Individual
    malformed records are dropped with a warning.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise RegistryCorrupt(str(e)) from e
    if not isinstance(data, dict):
        raise RegistryCorrupt(f"expected an object, got {type(data).__name__}")

    entries: dict[str, SessionEntry] = {}
    for session_id, record in data.items():
        entry = SessionEntry.from_dict(session_id, record) if isinstance(record, dict) else None
        if entry is None:
            logger.warning("Dropping malformed registry record for %s", session_id)
            continue
        entries[session_id] = entry
    return entries


def purge_entries(
    entries: dict[str, SessionEntry], now: datetime, max_age: timedelta
) -> int:
    """Remove entries whose last_seen is older than now - max_age, in place."""
    cutoff = now - max_age
    stale = [sid for sid, entry in entries.items() if entry.last_seen < cutoff]
    for sid in stale:
        del entries[sid]
    return len(stale)


class SessionRegistry:
    """File-backed session registry shared by concurrent hook processes."""

    def __init__(
        self,
        registry_file: Path,
        lock_file: Path | None = None,
        *,
        retention: timedelta = DEFAULT_RETENTION,
        lock_timeout: float = 5.0,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.registry_file = registry_file
        self.lock_file = lock_file or registry_file.with_suffix(".lock")
        self.retention = retention
        self.lock_timeout = lock_timeout
        self.clock = clock

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the registry lock for a read-modify-write cycle."""
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.lock_file), timeout=self.lock_timeout)
        try:
            lock.acquire()
        except Timeout as e:
            raise RegistryWriteConflict(
                f"registry lock {self.lock_file} busy for {self.lock_timeout}s"
            ) from e
        try:
            logger.debug("Acquired lock on %s", self.lock_file)
            yield
        finally:
            lock.release()

    def _read(self) -> dict[str, SessionEntry]:
        """Load all entries; missing or corrupt files read as empty."""
        try:
            text = self.registry_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Failed to read registry %s: %s", self.registry_file, e)
            return {}
        try:
            return parse_registry(text)
        except RegistryCorrupt as e:
            logger.warning(
                "Registry %s is corrupt (%s), treating as empty", self.registry_file, e
            )
            return {}

    def _write(self, entries: dict[str, SessionEntry]) -> None:
        atomic_write_json(
            self.registry_file, {sid: e.to_dict() for sid, e in entries.items()}
        )

    def entries(self) -> list[SessionEntry]:
        """Snapshot of all entries, most recently seen first."""
        return sorted(self._read().values(), key=lambda e: e.last_seen, reverse=True)

    def register(
        self,
        session_id: str,
        cwd: str,
        handle: int,
        source: ResolutionSource,
    ) -> SessionEntry:
        """Record session_id -> handle; for a known session only touch last_seen.

        Purges stale entries in the same write. Returns the stored entry,
        which carries the original handle when the session was already known.
        Raises RegistryWriteConflict if the lock can't be acquired.
        """
        with self._locked():
            entries = self._read()
            now = self.clock()
            entry = entries.get(session_id)
            if entry is not None:
                entry.last_seen = now
                if entry.window_handle != handle:
                    logger.info(
                        "Session %s already registered with hwnd %s (%s), "
                        "keeping it over %s (%s)",
                        session_id,
                        entry.window_handle,
                        entry.source,
                        handle,
                        source,
                    )
                else:
                    logger.debug("Session %s already registered, touched", session_id)
            else:
                entry = SessionEntry(
                    session_id=session_id,
                    window_handle=handle,
                    cwd=cwd,
                    first_seen=now,
                    last_seen=now,
                    source=source,
                )
                entries[session_id] = entry
                logger.info(
                    "Registered session %s -> hwnd %s (source: %s)",
                    session_id,
                    handle,
                    source,
                )

            removed = purge_entries(entries, now, self.retention)
            if removed:
                logger.info("Purged %d stale registry entries", removed)
            self._write(entries)
            return entry

    def lookup_by_session(self, session_id: str) -> SessionEntry | None:
        """Find a session's entry and refresh its last_seen.

        The refresh is best-effort: if the lock is busy or the write fails,
        the entry is still returned with the stale timestamp on disk.
        """
        if session_id not in self._read():
            logger.debug("Session %s not in registry", session_id)
            return None

        try:
            with self._locked():
                entries = self._read()
                entry = entries.get(session_id)
                if entry is None:
                    return None
                now = self.clock()
                entry.last_seen = now
                purge_entries(entries, now, self.retention)
                self._write(entries)
                return entry
        except (RegistryWriteConflict, OSError) as e:
            logger.warning("Could not refresh last_seen for %s: %s", session_id, e)
            return self._read().get(session_id)

    def directory_entry(self, cwd: str) -> SessionEntry | None:
        """Most recently seen entry registered for this working directory."""
        if not cwd:
            return None
        candidates = [e for e in self._read().values() if e.cwd == cwd]
        if not candidates:
            return None
        return max(candidates, key=lambda e: e.last_seen)

    def lookup_by_directory(self, cwd: str) -> int | None:
        """Window handle of the most recently seen session in this directory."""
        entry = self.directory_entry(cwd)
        return entry.window_handle if entry else None

    def purge_stale(
        self, now: datetime | None = None, max_age: timedelta | None = None
    ) -> int:
        """Remove entries unseen since now - max_age; returns how many."""
        with self._locked():
            entries = self._read()
            removed = purge_entries(
                entries, now or self.clock(), max_age or self.retention
            )
            if removed:
                self._write(entries)
                logger.info("Purged %d stale registry entries", removed)
            return removed
