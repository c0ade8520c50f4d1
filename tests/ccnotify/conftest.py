"""Shared fixtures for ccnotify unit tests.

Provides in-memory stand-ins for the OS query sources (process snapshot,
window enumeration, foreground window) and for the notification sink, so
resolution can be exercised without touching the desktop.
"""

from datetime import UTC, datetime, timedelta

import pytest

from ccnotify.config import Config
from ccnotify.processes import ProcessInfo
from ccnotify.registry import SessionRegistry
from ccnotify.windows import WindowRecord


class FakeProcessSource:
    """Process snapshot double; raises `error` if set."""

    def __init__(self, processes=(), error: Exception | None = None) -> None:
        self.processes = list(processes)
        self.error = error
        self.calls = 0

    def snapshot(self) -> list[ProcessInfo]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.processes)


class FakeWindowSource:
    """Window source double with call counters."""

    def __init__(
        self,
        windows=(),
        foreground_handle: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.windows = list(windows)
        self.foreground_handle = foreground_handle
        self.error = error
        self.enumerate_calls = 0
        self.foreground_calls = 0

    def enumerate(self) -> list[WindowRecord]:
        self.enumerate_calls += 1
        if self.error is not None:
            raise self.error
        return list(self.windows)

    def foreground(self) -> int | None:
        self.foreground_calls += 1
        if self.error is not None:
            raise self.error
        return self.foreground_handle

    @property
    def calls(self) -> int:
        return self.enumerate_calls + self.foreground_calls


class FakeSink:
    """Records notify() calls instead of showing anything."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.sent: list[tuple[str, int | None, str, str]] = []

    def notify(
        self, message: str, window_handle: int | None, cwd: str, session_id: str
    ) -> bool:
        self.sent.append((message, window_handle, cwd, session_id))
        return self.result


class FakeClock:
    """Settable clock for SessionRegistry."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(tmp_path, clock) -> SessionRegistry:
    return SessionRegistry(
        tmp_path / "session_registry.json",
        tmp_path / "session_registry.lock",
        lock_timeout=1.0,
        clock=clock,
    )


@pytest.fixture
def config(tmp_path, monkeypatch) -> Config:
    """Config pointed at tmp_path, matching Windows Terminal hosts and windows."""
    # chdir to tmp_path so load_dotenv won't find a .env in the repo root
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CCNOTIFY_DIR", str(tmp_path))
    monkeypatch.delenv("CLAUDE_WT_HWND", raising=False)
    monkeypatch.delenv("CCNOTIFY_HINT_VAR", raising=False)
    monkeypatch.setenv("CCNOTIFY_TERMINAL_NAMES", "WindowsTerminal.exe,gnome-terminal-server")
    monkeypatch.setenv("CCNOTIFY_WINDOW_CLASS", "CASCADIA")
    return Config()


@pytest.fixture
def make_window():
    """Factory: build a WindowRecord with terminal-ish defaults."""

    def _make(
        handle: int,
        owner_pid: int,
        title: str = "",
        window_class: str = "CASCADIA_HOSTING_WINDOW_CLASS",
        visible: bool = True,
    ) -> WindowRecord:
        return WindowRecord(
            handle=handle,
            owner_pid=owner_pid,
            title=title,
            window_class=window_class,
            visible=visible,
        )

    return _make


@pytest.fixture
def make_window_source():
    """Factory: FakeWindowSource(windows, foreground_handle, error)."""
    return FakeWindowSource


@pytest.fixture
def make_process_source():
    """Factory: FakeProcessSource(processes, error)."""
    return FakeProcessSource


@pytest.fixture
def fake_sink() -> FakeSink:
    return FakeSink()
