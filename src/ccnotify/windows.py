"""Top-level window enumeration and matching.

Enumerates the host's visible top-level windows, keeps those whose class
matches the terminal emulator's signature, and matches them by owning
process id or by title substring. Every call to list_top_level_windows()
re-enumerates its source; within one resolution the resolver shares a
single enumeration between strategies through EnumerationCache.

Window sources (ports):
  - Win32WindowSource: EnumWindows/GetForegroundWindow via pywin32.
  - X11WindowSource: `wmctrl -lpx` and `xdotool getactivewindow`.
  - UnsupportedWindowSource: raises StrategyUnavailable (macOS, Wayland).

Sources raise StrategyUnavailable / StrategyTimeout; the resolver treats
both as "no window" and moves on.

Key functions: list_top_level_windows(), match_by_owner(),
match_by_title_substring(), first_window(), default_window_source().
Key class: EnumerationCache.
"""

import logging
import sys
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from types import ModuleType
from typing import Protocol

from .errors import StrategyTimeout, StrategyUnavailable
from .utils import parse_window_handle, run_query

logger = logging.getLogger(__name__)

_WMCTRL_MIN_FIELDS = 4


@dataclass(frozen=True)
class WindowRecord:
    """A top-level window as seen at enumeration time. Never persisted."""

    handle: int
    owner_pid: int
    title: str
    window_class: str
    visible: bool = True


class WindowSource(Protocol):
    """Enumerates live windows and reports the foreground window."""

    def enumerate(self) -> Iterable[WindowRecord]: ...

    def foreground(self) -> int | None: ...


def _load_pywin32() -> tuple[ModuleType, ModuleType, ModuleType]:
    """Import (win32gui, win32process, pywintypes)."""
    try:
        import pywintypes
        import win32gui
        import win32process
    except ImportError as e:
        raise StrategyUnavailable(f"pywin32 not installed: {e}") from e
    return win32gui, win32process, pywintypes


class Win32WindowSource:
    """Windows desktop windows via user32 (pywin32). Calls are in-process."""

    def enumerate(self) -> Iterable[WindowRecord]:
        win32gui, win32process, pywintypes = _load_pywin32()
        windows: list[WindowRecord] = []

        def collect(hwnd, _):
            _, pid = win32process.GetWindowThreadProcessId(hwnd)
            windows.append(
                WindowRecord(
                    handle=hwnd,
                    owner_pid=pid,
                    title=win32gui.GetWindowText(hwnd),
                    window_class=win32gui.GetClassName(hwnd),
                    visible=bool(win32gui.IsWindowVisible(hwnd)),
                )
            )
            return True

        try:
            win32gui.EnumWindows(collect, None)
        except pywintypes.error as e:
            raise StrategyUnavailable(f"EnumWindows failed: {e}") from e
        return windows

    def foreground(self) -> int | None:
        win32gui, _, pywintypes = _load_pywin32()
        try:
            return parse_window_handle(win32gui.GetForegroundWindow())
        except pywintypes.error as e:
            raise StrategyUnavailable(f"GetForegroundWindow failed: {e}") from e


class X11WindowSource:
    """X11 windows via wmctrl and xdotool."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout

    def enumerate(self) -> Iterable[WindowRecord]:
        output = run_query(["wmctrl", "-lpx"], self.timeout)
        return parse_wmctrl_rows(output)

    def foreground(self) -> int | None:
        output = run_query(["xdotool", "getactivewindow"], self.timeout)
        return parse_window_handle(output)


class UnsupportedWindowSource:
    """Placeholder for platforms without a window query mechanism."""

    def __init__(self, platform: str) -> None:
        self.platform = platform

    def enumerate(self) -> Iterable[WindowRecord]:
        raise StrategyUnavailable(f"window enumeration not supported on {self.platform}")

    def foreground(self) -> int | None:
        raise StrategyUnavailable(f"foreground query not supported on {self.platform}")


class EnumerationCache:
    """Wraps a WindowSource so one resolution enumerates at most once.

    The first enumerate() result (or failure) is replayed until clear().
    foreground() always goes to the live source.
    """

    def __init__(self, source: WindowSource) -> None:
        self.source = source
        self._windows: list[WindowRecord] | None = None
        self._error: StrategyUnavailable | StrategyTimeout | None = None

    def clear(self) -> None:
        self._windows = None
        self._error = None

    def enumerate(self) -> Iterable[WindowRecord]:
        if self._error is not None:
            raise self._error
        if self._windows is None:
            try:
                self._windows = list(self.source.enumerate())
            except (StrategyUnavailable, StrategyTimeout) as e:
                self._error = e
                raise
        return list(self._windows)

    def foreground(self) -> int | None:
        return self.source.foreground()


def default_window_source(timeout: float, platform: str = sys.platform) -> WindowSource:
    """Pick the window source for the given platform."""
    if platform == "win32":
        return Win32WindowSource()
    if platform.startswith("linux") or platform.startswith("freebsd"):
        return X11WindowSource(timeout)
    return UnsupportedWindowSource(platform)


def parse_wmctrl_rows(output: str) -> list[WindowRecord]:
    """Parse `wmctrl -lpx` rows: id desktop pid class host title.

    wmctrl only lists windows managed by the window manager, so every row
    counts as visible.
    """
    windows = []
    for line in output.splitlines():
        parts = line.split(None, 5)
        if len(parts) < _WMCTRL_MIN_FIELDS:
            continue
        handle = parse_window_handle(parts[0])
        try:
            owner_pid = int(parts[2])
        except ValueError:
            continue
        if handle is None:
            continue
        windows.append(
            WindowRecord(
                handle=handle,
                owner_pid=owner_pid,
                title=parts[5] if len(parts) > 5 else "",
                window_class=parts[3],
            )
        )
    return windows


def _class_matches(window_class: str, signature: str) -> bool:
    return not signature or signature.lower() in window_class.lower()


def list_top_level_windows(
    source: WindowSource, class_signature: str
) -> Iterator[WindowRecord]:
    """Yield the visible windows whose class matches class_signature.

    Lazy and restartable: each call enumerates live state afresh.
    """
    for window in source.enumerate():
        if window.visible and _class_matches(window.window_class, class_signature):
            yield window


def match_by_owner(windows: Iterable[WindowRecord], pid: int) -> WindowRecord | None:
    """First window owned by exactly this pid."""
    for window in windows:
        if window.owner_pid == pid:
            return window
    return None


def match_by_title_substring(
    windows: Iterable[WindowRecord], needle: str
) -> WindowRecord | None:
    """First window whose title contains needle (case-sensitive).

    Enumeration order is platform-defined, so with several matching
    windows the pick is a heuristic.
    """
    if not needle:
        return None
    for window in windows:
        if needle in window.title:
            return window
    return None


def first_window(windows: Iterable[WindowRecord]) -> WindowRecord | None:
    """Last resort: the first window in enumeration order."""
    return next(iter(windows), None)
