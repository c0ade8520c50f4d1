"""Window resolution — decide which terminal window hosts a session.

Runs an ordered chain of strategies; the first one that produces a handle
wins and nothing after it runs:

  1. EnvironmentHintStrategy: a handle inherited through the environment.
  2. RegistryStrategy: the session's registry entry, else the newest entry
     for the same working directory (promoted to the current session).
  3. ProcessTreeStrategy: climb to the terminal-host process and take the
     window it (or a process beneath it) owns.
  4. TitleMatchStrategy: a terminal window whose title contains the
     working directory's basename.
  5. ForegroundStrategy: whatever window has focus right now.

Each strategy reports a StrategyResult instead of raising for expected
misses. StrategyUnavailable / StrategyTimeout / OSError from an OS query
become UNAVAILABLE / TIMEOUT outcomes, unparsable query output (ValueError)
becomes UNAVAILABLE, and the chain moves on. A handle found live
(strategies 3-5) is registered under the session id so later events
short-circuit at step 2.

Strategies 3 and 4 share one window enumeration per request, and once the
resolve budget is spent the remaining strategies are skipped as TIMEOUT so
the hook reaches the sink well inside its own timeout.

Key classes: WindowResolver, ResolutionRequest, Resolution.
Key function: build_resolver().
"""

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import PurePath, PureWindowsPath
from typing import Protocol

from .config import Config
from .errors import RegistryWriteConflict, StrategyTimeout, StrategyUnavailable
from .processes import (
    ProcessSource,
    default_process_source,
    find_ancestor_by_role,
    find_descendant_owner,
)
from .registry import ResolutionSource, SessionRegistry
from .utils import parse_window_handle
from .windows import (
    EnumerationCache,
    WindowSource,
    default_window_source,
    first_window,
    list_top_level_windows,
    match_by_owner,
    match_by_title_substring,
)

logger = logging.getLogger(__name__)


class Outcome(StrEnum):
    """What a single strategy attempt came to."""

    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ResolutionRequest:
    """Inputs for one resolution; session_id or cwd enables registry lookups."""

    session_id: str | None
    cwd: str | None
    pid: int = field(default_factory=os.getpid)


@dataclass(frozen=True)
class StrategyResult:
    outcome: Outcome
    handle: int | None = None
    source: ResolutionSource | None = None
    detail: str = ""

    @classmethod
    def found(cls, handle: int, source: ResolutionSource, detail: str = "") -> "StrategyResult":
        return cls(Outcome.RESOLVED, handle, source, detail)

    @classmethod
    def missed(cls, detail: str = "") -> "StrategyResult":
        return cls(Outcome.NOT_FOUND, detail=detail)


@dataclass
class Resolution:
    """Final answer for a request plus the trail of attempts."""

    handle: int | None = None
    source: ResolutionSource | None = None
    strategy: str | None = None
    attempts: list[tuple[str, Outcome]] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.handle is not None


class Strategy(Protocol):
    """One way of finding a window handle."""

    name: str
    # Whether a hit should be written to the registry
    registers: bool

    def resolve(self, request: ResolutionRequest) -> StrategyResult: ...


def _dir_basename(cwd: str) -> str:
    """Last path component of cwd, for POSIX or Windows style paths."""
    return PureWindowsPath(cwd).name if "\\" in cwd else PurePath(cwd).name


class EnvironmentHintStrategy:
    """Accept a handle passed down through the environment at launch."""

    name = "environment_hint"
    registers = False

    def __init__(self, hint: str | None) -> None:
        self.hint = hint

    def resolve(self, request: ResolutionRequest) -> StrategyResult:
        if not self.hint:
            return StrategyResult.missed("no hint set")
        handle = parse_window_handle(self.hint)
        if handle is None:
            return StrategyResult.missed(f"hint {self.hint!r} is not a handle")
        return StrategyResult.found(handle, ResolutionSource.ENVIRONMENT_HINT)


class RegistryStrategy:
    """Look the session up by id, falling back to its working directory."""

    name = "registry"
    registers = False

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    def resolve(self, request: ResolutionRequest) -> StrategyResult:
        if request.session_id:
            entry = self.registry.lookup_by_session(request.session_id)
            if entry is not None:
                return StrategyResult.found(
                    entry.window_handle, entry.source, "by session"
                )

        if not request.cwd:
            return StrategyResult.missed("no session entry and no cwd")

        entry = self.registry.directory_entry(request.cwd)
        if entry is None:
            return StrategyResult.missed("no entry for session or directory")

        if not request.session_id or request.session_id == entry.session_id:
            return StrategyResult.found(entry.window_handle, entry.source, "by directory")

        # A sibling session's window is only a guess for this one
        source = ResolutionSource.FOREGROUND
        logger.info(
            "Promoting directory entry of %s (%s) to session %s as %s",
            entry.session_id,
            entry.source,
            request.session_id,
            source,
        )
        try:
            self.registry.register(
                request.session_id, request.cwd, entry.window_handle, source
            )
        except (RegistryWriteConflict, OSError) as e:
            logger.warning(
                "Could not promote directory entry to %s: %s", request.session_id, e
            )
        return StrategyResult.found(
            entry.window_handle, source, f"by directory from {entry.session_id}"
        )


class ProcessTreeStrategy:
    """Find the terminal-host ancestor, then the window it owns."""

    name = "process_tree"
    registers = True

    def __init__(
        self,
        processes: ProcessSource,
        windows: WindowSource,
        config: Config,
    ) -> None:
        self.processes = processes
        self.windows = windows
        self.config = config

    def resolve(self, request: ResolutionRequest) -> StrategyResult:
        snapshot = self.processes.snapshot()
        host_pid = find_ancestor_by_role(
            request.pid, self.config.is_terminal_host, snapshot
        )
        if host_pid is None:
            return StrategyResult.missed("no terminal-host ancestor")

        candidates = list(list_top_level_windows(self.windows, self.config.window_class))
        window = match_by_owner(candidates, host_pid)
        if window is None:
            owners = find_descendant_owner(
                host_pid, (w.owner_pid for w in candidates), snapshot
            )
            window = first_window(w for w in candidates if w.owner_pid in owners)
        if window is None:
            return StrategyResult.missed(f"no window owned by terminal host {host_pid}")
        return StrategyResult.found(
            window.handle, ResolutionSource.PROCESS_TREE, f"host pid {host_pid}"
        )


class TitleMatchStrategy:
    """Find a terminal window titled with the working directory's name."""

    name = "title_match"
    registers = True

    def __init__(self, windows: WindowSource, window_class: str) -> None:
        self.windows = windows
        self.window_class = window_class

    def resolve(self, request: ResolutionRequest) -> StrategyResult:
        needle = _dir_basename(request.cwd) if request.cwd else ""
        if not needle:
            return StrategyResult.missed("no directory name to match")
        window = match_by_title_substring(
            list_top_level_windows(self.windows, self.window_class), needle
        )
        if window is None:
            return StrategyResult.missed(f"no title contains {needle!r}")
        return StrategyResult.found(
            window.handle, ResolutionSource.TITLE_MATCH, repr(window.title)
        )


class ForegroundStrategy:
    """Take the currently focused window. Lowest confidence."""

    name = "foreground"
    registers = True

    def __init__(self, windows: WindowSource) -> None:
        self.windows = windows

    def resolve(self, request: ResolutionRequest) -> StrategyResult:
        handle = self.windows.foreground()
        if handle is None:
            return StrategyResult.missed("no foreground window")
        return StrategyResult.found(handle, ResolutionSource.FOREGROUND)


class WindowResolver:
    """Runs the strategy chain and records live hits in the registry.

    window_cache, when given, is cleared at the start of every resolve() so
    enumeration is shared within a request but never across requests.
    budget caps the chain in seconds: a strategy is only started while
    time remains, otherwise it is recorded as TIMEOUT.
    """

    def __init__(
        self,
        strategies: list[Strategy],
        registry: SessionRegistry,
        *,
        window_cache: EnumerationCache | None = None,
        budget: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.strategies = strategies
        self.registry = registry
        self.window_cache = window_cache
        self.budget = budget
        self.clock = clock

    def _attempt(self, strategy: Strategy, request: ResolutionRequest) -> StrategyResult:
        try:
            return strategy.resolve(request)
        except StrategyTimeout as e:
            return StrategyResult(Outcome.TIMEOUT, detail=str(e))
        except (StrategyUnavailable, OSError) as e:
            return StrategyResult(Outcome.UNAVAILABLE, detail=str(e))
        except ValueError as e:
            logger.warning("Strategy %s could not parse OS output: %s", strategy.name, e)
            return StrategyResult(Outcome.UNAVAILABLE, detail=str(e))

    def resolve(self, request: ResolutionRequest) -> Resolution:
        """Try each strategy once, in order; stop at the first handle."""
        if self.window_cache is not None:
            self.window_cache.clear()
        started = self.clock()
        resolution = Resolution()
        for strategy in self.strategies:
            if self.budget is not None and self.clock() - started >= self.budget:
                result = StrategyResult(
                    Outcome.TIMEOUT, detail=f"resolve budget of {self.budget}s spent"
                )
            else:
                result = self._attempt(strategy, request)
            resolution.attempts.append((strategy.name, result.outcome))
            logger.debug(
                "Strategy %s: %s %s", strategy.name, result.outcome, result.detail
            )
            if result.outcome != Outcome.RESOLVED or result.handle is None:
                continue

            resolution.handle = result.handle
            resolution.source = result.source
            resolution.strategy = strategy.name
            if strategy.registers:
                self.register(request, resolution)
            logger.info(
                "Resolved session %s -> hwnd %s via %s",
                request.session_id,
                result.handle,
                strategy.name,
            )
            return resolution

        logger.info(
            "No window for session %s (cwd=%s), notifying untargeted",
            request.session_id,
            request.cwd,
        )
        return resolution

    def register(self, request: ResolutionRequest, resolution: Resolution) -> bool:
        """Persist a resolution for request.session_id, subject to write-once.

        resolve() calls this for live hits. The SessionStart handler calls it
        for environment-hint hits, which resolve() leaves unrecorded.
        Returns True if written.
        """
        if not (request.session_id and resolution.handle and resolution.source):
            return False
        try:
            self.registry.register(
                request.session_id,
                request.cwd or "",
                resolution.handle,
                resolution.source,
            )
        except (RegistryWriteConflict, OSError) as e:
            logger.warning("Could not register session %s: %s", request.session_id, e)
            return False
        return True


def build_resolver(
    config: Config,
    registry: SessionRegistry | None = None,
    *,
    processes: ProcessSource | None = None,
    windows: WindowSource | None = None,
) -> WindowResolver:
    """Assemble the standard strategy chain for this platform."""
    registry = registry or SessionRegistry(
        config.registry_file,
        config.lock_file,
        retention=config.retention,
        lock_timeout=config.lock_timeout,
    )
    processes = processes or default_process_source(config.query_timeout)
    windows = EnumerationCache(windows or default_window_source(config.query_timeout))
    strategies: list[Strategy] = [
        EnvironmentHintStrategy(config.window_hint),
        RegistryStrategy(registry),
        ProcessTreeStrategy(processes, windows, config),
        TitleMatchStrategy(windows, config.window_class),
        ForegroundStrategy(windows),
    ]
    return WindowResolver(
        strategies, registry, window_cache=windows, budget=config.resolve_budget
    )
