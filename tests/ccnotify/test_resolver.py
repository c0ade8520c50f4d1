"""Tests for the window resolution chain — ordering, short-circuit, fallbacks."""

import pytest

from ccnotify.errors import RegistryWriteConflict, StrategyTimeout, StrategyUnavailable
from ccnotify.processes import ProcessInfo
from ccnotify.registry import ResolutionSource
from ccnotify.resolver import (
    EnvironmentHintStrategy,
    ForegroundStrategy,
    Outcome,
    ProcessTreeStrategy,
    RegistryStrategy,
    ResolutionRequest,
    TitleMatchStrategy,
    _dir_basename,
    build_resolver,
)

HOOK_PID = 140

# WindowsTerminal(100) -> OpenConsole(110), pwsh(120) -> node(130) -> hook(140)
_TREE = [
    ProcessInfo(1, 0, "wininit.exe"),
    ProcessInfo(100, 1, "WindowsTerminal.exe"),
    ProcessInfo(110, 100, "OpenConsole.exe"),
    ProcessInfo(120, 100, "pwsh.exe"),
    ProcessInfo(130, 120, "node.exe"),
    ProcessInfo(HOOK_PID, 130, "python.exe"),
]


def _request(session_id="s1", cwd="/home/me/myproject"):
    return ResolutionRequest(session_id=session_id, cwd=cwd, pid=HOOK_PID)


@pytest.fixture
def sources(make_process_source, make_window_source, make_window):
    processes = make_process_source(_TREE)
    windows = make_window_source(
        [
            make_window(500, 999, title="other - pwsh"),
            make_window(600, 100, title="myproject - pwsh"),
        ],
        foreground_handle=700,
    )
    return processes, windows


def _resolver(config, registry, processes, windows, hint=None):
    config.window_hint = hint
    return build_resolver(config, registry, processes=processes, windows=windows)


class TestChain:
    def test_environment_hint_short_circuits(self, config, registry, sources):
        processes, windows = sources
        resolver = _resolver(config, registry, processes, windows, hint="132456")

        resolution = resolver.resolve(_request())

        assert resolution.handle == 132456
        assert resolution.source == ResolutionSource.ENVIRONMENT_HINT
        assert resolution.attempts == [("environment_hint", Outcome.RESOLVED)]
        assert processes.calls == 0
        assert windows.calls == 0
        # Environment hits are registered by the SessionStart handler, not here
        assert not registry.registry_file.exists()

    def test_registry_hit_skips_os_queries(self, config, registry, sources):
        processes, windows = sources
        registry.register("s1", "/home/me/myproject", 4242, ResolutionSource.TITLE_MATCH)
        resolver = _resolver(config, registry, processes, windows)

        resolution = resolver.resolve(_request())

        assert resolution.handle == 4242
        assert resolution.source == ResolutionSource.TITLE_MATCH
        assert resolution.strategy == "registry"
        assert processes.calls == 0
        assert windows.calls == 0

    def test_process_tree_hit_is_registered(self, config, registry, sources):
        processes, windows = sources
        resolver = _resolver(config, registry, processes, windows)

        resolution = resolver.resolve(_request())

        assert resolution.handle == 600
        assert resolution.source == ResolutionSource.PROCESS_TREE
        assert [name for name, _ in resolution.attempts] == [
            "environment_hint",
            "registry",
            "process_tree",
        ]
        assert windows.foreground_calls == 0
        entry = registry.lookup_by_session("s1")
        assert entry.window_handle == 600
        assert entry.source == ResolutionSource.PROCESS_TREE

    def test_second_resolution_comes_from_registry(self, config, registry, sources):
        processes, windows = sources
        resolver = _resolver(config, registry, processes, windows)
        resolver.resolve(_request())
        processes.calls = 0
        windows.enumerate_calls = 0

        resolution = resolver.resolve(_request())

        assert resolution.strategy == "registry"
        assert processes.calls == 0
        assert windows.enumerate_calls == 0

    def test_process_timeout_falls_through_to_title(
        self, config, registry, make_process_source, sources
    ):
        _, windows = sources
        processes = make_process_source(error=StrategyTimeout("ps timed out"))
        resolver = _resolver(config, registry, processes, windows)

        resolution = resolver.resolve(_request())

        assert resolution.handle == 600
        assert resolution.source == ResolutionSource.TITLE_MATCH
        assert ("process_tree", Outcome.TIMEOUT) in resolution.attempts
        assert registry.lookup_by_session("s1").source == ResolutionSource.TITLE_MATCH

    def test_foreground_is_last_resort(
        self, config, registry, make_process_source, make_window_source
    ):
        processes = make_process_source([])
        windows = make_window_source([], foreground_handle=700)
        resolver = _resolver(config, registry, processes, windows)

        resolution = resolver.resolve(_request())

        assert resolution.handle == 700
        assert resolution.source == ResolutionSource.FOREGROUND
        assert [outcome for _, outcome in resolution.attempts] == [
            Outcome.NOT_FOUND,
            Outcome.NOT_FOUND,
            Outcome.NOT_FOUND,
            Outcome.NOT_FOUND,
            Outcome.RESOLVED,
        ]

    def test_everything_fails(self, config, registry, make_process_source, make_window_source):
        processes = make_process_source(error=StrategyUnavailable("no ps"))
        windows = make_window_source(error=StrategyUnavailable("no display"))
        resolver = _resolver(config, registry, processes, windows)

        resolution = resolver.resolve(_request())

        assert not resolution.found
        assert resolution.handle is None
        assert [outcome for _, outcome in resolution.attempts] == [
            Outcome.NOT_FOUND,
            Outcome.NOT_FOUND,
            Outcome.UNAVAILABLE,
            Outcome.UNAVAILABLE,
            Outcome.UNAVAILABLE,
        ]
        assert not registry.registry_file.exists()

    def test_each_strategy_runs_once(self, config, registry, make_process_source, make_window_source):
        processes = make_process_source([])
        windows = make_window_source([])
        resolver = _resolver(config, registry, processes, windows)

        resolver.resolve(_request())

        assert processes.calls == 1
        # process_tree doesn't enumerate without a host; title_match enumerates once
        assert windows.enumerate_calls == 1
        assert windows.foreground_calls == 1

    def test_no_session_id_resolves_without_registering(self, config, registry, sources):
        processes, windows = sources
        resolver = _resolver(config, registry, processes, windows)

        resolution = resolver.resolve(_request(session_id=None))

        assert resolution.handle == 600
        assert not registry.registry_file.exists()

    def test_register_conflict_does_not_fail_resolution(
        self, config, registry, sources, monkeypatch
    ):
        processes, windows = sources
        resolver = _resolver(config, registry, processes, windows)

        def conflict(*args, **kwargs):
            raise RegistryWriteConflict("busy")

        monkeypatch.setattr(registry, "register", conflict)
        resolution = resolver.resolve(_request())
        assert resolution.handle == 600

    def test_unparsable_os_output_falls_through(
        self, config, registry, make_process_source, make_window_source
    ):
        bad_bytes = UnicodeDecodeError("utf-8", b"caf\xe9", 3, 4, "invalid continuation byte")
        processes = make_process_source(error=bad_bytes)
        windows = make_window_source([], foreground_handle=700)
        resolver = _resolver(config, registry, processes, windows)

        resolution = resolver.resolve(_request())

        assert ("process_tree", Outcome.UNAVAILABLE) in resolution.attempts
        assert resolution.handle == 700

    def test_window_enumeration_shared_within_a_request(
        self, config, registry, make_process_source, make_window_source, make_window
    ):
        processes = make_process_source(_TREE)
        windows = make_window_source(
            [make_window(500, 999, title="other - pwsh")], foreground_handle=700
        )
        resolver = _resolver(config, registry, processes, windows)

        resolution = resolver.resolve(_request())

        assert resolution.strategy == "foreground"
        # process_tree and title_match both looked at the same enumeration
        assert windows.enumerate_calls == 1

        resolver.resolve(_request(session_id="s2", cwd="/elsewhere/repo"))
        assert windows.enumerate_calls == 2

    def test_budget_skips_remaining_strategies(
        self, config, registry, make_process_source, make_window_source
    ):
        now = [0.0]
        processes = make_process_source([])
        take_snapshot = processes.snapshot

        def slow_snapshot():
            now[0] += config.resolve_budget + 1
            return take_snapshot()

        processes.snapshot = slow_snapshot
        windows = make_window_source([], foreground_handle=700)
        resolver = _resolver(config, registry, processes, windows)
        resolver.clock = lambda: now[0]

        resolution = resolver.resolve(_request())

        assert not resolution.found
        assert resolution.attempts == [
            ("environment_hint", Outcome.NOT_FOUND),
            ("registry", Outcome.NOT_FOUND),
            ("process_tree", Outcome.NOT_FOUND),
            ("title_match", Outcome.TIMEOUT),
            ("foreground", Outcome.TIMEOUT),
        ]
        assert windows.calls == 0


class TestRegistryStrategy:
    def test_directory_entry_promoted_to_session(self, registry, caplog):
        registry.register("old-session", "/proj", 321, ResolutionSource.PROCESS_TREE)
        with caplog.at_level("INFO", logger="ccnotify.resolver"):
            result = RegistryStrategy(registry).resolve(_request("new-session", "/proj"))

        assert result.outcome == Outcome.RESOLVED
        assert result.handle == 321
        # A sibling's window is only a guess, so it is stored with the weakest source
        assert result.source == ResolutionSource.FOREGROUND
        promoted = registry.lookup_by_session("new-session")
        assert promoted.window_handle == 321
        assert promoted.source == ResolutionSource.FOREGROUND
        assert registry.lookup_by_session("old-session").source == ResolutionSource.PROCESS_TREE
        assert "Promoting directory entry of old-session" in caplog.text

    def test_directory_hit_without_session_id_keeps_source(self, registry):
        registry.register("old-session", "/proj", 321, ResolutionSource.PROCESS_TREE)
        result = RegistryStrategy(registry).resolve(_request(None, "/proj"))
        assert result.source == ResolutionSource.PROCESS_TREE
        assert registry.lookup_by_session("old-session") is not None

    def test_miss_creates_nothing(self, registry):
        result = RegistryStrategy(registry).resolve(_request("s1", "/proj"))
        assert result.outcome == Outcome.NOT_FOUND
        assert not registry.registry_file.exists()

    def test_no_cwd(self, registry):
        result = RegistryStrategy(registry).resolve(_request("s1", None))
        assert result.outcome == Outcome.NOT_FOUND


class TestEnvironmentHintStrategy:
    @pytest.mark.parametrize("hint", [None, "", "abc", "0"])
    def test_unusable_hint(self, hint):
        assert EnvironmentHintStrategy(hint).resolve(_request()).outcome == Outcome.NOT_FOUND

    def test_hex_hint(self):
        result = EnvironmentHintStrategy("0x2a").resolve(_request())
        assert result.handle == 42


class TestProcessTreeStrategy:
    def test_window_owned_by_descendant(
        self, config, make_process_source, make_window_source, make_window
    ):
        windows = make_window_source([make_window(800, 110, title="pwsh")])
        strategy = ProcessTreeStrategy(make_process_source(_TREE), windows, config)

        result = strategy.resolve(_request())

        assert result.handle == 800

    def test_no_terminal_ancestor(self, config, make_process_source, make_window_source):
        tree = [ProcessInfo(HOOK_PID, 1, "python"), ProcessInfo(1, 0, "init")]
        windows = make_window_source([])
        strategy = ProcessTreeStrategy(make_process_source(tree), windows, config)

        assert strategy.resolve(_request()).outcome == Outcome.NOT_FOUND
        assert windows.enumerate_calls == 0

    def test_host_without_window(self, config, make_process_source, make_window_source, make_window):
        windows = make_window_source([make_window(500, 999)])
        strategy = ProcessTreeStrategy(make_process_source(_TREE), windows, config)
        assert strategy.resolve(_request()).outcome == Outcome.NOT_FOUND


class TestTitleMatchStrategy:
    def test_windows_path_basename(self, make_window_source, make_window):
        windows = make_window_source([make_window(900, 1, title="myproject - pwsh")])
        strategy = TitleMatchStrategy(windows, "")
        result = strategy.resolve(_request(cwd=r"C:\Users\me\myproject"))
        assert result.handle == 900

    def test_class_filter_applies(self, make_window_source, make_window):
        windows = make_window_source(
            [make_window(900, 1, title="myproject", window_class="Chrome_WidgetWin_1")]
        )
        strategy = TitleMatchStrategy(windows, "CASCADIA")
        assert strategy.resolve(_request()).outcome == Outcome.NOT_FOUND


class TestForegroundStrategy:
    def test_no_foreground(self, make_window_source):
        strategy = ForegroundStrategy(make_window_source(foreground_handle=None))
        assert strategy.resolve(_request()).outcome == Outcome.NOT_FOUND


@pytest.mark.parametrize(
    ("cwd", "expected"),
    [
        ("/home/me/myproject", "myproject"),
        ("/home/me/myproject/", "myproject"),
        (r"C:\Users\me\myproject", "myproject"),
        ("/", ""),
    ],
)
def test_dir_basename(cwd, expected):
    assert _dir_basename(cwd) == expected
