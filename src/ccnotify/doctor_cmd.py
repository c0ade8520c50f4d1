"""CLI `ccnotify doctor [--fix]` — validate ccnotify setup.

Checks the state directory, registry file, the platform tools used for
process and window queries, the desktop notifier, the hook installation
and the window-handle hint. With --fix, installs the hook and prunes
stale registry entries.
"""

import importlib.util
import json
import shutil
import sys
from collections.abc import Callable

from .config import Config
from .errors import RegistryCorrupt, RegistryWriteConflict
from .registry import SessionRegistry, parse_registry
from .utils import parse_window_handle

_PASS = "pass"
_FAIL = "fail"
_WARN = "warn"

_SYMBOLS = {_PASS: "✓", _FAIL: "✗", _WARN: "⚠"}


def _print_check(status: str, message: str) -> None:
    """Print a single check result."""
    sym = _SYMBOLS.get(status, "?")
    print(f"  {sym} {message}")


def _check_config_dir(config: Config) -> tuple[str, str]:
    """Check the state directory exists."""
    if config.config_dir.is_dir():
        return _PASS, f"state dir {config.config_dir} exists"
    return _WARN, f"state dir {config.config_dir} not created yet (first hook run creates it)"


def _check_registry(config: Config) -> tuple[str, str]:
    """Check the registry file parses."""
    path = config.registry_file
    if not path.exists():
        return _PASS, "registry empty (no sessions registered yet)"
    try:
        entries = parse_registry(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        return _FAIL, f"registry unreadable: {e}"
    except RegistryCorrupt as e:
        return _WARN, f"registry corrupt, will be rewritten on next session start ({e})"
    return _PASS, f"registry has {len(entries)} session(s)"


def _pywin32_available() -> bool:
    return importlib.util.find_spec("win32gui") is not None


def _check_query_tools(platform: str = sys.platform) -> list[tuple[str, str]]:
    """Check the tools used for process snapshots and window queries."""
    if platform == "win32":
        tools = ["powershell"]
    elif platform == "darwin":
        return [
            (_PASS, "ps found") if shutil.which("ps") else (_FAIL, "ps not found"),
            (_WARN, "window enumeration unsupported on macOS, notifications are untargeted"),
        ]
    else:
        tools = ["ps", "wmctrl", "xdotool"]
    results = []
    for tool in tools:
        path = shutil.which(tool)
        if path:
            results.append((_PASS, f"{tool} found at {path}"))
        else:
            results.append((_WARN, f"{tool} not found in PATH, its strategies are skipped"))
    if platform == "win32":
        if _pywin32_available():
            results.append((_PASS, "pywin32 available for window queries"))
        else:
            results.append(
                (_FAIL, "pywin32 not installed, window strategies are skipped")
            )
    return results


def _check_notifier(config: Config, platform: str = sys.platform) -> tuple[str, str]:
    """Check the desktop notifier for this platform."""
    if platform == "win32":
        if config.toast_script.is_file():
            return _PASS, f"toast script {config.toast_script} found"
        return _WARN, f"toast script {config.toast_script} missing, plain toasts only"
    if platform == "darwin":
        for tool in ("terminal-notifier", "osascript"):
            if shutil.which(tool):
                return _PASS, f"{tool} found"
        return _FAIL, "neither terminal-notifier nor osascript found"
    if shutil.which("notify-send"):
        return _PASS, "notify-send found"
    return _FAIL, "notify-send not found in PATH"


def _check_hook() -> tuple[str, str, bool]:
    """Check hook installation. Returns (status, message, is_installed)."""
    from .hook import _CLAUDE_SETTINGS_FILE, HOOK_EVENTS, _is_hook_installed

    if not _CLAUDE_SETTINGS_FILE.exists():
        return _FAIL, "hook not installed (~/.claude/settings.json missing)", False
    try:
        settings = json.loads(_CLAUDE_SETTINGS_FILE.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        return _FAIL, "hook not installed (settings.json unreadable)", False
    if not isinstance(settings, dict):
        return _FAIL, "hook not installed (settings.json is not an object)", False

    missing = [e for e in HOOK_EVENTS if not _is_hook_installed(settings, e)]
    if not missing:
        return _PASS, "hook installed in ~/.claude/settings.json", True
    return _FAIL, f"hook missing for {', '.join(missing)}", False


def _check_hint(config: Config) -> tuple[str, str]:
    """Check the window-handle hint variable."""
    if not config.window_hint:
        return _WARN, f"{config.hint_var} not set, falling back to window matching"
    if parse_window_handle(config.window_hint) is None:
        return _FAIL, f"{config.hint_var}={config.window_hint!r} is not a window handle"
    return _PASS, f"{config.hint_var}={config.window_hint}"


def _run_check(check_fn: Callable[[], tuple[str, str]]) -> bool:
    """Run a check function, print it, and return whether it failed."""
    status, msg = check_fn()
    _print_check(status, msg)
    return status == _FAIL


def _fix_hook(hook_installed: bool, fix: bool) -> None:
    """Attempt to fix missing hook if --fix is set."""
    if not fix or hook_installed:
        return
    from .hook import _install_hook

    if _install_hook() == 0:
        _print_check(_PASS, "hook installed (fixed)")
    else:
        _print_check(_FAIL, "failed to install hook")


def _fix_registry(config: Config, fix: bool) -> None:
    """Prune stale registry entries if --fix is set."""
    if not fix or not config.registry_file.exists():
        return
    registry = SessionRegistry(
        config.registry_file,
        config.lock_file,
        retention=config.retention,
        lock_timeout=config.lock_timeout,
    )
    try:
        removed = registry.purge_stale()
    except (RegistryWriteConflict, OSError) as e:
        _print_check(_FAIL, f"failed to prune registry: {e}")
        return
    _print_check(_PASS, f"pruned {removed} stale registry entr{'y' if removed == 1 else 'ies'}")


def doctor_main(fix: bool = False) -> None:
    """Entry point for `ccnotify doctor [--fix]`."""
    config = Config()
    has_failures = False

    print(f"Platform: {sys.platform}")

    for check_fn in (
        lambda: _check_config_dir(config),
        lambda: _check_registry(config),
    ):
        has_failures = _run_check(check_fn) or has_failures
    _fix_registry(config, fix)

    for status, msg in _check_query_tools(sys.platform):
        _print_check(status, msg)
        has_failures = has_failures or status == _FAIL

    has_failures = _run_check(lambda: _check_notifier(config, sys.platform)) or has_failures

    hook_status, hook_msg, hook_installed = _check_hook()
    _print_check(hook_status, hook_msg)
    if hook_status == _FAIL:
        has_failures = True
        _fix_hook(hook_installed, fix)

    has_failures = _run_check(lambda: _check_hint(config)) or has_failures

    sys.exit(1 if has_failures else 0)
