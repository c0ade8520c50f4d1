"""Click-based CLI for ccnotify.

Defines the top-level command group and its subcommands: ``hook`` (the
Claude Code hook entry), ``status``, ``prune``, ``hwnd`` and ``doctor``.
Log level precedence: -v / --log-level flag > CCNOTIFY_LOG_LEVEL > INFO.
``apply_args_to_env()`` sets os.environ for explicitly provided flags so
Config and setup_logging read the overridden values.
"""

import os
import sys

import click

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def apply_args_to_env(verbose: bool = False, log_level: str | None = None) -> None:
    """Set CCNOTIFY_LOG_LEVEL from explicitly provided CLI flags.

    Call BEFORE Config instantiation to ensure CLI flags take precedence.
    """
    if verbose:
        os.environ["CCNOTIFY_LOG_LEVEL"] = "DEBUG"
    elif log_level is not None:
        os.environ["CCNOTIFY_LOG_LEVEL"] = log_level.upper()


def _log_options(fn):
    fn = click.option(
        "--log-level",
        type=click.Choice(_LOG_LEVELS, case_sensitive=False),
        default=None,
        help="Logging level.",
    )(fn)
    return click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")(fn)


@click.group(
    help="Desktop notifications for Claude Code, targeted at the session's terminal window.",
)
@click.version_option(package_name="ccnotify", prog_name="ccnotify")
def cli() -> None:
    pass


# --- hook command ----------------------------------------------------------


@cli.command("hook")
@click.option(
    "--install", is_flag=True, help="Install hook into ~/.claude/settings.json."
)
@click.option(
    "--uninstall", is_flag=True, help="Remove hook from ~/.claude/settings.json."
)
@click.option("--status", is_flag=True, help="Check if hook is installed.")
@_log_options
def hook_cmd(
    install: bool, uninstall: bool, status: bool, verbose: bool, log_level: str | None
) -> None:
    """Claude Code hook: register sessions and send notifications."""
    apply_args_to_env(verbose=verbose, log_level=log_level)

    from .config import Config
    from .hook import hook_main
    from .main import setup_logging

    config = Config()
    managing = install or uninstall or status
    setup_logging(
        os.getenv("CCNOTIFY_LOG_LEVEL", "INFO"),
        None if managing else config.log_file,
    )
    hook_main(install=install, uninstall=uninstall, status=status)


# --- status command --------------------------------------------------------


@cli.command("status")
def status_cmd() -> None:
    """Show registered sessions."""
    from .status_cmd import status_main

    status_main()


# --- prune command ---------------------------------------------------------


@cli.command("prune")
@_log_options
def prune_cmd(verbose: bool, log_level: str | None) -> None:
    """Remove registry entries older than the retention period."""
    apply_args_to_env(verbose=verbose, log_level=log_level)

    from .config import Config
    from .errors import RegistryWriteConflict
    from .main import setup_logging
    from .registry import SessionRegistry

    config = Config()
    setup_logging(os.getenv("CCNOTIFY_LOG_LEVEL", "INFO"))
    registry = SessionRegistry(
        config.registry_file,
        config.lock_file,
        retention=config.retention,
        lock_timeout=config.lock_timeout,
    )
    try:
        removed = registry.purge_stale()
    except RegistryWriteConflict as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Removed {removed} stale session(s) from {config.registry_file}")


# --- hwnd command ----------------------------------------------------------


@cli.command("hwnd")
def hwnd_cmd() -> None:
    """Print the foreground window handle (for exporting the hint variable)."""
    from .config import Config
    from .errors import StrategyTimeout, StrategyUnavailable
    from .windows import default_window_source

    config = Config()
    source = default_window_source(config.query_timeout)
    try:
        handle = source.foreground()
    except (StrategyUnavailable, StrategyTimeout) as e:
        click.echo(f"Cannot query the foreground window: {e}", err=True)
        sys.exit(1)
    if handle is None:
        click.echo("No foreground window", err=True)
        sys.exit(1)
    click.echo(str(handle))


# --- doctor command --------------------------------------------------------


@cli.command("doctor")
@click.option("--fix", is_flag=True, help="Auto-fix issues where possible.")
def doctor_cmd(fix: bool) -> None:
    """Validate setup and diagnose issues."""
    from .doctor_cmd import doctor_main

    doctor_main(fix=fix)
