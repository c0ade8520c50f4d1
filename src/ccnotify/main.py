"""Application entry point — Click CLI dispatcher and logging bootstrap.

The ``main()`` function invokes the Click command group defined in cli.py,
which dispatches to subcommands (hook, status, prune, hwnd, doctor).
``setup_logging()`` is called by each command before it does any work.
"""

import logging
from pathlib import Path

import colorlog


class _ShortNameFilter(logging.Filter):
    """Strip the 'ccnotify.' prefix, cap at 16 chars."""

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name.startswith("ccnotify."):
            name = name[len("ccnotify.") :]
        record.short_name = name[:16]  # type: ignore[attr-defined]
        return True


def setup_logging(log_level: str, log_file: Path | None = None) -> None:
    """Configure colored stderr logging, plus an optional plain log file.

    Hook runs pass log_file: Claude Code hides hook stderr, so the file is
    the only trail of what a resolution did.
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = colorlog.StreamHandler()
    handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(asctime)s %(levelname)-8s %(short_name)-16s %(message)s",
            datefmt="%H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "bold_red",
            },
        )
    )
    handler.addFilter(_ShortNameFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            logging.getLogger(__name__).warning("Cannot open log file %s: %s", log_file, e)
        else:
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s %(process)d %(levelname)-8s %(short_name)-16s %(message)s"
                )
            )
            file_handler.addFilter(_ShortNameFilter())
            root.addHandler(file_handler)

    logging.getLogger("ccnotify").setLevel(numeric_level)
    logging.getLogger("filelock").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point — dispatches via Click CLI group."""
    from .cli import cli

    cli()


if __name__ == "__main__":
    main()
