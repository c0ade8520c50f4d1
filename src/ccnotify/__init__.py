"""CCNotify - desktop notifications for Claude Code sessions.

Package entry point. Exports the version string only; all functional
modules are imported lazily by cli.py to keep hook startup fast.
"""

from ._version import __version__

__all__ = ["__version__"]
