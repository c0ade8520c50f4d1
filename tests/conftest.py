"""Root conftest — sets env vars BEFORE any ccnotify module is imported.

Config reads CCNOTIFY_DIR and the window-handle hint from the environment,
so these must be pinned before pytest discovers any test that
transitively imports ccnotify.
"""

import os
import tempfile

# Force-set (not setdefault) to prevent real env vars from leaking into tests
os.environ["CCNOTIFY_DIR"] = tempfile.mkdtemp(prefix="ccnotify-test-")
os.environ.pop("CLAUDE_WT_HWND", None)
os.environ.pop("CCNOTIFY_HINT_VAR", None)
