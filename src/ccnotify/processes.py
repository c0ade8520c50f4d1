"""Process-tree walking — find the terminal host that owns a session.

Takes a point-in-time snapshot of every running process (pid, parent pid,
name) and walks it in memory:
  - find_ancestor_by_role(): climb parents from a pid until a role
    predicate matches (e.g. "is the terminal host").
  - find_descendant_owner(): given a resolved ancestor and the owner pids
    of enumerated windows, keep the owners that are the ancestor itself or
    run beneath it. Some terminal architectures don't render the window
    from the process that spawned the shell, so matching has to work in
    both directions.

A process that exits between snapshot and use simply isn't found. Walks
are bounded by the snapshot size so corrupt parent cycles can't loop.

Snapshot sources (ports):
  - PsProcessSource: `ps -axo pid=,ppid=,comm=` on macOS/Linux.
  - PowerShellProcessSource: Win32_Process via CIM on Windows.

Key functions: find_ancestor_by_role(), find_descendant_owner(),
default_process_source().
"""

import json
import logging
import os
import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Protocol

from .errors import StrategyUnavailable
from .utils import powershell_command, run_query

logger = logging.getLogger(__name__)

_PS_FIELDS = 3

_CIM_SCRIPT = (
    "Get-CimInstance Win32_Process | "
    "Select-Object ProcessId,ParentProcessId,Name | "
    "ConvertTo-Json -Compress"
)


@dataclass(frozen=True)
class ProcessInfo:
    """One row of a process snapshot."""

    pid: int
    ppid: int
    name: str


class ProcessSource(Protocol):
    """Produces a point-in-time snapshot of running processes."""

    def snapshot(self) -> list[ProcessInfo]: ...


class PsProcessSource:
    """Process snapshot via ps(1)."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout

    def snapshot(self) -> list[ProcessInfo]:
        output = run_query(["ps", "-axo", "pid=,ppid=,comm="], self.timeout)
        return parse_ps_output(output)


class PowerShellProcessSource:
    """Process snapshot via Get-CimInstance Win32_Process."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout

    def snapshot(self) -> list[ProcessInfo]:
        output = run_query(powershell_command(_CIM_SCRIPT), self.timeout)
        return parse_cim_output(output)


def default_process_source(timeout: float) -> ProcessSource:
    """Pick the snapshot source for the running platform."""
    if sys.platform == "win32":
        return PowerShellProcessSource(timeout)
    return PsProcessSource(timeout)


def parse_ps_output(output: str) -> list[ProcessInfo]:
    """Parse `pid ppid comm` lines, skipping anything malformed."""
    processes = []
    for line in output.splitlines():
        parts = line.split(None, 2)
        if len(parts) < _PS_FIELDS:
            continue
        try:
            pid, ppid = int(parts[0]), int(parts[1])
        except ValueError:
            continue
        # macOS reports comm as a full executable path
        processes.append(ProcessInfo(pid, ppid, os.path.basename(parts[2].strip())))
    return processes


def parse_cim_output(output: str) -> list[ProcessInfo]:
    """Parse ConvertTo-Json output of Win32_Process rows."""
    if not output.strip():
        return []
    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise StrategyUnavailable(f"unparsable process list: {e}") from e
    # ConvertTo-Json emits a bare object for a single row
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise StrategyUnavailable(
            f"unexpected process list type: {type(data).__name__}"
        )
    processes = []
    for row in data:
        if not isinstance(row, dict):
            continue
        pid = row.get("ProcessId")
        ppid = row.get("ParentProcessId")
        if not isinstance(pid, int) or not isinstance(ppid, int):
            continue
        processes.append(ProcessInfo(pid, ppid, row.get("Name") or ""))
    return processes


def _index(processes: Iterable[ProcessInfo]) -> dict[int, ProcessInfo]:
    return {p.pid: p for p in processes}


def ancestry(start_pid: int, processes: Iterable[ProcessInfo]) -> list[ProcessInfo]:
    """Return start_pid's chain up to the root: [self, parent, grandparent, ...].

    Stops at a pid missing from the snapshot, a self-parented process, or
    after len(snapshot) steps.
    """
    table = _index(processes)
    chain: list[ProcessInfo] = []
    seen: set[int] = set()
    pid = start_pid
    for _ in range(len(table)):
        proc = table.get(pid)
        if proc is None or pid in seen:
            break
        chain.append(proc)
        seen.add(pid)
        pid = proc.ppid
    return chain


def find_ancestor_by_role(
    start_pid: int,
    role: Callable[[str], bool],
    processes: Iterable[ProcessInfo],
) -> int | None:
    """Return the nearest pid at or above start_pid whose name matches role."""
    for proc in ancestry(start_pid, processes):
        if role(proc.name):
            logger.debug("Ancestor %s (%s) matched role", proc.pid, proc.name)
            return proc.pid
    return None


def find_descendant_owner(
    ancestor_pid: int,
    owner_pids: Iterable[int],
    processes: Iterable[ProcessInfo],
) -> list[int]:
    """Return the owner pids that are ancestor_pid or descend from it.

    Order follows owner_pids (enumeration order), without duplicates.
    """
    snapshot = list(processes)
    matches: list[int] = []
    for owner in owner_pids:
        if owner in matches:
            continue
        if owner == ancestor_pid or any(
            p.pid == ancestor_pid for p in ancestry(owner, snapshot)
        ):
            matches.append(owner)
    return matches
