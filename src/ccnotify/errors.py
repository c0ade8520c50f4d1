"""Exceptions shared by the OS query sources, the registry and the resolver.

None of these reach the hook's caller: the resolver maps strategy errors
to an Outcome and moves on, and the registry maps corrupt files to an
empty registry.
"""


class StrategyUnavailable(Exception):
    """The platform can't answer this query (wrong OS, missing tool, denied)."""


class StrategyTimeout(Exception):
    """An OS query exceeded its time bound and was abandoned."""


class RegistryCorrupt(Exception):
    """The registry file exists but can't be parsed."""


class RegistryWriteConflict(Exception):
    """Another process held the registry lock past the lock timeout."""
