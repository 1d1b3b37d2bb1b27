"""Auto-discovery of Strategy subclasses.

Every module in this package is imported and scanned for ``Strategy``
subclasses; skill tiers then pick their strategy by ``level``.
"""

from __future__ import annotations

import importlib
import pkgutil
from pathlib import Path

from errors import ContractError
from strategy import Strategy

_PKG_DIR = Path(__file__).resolve().parent


def _subclasses_in_module(mod) -> list[type[Strategy]]:
    found: list[type[Strategy]] = []
    for attr_name in dir(mod):
        obj = getattr(mod, attr_name)
        if (
            isinstance(obj, type)
            and issubclass(obj, Strategy)
            and obj is not Strategy
            and obj.__module__ == mod.__name__
        ):
            found.append(obj)
    return found


def discover_strategies() -> list[type[Strategy]]:
    """Return all Strategy subclasses in this package, ordered by level."""
    found: list[type[Strategy]] = []
    for info in pkgutil.iter_modules([str(_PKG_DIR)]):
        mod = importlib.import_module(f"strategies.{info.name}")
        found.extend(_subclasses_in_module(mod))
    return sorted(found, key=lambda cls: (cls.level, cls.__name__))


def strategy_for_level(level: int) -> type[Strategy]:
    """Return the strategy class serving deduction *level*."""
    for cls in discover_strategies():
        if cls.level == level:
            return cls
    known = sorted({cls.level for cls in discover_strategies()})
    raise ContractError(f"no strategy for level {level}; known levels: {known}")
