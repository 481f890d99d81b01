"""Word searchers benchmarked by the runner.

Each module in this package registers its searcher by name on import; the
registry imports them all on first lookup.
"""
from __future__ import annotations

from .registry import list_registered_searchers, make_searcher

__all__ = ["list_registered_searchers", "make_searcher"]
