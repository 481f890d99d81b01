from __future__ import annotations

import importlib
import pkgutil
from pathlib import Path
from typing import Callable, Dict, Iterable

from .base import Searcher

__all__ = ["register_searcher", "get_searcher_factory", "make_searcher", "list_registered_searchers"]

SearcherFactory = Callable[..., Searcher]

_SEARCHER_REGISTRY: Dict[str, SearcherFactory] = {}
# alias -> module that registered it, for conflict messages
_REGISTERED_BY: Dict[str, str] = {}

_NOT_SEARCHERS = {"base", "registry"}
_builtins_loaded = False


def _load_builtin_searchers() -> None:
    """Import every searcher module next to this one once; they register on import."""
    global _builtins_loaded
    if _builtins_loaded:
        return
    for module_info in pkgutil.iter_modules([str(Path(__file__).parent)]):
        name = module_info.name
        if name.startswith("_") or name in _NOT_SEARCHERS:
            continue
        importlib.import_module(f"{__package__}.{name}")
    _builtins_loaded = True


def _normalize(name: str) -> str:
    return (name or "").strip().lower()


def register_searcher(*, aliases: Iterable[str], factory: SearcherFactory) -> None:
    """Register a searcher factory under one or more names.

    Searcher modules call this at import time. The factory receives the
    RunConfig and returns a ready Searcher.
    """

    if not callable(factory):
        raise TypeError("factory must be callable")

    alias_list = [_normalize(alias) for alias in aliases if _normalize(alias)]
    if not alias_list:
        raise ValueError("At least one non-empty alias is required")

    owner = getattr(factory, "__module__", None) or "?"
    for alias in alias_list:
        existing = _SEARCHER_REGISTRY.get(alias)
        if existing is not None and existing is not factory:
            raise ValueError(f"Searcher '{alias}' is already registered by {_REGISTERED_BY[alias]}")
        _SEARCHER_REGISTRY[alias] = factory
        _REGISTERED_BY[alias] = owner


def get_searcher_factory(name: str) -> SearcherFactory:
    _load_builtin_searchers()
    key = _normalize(name)
    if not key:
        raise ValueError("searcher name must be a non-empty string")
    try:
        return _SEARCHER_REGISTRY[key]
    except KeyError as exc:
        known = ", ".join(sorted(_SEARCHER_REGISTRY))
        raise ValueError(f"No searcher registered as '{name}' (known: {known})") from exc


def make_searcher(name: str, cfg) -> Searcher:
    """Build the named searcher from a RunConfig."""

    return get_searcher_factory(name)(cfg)


def list_registered_searchers() -> list[str]:
    _load_builtin_searchers()
    return sorted(_SEARCHER_REGISTRY.keys())
