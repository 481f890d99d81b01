from __future__ import annotations

import sys
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest

# Ensure repository root is on sys.path for imports like `buscaluso_bench.*`
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from buscaluso_bench.searcher.base import IterHandle  # noqa: E402


class HangingHandle:
    """Yields `words` then blocks until closed."""

    def __init__(self, words: List[str]) -> None:
        self.words = list(words)
        self.closed = threading.Event()

    def __iter__(self):
        for w in self.words:
            yield w
        while not self.closed.is_set():
            time.sleep(0.01)

    def close(self) -> None:
        self.closed.set()


Script = Union[List[str], Exception, Callable[[], object]]


class ScriptedSearcher:
    """Searcher whose candidate stream per start word is fixed by a test.

    A list is emitted as-is, an exception is raised from search(), a
    callable is invoked to build the handle.
    """

    name = "scripted"

    def __init__(self, scripts: Dict[str, Script], default: Optional[Script] = None) -> None:
        self.scripts = scripts
        self.default = default if default is not None else []
        self.calls: List[str] = []
        self.handles: List[object] = []

    def search(self, start_word: str):
        self.calls.append(start_word)
        script = self.scripts.get(start_word, self.default)
        if isinstance(script, Exception):
            raise script
        handle = script() if callable(script) else script
        if isinstance(handle, list):
            handle = IterHandle(handle)
        self.handles.append(handle)
        return handle


@pytest.fixture
def scripted():
    return ScriptedSearcher


@pytest.fixture
def bench_inputs(tmp_path: Path) -> Dict[str, Path]:
    """Rules, dictionary, benchmark and config files for a mock-searcher run."""
    rules = tmp_path / "rules.txt"
    rules.write_text("ss > ç\nu > o\n", encoding="utf-8")
    dictionary = tmp_path / "dict.txt"
    dictionary.write_text(
        "\n".join(["bolacha", "ação", "casa", "cama", "gato", "rato", "pato", "mesa"]) + "\n",
        encoding="utf-8",
    )
    bench = tmp_path / "bench.txt"
    bench.write_text(
        "; benchmark file\n"
        "bulacha = bolacha\n"
        "assõ = ação ; accented start word\n"
        "kaza = casa | cama, gato\n"
        "xyz = naoexiste\n",
        encoding="utf-8",
    )
    config = tmp_path / "bench.toml"
    config.write_text(
        "\n".join(
            [
                "repeat = 3",
                "timeout = 5.0",
                'searcher = "mock"',
                "warmup = false",
                'machine = "test-box"',
                'rules_file = "rules.txt"',
                'dict_file = "dict.txt"',
                'bench_file = "bench.txt"',
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    return {"rules": rules, "dict": dictionary, "bench": bench, "config": config, "db": tmp_path / "bench.sqlite3"}


@pytest.fixture
def hanging():
    return HangingHandle
