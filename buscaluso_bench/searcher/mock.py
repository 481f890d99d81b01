from __future__ import annotations

import hashlib
from pathlib import Path
from typing import List

from .base import IterHandle
from .registry import register_searcher


def load_dictionary_words(path: str | Path) -> List[str]:
    """First token of every non-blank, non-comment line, de-duplicated in order."""
    words: List[str] = []
    seen = set()
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        text = line.strip()
        if not text or text.startswith(("#", ";")):
            continue
        word = text.split()[0]
        if word not in seen:
            seen.add(word)
            words.append(word)
    return words


class MockSearcher:
    """Deterministic searcher for smoke tests (no external process).

    Every dictionary word is a candidate; the order for a start word is
    fixed by sha256(start_word|word), so repeated runs rank identically.
    """

    name = "mock"

    def __init__(self, words: List[str]) -> None:
        self.words = list(words)

    def ranked(self, start_word: str) -> List[str]:
        def key(word: str) -> str:
            return hashlib.sha256(f"{start_word}|{word}".encode("utf-8")).hexdigest()

        return sorted(self.words, key=key)

    def search(self, start_word: str) -> IterHandle:
        return IterHandle(self.ranked(start_word))


def _from_config(cfg) -> MockSearcher:
    return MockSearcher(load_dictionary_words(cfg.dict_file))


register_searcher(aliases=["mock"], factory=_from_config)
