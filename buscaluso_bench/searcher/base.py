from __future__ import annotations

from typing import Iterator, Protocol, runtime_checkable


@runtime_checkable
class SearchHandle(Protocol):
    """One live search: ranked candidate words, produced lazily.

    Iteration ends when the search completes and raises when it fails.
    `close()` must stop the search even while another thread is blocked
    reading from it.
    """

    def __iter__(self) -> Iterator[str]:  # pragma: no cover - Protocol stub
        ...

    def close(self) -> None:  # pragma: no cover - Protocol stub
        ...


@runtime_checkable
class Searcher(Protocol):
    """Word search capability under benchmark."""

    name: str

    def search(self, start_word: str) -> SearchHandle:  # pragma: no cover - Protocol stub
        ...


class IterHandle:
    """SearchHandle over a plain iterable or generator."""

    def __init__(self, words) -> None:
        self._it = iter(words)
        self.closed = False

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        if self.closed:
            raise StopIteration
        return next(self._it)

    def close(self) -> None:
        self.closed = True
