from __future__ import annotations


class BenchError(Exception):
    """Base class for benchmark failures."""


class ConfigError(BenchError):
    """Missing or invalid run configuration."""


class ParseError(BenchError):
    """Malformed line in a benchmark file."""

    def __init__(self, line_no: int, text: str, reason: str = "malformed benchmark line") -> None:
        self.line_no = line_no
        self.text = text
        self.reason = reason
        super().__init__(f"line {line_no}: {reason}: {text!r}")


class TrialError(BenchError):
    """A single searcher invocation failed.

    Never fatal: the runner records it as an error outcome and moves on.
    """


class StoreError(BenchError):
    """Session store read or write failure."""
