from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Optional, Tuple


TARGET_SEPARATOR = " | "


def targets_key(targets) -> str:
    """Stable text form of a target group (sorted, ' | ' joined)."""
    return TARGET_SEPARATOR.join(sorted(targets))


def trial_label(start_word: str, targets) -> str:
    return f"{start_word} = {targets_key(targets)}"


@dataclass(frozen=True)
class TrialSpec:
    """One start word paired with a group of alternative targets.

    Equality and hashing only look at (start_word, targets); the source
    line and line number are kept for diagnostics.
    """

    start_word: str
    targets: FrozenSet[str]
    source_line: str = field(default="", compare=False)
    line_no: int = field(default=0, compare=False)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.start_word, targets_key(self.targets))

    @property
    def label(self) -> str:
        return trial_label(self.start_word, self.targets)


class OutcomeKind(str, Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class RawOutcome:
    """Result of one repeat of one trial.

    `rank` is 0-based: the number of candidates the searcher emitted before
    the first matching target. `elapsed` is always set, for errors it is the
    time until the failure or timeout was observed.
    """

    kind: OutcomeKind
    elapsed: float
    rank: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def found(cls, rank: int, elapsed: float) -> "RawOutcome":
        if rank < 0:
            raise ValueError("rank must be non-negative")
        return cls(OutcomeKind.FOUND, float(elapsed), rank=int(rank))

    @classmethod
    def not_found(cls, elapsed: float) -> "RawOutcome":
        return cls(OutcomeKind.NOT_FOUND, float(elapsed))

    @classmethod
    def failed(cls, message: str, elapsed: float = 0.0) -> "RawOutcome":
        return cls(OutcomeKind.ERROR, float(elapsed), error=message or "error")

    @property
    def is_error(self) -> bool:
        return self.kind is OutcomeKind.ERROR


class TrialStatus(str, Enum):
    CLEAN = "clean"
    PARTIAL_ERRORS = "partial_errors"
    ALL_ERRORED = "all_errored"


@dataclass(frozen=True)
class TrialResult:
    status: TrialStatus
    score: Optional[float]
    n_outcomes: int
    error_count: int = 0
    found_count: int = 0
    # no penalty value left after trimming
    found: bool = False
    rank_range: Optional[Tuple[int, int]] = None
    elapsed_range: Optional[Tuple[float, float]] = None

    @property
    def has_score(self) -> bool:
        return self.score is not None
