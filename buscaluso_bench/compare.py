from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .constants import MATERIALITY_THRESHOLD
from .models import TrialResult, TrialStatus


@dataclass(frozen=True)
class DeltaRow:
    label: str
    a: TrialResult
    b: TrialResult
    delta: float  # score(b) - score(a); positive means A did better

    @property
    def better(self) -> str:
        return "A" if self.delta > 0 else "B"


@dataclass(frozen=True)
class StatusChangeRow:
    label: str
    a: TrialResult
    b: TrialResult

    @property
    def a_status(self) -> TrialStatus:
        return self.a.status

    @property
    def b_status(self) -> TrialStatus:
        return self.b.status


@dataclass
class ComparisonReport:
    rows: List[DeltaRow] = field(default_factory=list)
    status_changes: List[StatusChangeRow] = field(default_factory=list)
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    n_compared: int = 0
    total_delta: float = 0.0
    # Sum of deltas over trials found on both sides.
    matched_delta: float = 0.0
    found_only_a: int = 0
    found_only_b: int = 0
    threshold: float = MATERIALITY_THRESHOLD

    @property
    def mean_delta(self) -> Optional[float]:
        return self.total_delta / self.n_compared if self.n_compared else None

    @property
    def better_in_a(self) -> List[DeltaRow]:
        return [r for r in self.rows if r.delta > 0]

    @property
    def better_in_b(self) -> List[DeltaRow]:
        return [r for r in self.rows if r.delta < 0]


def compare_sessions(
    a: Mapping[str, TrialResult],
    b: Mapping[str, TrialResult],
    threshold: float = MATERIALITY_THRESHOLD,
) -> ComparisonReport:
    """Per-trial score deltas between two scored sessions.

    Trials are matched by label (start word and sorted targets). Only
    deltas with |delta| >= threshold get a detailed row, every delta still
    counts toward the totals.
    """
    report = ComparisonReport(threshold=threshold)
    report.removed = sorted(set(a) - set(b))
    report.added = sorted(set(b) - set(a))
    for label in sorted(set(a) & set(b)):
        ra, rb = a[label], b[label]
        if ra.status is TrialStatus.ALL_ERRORED or rb.status is TrialStatus.ALL_ERRORED:
            report.status_changes.append(StatusChangeRow(label, ra, rb))
            continue
        delta = float(rb.score) - float(ra.score)
        report.n_compared += 1
        report.total_delta += delta
        if ra.found and rb.found:
            report.matched_delta += delta
        elif ra.found:
            report.found_only_a += 1
        elif rb.found:
            report.found_only_b += 1
        if abs(delta) >= threshold:
            report.rows.append(DeltaRow(label, ra, rb, delta))
    return report
