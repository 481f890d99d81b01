from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .constants import NOT_FOUND_PENALTY, RANK_UNIT, TRIM_FRACTION
from .models import OutcomeKind, RawOutcome, TrialResult, TrialStatus


def _trimmed(x: np.ndarray, trim: float = TRIM_FRACTION) -> np.ndarray:
    """Sorted values left after dropping floor(n * trim) from each end."""
    if trim >= 0.5:
        raise ValueError(f"Trim must be < 0.5, got {trim}")
    x = np.sort(np.asarray(x, dtype=float))
    n = x.size
    if n == 0:
        raise ValueError("No values to average")
    k = int(n * trim)
    if k == 0 or 2 * k >= n:
        return x
    return x[k:n - k]


def _trimmed_mean(x: np.ndarray, trim: float = TRIM_FRACTION) -> float:
    """Mean after dropping floor(n * trim) values from each end."""
    return float(np.mean(_trimmed(x, trim)))


def outcome_value(outcome: RawOutcome) -> float:
    """Per-repeat value: rank * RANK_UNIT + elapsed when found, else the penalty."""
    if outcome.kind is OutcomeKind.FOUND:
        return float(outcome.rank or 0) * RANK_UNIT + float(outcome.elapsed)
    return NOT_FOUND_PENALTY


def score_trial(outcomes: Sequence[RawOutcome]) -> TrialResult:
    """Reduce one trial's repeats to a single score.

    The trial counts as found only when no penalty value survives the trim,
    so a score is either a real time or dominated by the penalty.
    Deterministic: the same outcomes always give the same TrialResult.
    """
    n = len(outcomes)
    errors = [o for o in outcomes if o.is_error]
    found = [o for o in outcomes if o.kind is OutcomeKind.FOUND]
    rank_range: Optional[Tuple[int, int]] = None
    elapsed_range: Optional[Tuple[float, float]] = None
    if found:
        ranks = [int(o.rank or 0) for o in found]
        times = [float(o.elapsed) for o in found]
        rank_range = (min(ranks), max(ranks))
        elapsed_range = (min(times), max(times))

    if n == 0 or len(errors) == n:
        return TrialResult(
            status=TrialStatus.ALL_ERRORED,
            score=None,
            n_outcomes=n,
            error_count=len(errors),
            found_count=0,
        )

    kept = _trimmed(np.array([outcome_value(o) for o in outcomes], dtype=float), TRIM_FRACTION)
    status = TrialStatus.PARTIAL_ERRORS if errors else TrialStatus.CLEAN
    return TrialResult(
        status=status,
        score=float(np.mean(kept)),
        n_outcomes=n,
        error_count=len(errors),
        found_count=len(found),
        found=bool(np.all(kept < NOT_FOUND_PENALTY)),
        rank_range=rank_range,
        elapsed_range=elapsed_range,
    )


def score_session(trials: Mapping[str, Tuple[object, Sequence[RawOutcome]]]) -> Dict[str, TrialResult]:
    """Score every trial of a session loaded by `storage.load_trial_outcomes`."""
    return {label: score_trial(outcomes) for label, (_spec, outcomes) in trials.items()}


@dataclass(frozen=True)
class SessionSummary:
    n_trials: int
    n_clean: int
    n_partial_errors: int
    n_all_errored: int
    n_outcomes: int
    n_error_outcomes: int
    n_found: int
    mean_score: Optional[float] = None
    median_score: Optional[float] = None
    p25_score: Optional[float] = None
    p75_score: Optional[float] = None
    min_score: Optional[float] = None
    max_score: Optional[float] = None
    found_mean_score: Optional[float] = None
    found_median_score: Optional[float] = None
    found_score_range: Optional[Tuple[float, float]] = None
    found_elapsed_range: Optional[Tuple[float, float]] = None

    @property
    def error_rate(self) -> float:
        return self.n_error_outcomes / self.n_outcomes if self.n_outcomes else 0.0

    @property
    def found_rate(self) -> float:
        return self.n_found / self.n_trials if self.n_trials else 0.0


def summarize_session(results: Iterable[TrialResult]) -> SessionSummary:
    """Counts by status plus score statistics over trials that have a score."""
    results = list(results)
    counts = {status: 0 for status in TrialStatus}
    for r in results:
        counts[r.status] += 1
    scores = np.array([r.score for r in results if r.score is not None], dtype=float)
    found_scores = np.array([r.score for r in results if r.found], dtype=float)
    found_ranges = [r.elapsed_range for r in results if r.found and r.elapsed_range is not None]
    found_lo: List[float] = [lo for lo, _hi in found_ranges]
    found_hi: List[float] = [hi for _lo, hi in found_ranges]

    stats: Dict[str, Optional[float]] = {}
    if scores.size:
        p25, median, p75 = np.percentile(scores, [25, 50, 75])
        stats = {
            "mean_score": float(np.mean(scores)),
            "median_score": float(median),
            "p25_score": float(p25),
            "p75_score": float(p75),
            "min_score": float(np.min(scores)),
            "max_score": float(np.max(scores)),
        }
    return SessionSummary(
        n_trials=len(results),
        n_clean=counts[TrialStatus.CLEAN],
        n_partial_errors=counts[TrialStatus.PARTIAL_ERRORS],
        n_all_errored=counts[TrialStatus.ALL_ERRORED],
        n_outcomes=sum(r.n_outcomes for r in results),
        n_error_outcomes=sum(r.error_count for r in results),
        n_found=int(found_scores.size),
        found_mean_score=float(np.mean(found_scores)) if found_scores.size else None,
        found_median_score=float(np.median(found_scores)) if found_scores.size else None,
        found_score_range=(float(np.min(found_scores)), float(np.max(found_scores))) if found_scores.size else None,
        found_elapsed_range=(min(found_lo), max(found_hi)) if found_lo else None,
        **stats,
    )
