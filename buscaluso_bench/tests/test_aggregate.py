from __future__ import annotations

import numpy as np
import pytest
from hypothesis import given, strategies as st

from buscaluso_bench.aggregate import (
    _trimmed_mean,
    outcome_value,
    score_trial,
    summarize_session,
)
from buscaluso_bench.constants import NOT_FOUND_PENALTY, RANK_UNIT
from buscaluso_bench.models import RawOutcome, TrialStatus


def test_found_value_combines_rank_and_elapsed():
    assert outcome_value(RawOutcome.found(3, 0.1)) == pytest.approx(0.475)
    assert outcome_value(RawOutcome.found(0, 0.5)) == pytest.approx(0.5)
    assert RANK_UNIT == 0.125


def test_not_found_and_error_take_penalty():
    assert outcome_value(RawOutcome.not_found(0.2)) == NOT_FOUND_PENALTY
    assert outcome_value(RawOutcome.failed("boom", 0.2)) == NOT_FOUND_PENALTY


def test_single_found_scores():
    assert score_trial([RawOutcome.found(3, 0.1)]).score == pytest.approx(0.475)
    assert score_trial([RawOutcome.found(0, 0.5)]).score == pytest.approx(0.5)


def test_all_errored_has_no_score():
    result = score_trial([RawOutcome.failed("timeout", 1.0) for _ in range(5)])
    assert result.status is TrialStatus.ALL_ERRORED
    assert result.score is None
    assert result.error_count == 5
    assert result.n_outcomes == 5
    assert not result.has_score


def test_no_outcomes_is_all_errored():
    result = score_trial([])
    assert result.status is TrialStatus.ALL_ERRORED
    assert result.score is None


def test_repeat_8_drops_one_from_each_end():
    elapsed = [0.9, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.05]
    result = score_trial([RawOutcome.found(0, e) for e in elapsed])
    middle = sorted(elapsed)[1:-1]
    assert len(middle) == 6
    assert result.score == pytest.approx(sum(middle) / 6)
    assert result.status is TrialStatus.CLEAN


def test_repeat_16_drops_two_from_each_end():
    values = list(range(16))
    result = score_trial([RawOutcome.found(0, float(v)) for v in values])
    assert result.score == pytest.approx(np.mean(values[2:-2]))


def test_small_repeat_is_not_trimmed():
    result = score_trial([RawOutcome.found(0, 1.0), RawOutcome.found(0, 2.0), RawOutcome.found(0, 6.0)])
    assert result.score == pytest.approx(3.0)


def test_one_not_found_of_eight_is_trimmed_away():
    outcomes = [RawOutcome.found(1, 0.1)] * 7 + [RawOutcome.not_found(0.3)]
    result = score_trial(outcomes)
    assert result.score == pytest.approx(0.225)
    assert result.found
    assert result.found_count == 7


def test_partial_errors_score_as_penalty():
    outcomes = [RawOutcome.found(0, 0.2), RawOutcome.failed("crash", 0.01)]
    result = score_trial(outcomes)
    assert result.status is TrialStatus.PARTIAL_ERRORS
    assert result.error_count == 1
    assert result.score == pytest.approx((0.2 + NOT_FOUND_PENALTY) / 2)
    assert not result.found


def test_found_once_in_three_is_not_found():
    outcomes = [RawOutcome.found(0, 0.1), RawOutcome.not_found(1.0), RawOutcome.not_found(1.0)]
    result = score_trial(outcomes)
    assert result.status is TrialStatus.CLEAN
    assert result.score == pytest.approx((0.1 + 2 * NOT_FOUND_PENALTY) / 3)
    assert result.score < NOT_FOUND_PENALTY
    assert not result.found
    assert result.found_count == 1
    assert result.rank_range == (0, 0)


def test_penalty_left_in_trimmed_middle_is_not_found():
    # 16 repeats trim 2 from each end; 3 misses leave one penalty in the middle
    outcomes = [RawOutcome.found(0, 0.1)] * 13 + [RawOutcome.not_found(1.0)] * 3
    result = score_trial(outcomes)
    assert not result.found
    assert result.score > 1.0
    trimmed_away = [RawOutcome.found(0, 0.1)] * 14 + [RawOutcome.not_found(1.0)] * 2
    assert score_trial(trimmed_away).found
    assert score_trial(trimmed_away).score == pytest.approx(0.1)


def test_ranges_cover_found_outcomes_only():
    outcomes = [
        RawOutcome.found(2, 0.3),
        RawOutcome.found(5, 0.1),
        RawOutcome.not_found(9.0),
    ]
    result = score_trial(outcomes)
    assert result.rank_range == (2, 5)
    assert result.elapsed_range == (0.1, 0.3)


def test_trim_rejects_half():
    with pytest.raises(ValueError):
        _trimmed_mean(np.array([1.0, 2.0]), trim=0.5)


def test_summarize_session_counts_and_quantiles():
    results = [
        score_trial([RawOutcome.found(0, 0.1)] * 4),
        score_trial([RawOutcome.found(0, 0.3)] * 4),
        score_trial([RawOutcome.failed("x", 0.0)] + [RawOutcome.found(0, 0.2)] * 7),
        score_trial([RawOutcome.failed("timeout", 1.0)] * 4),
        score_trial([RawOutcome.not_found(0.5)] * 4),
    ]
    summary = summarize_session(results)
    assert summary.n_trials == 5
    assert summary.n_clean == 3
    assert summary.n_partial_errors == 1
    assert summary.n_all_errored == 1
    assert summary.n_found == 3
    assert summary.found_rate == pytest.approx(0.6)
    assert summary.n_error_outcomes == 5
    assert summary.n_outcomes == 24
    assert summary.found_mean_score == pytest.approx(0.2)
    assert summary.found_score_range == (pytest.approx(0.1), pytest.approx(0.3))
    assert summary.found_elapsed_range == (pytest.approx(0.1), pytest.approx(0.3))
    assert summary.median_score == pytest.approx(0.25)
    assert summary.max_score == NOT_FOUND_PENALTY


def test_summarize_empty_session():
    summary = summarize_session([])
    assert summary.n_trials == 0
    assert summary.mean_score is None
    assert summary.error_rate == 0.0


_outcome = st.one_of(
    st.builds(RawOutcome.found, st.integers(min_value=0, max_value=500), st.floats(min_value=0, max_value=30)),
    st.builds(RawOutcome.not_found, st.floats(min_value=0, max_value=30)),
    st.builds(RawOutcome.failed, st.sampled_from(["timeout", "crash"]), st.floats(min_value=0, max_value=30)),
)


@given(st.lists(_outcome, min_size=1, max_size=40))
def test_scoring_is_deterministic_and_order_free(outcomes):
    first = score_trial(outcomes)
    assert score_trial(list(outcomes)) == first
    assert score_trial(list(reversed(outcomes))) == first
    if all(o.is_error for o in outcomes):
        assert first.status is TrialStatus.ALL_ERRORED
    else:
        values = sorted(outcome_value(o) for o in outcomes)
        slack = 1e-9 * max(1.0, abs(values[-1]))
        assert values[0] - slack <= first.score <= values[-1] + slack


def test_summary_counts_only_trials_found_after_trimming():
    results = [
        score_trial([RawOutcome.found(0, 0.4)] * 3),
        score_trial([RawOutcome.found(0, 0.1), RawOutcome.not_found(1.0), RawOutcome.not_found(1.0)]),
        score_trial([RawOutcome.found(0, 0.2), RawOutcome.found(0, 0.2), RawOutcome.failed("crash", 0.0)]),
    ]
    summary = summarize_session(results)
    assert summary.n_found == 1
    assert summary.found_mean_score == pytest.approx(0.4)
    assert summary.found_median_score == pytest.approx(0.4)
    assert summary.found_score_range == (pytest.approx(0.4), pytest.approx(0.4))
    assert summary.found_elapsed_range == (pytest.approx(0.4), pytest.approx(0.4))
    assert summary.n_partial_errors == 1


@given(st.lists(_outcome, min_size=1, max_size=40))
def test_found_trials_have_real_time_scores(outcomes):
    result = score_trial(outcomes)
    if result.found:
        assert result.score < NOT_FOUND_PENALTY
        assert result.found_count > 0
    elif result.score is not None:
        assert result.score >= NOT_FOUND_PENALTY / len(outcomes)
