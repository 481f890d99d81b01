"""Sequential trial execution.

Each searcher invocation is pumped by a daemon thread into a queue; the
calling thread waits on the queue against the deadline, so a hung searcher
costs at most `timeout` and still yields an outcome. Only one invocation is
ever live at a time.
"""

from __future__ import annotations

import logging
import queue
import sqlite3
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from . import storage
from .errors import TrialError
from .models import RawOutcome, TrialSpec
from .searcher.base import Searcher
from .telemetry import timed

log = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "timeout"
JOIN_GRACE_SECONDS = 1.0

_DONE = object()

OutcomeCallback = Callable[[int, RawOutcome], None]


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, TrialError):
        return str(exc) or "searcher failed"
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class _Invocation:
    """One searcher call running on its own thread."""

    def __init__(self, searcher: Searcher, start_word: str) -> None:
        self.searcher = searcher
        self.start_word = start_word
        self.queue: "queue.Queue[Tuple[float, object]]" = queue.Queue()
        self._lock = threading.Lock()
        self._handle = None
        self._cancelled = False
        self.thread = threading.Thread(target=self._pump, name=f"search:{start_word}", daemon=True)

    def start(self) -> None:
        self.thread.start()

    def _pump(self) -> None:
        try:
            handle = self.searcher.search(self.start_word)
            with self._lock:
                self._handle = handle
                cancelled = self._cancelled
            if cancelled:
                handle.close()
                return
            for word in handle:
                if self._cancelled:
                    return
                self.queue.put((time.perf_counter(), word))
        except Exception as exc:
            self.queue.put((time.perf_counter(), exc))
            return
        self.queue.put((time.perf_counter(), _DONE))

    def stop(self, join_grace: float) -> None:
        with self._lock:
            self._cancelled = True
            handle = self._handle
        if handle is not None:
            try:
                handle.close()
            except Exception as exc:
                log.warning("searcher_close_failed", extra={"word": self.start_word, "err": _error_message(exc)})
        self.thread.join(join_grace)
        if self.thread.is_alive():
            log.warning("searcher_still_running", extra={"word": self.start_word})


def run_once(searcher: Searcher, spec: TrialSpec, timeout: float, join_grace: float = JOIN_GRACE_SECONDS) -> RawOutcome:
    """Run one searcher invocation for `spec` and classify it."""
    inv = _Invocation(searcher, spec.start_word)
    start = time.perf_counter()
    deadline = start + timeout
    inv.start()
    rank = 0
    try:
        while True:
            remaining = deadline - time.perf_counter()
            if remaining <= 0:
                return RawOutcome.failed(TIMEOUT_MESSAGE, time.perf_counter() - start)
            try:
                stamp, item = inv.queue.get(timeout=remaining)
            except queue.Empty:
                continue
            elapsed = stamp - start
            if elapsed > timeout:
                return RawOutcome.failed(TIMEOUT_MESSAGE, elapsed)
            if item is _DONE:
                return RawOutcome.not_found(elapsed)
            if isinstance(item, BaseException):
                return RawOutcome.failed(_error_message(item), elapsed)
            word = str(item)
            if not word:
                continue
            if word in spec.targets:
                return RawOutcome.found(rank, elapsed)
            rank += 1
    finally:
        inv.stop(join_grace)


def run_trial(
    searcher: Searcher,
    spec: TrialSpec,
    *,
    repeat: int,
    timeout: float,
    on_outcome: Optional[OutcomeCallback] = None,
    join_grace: float = JOIN_GRACE_SECONDS,
) -> List[RawOutcome]:
    """Run `spec` `repeat` times in sequence; always returns `repeat` outcomes."""
    if repeat <= 0:
        raise ValueError("repeat must be positive")
    if timeout <= 0:
        raise ValueError("timeout must be positive")
    outcomes: List[RawOutcome] = []
    for idx in range(repeat):
        outcome = run_once(searcher, spec, timeout, join_grace)
        outcomes.append(outcome)
        if on_outcome is not None:
            on_outcome(idx, outcome)
    return outcomes


@dataclass
class RunContext:
    """State of one benchmark session, passed explicitly through a run."""

    conn: sqlite3.Connection
    session_id: int
    repeat: int
    timeout: float
    warmup: bool = True
    join_grace: float = JOIN_GRACE_SECONDS
    done: int = 0
    total: int = 0


def run_session(
    ctx: RunContext,
    searcher: Searcher,
    specs: Sequence[TrialSpec],
) -> List[Tuple[TrialSpec, List[RawOutcome]]]:
    """Run every trial in order, storing each outcome as soon as it exists.

    The session is marked completed at the end; a crash part way leaves the
    outcomes recorded so far in the store.
    """
    ctx.total = len(specs) * ctx.repeat
    ctx.done = 0
    if ctx.warmup and specs:
        with timed("warmup", {"n_trials": len(specs)}):
            for spec in specs:
                run_once(searcher, spec, ctx.timeout, ctx.join_grace)

    results: List[Tuple[TrialSpec, List[RawOutcome]]] = []
    with timed("session", {"session_id": ctx.session_id, "n_trials": len(specs), "repeat": ctx.repeat}):
        for spec in specs:
            trial_id = storage.insert_trial(ctx.conn, ctx.session_id, spec)

            def _record(idx: int, outcome: RawOutcome, _trial_id: int = trial_id, _spec: TrialSpec = spec) -> None:
                storage.insert_outcome(ctx.conn, _trial_id, idx, outcome)
                ctx.done += 1
                log.debug(
                    "(%d/%d) %s: %s",
                    ctx.done,
                    ctx.total,
                    _spec.label,
                    outcome.kind.value,
                    extra={"trial": _spec.label, "repeat_idx": idx, "kind": outcome.kind.value},
                )

            outcomes = run_trial(
                searcher,
                spec,
                repeat=ctx.repeat,
                timeout=ctx.timeout,
                on_outcome=_record,
                join_grace=ctx.join_grace,
            )
            results.append((spec, outcomes))
    storage.complete_session(ctx.conn, ctx.session_id)
    return results
