from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from . import storage
from .aggregate import score_session, summarize_session
from .compare import compare_sessions
from .constants import NOT_FOUND_PENALTY
from .errors import StoreError
from .models import TrialResult

app = typer.Typer(
    help="Query benchmark sessions stored by buscaluso-bench.",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)

LIST_SESSIONS_EXTRA_COLUMNS = ("version_buscaluso_bench", "machine", "search_rules_hash")
COMPARE_COLUMNS = (
    "BENCH",
    "A: SCORE",
    "B: SCORE",
    "A: INDEX",
    "A: TIME (sec)",
    "B: INDEX",
    "B: TIME (sec)",
)


@app.callback()
def _root_callback(
    ctx: typer.Context,
    db: Optional[Path] = typer.Option(None, "--db", help="Database file [default: bench.sqlite3]"),
):
    """benchdb root."""
    load_dotenv()
    ctx.obj = {"db": db}


def _console() -> Console:
    console = Console(highlight=False)
    if not console.is_terminal:
        console = Console(highlight=False, width=200)
    return console


def _table(columns: Sequence[str]) -> Table:
    table = Table(box=None, show_edge=False, pad_edge=False)
    for col in columns:
        table.add_column(col, no_wrap=True)
    return table


def _open(ctx: typer.Context) -> sqlite3.Connection:
    try:
        return storage.open_db_readonly(ctx.obj.get("db") if ctx.obj else None)
    except StoreError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(1)


def _session_or_exit(conn: sqlite3.Connection, session_id: int) -> Dict:
    session = storage.get_session(conn, session_id)
    if session is None:
        typer.echo("Session not found")
        raise typer.Exit(1)
    return session


def format_datetime(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def fmt_seconds(value: Optional[float]) -> str:
    return f"{value:7.4f}" if value is not None else "--"


def fmt_score(value: Optional[float], found: Optional[bool] = None) -> str:
    """Seconds, or "not found" when the penalty dominates the score."""
    if value is None:
        return "--"
    if found is None:
        found = value < NOT_FOUND_PENALTY
    if not found:
        return "not found"
    return fmt_seconds(value)


def fmt_seconds_range(rng: Optional[Tuple[float, float]]) -> str:
    if rng is None:
        return "--"
    lo, hi = rng
    if lo == hi:
        return fmt_seconds(lo)
    return f"{fmt_seconds(lo)} .. {fmt_seconds(hi)}"


def fmt_range(rng: Optional[Tuple[int, int]]) -> str:
    if rng is None:
        return "--"
    lo, hi = rng
    return str(lo) if lo == hi else f"{lo} .. {hi}"


def fmt_status(result: TrialResult) -> str:
    if result.error_count:
        return f"{result.status.value} ({result.error_count}/{result.n_outcomes})"
    return result.status.value


def _scored(conn: sqlite3.Connection, session_id: int) -> Dict[str, TrialResult]:
    return score_session(storage.load_trial_outcomes(conn, session_id))


@app.command("list-sessions")
def cmd_list_sessions(ctx: typer.Context):
    """Lists all sessions, newest first."""
    conn = _open(ctx)
    try:
        sessions = storage.list_sessions(conn)
        table = _table(["SESSION ID", "WHEN", "NUM BENCHES", *LIST_SESSIONS_EXTRA_COLUMNS])
        for s in reversed(sessions):
            row = [str(s["session_id"]), format_datetime(s["session_id"]), str(s["n_trials"])]
            for key in LIST_SESSIONS_EXTRA_COLUMNS:
                row.append(storage.get_info(conn, s["session_id"], key) or "")
            table.add_row(*row)
    finally:
        conn.close()
    _console().print(table)


@app.command("show")
def cmd_show(ctx: typer.Context, session: int = typer.Argument(..., help="Session ID")):
    """Shows a session's metadata. Multiline values are shown as <...>."""
    conn = _open(ctx)
    try:
        record = _session_or_exit(conn, session)
        info = storage.get_all_info(conn, session)
    finally:
        conn.close()
    table = _table(["KEY", "VALUE"])
    table.add_row("machine_id", record["machine_id"])
    table.add_row("created_at", format_datetime(record["created_at"]))
    table.add_row("completed_at", format_datetime(record["completed_at"]) if record["completed_at"] else "<running>")
    for key, value in info.items():
        table.add_row(key, "<...>" if "\n" in value else value)
    _console().print(table)


@app.command("get")
def cmd_get(
    ctx: typer.Context,
    session: int = typer.Argument(..., help="Session ID"),
    info_key: str = typer.Argument(..., help="Metadata key"),
):
    """Outputs a single metadata value from a session."""
    conn = _open(ctx)
    try:
        _session_or_exit(conn, session)
        value = storage.get_info(conn, session, info_key)
    finally:
        conn.close()
    if value is None:
        typer.echo(f"Key not found: {info_key}", err=True)
        raise typer.Exit(1)
    typer.echo(value, nl=bool(value) and not value.endswith("\n"))


@app.command("stats")
def cmd_stats(ctx: typer.Context, session: int = typer.Argument(..., help="Session ID")):
    """Shows some quick statistics of a session's results."""
    conn = _open(ctx)
    try:
        _session_or_exit(conn, session)
        results = _scored(conn, session)
    finally:
        conn.close()
    summary = summarize_session(results.values())
    if summary.n_trials == 0:
        typer.echo("Session has no results")
        return
    typer.echo(f"Found {summary.n_found} / {summary.n_trials} ({summary.found_rate * 100:.1f}%)")
    if summary.n_found:
        typer.echo(f"Average score: {fmt_seconds(summary.found_mean_score)} sec")
        typer.echo(f"Score range: {fmt_seconds_range(summary.found_score_range)}")
        typer.echo(f"Seconds to find: {fmt_seconds_range(summary.found_elapsed_range)}")
        typer.echo(f"Median score: {fmt_seconds(summary.found_median_score)} sec")
    typer.echo(
        f"Trials: {summary.n_clean} clean, {summary.n_partial_errors} with errors, "
        f"{summary.n_all_errored} all errored"
    )
    typer.echo(f"Errored runs: {summary.n_error_outcomes} / {summary.n_outcomes} ({summary.error_rate * 100:.1f}%)")


@app.command("results")
def cmd_results(ctx: typer.Context, session: int = typer.Argument(..., help="Session ID")):
    """Shows statistics of all the session's results."""
    conn = _open(ctx)
    try:
        _session_or_exit(conn, session)
        results = _scored(conn, session)
    finally:
        conn.close()
    table = _table(["BENCH", "SCORE", "INDEX", "TIME (sec)", "STATUS"])
    for label, result in results.items():
        table.add_row(
            label,
            fmt_score(result.score, result.found),
            fmt_range(result.rank_range),
            fmt_seconds_range(result.elapsed_range),
            fmt_status(result),
        )
    _console().print(table)


def _label_list(title: str, labels: List[str]) -> None:
    if labels:
        typer.echo(f"\n{title}:")
        for label in labels:
            typer.echo(f"  {label}")


@app.command("compare")
def cmd_compare(
    ctx: typer.Context,
    session_a: int = typer.Argument(..., help="Session ID of A"),
    session_b: int = typer.Argument(..., help="Session ID of B"),
):
    """Compares the results of two sessions."""
    conn = _open(ctx)
    try:
        _session_or_exit(conn, session_a)
        _session_or_exit(conn, session_b)
        results_a = _scored(conn, session_a)
        results_b = _scored(conn, session_b)
    finally:
        conn.close()
    report = compare_sessions(results_a, results_b)
    if report.n_compared == 0 and not report.status_changes:
        typer.echo("No benches in common")
        _label_list("Only in A", report.removed)
        _label_list("Only in B", report.added)
        return

    if report.found_only_a:
        typer.echo(f"A found {report.found_only_a} that B didn't")
    if report.found_only_b:
        typer.echo(f"B found {report.found_only_b} that A didn't")
    if report.matched_delta > 0:
        minor = f"A better by {fmt_seconds(report.matched_delta)} sec"
    elif report.matched_delta < 0:
        minor = f"B better by {fmt_seconds(-report.matched_delta)} sec"
    else:
        minor = "none"
    typer.echo(f"Total minor score differences: {minor}")

    console = _console()
    for name, rows in (("A", report.better_in_a), ("B", report.better_in_b)):
        if not rows:
            continue
        table = _table(COMPARE_COLUMNS)
        for row in rows:
            table.add_row(
                row.label,
                fmt_score(row.a.score, row.a.found),
                fmt_score(row.b.score, row.b.found),
                fmt_range(row.a.rank_range),
                fmt_seconds_range(row.a.elapsed_range),
                fmt_range(row.b.rank_range),
                fmt_seconds_range(row.b.elapsed_range),
            )
        typer.echo(f"\nBetter in {name}:")
        console.print(table)

    if report.status_changes:
        table = _table(["BENCH", "A: STATUS", "B: STATUS"])
        for change in report.status_changes:
            table.add_row(change.label, fmt_status(change.a), fmt_status(change.b))
        typer.echo("\nAll errored in A or B:")
        console.print(table)

    _label_list("Only in A", report.removed)
    _label_list("Only in B", report.added)


if __name__ == "__main__":
    app()
