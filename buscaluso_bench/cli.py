from __future__ import annotations

import json
import logging
import platform
from pathlib import Path
from typing import Dict, Optional

import typer
from dotenv import load_dotenv

from . import __version__, storage
from .config import RunConfig, apply_overrides, load_run_config, require_settings
from .benchfile import load_benchmarks
from .errors import BenchError, ConfigError
from .runner import RunContext, run_session
from .schemas import ConfigSnapshotV1, FileIdentity
from .searcher.registry import make_searcher
from .searcher.base import Searcher
from .telemetry import configure_logging, timed
from .aggregate import score_trial, summarize_session


log = logging.getLogger(__name__)

app = typer.Typer(
    help="Run the buscaluso benchmarks and record the results in a session database.",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"buscaluso-bench {__version__}")
        raise typer.Exit()


def build_info() -> Dict[str, str]:
    return {
        "version_buscaluso_bench": __version__,
        "version_python": platform.python_version(),
        "platform": platform.platform(),
    }


def _build_searcher(cfg: RunConfig) -> Searcher:
    try:
        return make_searcher(cfg.searcher, cfg)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot set up searcher '{cfg.searcher}': {exc}") from exc


def _snapshot(cfg: RunConfig, n_trials: int) -> ConfigSnapshotV1:
    try:
        return ConfigSnapshotV1(
            machine=cfg.machine,
            repeat=cfg.repeat,
            timeout=cfg.timeout,
            warmup=cfg.warmup,
            searcher=cfg.searcher,
            searcher_command=cfg.searcher_command if cfg.searcher == "command" else None,
            rules=FileIdentity.of(cfg.rules_file),
            dictionary=FileIdentity.of(cfg.dict_file),
            bench=FileIdentity.of(cfg.bench_file),
            n_trials=n_trials,
        )
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Cannot snapshot run config: {exc}") from exc


def _read_rules(cfg: RunConfig) -> str:
    try:
        return Path(cfg.rules_file).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise ConfigError(f"Cannot read rules file {cfg.rules_file}: {exc}") from exc


def record_session_info(conn, session_id: int, cfg: RunConfig, snapshot: ConfigSnapshotV1, rules_text: str) -> None:
    storage.set_info(conn, session_id, "machine", cfg.machine)
    for key, value in build_info().items():
        storage.set_info(conn, session_id, key, value)
    storage.set_info(conn, session_id, "searcher", cfg.searcher)
    storage.set_info(conn, session_id, "search_rules", rules_text)
    storage.set_info(conn, session_id, "search_rules_hash", snapshot.rules.sha256)
    storage.set_info(conn, session_id, "search_dict_hash", snapshot.dictionary.sha256)
    storage.set_info(conn, session_id, "bench_file_hash", snapshot.bench.sha256)
    storage.set_info(conn, session_id, "bench_config", json.dumps(cfg.to_dict(), indent=2, sort_keys=True))


@app.command()
def main(
    config: Path = typer.Option(..., "--config", "-c", help="Run config file (TOML, YAML or JSON)"),
    machine: Optional[str] = typer.Option(None, "--machine", "-m", help="Machine identifier"),
    rules: Optional[Path] = typer.Option(None, "--rules", "-r", help="Rules file"),
    dict_file: Optional[Path] = typer.Option(None, "--dict", "-d", help="Dictionary file"),
    bench: Optional[Path] = typer.Option(None, "--bench", "-b", help="Benchmark file"),
    out_db: Optional[Path] = typer.Option(None, "--out-db", "-o", help="Output database file, defaults to bench.sqlite3"),
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="Verbose output (repeat for more)"),
    version: bool = typer.Option(
        False, "--version", "-V", callback=_version_callback, is_eager=True, help="Print version and exit"
    ),
):
    """Run every benchmark `repeat` times and store the outcomes as a new session."""
    load_dotenv()
    try:
        cfg = load_run_config(config)
        cfg = apply_overrides(
            cfg,
            machine=machine,
            rules_file=rules,
            dict_file=dict_file,
            bench_file=bench,
            out_db=out_db,
            verbose=verbose,
        )
        configure_logging(cfg.verbose)
        require_settings(cfg)
        with timed("load_benchmarks", {"path": cfg.bench_file}):
            specs = load_benchmarks(cfg.bench_file)
        searcher = _build_searcher(cfg)
        snapshot = _snapshot(cfg, len(specs))
        rules_text = _read_rules(cfg)
        conn = storage._ensure_db(cfg.out_db)
    except BenchError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(1)

    try:
        session_id = storage.create_session(conn, cfg.machine, snapshot.model_dump_json())
        record_session_info(conn, session_id, cfg, snapshot, rules_text)
        log.info(
            "Running %d benchmarks %d times with a timeout of %.3fs each",
            len(specs),
            cfg.repeat,
            cfg.timeout,
            extra={"session_id": session_id},
        )
        ctx = RunContext(
            conn=conn,
            session_id=session_id,
            repeat=cfg.repeat,
            timeout=cfg.timeout,
            warmup=cfg.warmup,
        )
        results = run_session(ctx, searcher, specs)
    except BenchError as exc:
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(1)
    finally:
        conn.close()

    summary = summarize_session(score_trial(outcomes) for _spec, outcomes in results)
    typer.echo(
        f"Session {session_id}: found {summary.n_found} / {summary.n_trials}, "
        f"{summary.n_all_errored} all errored, {summary.n_partial_errors} with errors"
    )


if __name__ == "__main__":
    app()
