from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional
import json
import os
import tomllib

import yaml

from .constants import DEFAULT_DB_PATH
from .errors import ConfigError


DEFAULT_SEARCHER_COMMAND = ["buscaluso", "--rules", "{rules_file}", "--dict", "{dict_file}", "{word}"]

_PATH_KEYS = ("rules_file", "dict_file", "bench_file", "out_db")


@dataclass
class RunConfig:
    repeat: int
    timeout: float  # seconds per searcher invocation
    verbose: int = 0
    machine: Optional[str] = None
    rules_file: Optional[str] = None
    dict_file: Optional[str] = None
    bench_file: Optional[str] = None
    out_db: str = str(DEFAULT_DB_PATH)
    # One unrecorded pass over all trials before measuring, to warm OS caches.
    warmup: bool = True
    searcher: str = "command"
    searcher_command: List[str] = field(default_factory=lambda: list(DEFAULT_SEARCHER_COMMAND))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _read_mapping(p: Path) -> Dict[str, Any]:
    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {p}: {exc}") from exc
    try:
        if p.suffix == ".toml":
            data = tomllib.loads(text)
        elif p.suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (tomllib.TOMLDecodeError, yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Cannot parse config file {p}: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {p} must contain a table of settings")
    return data


def _validate(cfg: RunConfig) -> RunConfig:
    if isinstance(cfg.repeat, bool) or not isinstance(cfg.repeat, int) or cfg.repeat <= 0:
        raise ConfigError(f"repeat must be a positive integer, got {cfg.repeat!r}")
    if isinstance(cfg.timeout, bool) or not isinstance(cfg.timeout, (int, float)) or cfg.timeout <= 0:
        raise ConfigError(f"timeout must be a positive number of seconds, got {cfg.timeout!r}")
    cfg.timeout = float(cfg.timeout)
    if not isinstance(cfg.verbose, int) or cfg.verbose < 0:
        raise ConfigError(f"verbose must be a non-negative integer, got {cfg.verbose!r}")
    if not isinstance(cfg.searcher_command, list) or not all(isinstance(x, str) for x in cfg.searcher_command):
        raise ConfigError("searcher_command must be a list of strings")
    return cfg


def load_run_config(path: str | Path) -> RunConfig:
    """Load a run config from TOML, YAML or JSON (chosen by suffix).

    Relative file paths in the config resolve against the config's directory.
    """
    p = Path(path)
    data = _read_mapping(p)
    known = {f.name for f in fields(RunConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown config keys in {p}: {', '.join(unknown)}")
    for key in ("repeat", "timeout"):
        if key not in data:
            raise ConfigError(f"Missing required config key '{key}' in {p}")
    for key in _PATH_KEYS:
        value = data.get(key)
        if value is not None:
            candidate = Path(str(value)).expanduser()
            if not candidate.is_absolute():
                candidate = p.parent / candidate
            data[key] = str(candidate)
    cfg = _validate(RunConfig(**data))
    # Env fallback (config takes precedence)
    if cfg.machine is None and os.getenv("BUSCALUSO_BENCH_MACHINE"):
        cfg.machine = os.getenv("BUSCALUSO_BENCH_MACHINE")
    return cfg


def apply_overrides(cfg: RunConfig, **overrides: Any) -> RunConfig:
    """Return a copy with every non-None override applied (command-line flags win)."""
    changes = {k: (str(v) if isinstance(v, Path) else v) for k, v in overrides.items() if v is not None}
    if changes.get("verbose") == 0:
        changes.pop("verbose")
    return _validate(replace(cfg, **changes))


def require_settings(cfg: RunConfig) -> None:
    """Fail unless every setting needed for a run is known."""
    missing = [
        label
        for key, label in (
            ("machine", "machine identifier"),
            ("rules_file", "rules file"),
            ("dict_file", "dict file"),
            ("bench_file", "benches file"),
        )
        if not getattr(cfg, key)
    ]
    if missing:
        raise ConfigError("Missing " + ", ".join(missing))
    for key in ("rules_file", "dict_file", "bench_file"):
        path = Path(getattr(cfg, key))
        if not path.is_file():
            raise ConfigError(f"{key.replace('_', ' ')} not found: {path}")
