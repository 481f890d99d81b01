from __future__ import annotations

import json
import textwrap
from pathlib import Path

import pytest

from buscaluso_bench.config import (
    DEFAULT_SEARCHER_COMMAND,
    RunConfig,
    apply_overrides,
    load_run_config,
    require_settings,
)
from buscaluso_bench.errors import ConfigError


def create_config(tmp_path: Path, payload: str, name: str = "bench.toml") -> Path:
    path = tmp_path / name
    path.write_text(textwrap.dedent(payload))
    return path


def test_load_toml_config(tmp_path):
    path = create_config(
        tmp_path,
        """
        repeat = 7
        timeout = 8.3
        verbose = 1
        """,
    )
    cfg = load_run_config(path)
    assert isinstance(cfg, RunConfig)
    assert cfg.repeat == 7
    assert cfg.timeout == pytest.approx(8.3)
    assert cfg.verbose == 1
    assert cfg.rules_file is None
    assert cfg.dict_file is None
    assert cfg.bench_file is None
    assert cfg.warmup is True
    assert cfg.searcher == "command"
    assert cfg.searcher_command == DEFAULT_SEARCHER_COMMAND


def test_verbose_defaults_to_zero(tmp_path):
    cfg = load_run_config(create_config(tmp_path, "repeat = 7\ntimeout = 8.3\n"))
    assert cfg.verbose == 0


def test_integer_timeout_is_float(tmp_path):
    cfg = load_run_config(create_config(tmp_path, "repeat = 1\ntimeout = 2\n"))
    assert isinstance(cfg.timeout, float)


def test_yaml_and_json_configs(tmp_path):
    yml = create_config(tmp_path, "repeat: 4\ntimeout: 1.5\nsearcher: mock\n", name="run.yaml")
    assert load_run_config(yml).searcher == "mock"
    js = tmp_path / "run.json"
    js.write_text(json.dumps({"repeat": 2, "timeout": 0.5}))
    assert load_run_config(js).repeat == 2


def test_relative_paths_resolve_against_config_dir(tmp_path):
    sub = tmp_path / "cfgs"
    sub.mkdir()
    path = create_config(sub, 'repeat = 1\ntimeout = 1\nrules_file = "rules.txt"\nbench_file = "/abs/bench.txt"\n')
    cfg = load_run_config(path)
    assert cfg.rules_file == str(sub / "rules.txt")
    assert cfg.bench_file == "/abs/bench.txt"


@pytest.mark.parametrize(
    "payload, fragment",
    [
        ("timeout = 1\n", "repeat"),
        ("repeat = 3\n", "timeout"),
        ("repeat = 0\ntimeout = 1\n", "repeat"),
        ("repeat = 2\ntimeout = -1\n", "timeout"),
        ('repeat = "3"\ntimeout = 1\n', "repeat"),
        ("repeat = 2\ntimeout = 1\nbogus = 1\n", "bogus"),
        ("repeat = [\n", "parse"),
    ],
)
def test_invalid_configs_raise(tmp_path, payload, fragment):
    with pytest.raises(ConfigError) as info:
        load_run_config(create_config(tmp_path, payload))
    assert fragment in str(info.value)


def test_unreadable_config(tmp_path):
    with pytest.raises(ConfigError):
        load_run_config(tmp_path / "nope.toml")


def test_machine_env_fallback(tmp_path, monkeypatch):
    monkeypatch.setenv("BUSCALUSO_BENCH_MACHINE", "env-box")
    cfg = load_run_config(create_config(tmp_path, "repeat = 1\ntimeout = 1\n"))
    assert cfg.machine == "env-box"
    cfg2 = load_run_config(create_config(tmp_path, 'repeat = 1\ntimeout = 1\nmachine = "file-box"\n', name="b.toml"))
    assert cfg2.machine == "file-box"


def test_overrides_win_and_none_is_ignored(tmp_path):
    cfg = load_run_config(create_config(tmp_path, 'repeat = 1\ntimeout = 1\nverbose = 2\nmachine = "a"\n'))
    out = apply_overrides(cfg, machine="b", rules_file=Path("/x/rules"), dict_file=None, verbose=0)
    assert out.machine == "b"
    assert out.rules_file == "/x/rules"
    assert out.verbose == 2
    assert cfg.machine == "a"
    assert apply_overrides(cfg, verbose=3).verbose == 3


def test_require_settings_lists_missing(tmp_path):
    cfg = RunConfig(repeat=1, timeout=1.0)
    with pytest.raises(ConfigError) as info:
        require_settings(cfg)
    msg = str(info.value)
    assert "machine identifier" in msg
    assert "rules file" in msg


def test_require_settings_checks_files_exist(tmp_path):
    (tmp_path / "r").write_text("x")
    (tmp_path / "d").write_text("x")
    cfg = RunConfig(
        repeat=1,
        timeout=1.0,
        machine="m",
        rules_file=str(tmp_path / "r"),
        dict_file=str(tmp_path / "d"),
        bench_file=str(tmp_path / "b"),
    )
    with pytest.raises(ConfigError) as info:
        require_settings(cfg)
    assert "bench file" in str(info.value)
