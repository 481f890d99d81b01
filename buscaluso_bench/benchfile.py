"""Benchmark definition files.

One benchmark per line::

    start1, start2 = target | alternative, other_target   ; comment

Every (start word, target group) pair on a line becomes one trial, groups
first. Start words with diacritics also produce trials for their
accent-stripped form, unless that form is already a start word on the line.
Parsing stops at the first malformed line.
"""

from __future__ import annotations

import logging
import unicodedata
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from .errors import ConfigError, ParseError
from .models import TrialSpec

log = logging.getLogger(__name__)

COMMENT_CHAR = ";"
ESCAPE_CHAR = "\\"


def fold_accents(word: str) -> str:
    """Strip combining marks after NFD decomposition ('óne' -> 'one')."""
    decomposed = unicodedata.normalize("NFD", word)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return unicodedata.normalize("NFC", stripped)


def strip_comment(line: str) -> str:
    """Drop everything from the first unescaped ';'.

    `\\;` is a literal semicolon and `\\\\` a literal backslash; any other
    backslash is kept as written.
    """
    out: List[str] = []
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == ESCAPE_CHAR and i + 1 < n and line[i + 1] in (COMMENT_CHAR, ESCAPE_CHAR):
            out.append(line[i + 1])
            i += 2
            continue
        if ch == COMMENT_CHAR:
            break
        out.append(ch)
        i += 1
    return "".join(out)


def _split_words(text: str, sep: str) -> Optional[List[str]]:
    words = [w.strip() for w in text.split(sep)]
    if any(not w or any(c.isspace() for c in w) for w in words):
        return None
    return words


def parse_bench_line(line: str) -> Optional[Tuple[List[str], List[List[str]]]]:
    """Parse one line into (start words, target groups).

    Returns None for blank and comment-only lines, raises ValueError with a
    reason for malformed ones.
    """
    body = strip_comment(line).strip()
    if not body:
        return None
    if "=" not in body:
        raise ValueError("missing '='")
    lhs, sep, rhs = body.partition("=")
    if "=" in rhs:
        raise ValueError("more than one '='")
    lhs = lhs.strip()
    rhs = rhs.strip()
    if not lhs:
        raise ValueError("empty start word list")
    if not rhs:
        raise ValueError("empty target list")
    starts = _split_words(lhs, ",")
    if starts is None:
        raise ValueError("empty or malformed start word")
    groups: List[List[str]] = []
    for group_text in rhs.split(","):
        group = _split_words(group_text, "|")
        if group is None:
            raise ValueError("empty or malformed target word")
        groups.append(group)
    return starts, groups


def _expand_line(starts: List[str], groups: List[List[str]], line: str, line_no: int) -> List[TrialSpec]:
    explicit = set(starts)
    specs: List[TrialSpec] = []
    for group in groups:
        targets = frozenset(group)
        for start in starts:
            specs.append(TrialSpec(start, targets, source_line=line, line_no=line_no))
            folded = fold_accents(start)
            if folded != start and folded not in explicit:
                specs.append(TrialSpec(folded, targets, source_line=line, line_no=line_no))
    return specs


def parse_benchmarks(text: str | Iterable[str]) -> List[TrialSpec]:
    """Parse benchmark text into an ordered list of unique trials."""
    lines = text.splitlines() if isinstance(text, str) else list(text)
    seen = set()
    specs: List[TrialSpec] = []
    for line_no, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n")
        try:
            parsed = parse_bench_line(line)
        except ValueError as exc:
            raise ParseError(line_no, line, str(exc)) from exc
        if parsed is None:
            continue
        starts, groups = parsed
        for spec in _expand_line(starts, groups, line, line_no):
            if spec in seen:
                log.debug("duplicate_trial", extra={"trial": spec.label, "line_no": line_no})
                continue
            seen.add(spec)
            specs.append(spec)
    return specs


def load_benchmarks(path: str | Path) -> List[TrialSpec]:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read bench file {p}: {exc}") from exc
    specs = parse_benchmarks(text)
    log.info("benchmarks_loaded", extra={"path": str(p), "n_trials": len(specs)})
    return specs
