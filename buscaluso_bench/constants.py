"""
Scoring and comparison constants shared by the runner, scorer and benchdb.
"""
from __future__ import annotations

from pathlib import Path

# Cost of one position further down the result list, in seconds
RANK_UNIT: float = 1.0 / 8.0

# Fraction of per-repeat values trimmed from each end before averaging
TRIM_FRACTION: float = 1.0 / 8.0

# Value of a not-found repeat (and of an errored one, unless all errored).
# Must sort after any rank * RANK_UNIT + timeout a real run can produce.
NOT_FOUND_PENALTY: float = float(2 ** 32)

# Score deltas below this are measurement noise when comparing sessions
MATERIALITY_THRESHOLD: float = 1.0 / 32.0

DEFAULT_DB_PATH = Path("bench.sqlite3")
