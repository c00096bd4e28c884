# leaderboard.py
# Immutable leaderboard snapshots, ranking keys and top/bottom selection.

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Iterable, Iterator, Mapping, Optional, Sequence, Tuple

import pandas as pd

from report_config import LEADERBOARD_CSV, LEADERBOARD_SORT
from report_errors import RankingKeyError, SelectionError

_log = logging.getLogger(__name__)


class RankingKey(str, Enum):
    """Metrics a leaderboard can be ordered by."""
    AUC = "auc"
    LOGLOSS = "logloss"
    MEAN_PER_CLASS_ERROR = "mean_per_class_error"
    RMSE = "rmse"
    MSE = "mse"
    AUCPR = "aucpr"

    def __str__(self) -> str:
        return self.value

    @property
    def ascending(self) -> bool:
        return _RULES[self][0]

    def value_of(self, entry: "LeaderboardEntry") -> float:
        return _RULES[self][1](entry.summary_metrics)

    @classmethod
    def parse(cls, value) -> "RankingKey":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(k.value for k in cls)
            raise RankingKeyError(f"Unknown ranking key {value!r}; supported: {supported}") from None


def _metric(name: str) -> Callable[[Mapping[str, float]], float]:
    def get(metrics: Mapping[str, float]) -> float:
        v = metrics.get(name)
        return float(v) if v is not None else math.nan
    return get


# key -> (ascending, accessor)
_RULES = {
    RankingKey.AUC: (False, _metric("auc")),
    RankingKey.LOGLOSS: (True, _metric("logloss")),
    RankingKey.MEAN_PER_CLASS_ERROR: (True, _metric("mean_per_class_error")),
    RankingKey.RMSE: (True, _metric("rmse")),
    RankingKey.MSE: (True, _metric("mse")),
    RankingKey.AUCPR: (False, _metric("aucpr")),
}


@dataclass(frozen=True)
class LeaderboardEntry:
    model_id: str
    summary_metrics: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "summary_metrics",
                           MappingProxyType({k: float(v) for k, v in dict(self.summary_metrics).items()}))

    def __hash__(self) -> int:
        return hash(self.model_id)

    def metric(self, name: str) -> float:
        return self.summary_metrics.get(name, math.nan)


def rank_sort_key(key: RankingKey) -> Callable[[LeaderboardEntry], Tuple[bool, float]]:
    """Sort key putting missing values last, best first."""
    def _key(entry: LeaderboardEntry) -> Tuple[bool, float]:
        v = key.value_of(entry)
        missing = math.isnan(v)
        return (missing, 0.0 if missing else (v if key.ascending else -v))
    return _key


def rank_entries(entries: Iterable[LeaderboardEntry], ranking_key) -> list:
    """Entries ordered best-first by ``ranking_key`` (stable among ties)."""
    key = RankingKey.parse(ranking_key)
    return sorted(entries, key=rank_sort_key(key))


@dataclass(frozen=True)
class Leaderboard:
    """Ordered, read-only snapshot of ranked models.

    ``sort_by`` records the order the entries were retrieved in; it is what
    :func:`select` slices on.
    """
    entries: Tuple[LeaderboardEntry, ...]
    sort_by: RankingKey = RankingKey.AUC

    def __post_init__(self):
        entries = tuple(self.entries)
        seen = set()
        for e in entries:
            if e.model_id in seen:
                raise ValueError(f"Duplicate model id on leaderboard: {e.model_id}")
            seen.add(e.model_id)
        object.__setattr__(self, "entries", entries)
        object.__setattr__(self, "sort_by", RankingKey.parse(self.sort_by))

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[LeaderboardEntry]:
        return iter(self.entries)

    def __getitem__(self, i):
        return self.entries[i]

    @property
    def model_ids(self) -> Tuple[str, ...]:
        return tuple(e.model_id for e in self.entries)

    def get(self, model_id: str) -> Optional[LeaderboardEntry]:
        return next((e for e in self.entries if e.model_id == model_id), None)

    def sorted_by(self, ranking_key) -> "Leaderboard":
        key = RankingKey.parse(ranking_key)
        return Leaderboard(tuple(rank_entries(self.entries, key)), key)

    @property
    def metric_names(self) -> list:
        names: list = []
        for e in self.entries:
            names += [m for m in e.summary_metrics if m not in names]
        return names

    def to_frame(self) -> pd.DataFrame:
        cols = ["model_id"] + self.metric_names
        rows = [{"model_id": e.model_id, **e.summary_metrics} for e in self.entries]
        return pd.DataFrame(rows, columns=cols)

    @classmethod
    def from_frame(cls, df: pd.DataFrame, sort_by=None) -> "Leaderboard":
        """Build from a frame with a ``model_id`` column; row order is kept unless ``sort_by`` is given."""
        if "model_id" not in df.columns:
            raise KeyError("Leaderboard frame needs a 'model_id' column")
        metric_cols = [c for c in df.columns if c != "model_id" and pd.api.types.is_numeric_dtype(df[c])]
        entries = tuple(
            LeaderboardEntry(str(r["model_id"]),
                             {c: r[c] for c in metric_cols if pd.notna(r[c])})
            for _, r in df.iterrows()
        )
        board = cls(entries, sort_by or LEADERBOARD_SORT)
        return board.sorted_by(sort_by) if sort_by is not None else board


def check_counts(top_n: int, bottom_n: int) -> None:
    """Selection-size checks that need no board."""
    for name, n in (("top_n", top_n), ("bottom_n", bottom_n)):
        if isinstance(n, bool) or not isinstance(n, int):
            raise SelectionError(f"{name} must be an int, got {n!r}")
        if n < 0:
            raise SelectionError(f"{name} must be >= 0, got {n}")
    if top_n + bottom_n == 0:
        raise SelectionError("Empty selection: top_n and bottom_n are both 0")


def select(leaderboard: Leaderboard, top_n: int, bottom_n: int) -> Tuple[LeaderboardEntry, ...]:
    """First ``top_n`` plus last ``bottom_n`` entries in the board's own order.

    Overlapping windows are rejected rather than de-duplicated.
    """
    check_counts(top_n, bottom_n)
    size = len(leaderboard)
    if top_n + bottom_n > size:
        raise SelectionError(
            f"top_n + bottom_n = {top_n} + {bottom_n} = {top_n + bottom_n} exceeds "
            f"leaderboard size {size}; the windows would overlap"
        )
    top = leaderboard.entries[:top_n]
    bottom = leaderboard.entries[size - bottom_n:] if bottom_n else ()
    return tuple(top) + tuple(bottom)


# ============================ Build & persist ==============================

def build_leaderboard(registry, dataset, sort_by=LEADERBOARD_SORT, provider=None) -> Leaderboard:
    """Score every registered model on ``dataset`` and rank by ``sort_by``.

    Models that fail to load or score are logged and left off the board.
    """
    if provider is None:
        from model_performance import score as provider
    key = RankingKey.parse(sort_by)
    entries = []
    for model_id in registry.list_model_ids():
        try:
            perf = provider(registry.get_model(model_id), dataset, model_id=model_id)
            metrics = perf.summary_metrics()
        except Exception as e:
            _log.warning("Leaving %s off the leaderboard: %s", model_id, e)
            continue
        entries.append(LeaderboardEntry(model_id, metrics))
    _log.info("Leaderboard built: %d model(s), sorted by %s", len(entries), key)
    return Leaderboard(tuple(rank_entries(entries, key)), key)


def save_leaderboard(board: Leaderboard, path: str = LEADERBOARD_CSV) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    board.to_frame().to_csv(path, index=False)
    return path


def load_leaderboard(path: str = LEADERBOARD_CSV, sort_by=None) -> Leaderboard:
    """Read a saved snapshot.

    With ``sort_by`` the rows are re-ranked by that key (stable, so a snapshot
    already in that order is unchanged); without it the file's row order is kept.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Leaderboard snapshot not found: {path}")
    df = pd.read_csv(path, dtype={"model_id": str})
    return Leaderboard.from_frame(df, sort_by)


def get_leaderboard(registry=None, dataset=None, path: str = LEADERBOARD_CSV,
                    sort_by=LEADERBOARD_SORT, refresh: bool = False) -> Leaderboard:
    """Saved snapshot when present (and not ``refresh``); otherwise build one from
    ``registry`` scored on ``dataset`` and save it."""
    if path and os.path.exists(path) and not refresh:
        return load_leaderboard(path, sort_by)
    if registry is None or dataset is None:
        raise ValueError("No leaderboard snapshot; a registry and dataset are needed to build one")
    board = build_leaderboard(registry, dataset, sort_by)
    if path:
        save_leaderboard(board, path)
    return board


def selection_ids(selection: Sequence[LeaderboardEntry]) -> Tuple[str, ...]:
    return tuple(e.model_id for e in selection)
