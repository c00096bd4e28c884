# metrics_aggregator.py
# Fan out the metrics provider over a leaderboard selection and union the
# per-model tables, keeping failures per model instead of aborting the run.

from __future__ import annotations

import concurrent.futures as cf
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

import pandas as pd

from leaderboard import LeaderboardEntry, rank_entries
from model_performance import EvaluationDataset, score
from report_config import MAX_WORKERS, CALL_TIMEOUT, RETRIES, BACKOFF, MAX_BACKOFF
from report_errors import (
    AggregationCancelled, EmptyAggregationError, MetricsFetchError, SelectionError
)

_log = logging.getLogger(__name__)

TRANSIENT_ERRORS = (TimeoutError, cf.TimeoutError, ConnectionError)
_POLL = 0.05  # seconds between cancellation checks


@dataclass(frozen=True)
class ModelMetrics:
    model_id: str
    threshold_metrics: pd.DataFrame
    gain_lift: pd.DataFrame
    summary: Mapping[str, float]


@dataclass(frozen=True)
class AggregatedMetrics:
    """Per-model tables keyed by model id (selection order) plus the failures."""
    tables: Dict[str, pd.DataFrame]
    failures: Dict[str, MetricsFetchError] = field(default_factory=dict)

    @property
    def model_ids(self) -> Tuple[str, ...]:
        return tuple(self.tables)

    def __len__(self) -> int:
        return len(self.tables)

    def frame(self) -> pd.DataFrame:
        """Union of every table with a leading ``model_id`` column."""
        if not self.tables:
            return pd.DataFrame(columns=["model_id"])
        parts = [t.assign(model_id=mid) for mid, t in self.tables.items()]
        out = pd.concat(parts, ignore_index=True)
        return out[["model_id"] + [c for c in out.columns if c != "model_id"]]


@dataclass(frozen=True)
class Aggregation:
    selection: Tuple[LeaderboardEntry, ...]
    results: Dict[str, ModelMetrics]
    failures: Dict[str, MetricsFetchError]

    @property
    def threshold_metrics(self) -> AggregatedMetrics:
        return AggregatedMetrics({m: r.threshold_metrics for m, r in self.results.items()}, self.failures)

    @property
    def gain_lift(self) -> AggregatedMetrics:
        return AggregatedMetrics({m: r.gain_lift for m, r in self.results.items()}, self.failures)

    @property
    def summaries(self) -> Dict[str, Mapping[str, float]]:
        return {m: r.summary for m, r in self.results.items()}

    @property
    def succeeded(self) -> Tuple[LeaderboardEntry, ...]:
        return tuple(e for e in self.selection if e.model_id in self.results)

    def ranked(self, ranking_key) -> list:
        """Successful entries best-first by ``ranking_key`` (leaderboard values)."""
        return rank_entries(self.succeeded, ranking_key)


def _start_daemon(fn: Callable, name: str, gate: Optional[threading.Semaphore] = None) -> cf.Future:
    """Run ``fn`` in a daemon thread and return its future.

    A hung call never holds up interpreter exit. ``gate`` bounds how many
    calls run at once; a future cancelled while waiting on it never runs.
    """
    future: cf.Future = cf.Future()

    def run() -> None:
        if gate is not None:
            gate.acquire()
        try:
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn())
            except BaseException as e:
                future.set_exception(e)
        finally:
            if gate is not None:
                gate.release()

    threading.Thread(target=run, name=name, daemon=True).start()
    return future


def _call_with_timeout(fn: Callable, timeout: Optional[float]):
    if timeout is None:
        return fn()
    # a timed-out call keeps running in its thread; its result is dropped
    return _start_daemon(fn, "metrics-call").result(timeout=timeout)


class MetricsAggregator:
    """Fetch metrics for each selected model against one evaluation frame.

    ``registry`` needs ``get_model(model_id)``; ``provider(handle, dataset,
    model_id=...)`` returns an object with ``threshold_metrics()``,
    ``gain_lift()`` and ``summary_metrics()``. Nothing is cached between calls.
    """

    def __init__(self, registry, provider: Callable = score,
                 max_workers: int = MAX_WORKERS, timeout: Optional[float] = CALL_TIMEOUT,
                 retries: int = RETRIES, backoff: float = BACKOFF, max_backoff: float = MAX_BACKOFF,
                 sleep: Callable[[float], None] = time.sleep):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self.registry = registry
        self.provider = provider
        self.max_workers = max_workers
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.max_backoff = max_backoff
        self._sleep = sleep

    def _fetch_once(self, model_id: str, dataset: EvaluationDataset) -> ModelMetrics:
        handle = self.registry.get_model(model_id)
        perf = self.provider(handle, dataset, model_id=model_id)
        return ModelMetrics(model_id, perf.threshold_metrics(), perf.gain_lift(), perf.summary_metrics())

    def fetch(self, model_id: str, dataset: EvaluationDataset) -> ModelMetrics:
        """One model, with per-call timeout and bounded retries on transient errors."""
        attempts = 0
        delay = self.backoff
        while True:
            attempts += 1
            try:
                return _call_with_timeout(lambda: self._fetch_once(model_id, dataset), self.timeout)
            except TRANSIENT_ERRORS as e:
                reason = f"timed out after {self.timeout}s" if isinstance(e, (TimeoutError, cf.TimeoutError)) \
                    else f"{type(e).__name__}: {e}"
                if attempts > self.retries:
                    raise MetricsFetchError(model_id, reason, attempts, e) from e
                _log.info("Retrying %s in %.2fs (%s)", model_id, delay, reason)
                self._sleep(delay)
                delay = min(delay * 2, self.max_backoff)
            except Exception as e:
                raise MetricsFetchError(model_id, f"{type(e).__name__}: {e}", attempts, e) from e

    def aggregate(self, selection: Sequence[LeaderboardEntry], dataset: EvaluationDataset,
                  cancel_event: Optional[threading.Event] = None,
                  deadline: Optional[float] = None) -> Aggregation:
        """Metrics for every entry in ``selection``.

        ``deadline`` is a ``time.monotonic()`` value. On cancellation or an
        expired deadline the partial results are dropped and
        :class:`AggregationCancelled` is raised. Raises
        :class:`EmptyAggregationError` when no model succeeds.
        """
        selection = tuple(selection)
        ids = [e.model_id for e in selection]
        if len(set(ids)) != len(ids):
            raise SelectionError(f"Selection repeats model ids: {ids}")

        done: Dict[str, ModelMetrics] = {}
        failures: Dict[str, MetricsFetchError] = {}

        def stop_reason() -> Optional[str]:
            if cancel_event is not None and cancel_event.is_set():
                return "cancelled"
            if deadline is not None and time.monotonic() >= deadline:
                return "deadline expired"
            return None

        gate = threading.Semaphore(self.max_workers)
        pending = {
            _start_daemon(lambda mid=mid: self.fetch(mid, dataset), f"metrics-{mid}", gate): mid
            for mid in ids
        }
        try:
            while pending:
                reason = stop_reason()
                if reason:
                    _log.warning("Aggregation %s with %d model(s) outstanding; discarding partial results",
                                 reason, len(pending))
                    raise AggregationCancelled(f"Aggregation {reason}")
                finished, _ = cf.wait(pending, timeout=_POLL, return_when=cf.FIRST_COMPLETED)
                for f in finished:
                    mid = pending.pop(f)
                    try:
                        done[mid] = f.result()
                    except MetricsFetchError as e:
                        _log.warning("Metrics failed for %s", e)
                        failures[mid] = e
        finally:
            # queued calls never start; running ones finish in the background
            for f in pending:
                f.cancel()

        # selection order, regardless of completion order
        results = {mid: done[mid] for mid in ids if mid in done}
        failures = {mid: failures[mid] for mid in ids if mid in failures}
        if ids and not results:
            raise EmptyAggregationError(failures)
        _log.info("Aggregated %d/%d model(s)", len(results), len(ids))
        return Aggregation(selection, results, failures)


def aggregate_threshold_metrics(selection, dataset, registry, **kwargs) -> AggregatedMetrics:
    """Per-threshold tables for each selected model, keyed by model id."""
    return MetricsAggregator(registry, **kwargs).aggregate(selection, dataset).threshold_metrics


def aggregate_gain_lift(selection, dataset, registry, **kwargs) -> AggregatedMetrics:
    """Decile gain/lift tables for each selected model, keyed by model id."""
    return MetricsAggregator(registry, **kwargs).aggregate(selection, dataset).gain_lift
