# report_errors.py
# Error taxonomy for the leaderboard -> metrics -> dashboard pipeline.

from __future__ import annotations

from typing import Mapping, Optional


class ReportError(Exception):
    """Base class for every error raised by the reporting pipeline."""


class SelectionError(ReportError, ValueError):
    """Requested top/bottom windows do not fit the leaderboard."""


class RankingKeyError(ReportError, ValueError):
    """Unknown ranking metric name."""


class ModelNotFoundError(ReportError, LookupError):
    """No artifact stored for a model id."""


class MetricsFetchError(ReportError):
    """The metrics provider failed for one model.

    Carries the model id, a short reason and the number of attempts made so a
    partial report can list what went missing.
    """

    def __init__(self, model_id: str, reason: str, attempts: int = 1,
                 cause: Optional[BaseException] = None):
        self.model_id = model_id
        self.reason = reason
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"{model_id}: {reason} (after {attempts} attempt{'s' if attempts != 1 else ''})")


class EmptyAggregationError(ReportError):
    """Every model in the selection failed; nothing left to plot."""

    def __init__(self, failures: Mapping[str, MetricsFetchError]):
        self.failures = dict(failures)
        ids = ", ".join(self.failures) or "none"
        super().__init__(f"No model produced metrics (failed: {ids})")


class AggregationCancelled(ReportError):
    """Aggregation stopped on request or deadline; partial results discarded."""
