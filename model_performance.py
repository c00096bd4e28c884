# model_performance.py
# Metrics provider: score a fitted model on a held-out frame and expose
# per-threshold metrics, decile gain/lift and scalar summaries.

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass
from functools import cached_property
from typing import Dict, Iterable, Optional

import numpy as np
import pandas as pd
from sklearn.exceptions import UndefinedMetricWarning
from sklearn.metrics import (
    roc_curve, roc_auc_score, log_loss, average_precision_score,
    mean_squared_error, confusion_matrix
)

from report_config import TARGET, POSITIVE_LABEL, DROP_COLUMNS, GAIN_LIFT_GROUPS

SUMMARY_METRICS = ("auc", "logloss", "mean_per_class_error", "rmse", "mse", "aucpr", "ks")
THRESHOLD_COLUMNS = ["threshold", "tpr", "fpr", "precision", "recall", "f1"]
GAIN_LIFT_COLUMNS = [
    "group", "cumulative_data_fraction", "lower_threshold",
    "response_rate", "capture_rate", "lift",
    "cumulative_capture_rate", "cumulative_lift",
]

_YES_NO = {"yes", "no"}


# ============================ Evaluation data ==============================

@dataclass(frozen=True, eq=False)
class EvaluationDataset:
    """Feature frame plus 0/1 labels. Labels are stored read-only; treat features the same way."""
    features: pd.DataFrame
    labels: np.ndarray
    name: str = "evaluation"

    def __post_init__(self):
        labels = np.asarray(self.labels).astype(int).copy()
        if labels.ndim != 1 or len(labels) != len(self.features):
            raise ValueError(f"labels ({labels.shape}) do not match features ({len(self.features)} rows)")
        if not np.isin(labels, (0, 1)).all():
            raise ValueError("labels must be 0/1")
        labels.setflags(write=False)
        object.__setattr__(self, "labels", labels)

    def __len__(self) -> int:
        return len(self.labels)

    @property
    def positives(self) -> int:
        return int(self.labels.sum())

    @property
    def prevalence(self) -> float:
        return float(self.labels.mean()) if len(self.labels) else np.nan

    @classmethod
    def from_frame(cls, df: pd.DataFrame, target: str = TARGET,
                   positive_label: str = POSITIVE_LABEL,
                   drop_columns: Iterable[str] = DROP_COLUMNS,
                   name: str = "evaluation") -> "EvaluationDataset":
        if target not in df.columns:
            raise KeyError(f"Target column '{target}' not found; columns: {list(df.columns)}")
        df = df.dropna(subset=[target])
        y = _coerce_target(df[target], positive_label)
        X = df.drop(columns=[target] + [c for c in drop_columns if c in df.columns])
        X = _yes_no_to_int(X).reset_index(drop=True)
        return cls(X, y.to_numpy(), name)


def _coerce_target(s: pd.Series, positive_label: str) -> pd.Series:
    if pd.api.types.is_bool_dtype(s):
        return s.astype(int)
    if pd.api.types.is_numeric_dtype(s):
        if not s.isin([0, 1]).all():
            raise ValueError(f"Numeric target '{s.name}' must be 0/1, got {sorted(s.unique())[:5]}")
        return s.astype(int)
    v = s.astype(str).str.strip().str.lower()
    return v.isin({str(positive_label).lower(), "1", "true"}).astype(int)


def _yes_no_to_int(X: pd.DataFrame) -> pd.DataFrame:
    X = X.copy()
    for c in X.columns:
        s = X[c]
        if not (pd.api.types.is_object_dtype(s) or pd.api.types.is_string_dtype(s)):
            continue
        present = s.dropna()
        v = present.astype(str).str.strip().str.lower()
        if len(v) and set(v.unique()) <= _YES_NO:
            flags = (v == "yes").astype(int).reindex(s.index)  # gaps stay NaN
            X[c] = flags.astype(int) if len(present) == len(s) else flags.astype(float)
    return X


def load_evaluation_data(path: str, target: str = TARGET,
                         positive_label: str = POSITIVE_LABEL,
                         drop_columns: Iterable[str] = DROP_COLUMNS,
                         name: Optional[str] = None) -> EvaluationDataset:
    """Read a held-out CSV into an :class:`EvaluationDataset`.

    Rows with a missing target are dropped (the public backorder extracts end
    with a footer row of blanks). Yes/No feature columns become 1/0.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Evaluation data not found: {os.path.abspath(path)}")
    df = pd.read_csv(path, low_memory=False)
    df.columns = [c.strip() for c in df.columns]
    return EvaluationDataset.from_frame(df, target, positive_label, drop_columns,
                                        name or os.path.splitext(os.path.basename(path))[0])


# ============================ Performance ==================================

class ModelPerformance:
    """Metrics of one model's scores against one label vector.

    Tables are computed lazily and cached on the instance; a new call to
    :func:`score` always builds a fresh object.
    """

    def __init__(self, y_true, y_score, model_id: Optional[str] = None,
                 groups: int = GAIN_LIFT_GROUPS):
        self.y_true = np.asarray(y_true).astype(int)
        self.y_score = np.asarray(y_score, dtype=float)
        if self.y_true.shape != self.y_score.shape:
            raise ValueError(f"{len(self.y_score)} scores for {len(self.y_true)} labels")
        if len(self.y_true) == 0:
            raise ValueError("Cannot measure performance on an empty dataset")
        self.model_id = model_id
        self.groups = groups

    def __repr__(self) -> str:
        return f"ModelPerformance(model_id={self.model_id!r}, n={len(self.y_true)})"

    @property
    def has_both_classes(self) -> bool:
        return 0 < self.y_true.sum() < len(self.y_true)

    # ---- per threshold

    @cached_property
    def _threshold_table(self) -> pd.DataFrame:
        y, s = self.y_true, self.y_score
        with warnings.catch_warnings():
            # single-class frames: sklearn warns and returns NaN rates
            warnings.simplefilter("ignore", UndefinedMetricWarning)
            fpr, tpr, thr = roc_curve(y, s, drop_intermediate=False)

        pos = np.sort(s[y == 1]); neg = np.sort(s[y == 0])
        tp = len(pos) - np.searchsorted(pos, thr, side="left")
        fp = len(neg) - np.searchsorted(neg, thr, side="left")
        flagged = tp + fp
        precision = np.divide(tp, flagged, out=np.ones(len(thr)), where=flagged > 0)
        recall = tpr
        denom = precision + recall
        f1 = np.divide(2 * precision * recall, denom, out=np.zeros(len(thr)), where=denom > 0)
        f1[np.isnan(recall)] = np.nan

        return pd.DataFrame({
            "threshold": np.clip(thr, 0.0, 1.0),
            "tpr": tpr, "fpr": fpr,
            "precision": precision, "recall": recall, "f1": f1,
        }, columns=THRESHOLD_COLUMNS)

    def threshold_metrics(self) -> pd.DataFrame:
        """One row per distinct threshold, highest threshold first (fpr ascending)."""
        return self._threshold_table.copy()

    # ---- deciles

    @cached_property
    def _gain_lift_table(self) -> pd.DataFrame:
        df = pd.DataFrame({"y": self.y_true, "p": self.y_score})
        df = df.sort_values("p", ascending=False, kind="mergesort").reset_index(drop=True)
        n = len(df)
        k = min(self.groups, n)
        if k > 1:
            df["group"] = pd.qcut(np.arange(n), k, labels=False) + 1  # 1..k
        else:
            df["group"] = 1
        agg = df.groupby("group").agg(rows=("y", "size"),
                                      events=("y", "sum"),
                                      lower_threshold=("p", "min")).reset_index()
        total_events = max(1, int(agg["events"].sum()))
        agg["cumulative_data_fraction"] = agg["rows"].cumsum() / n
        agg["response_rate"] = agg["events"] / agg["rows"]
        agg["capture_rate"] = agg["events"] / total_events
        agg["lift"] = agg["capture_rate"] / (agg["rows"] / n)
        agg["cumulative_capture_rate"] = agg["events"].cumsum() / total_events
        agg["cumulative_lift"] = agg["cumulative_capture_rate"] / agg["cumulative_data_fraction"]
        return agg[GAIN_LIFT_COLUMNS]

    def gain_lift(self) -> pd.DataFrame:
        """Decile gain/lift table ordered by ascending cumulative_data_fraction."""
        return self._gain_lift_table.copy()

    # ---- scalars

    def _best_f1_threshold(self) -> float:
        f1 = self._threshold_table["f1"].to_numpy()
        if np.all(np.isnan(f1)):
            return 0.5
        return float(self._threshold_table["threshold"].iloc[int(np.nanargmax(f1))])

    def _mean_per_class_error(self) -> float:
        y_hat = (self.y_score >= self._best_f1_threshold()).astype(int)
        tn, fp, fn, tp = confusion_matrix(self.y_true, y_hat, labels=[0, 1]).ravel()
        errors = []
        if tp + fn: errors.append(fn / (tp + fn))
        if tn + fp: errors.append(fp / (tn + fp))
        return float(np.mean(errors))

    @cached_property
    def _summaries(self) -> Dict[str, float]:
        y, s = self.y_true, self.y_score
        both = self.has_both_classes
        mse = float(mean_squared_error(y, s))
        tbl = self._threshold_table
        return {
            "auc": float(roc_auc_score(y, s)) if both else np.nan,
            "logloss": float(log_loss(y, np.clip(s, 1e-15, 1 - 1e-15), labels=[0, 1])),
            "mean_per_class_error": self._mean_per_class_error(),
            "rmse": float(np.sqrt(mse)),
            "mse": mse,
            "aucpr": float(average_precision_score(y, s)) if y.sum() > 0 else np.nan,
            "ks": float((tbl["tpr"] - tbl["fpr"]).max()) if both else np.nan,
        }

    def summary(self, metric_name: str) -> float:
        key = metric_name.strip().lower()
        if key not in self._summaries:
            raise KeyError(f"Unknown metric '{metric_name}'. Available: {', '.join(SUMMARY_METRICS)}")
        return self._summaries[key]

    def summary_metrics(self) -> Dict[str, float]:
        return dict(self._summaries)


def positive_scores(handle, features: pd.DataFrame) -> np.ndarray:
    proba = np.asarray(handle.predict_proba(features))
    classes = list(getattr(handle, "classes_", [0, 1]))
    col = classes.index(1) if 1 in classes else proba.shape[1] - 1
    return proba[:, col]


def score(handle, dataset: EvaluationDataset, model_id: Optional[str] = None) -> ModelPerformance:
    """Score ``dataset`` with ``handle`` and wrap the result. Schema mismatches surface from the model."""
    scores = positive_scores(handle, dataset.features)
    return ModelPerformance(dataset.labels, scores, model_id=model_id)
