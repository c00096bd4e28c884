"""Shared fixtures: synthetic backorder frames, fixed-score models and registries."""

import matplotlib

matplotlib.use("Agg")

from pathlib import Path  # noqa: E402

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import pytest  # noqa: E402
from sklearn.ensemble import RandomForestClassifier  # noqa: E402
from sklearn.linear_model import LogisticRegression  # noqa: E402
from sklearn.naive_bayes import GaussianNB  # noqa: E402
from sklearn.tree import DecisionTreeClassifier  # noqa: E402

from leaderboard import build_leaderboard  # noqa: E402
from model_performance import EvaluationDataset  # noqa: E402
from model_registry import save_model  # noqa: E402
from report_errors import ModelNotFoundError  # noqa: E402


def make_backorder_frame(n: int = 400, seed: int = 0) -> pd.DataFrame:
    """Backorder-like frame: a few inventory features, a Yes/No flag and the Yes/No target."""
    rng = np.random.default_rng(seed)
    df = pd.DataFrame({
        "sku": [f"SKU{i:05d}" for i in range(n)],
        "national_inv": rng.normal(50, 20, n),
        "lead_time": rng.integers(2, 12, n).astype(float),
        "forecast_3_month": rng.gamma(2.0, 20.0, n),
        "sales_3_month": rng.gamma(2.0, 18.0, n),
        "min_bank": rng.gamma(1.5, 5.0, n),
        "perf_6_month_avg": rng.uniform(0.5, 1.0, n),
        "potential_issue": rng.choice(["Yes", "No"], n, p=[0.15, 0.85]),
    })
    logit = (-1.2 - 0.05 * (df["national_inv"] - 50) + 0.03 * (df["forecast_3_month"] - 40)
             + 1.2 * (df["potential_issue"] == "Yes"))
    prob = 1 / (1 + np.exp(-logit))
    df["went_on_backorder"] = np.where(rng.uniform(size=n) < prob, "Yes", "No")
    return df


class FixedScoreModel:
    """Stand-in classifier returning precomputed positive-class scores."""

    classes_ = np.array([0, 1])

    def __init__(self, scores):
        self.scores = np.asarray(scores, dtype=float)

    def predict_proba(self, X):
        if len(X) != len(self.scores):
            raise ValueError(f"X has {len(X)} rows, model was built for {len(self.scores)}")
        return np.column_stack([1 - self.scores, self.scores])


def scored_model(labels: np.ndarray, quality: float, seed: int) -> FixedScoreModel:
    """Scores that separate the classes better as ``quality`` goes to 1."""
    rng = np.random.default_rng(seed)
    noise = rng.uniform(size=len(labels))
    return FixedScoreModel(np.clip(quality * labels + (1 - quality) * noise, 0.001, 0.999))


class FakeRegistry:
    """In-memory registry; ids listed in ``broken`` fail to load like a corrupted artifact."""

    def __init__(self, models: dict, broken=()):
        self.models = dict(models)
        self.broken = set(broken)
        self.calls = []

    def list_model_ids(self):
        return sorted(set(self.models) | self.broken)

    def get_model(self, model_id):
        self.calls.append(model_id)
        if model_id in self.broken:
            raise EOFError(f"artifact for {model_id} is truncated")
        if model_id not in self.models:
            raise ModelNotFoundError(model_id)
        return self.models[model_id]


@pytest.fixture(autouse=True)
def _close_figures():
    yield
    plt.close("all")


@pytest.fixture
def backorder_frame() -> pd.DataFrame:
    return make_backorder_frame()


@pytest.fixture
def eval_dataset(backorder_frame) -> EvaluationDataset:
    return EvaluationDataset.from_frame(backorder_frame, name="holdout")


@pytest.fixture
def twenty_models(eval_dataset) -> dict:
    """model_01 (best) .. model_20 (worst)."""
    qualities = np.linspace(0.9, 0.02, 20)
    return {f"model_{i + 1:02d}": scored_model(eval_dataset.labels, q, seed=i)
            for i, q in enumerate(qualities)}


@pytest.fixture
def fake_registry(twenty_models) -> FakeRegistry:
    return FakeRegistry(twenty_models)


@pytest.fixture
def board_20(fake_registry, eval_dataset):
    return build_leaderboard(fake_registry, eval_dataset, sort_by="auc")


@pytest.fixture
def trained_workspace(tmp_path: Path, backorder_frame) -> Path:
    """tmp dir with models/*.joblib (real sklearn estimators) and data/backorder_test.csv."""
    data_dir = tmp_path / "data"
    data_dir.mkdir()
    backorder_frame.to_csv(data_dir / "backorder_test.csv", index=False)

    ds = EvaluationDataset.from_frame(backorder_frame)
    models = {
        "LogReg_C1": LogisticRegression(C=1.0, max_iter=2000),
        "LogReg_C001": LogisticRegression(C=0.001, max_iter=2000),
        "Tree_d2": DecisionTreeClassifier(max_depth=2, random_state=0),
        "Tree_d6": DecisionTreeClassifier(max_depth=6, random_state=0),
        "NaiveBayes": GaussianNB(),
        "RandomForest_20": RandomForestClassifier(n_estimators=20, random_state=0),
    }
    for model_id, est in models.items():
        est.fit(ds.features, ds.labels)
        save_model(est, str(tmp_path / "models"), model_id)
    return tmp_path
