"""Tests for the metrics provider: evaluation data, threshold tables, gain/lift and summaries."""

from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from sklearn.linear_model import LogisticRegression
from sklearn.metrics import log_loss, roc_auc_score

from model_performance import (
    GAIN_LIFT_COLUMNS,
    THRESHOLD_COLUMNS,
    EvaluationDataset,
    ModelPerformance,
    load_evaluation_data,
    score,
)


@pytest.fixture
def perf(eval_dataset) -> ModelPerformance:
    rng = np.random.default_rng(3)
    s = np.clip(0.6 * eval_dataset.labels + 0.4 * rng.uniform(size=len(eval_dataset)), 0.001, 0.999)
    return ModelPerformance(eval_dataset.labels, s, model_id="m")


class TestEvaluationDataset:
    def test_from_frame_coerces_target_and_drops_ids(self, backorder_frame: pd.DataFrame) -> None:
        ds = EvaluationDataset.from_frame(backorder_frame)
        assert "sku" not in ds.features.columns
        assert "went_on_backorder" not in ds.features.columns
        assert set(np.unique(ds.labels)) == {0, 1}
        assert ds.positives == int((backorder_frame["went_on_backorder"] == "Yes").sum())
        assert set(ds.features["potential_issue"].unique()) <= {0, 1}

    def test_yes_no_features_become_integers(self, backorder_frame: pd.DataFrame) -> None:
        ds = EvaluationDataset.from_frame(backorder_frame)
        assert ds.features["potential_issue"].dtype.kind in "iu"
        assert all(ds.features[c].dtype.kind in "iuf" for c in ds.features.columns)

    def test_yes_no_features_from_string_dtype(self, backorder_frame: pd.DataFrame) -> None:
        df = backorder_frame.astype({"potential_issue": "string", "went_on_backorder": "string"})
        ds = EvaluationDataset.from_frame(df)
        assert ds.features["potential_issue"].dtype.kind in "iu"
        assert ds.positives == int((backorder_frame["went_on_backorder"] == "Yes").sum())

    def test_yes_no_feature_with_gaps(self) -> None:
        df = pd.DataFrame({"flag": ["Yes", None, " no"], "went_on_backorder": ["Yes", "No", "No"]})
        flag = EvaluationDataset.from_frame(df).features["flag"]
        assert flag.dtype.kind == "f"
        assert flag.iloc[0] == 1 and flag.iloc[2] == 0
        assert np.isnan(flag.iloc[1])

    def test_labels_are_read_only(self, eval_dataset) -> None:
        with pytest.raises(ValueError):
            eval_dataset.labels[0] = 1

    def test_numeric_target_must_be_binary(self) -> None:
        df = pd.DataFrame({"x": [1.0, 2.0], "went_on_backorder": [0, 2]})
        with pytest.raises(ValueError, match="0/1"):
            EvaluationDataset.from_frame(df)

    def test_missing_target_column(self) -> None:
        with pytest.raises(KeyError, match="went_on_backorder"):
            EvaluationDataset.from_frame(pd.DataFrame({"x": [1.0]}))

    def test_load_drops_blank_footer_row(self, backorder_frame: pd.DataFrame, tmp_path: Path) -> None:
        footer = pd.DataFrame([{"sku": "(400 rows)"}])
        path = tmp_path / "test.csv"
        pd.concat([backorder_frame, footer], ignore_index=True).to_csv(path, index=False)
        ds = load_evaluation_data(str(path))
        assert len(ds) == len(backorder_frame)
        assert ds.name == "test"

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_evaluation_data(str(tmp_path / "absent.csv"))


class TestThresholdMetrics:
    def test_columns_and_ranges(self, perf: ModelPerformance) -> None:
        tbl = perf.threshold_metrics()
        assert list(tbl.columns) == THRESHOLD_COLUMNS
        assert tbl["threshold"].between(0, 1).all()
        assert tbl["threshold"].is_monotonic_decreasing
        assert tbl["fpr"].is_monotonic_increasing
        assert (tbl["tpr"] == tbl["recall"]).all()

    def test_lowest_threshold_flags_everyone(self, perf: ModelPerformance, eval_dataset) -> None:
        last = perf.threshold_metrics().iloc[-1]
        assert last["tpr"] == 1.0 and last["fpr"] == 1.0
        assert last["precision"] == pytest.approx(eval_dataset.prevalence)

    def test_perfect_separation_is_a_step(self) -> None:
        """Two rows, one per side of the cut: the ROC curve has just two segments."""
        tbl = ModelPerformance([0, 1], [0.2, 0.8]).threshold_metrics()
        assert list(tbl["fpr"]) == [0.0, 0.0, 1.0]
        assert list(tbl["tpr"]) == [0.0, 1.0, 1.0]
        assert tbl["threshold"].iloc[0] == 1.0

    def test_single_row_does_not_raise(self) -> None:
        p = ModelPerformance([1], [0.7])
        tbl = p.threshold_metrics()
        assert tbl["fpr"].isna().all()
        assert np.isnan(p.summary("auc"))
        assert len(p.gain_lift()) == 1

    def test_returned_tables_are_copies(self, perf: ModelPerformance) -> None:
        perf.threshold_metrics()["tpr"] = -1
        assert (perf.threshold_metrics()["tpr"] >= 0).all()


class TestGainLift:
    def test_deciles(self, perf: ModelPerformance) -> None:
        gl = perf.gain_lift()
        assert list(gl.columns) == GAIN_LIFT_COLUMNS
        assert list(gl["group"]) == list(range(1, 11))
        assert gl["cumulative_data_fraction"].is_monotonic_increasing
        assert gl["cumulative_data_fraction"].iloc[-1] == pytest.approx(1.0)
        assert gl["cumulative_capture_rate"].iloc[-1] == pytest.approx(1.0)
        assert gl["cumulative_lift"].iloc[-1] == pytest.approx(1.0)

    def test_good_model_lifts_the_top_decile(self, perf: ModelPerformance) -> None:
        gl = perf.gain_lift()
        assert gl["cumulative_lift"].iloc[0] > 1.5
        assert gl["lower_threshold"].is_monotonic_decreasing

    def test_fewer_rows_than_groups(self) -> None:
        gl = ModelPerformance([0, 1, 1], [0.1, 0.9, 0.5]).gain_lift()
        assert list(gl["group"]) == [1, 2, 3]
        assert list(gl["cumulative_capture_rate"]) == pytest.approx([0.5, 1.0, 1.0])


class TestSummaries:
    def test_matches_sklearn(self, perf: ModelPerformance) -> None:
        assert perf.summary("auc") == pytest.approx(roc_auc_score(perf.y_true, perf.y_score))
        assert perf.summary("LogLoss") == pytest.approx(log_loss(perf.y_true, perf.y_score))
        assert perf.summary("rmse") == pytest.approx(np.sqrt(perf.summary("mse")))
        assert 0 <= perf.summary("mean_per_class_error") <= 0.5

    def test_unknown_metric(self, perf: ModelPerformance) -> None:
        with pytest.raises(KeyError, match="Unknown metric"):
            perf.summary("accuracy")

    def test_length_mismatch(self) -> None:
        with pytest.raises(ValueError):
            ModelPerformance([0, 1], [0.5])


class TestScore:
    def test_scores_sklearn_model(self, eval_dataset) -> None:
        model = LogisticRegression(max_iter=2000).fit(eval_dataset.features, eval_dataset.labels)
        perf = score(model, eval_dataset, model_id="lr")
        expected = model.predict_proba(eval_dataset.features)[:, 1]
        np.testing.assert_allclose(perf.y_score, expected)
        assert perf.model_id == "lr"
        assert perf.summary("auc") > 0.6

    def test_schema_mismatch_surfaces_from_model(self, eval_dataset) -> None:
        model = LogisticRegression(max_iter=2000).fit(eval_dataset.features, eval_dataset.labels)
        narrow = EvaluationDataset(eval_dataset.features.iloc[:, :2], eval_dataset.labels)
        with pytest.raises(ValueError):
            score(model, narrow)
