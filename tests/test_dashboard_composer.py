"""Tests for the four-panel dashboard and its shared legend."""

from pathlib import Path

import pytest

from conftest import FakeRegistry
from dashboard_composer import (
    PANELS,
    build_styles,
    column_major,
    compose_dashboard,
    compose_from_aggregation,
    compose_interactive_dashboard,
    legend_rows,
    save_dashboard,
)
from leaderboard import LeaderboardEntry, rank_entries, select, selection_ids
from metrics_aggregator import MetricsAggregator
from report_errors import EmptyAggregationError, RankingKeyError

PANEL_NAMES = [p.name for p in PANELS]


@pytest.fixture
def aggregation(fake_registry, board_20, eval_dataset):
    return MetricsAggregator(fake_registry).aggregate(select(board_20, 4, 4), eval_dataset)


class TestComposeDashboard:
    def test_every_panel_draws_the_same_models_in_ranking_order(self, aggregation) -> None:
        """Select by AUC, order by log-loss: 8 series per panel, legend matching the panels."""
        dash = compose_from_aggregation(aggregation, "logloss", 4, 4)
        expected = tuple(e.model_id for e in rank_entries(aggregation.selection, "logloss"))
        assert dash.order == expected
        assert len(expected) == 8
        for name in PANEL_NAMES:
            assert dash.series_ids(name) == list(expected), name
        assert dash.legend_labels() == [s.label for s in dash.styles]
        assert [label.split(" ")[0] for label in dash.legend_labels()] == list(expected)

    def test_legend_reads_by_rank_across_rows(self, aggregation) -> None:
        dash = compose_from_aggregation(aggregation, "logloss", 4, 4)
        labels = [s.label for s in dash.styles]
        # matplotlib fills the two columns top to bottom
        raw = [t.get_text() for t in dash.legend.get_texts()]
        assert raw == [labels[i] for i in (0, 2, 4, 6, 1, 3, 5, 7)]

    def test_column_major_with_ragged_last_row(self) -> None:
        assert column_major(list("abcdefg"), 2) == list("acegbdf")
        assert column_major(["a"], 2) == ["a"]

    def test_panels_have_no_legends_of_their_own(self, aggregation) -> None:
        dash = compose_from_aggregation(aggregation, "auc", 4, 4)
        assert all(ax.get_legend() is None for ax in dash.axes.values())

    def test_title_and_subtitle(self, aggregation) -> None:
        dash = compose_from_aggregation(aggregation, "auc", 4, 4, title="Backorder models")
        assert dash.figure._suptitle.get_text() == "Backorder models"
        assert "Ordered by auc" in [t.get_text() for t in dash.figure.texts]

    def test_baselines(self, aggregation) -> None:
        dash = compose_from_aggregation(aggregation, "auc", 4, 4)

        def baselines(panel):
            return [ln for ln in dash.axes[panel].lines if ln.get_gid() == "baseline"]

        assert len(baselines("roc")) == 1
        assert len(baselines("gain")) == 1
        assert baselines("pr") == []
        (unit,) = baselines("lift")
        assert list(unit.get_ydata()) == [1.0, 1.0]

    def test_grid_layout(self, aggregation) -> None:
        dash = compose_from_aggregation(aggregation, "auc", 4, 4)
        roc, pr, gain, lift = (dash.axes[n].get_position() for n in PANEL_NAMES)
        assert roc.y0 == pytest.approx(pr.y0) and roc.x0 < pr.x0
        assert gain.y0 == pytest.approx(lift.y0) and gain.y0 < roc.y0

    def test_legend_band_grows_with_selection_size(self, aggregation) -> None:
        small = compose_from_aggregation(aggregation, "auc", 1, 1)
        large = compose_from_aggregation(aggregation, "auc", 10, 10)
        assert large.figure.get_figheight() > small.figure.get_figheight()
        assert legend_rows(10, 10) > legend_rows(1, 1)

    def test_failed_model_is_simply_absent(self, twenty_models, board_20, eval_dataset) -> None:
        selection = select(board_20, 4, 4)
        broken = selection[5].model_id
        registry = FakeRegistry({k: v for k, v in twenty_models.items() if k != broken}, broken={broken})
        agg = MetricsAggregator(registry).aggregate(selection, eval_dataset)
        dash = compose_from_aggregation(agg, "logloss", 4, 4)
        assert len(dash.order) == 7
        assert broken not in dash.order
        for name in PANEL_NAMES:
            assert len(dash.series_ids(name)) == 7

    def test_bottom_only_selection(self, fake_registry, board_20, eval_dataset) -> None:
        selection = select(board_20, 0, 3)
        agg = MetricsAggregator(fake_registry).aggregate(selection, eval_dataset)
        dash = compose_from_aggregation(agg, "auc", 0, 3)
        assert set(dash.order) == set(selection_ids(selection))

    def test_empty_tables(self) -> None:
        with pytest.raises(EmptyAggregationError):
            compose_dashboard({}, {}, [], "auc", 1, 1)

    def test_unknown_ranking_key(self, aggregation) -> None:
        with pytest.raises(RankingKeyError):
            compose_from_aggregation(aggregation, "gini", 4, 4)

    def test_save_png(self, aggregation, tmp_path: Path) -> None:
        dash = compose_from_aggregation(aggregation, "auc", 4, 4)
        path = save_dashboard(dash, str(tmp_path / "dash.png"))
        assert Path(path).stat().st_size > 0


class TestStyles:
    def test_colour_and_linetype_follow_rank(self) -> None:
        entries = [LeaderboardEntry(m, {"auc": v}) for m, v in [("a", 0.9), ("b", 0.8), ("c", 0.7)]]
        styles = build_styles(entries, "auc")
        assert [s.rank for s in styles] == [1, 2, 3]
        assert len({s.color for s in styles}) == 3
        assert styles[0].linestyle != styles[1].linestyle
        assert styles[0].label == "a (auc 0.9000)"

    def test_missing_value_label(self) -> None:
        (style,) = build_styles([LeaderboardEntry("x")], "logloss")
        assert style.label == "x (logloss n/a)"


class TestInteractiveDashboard:
    def test_one_legend_entry_per_model_toggling_all_panels(self, aggregation) -> None:
        fig = compose_interactive_dashboard(aggregation.threshold_metrics, aggregation.gain_lift,
                                            aggregation.selection, "logloss", 4, 4)
        expected = [e.model_id for e in rank_entries(aggregation.selection, "logloss")]
        legend_traces = [t for t in fig.data if t.showlegend]
        assert [t.legendgroup for t in legend_traces] == expected
        model_traces = [t for t in fig.data if t.legendgroup]
        assert len(model_traces) == 4 * len(expected)
        assert "Ordered by logloss" in fig.layout.title.text

    def test_baseline_traces_hidden_from_legend(self, aggregation) -> None:
        fig = compose_interactive_dashboard(aggregation.threshold_metrics, aggregation.gain_lift,
                                            aggregation.selection, "auc", 4, 4)
        baselines = [t for t in fig.data if t.name == "Baseline"]
        assert len(baselines) == 3
        assert not any(t.showlegend for t in baselines)
