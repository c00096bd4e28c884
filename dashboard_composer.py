# dashboard_composer.py
# ROC / Precision-Recall / Gain / Lift for a set of models, composed into one
# titled 2x2 dashboard with a single shared legend underneath.
#
# Two phases: styles (colour, linetype, legend label) are fixed once from the
# ranking, then every panel draws from the same styles without its own legend.

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import seaborn as sns
import plotly.graph_objects as go
from matplotlib.lines import Line2D
from matplotlib.ticker import FuncFormatter
from plotly.subplots import make_subplots

from leaderboard import LeaderboardEntry, RankingKey, rank_entries
from report_config import (
    REPORT_TITLE, SERIES_PALETTE, LINESTYLES, BASELINE_COLOR, LEGEND_COLS,
    LEGEND_ROW_HEIGHT, PANEL_HEIGHT, FIG_WIDTH
)
from report_errors import EmptyAggregationError

THEME_RC = {
    "axes.titlesize": 13,
    "axes.labelsize": 11,
    "axes.titlepad": 10,
    "legend.frameon": False,
    "figure.dpi": 110,
    "axes.facecolor": "white",
    "grid.color": "#EEF2F5",
    "grid.linewidth": 0.8,
    "font.family": "DejaVu Sans",
}

PCT = FuncFormatter(lambda v, _: f"{v*100:.0f}%")  # [0,1] → "xx%"

_PLOTLY_DASH = {"-": "solid", "--": "dash", "-.": "dashdot", ":": "dot"}


@dataclass(frozen=True)
class PanelSpec:
    name: str
    title: str
    source: str          # "threshold" or "gain_lift"
    x: str
    y: str
    xlabel: str
    ylabel: str
    baseline: Optional[str]  # "diagonal", "unit" or None
    pct_y: bool = True


PANELS: Tuple[PanelSpec, ...] = (
    PanelSpec("roc", "ROC curve", "threshold", "fpr", "tpr",
              "False positive rate", "True positive rate", "diagonal"),
    PanelSpec("pr", "Precision–Recall", "threshold", "recall", "precision",
              "Recall", "Precision", None),
    PanelSpec("gain", "Cumulative gain", "gain_lift", "cumulative_data_fraction", "cumulative_capture_rate",
              "Share of population (by score, high→low)", "Share of backorders captured", "diagonal"),
    PanelSpec("lift", "Cumulative lift", "gain_lift", "cumulative_data_fraction", "cumulative_lift",
              "Share of population (by score, high→low)", "Lift vs baseline", "unit", pct_y=False),
)
GRID_POSITION = {"roc": (0, 0), "pr": (0, 1), "gain": (1, 0), "lift": (1, 1)}


@dataclass(frozen=True)
class SeriesStyle:
    model_id: str
    label: str
    color: str
    linestyle: str
    rank: int


def _fmt_value(v: float) -> str:
    return "n/a" if v is None or math.isnan(v) else f"{v:.4f}"


def build_styles(ordered: Sequence[LeaderboardEntry], ranking_key) -> Tuple[SeriesStyle, ...]:
    """Colour and linetype by rank position; legend label carries the ranking value."""
    key = RankingKey.parse(ranking_key)
    colors = sns.color_palette(SERIES_PALETTE, n_colors=max(1, len(ordered))).as_hex()
    return tuple(
        SeriesStyle(
            model_id=e.model_id,
            label=f"{e.model_id} ({key.value} {_fmt_value(key.value_of(e))})",
            color=colors[i],
            linestyle=LINESTYLES[i % len(LINESTYLES)],
            rank=i + 1,
        )
        for i, e in enumerate(ordered)
    )


def legend_rows(top_n: int, bottom_n: int, n_series: int = 0) -> int:
    return max(1, math.ceil(max(top_n + bottom_n, n_series) / LEGEND_COLS))


def column_major(items: Sequence, ncol: int) -> list:
    """Reorder so a legend filled column by column reads in rank order across its rows."""
    return [it for c in range(ncol) for it in items[c::ncol]]


def _tables(metrics) -> Mapping:
    return metrics.tables if hasattr(metrics, "tables") else metrics


def _prepare(threshold_metrics, gain_lift_metrics, ranking: Sequence[LeaderboardEntry], ranking_key):
    key = RankingKey.parse(ranking_key)
    tables = {"threshold": dict(_tables(threshold_metrics)), "gain_lift": dict(_tables(gain_lift_metrics))}
    by_id = {e.model_id: e for e in ranking}
    ids = [m for m in tables["threshold"] if m in tables["gain_lift"]]
    if not ids:
        raise EmptyAggregationError(getattr(threshold_metrics, "failures", {}))
    ordered = rank_entries([by_id.get(m, LeaderboardEntry(m)) for m in ids], key)
    return key, build_styles(ordered, key), tables


# ============================== Static (matplotlib) ========================

@dataclass
class Dashboard:
    figure: plt.Figure
    axes: Dict[str, plt.Axes]
    legend: object
    styles: Tuple[SeriesStyle, ...]
    ranking_key: RankingKey

    @property
    def order(self) -> Tuple[str, ...]:
        return tuple(s.model_id for s in self.styles)

    def series_ids(self, panel: str) -> list:
        """Model ids drawn in ``panel``, in drawing order (baselines excluded)."""
        ids = set(self.order)
        return [ln.get_gid() for ln in self.axes[panel].lines if ln.get_gid() in ids]

    def legend_labels(self) -> list:
        """Legend labels read across rows (rank order)."""
        texts = [t.get_text() for t in self.legend.get_texts()]
        slots = column_major(range(len(texts)), LEGEND_COLS)
        labels = [""] * len(texts)
        for text, rank in zip(texts, slots):
            labels[rank] = text
        return labels


def _draw_baseline(ax, kind: Optional[str]) -> None:
    if kind == "diagonal":
        ax.plot([0, 1], [0, 1], linestyle="--", color=BASELINE_COLOR, linewidth=1,
                label="_baseline", gid="baseline")
    elif kind == "unit":
        ax.axhline(1.0, linestyle="--", color=BASELINE_COLOR, linewidth=1,
                   label="_baseline", gid="baseline")


def _draw_panel(ax, panel: PanelSpec, tables: Mapping, styles: Sequence[SeriesStyle]) -> None:
    _draw_baseline(ax, panel.baseline)
    for s in styles:
        df = tables[panel.source][s.model_id]
        ax.plot(df[panel.x], df[panel.y], color=s.color, linestyle=s.linestyle,
                linewidth=1.6, label=s.label, gid=s.model_id)
    ax.set_title(panel.title)
    ax.set_xlabel(panel.xlabel); ax.set_ylabel(panel.ylabel)
    ax.set_xlim(0, 1)
    ax.xaxis.set_major_formatter(PCT)
    if panel.pct_y:
        ax.set_ylim(0, 1.02)
        ax.yaxis.set_major_formatter(PCT)
    else:
        ax.set_ylim(bottom=0)


def compose_dashboard(threshold_metrics, gain_lift_metrics, ranking: Sequence[LeaderboardEntry],
                      ranking_key, top_n: int, bottom_n: int, title: str = REPORT_TITLE) -> Dashboard:
    """Compose the four panels for every model present in both tables.

    ``threshold_metrics`` / ``gain_lift_metrics`` are mappings of model id to
    table (or :class:`~metrics_aggregator.AggregatedMetrics`). ``ranking``
    supplies the ranking values; models missing from it sort last.
    """
    key, styles, tables = _prepare(threshold_metrics, gain_lift_metrics, ranking, ranking_key)

    n_legend = legend_rows(top_n, bottom_n, len(styles))
    legend_h = LEGEND_ROW_HEIGHT * n_legend + 0.4
    title_h = 1.0
    fig_h = 2 * PANEL_HEIGHT + legend_h + title_h

    with plt.rc_context(THEME_RC), sns.axes_style("whitegrid"):
        fig = plt.figure(figsize=(FIG_WIDTH, fig_h))
        gs = fig.add_gridspec(3, 2, height_ratios=[PANEL_HEIGHT, PANEL_HEIGHT, legend_h],
                              top=1 - title_h / fig_h, bottom=0.01, left=0.07, right=0.98,
                              hspace=0.38, wspace=0.22)
        axes = {}
        for panel in PANELS:
            r, c = GRID_POSITION[panel.name]
            ax = fig.add_subplot(gs[r, c])
            _draw_panel(ax, panel, tables, styles)
            axes[panel.name] = ax

        legend_ax = fig.add_subplot(gs[2, :])
        legend_ax.axis("off")
        legend_styles = column_major(styles, LEGEND_COLS)
        handles = [Line2D([0], [0], color=s.color, linestyle=s.linestyle, linewidth=2) for s in legend_styles]
        legend = legend_ax.legend(handles, [s.label for s in legend_styles], loc="upper center",
                                  ncol=LEGEND_COLS, frameon=False, title=f"Model ({key.value})")

        fig.suptitle(title, y=1 - 0.3 / fig_h, fontsize=15, fontweight="bold")
        fig.text(0.5, 1 - 0.65 / fig_h, f"Ordered by {key.value}", ha="center", va="center",
                 fontsize=11, color="#475569")

    return Dashboard(fig, axes, legend, styles, key)


def compose_from_aggregation(aggregation, ranking_key, top_n: int, bottom_n: int,
                             title: str = REPORT_TITLE) -> Dashboard:
    return compose_dashboard(aggregation.threshold_metrics, aggregation.gain_lift,
                             aggregation.selection, ranking_key, top_n, bottom_n, title)


def save_dashboard(dashboard: Dashboard, path: str, dpi: int = 150) -> str:
    dashboard.figure.savefig(path, dpi=dpi, bbox_inches="tight")
    return path


# ============================== Interactive (plotly) =======================

def compose_interactive_dashboard(threshold_metrics, gain_lift_metrics, ranking: Sequence[LeaderboardEntry],
                                  ranking_key, top_n: int, bottom_n: int,
                                  title: str = REPORT_TITLE) -> go.Figure:
    """Same panels and legend as :func:`compose_dashboard`, as a plotly figure.

    Each model is one legend group, so clicking a legend entry toggles it in all four panels.
    """
    key, styles, tables = _prepare(threshold_metrics, gain_lift_metrics, ranking, ranking_key)
    n_legend = legend_rows(top_n, bottom_n, len(styles))

    fig = make_subplots(rows=2, cols=2, subplot_titles=[p.title for p in PANELS],
                        horizontal_spacing=0.08, vertical_spacing=0.14)
    for i, panel in enumerate(PANELS):
        r, c = (p + 1 for p in GRID_POSITION[panel.name])
        if panel.baseline == "diagonal":
            fig.add_trace(go.Scatter(x=[0, 1], y=[0, 1], mode="lines", name="Baseline",
                                     line=dict(dash="dash", color=BASELINE_COLOR, width=1),
                                     showlegend=False, hoverinfo="skip"), row=r, col=c)
        elif panel.baseline == "unit":
            fig.add_trace(go.Scatter(x=[0, 1], y=[1, 1], mode="lines", name="Baseline",
                                     line=dict(dash="dash", color=BASELINE_COLOR, width=1),
                                     showlegend=False, hoverinfo="skip"), row=r, col=c)
        for s in styles:
            df = tables[panel.source][s.model_id]
            fig.add_trace(go.Scatter(x=df[panel.x], y=df[panel.y], mode="lines", name=s.label,
                                     legendgroup=s.model_id, showlegend=(i == 0),
                                     line=dict(color=s.color, dash=_PLOTLY_DASH.get(s.linestyle, "solid"))),
                          row=r, col=c)
        fig.update_xaxes(title_text=panel.xlabel, range=[0, 1], tickformat=".0%", row=r, col=c)
        fig.update_yaxes(title_text=panel.ylabel, tickformat=".0%" if panel.pct_y else None, row=r, col=c)

    legend_px = 26 * n_legend
    fig.update_layout(
        title=dict(text=f"{title}<br><sup>Ordered by {key.value}</sup>", x=0.5, xanchor="center"),
        legend=dict(orientation="h", x=0.5, xanchor="center", y=-0.08, yanchor="top",
                    traceorder="normal", title_text=f"Model ({key.value})"),
        height=int(2 * PANEL_HEIGHT * 90 + legend_px + 140),
        margin=dict(l=10, r=10, t=90, b=20 + legend_px),
        template="plotly_white",
    )
    return fig
