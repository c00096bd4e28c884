"""
================= Backorder Prediction — Model Performance Report =================

Loads previously trained backorder classifiers, ranks them on a leaderboard,
and reports the top and bottom of that board side by side: ROC,
precision-recall, cumulative gain and lift for each selected model against a
held-out frame, composed into one dashboard with a shared legend.

Outputs: leaderboard snapshot, per-threshold and decile tables (exports/),
the dashboard as PNG + interactive HTML (reports/figures/), a markdown
comparison (reports/model_comparison.md) and the run environment.

Usage:
  python main.py --models-dir models --eval-data data/backorder_test.csv \
                 --top 4 --bottom 4 --rank-by logloss
===================================================================================
"""

from __future__ import annotations

import argparse
import logging
import os
import platform
import sys
from typing import Optional, Sequence

import matplotlib.pyplot as plt

import report_config as cfg
from dashboard_composer import compose_from_aggregation, compose_interactive_dashboard, save_dashboard
from exec_summary import build_summary, write_summary
from leaderboard import RankingKey, check_counts, get_leaderboard, select
from metrics_aggregator import MetricsAggregator
from model_performance import load_evaluation_data
from model_registry import ModelRegistry
from report_errors import EmptyAggregationError, RankingKeyError, SelectionError

EXIT_OK, EXIT_EMPTY, EXIT_INVALID = 0, 1, 2

# ============================== Small helpers ==============================

def make_output_folders(output_dir: str, exports_dir: str, reports_dir: str) -> None:
    for d in (output_dir, exports_dir, reports_dir):
        os.makedirs(d, exist_ok=True)

def save_and_show(fig: plt.Figure, path: str, show: bool = False) -> None:
    fig.savefig(path, dpi=150, bbox_inches="tight")
    if show:
        plt.show()
    plt.close(fig)
    print(f"[SAVE] {path}")

def save_run_environment(reports_dir: str) -> str:
    path = os.path.join(reports_dir, "run_environment.txt")
    import sklearn, pandas, numpy, matplotlib, seaborn, plotly, joblib
    with open(path, "w", encoding="utf-8") as f:
        f.write("=== Run Environment ===\n")
        f.write(f"Python        : {sys.version.split()[0]} ({platform.system()})\n")
        f.write(f"numpy         : {numpy.__version__}\n")
        f.write(f"pandas        : {pandas.__version__}\n")
        f.write(f"scikit-learn  : {sklearn.__version__}\n")
        f.write(f"joblib        : {joblib.__version__}\n")
        f.write(f"matplotlib    : {matplotlib.__version__}\n")
        f.write(f"seaborn       : {seaborn.__version__}\n")
        f.write(f"plotly        : {plotly.__version__}\n")
    print(f"[SAVE] Environment -> {path}")
    return path

def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format="[%(levelname)s] %(message)s")

# ============================== CLI ========================================

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Leaderboard-driven performance report for backorder models.")
    p.add_argument("--models-dir", default=cfg.MODELS_DIR, help="directory of <model_id>.joblib artifacts")
    p.add_argument("--eval-data", default=cfg.EVAL_DATA_PATH, help="held-out CSV used for the charts")
    p.add_argument("--leaderboard-data", default=cfg.LEADERBOARD_DATA_PATH,
                   help="CSV used to rank the board (falls back to --eval-data if missing)")
    p.add_argument("--leaderboard-csv", default=cfg.LEADERBOARD_CSV, help="saved leaderboard snapshot")
    p.add_argument("--refresh-leaderboard", action="store_true", help="rebuild the snapshot even if it exists")
    p.add_argument("--target", default=cfg.TARGET)
    p.add_argument("--positive-label", default=cfg.POSITIVE_LABEL)
    p.add_argument("--top", type=int, default=cfg.TOP_MODELS, help="models from the top of the board")
    p.add_argument("--bottom", type=int, default=cfg.BOTTOM_MODELS, help="models from the bottom of the board")
    p.add_argument("--rank-by", default=cfg.RANKING_KEY,
                   help=f"ordering of legends and tables: {', '.join(k.value for k in RankingKey)}")
    p.add_argument("--sort-by", default=cfg.LEADERBOARD_SORT, help="native leaderboard order")
    p.add_argument("--workers", type=int, default=cfg.MAX_WORKERS)
    p.add_argument("--timeout", type=float, default=cfg.CALL_TIMEOUT, help="seconds per model; default none")
    p.add_argument("--retries", type=int, default=cfg.RETRIES)
    p.add_argument("--title", default=cfg.REPORT_TITLE)
    p.add_argument("--output-dir", default=cfg.OUTPUT_DIR)
    p.add_argument("--exports-dir", default=cfg.EXPORTS_DIR)
    p.add_argument("--reports-dir", default=cfg.REPORTS_DIR)
    p.add_argument("--show", action="store_true", default=cfg.SHOW_WINDOWS, help="pop up the dashboard")
    p.add_argument("-v", "--verbose", action="store_true")
    return p

# ================================ Main =====================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    # validate before touching any model
    try:
        ranking_key = RankingKey.parse(args.rank_by)
        sort_key = RankingKey.parse(args.sort_by)
        check_counts(args.top, args.bottom)
    except (RankingKeyError, SelectionError) as e:
        print(f"[ERROR] {e}")
        return EXIT_INVALID

    make_output_folders(args.output_dir, args.exports_dir, args.reports_dir)
    registry = ModelRegistry(args.models_dir)
    try:
        eval_ds = load_evaluation_data(args.eval_data, args.target, args.positive_label)
        board_ds = eval_ds
        if os.path.exists(args.leaderboard_data) and os.path.abspath(args.leaderboard_data) != os.path.abspath(args.eval_data):
            board_ds = load_evaluation_data(args.leaderboard_data, args.target, args.positive_label)
    except (FileNotFoundError, KeyError, ValueError) as e:
        print(f"\n[ERROR] Can’t load the evaluation data: {e}")
        print("➡ Pass --eval-data / --leaderboard-data <csv> or change the paths in report_config.py.")
        return EXIT_INVALID
    print(f"Evaluation frame: {len(eval_ds):,} rows, {eval_ds.positives:,} backorders "
          f"({eval_ds.prevalence:.2%})")

    rebuilt = args.refresh_leaderboard or not os.path.exists(args.leaderboard_csv)
    board = get_leaderboard(registry, board_ds, path=args.leaderboard_csv,
                            sort_by=sort_key, refresh=args.refresh_leaderboard)
    print(f"\n=== Leaderboard ({len(board)} models, by {board.sort_by.value}) ===")
    print(board.to_frame().head(10).to_string(index=False))
    if rebuilt:
        print(f"[SAVE] Leaderboard -> {args.leaderboard_csv}")
    else:
        print(f"Leaderboard snapshot reused: {args.leaderboard_csv} (--refresh-leaderboard to rebuild)")

    try:
        selection = select(board, args.top, args.bottom)
    except SelectionError as e:
        print(f"[ERROR] {e}")
        return EXIT_INVALID

    aggregator = MetricsAggregator(registry, max_workers=args.workers,
                                   timeout=args.timeout, retries=args.retries)
    try:
        aggregation = aggregator.aggregate(selection, eval_ds)
    except EmptyAggregationError as e:
        print(f"[ERROR] {e}")
        for err in e.failures.values():
            print(f"  - {err}")
        return EXIT_EMPTY
    for err in aggregation.failures.values():
        print(f"[WARN] Left out of the report: {err}")

    thr_path = os.path.join(args.exports_dir, "threshold_metrics.csv")
    gl_path = os.path.join(args.exports_dir, "gain_lift.csv")
    aggregation.threshold_metrics.frame().to_csv(thr_path, index=False)
    aggregation.gain_lift.frame().to_csv(gl_path, index=False)
    print(f"[SAVE] {thr_path}")
    print(f"[SAVE] {gl_path}")

    dashboard = compose_from_aggregation(aggregation, ranking_key, args.top, args.bottom, args.title)
    save_and_show(dashboard.figure, os.path.join(args.output_dir, cfg.DASHBOARD_PNG), args.show)

    interactive = compose_interactive_dashboard(aggregation.threshold_metrics, aggregation.gain_lift,
                                                aggregation.selection, ranking_key,
                                                args.top, args.bottom, args.title)
    html_path = os.path.join(args.output_dir, cfg.DASHBOARD_HTML)
    interactive.write_html(html_path, include_plotlyjs="cdn")
    print(f"[SAVE] {html_path}")

    md = build_summary(board, aggregation, ranking_key, args.top, args.bottom, eval_ds.name)
    print(f"[SAVE] Summary -> {write_summary(md, os.path.join(args.reports_dir, cfg.SUMMARY_MD))}")
    save_run_environment(args.reports_dir)

    print(f"\nAll done. {len(aggregation.results)}/{len(selection)} models reported; figures in {args.output_dir}")
    return EXIT_OK

if __name__ == "__main__":
    sys.exit(main())
