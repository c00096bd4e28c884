# exec_summary.py
# Writes a plain-English model comparison to reports/model_comparison.md
# - Leaderboard snapshot (native order) and the top/bottom selection
# - Holdout performance of the selection, in ranking order
# - Models that could not be scored, with the reason

from __future__ import annotations

import os
from typing import List, Optional

import numpy as np
import pandas as pd

from leaderboard import Leaderboard, RankingKey
from report_config import REPORTS_DIR, SUMMARY_MD

OUT_MD = os.path.join(REPORTS_DIR, SUMMARY_MD)
LEADERBOARD_ROWS = 20  # longer boards are cut in the markdown table

# ------------ helpers

def fmt_pct(x: float, d: int = 1) -> str:
    if x is None or not np.isfinite(x): return "—"
    return f"{100.0 * float(x):.{d}f}%"

def fmt_float(x: float, d: int = 3) -> str:
    if x is None or not np.isfinite(x): return "—"
    return f"{float(x):.{d}f}"

def df_to_md_table(df: pd.DataFrame) -> str:
    """Render a DataFrame as a GitHub-style Markdown table."""
    cols = list(df.columns)
    header = "| " + " | ".join(cols) + " |"
    sep = "| " + " | ".join(["---"] * len(cols)) + " |"
    rows = ["| " + " | ".join(str(df.iloc[i, j]) for j in range(len(cols))) + " |"
            for i in range(len(df))]
    return "\n".join([header, sep] + rows)

def _first_group(gl: pd.DataFrame, col: str) -> float:
    return float(gl[col].iloc[0]) if gl is not None and len(gl) else np.nan

# ------------ table builders

def leaderboard_table_df(board: Leaderboard, limit: int = LEADERBOARD_ROWS) -> pd.DataFrame:
    df = board.to_frame().head(limit)
    df.insert(0, "Rank", np.arange(1, len(df) + 1))
    for c in df.columns[2:]:
        df[c] = df[c].apply(lambda v: fmt_float(v, 4))
    return df

def selection_table_df(aggregation, ranking_key) -> pd.DataFrame:
    """Evaluation-set metrics for each scored model, best first by ``ranking_key``."""
    key = RankingKey.parse(ranking_key)
    rows = []
    for pos, e in enumerate(aggregation.ranked(key), start=1):
        s = aggregation.summaries[e.model_id]
        gl = aggregation.results[e.model_id].gain_lift
        rows.append({
            "Rank": pos,
            "Model": e.model_id,
            f"Board {key.value}": fmt_float(key.value_of(e), 4),
            "AUC": fmt_float(s.get("auc"), 3),
            "Log-loss": fmt_float(s.get("logloss"), 3),
            "AUCPR": fmt_float(s.get("aucpr"), 3),
            "KS": fmt_float(s.get("ks"), 3),
            "Top-decile lift": fmt_float(_first_group(gl, "cumulative_lift"), 2),
            "Top-decile capture": fmt_pct(_first_group(gl, "cumulative_capture_rate")),
        })
    return pd.DataFrame(rows)

# ------------ main

def build_summary(board: Leaderboard, aggregation, ranking_key, top_n: int, bottom_n: int,
                  dataset_name: Optional[str] = None) -> str:
    key = RankingKey.parse(ranking_key)
    lines: List[str] = []
    lines.append("# Model Comparison Summary\n")

    lines.append("## What this means in plain terms")
    lines.append(f"- The leaderboard holds **{len(board)}** models, ordered by **{board.sort_by.value}**.")
    lines.append(f"- The report compares the top **{top_n}** and bottom **{bottom_n}** of that order"
                 + (f" on **{dataset_name}**." if dataset_name else "."))
    lines.append(f"- Charts and tables below are ordered by **{key.value}** "
                 f"({'lower' if key.ascending else 'higher'} is better).")
    ranked = aggregation.ranked(key)
    if ranked:
        best = ranked[0]
        lines.append(f"- Best by {key.value}: **{best.model_id}** ({fmt_float(key.value_of(best), 4)}).")
    if aggregation.failures:
        lines.append(f"- **{len(aggregation.failures)}** selected model(s) could not be scored and are left out.")
    lines.append("")

    lines.append(f"## Leaderboard (by {board.sort_by.value})")
    lines.append(df_to_md_table(leaderboard_table_df(board)))
    if len(board) > LEADERBOARD_ROWS:
        lines.append(f"\n*{len(board) - LEADERBOARD_ROWS} more models not shown.*")
    lines.append("")

    lines.append(f"## Holdout performance (ordered by {key.value})")
    table = selection_table_df(aggregation, key)
    lines.append(df_to_md_table(table) if not table.empty else "*No model produced metrics.*")
    lines.append("")

    if aggregation.failures:
        lines.append("## Models left out")
        for mid, err in aggregation.failures.items():
            lines.append(f"- `{mid}`: {err.reason} ({err.attempts} attempt{'s' if err.attempts != 1 else ''})")
        lines.append("")

    return "\n".join(lines).strip() + "\n"


def write_summary(md: str, path: str = OUT_MD) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(md)
    return path
