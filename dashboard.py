# dashboard.py
# Backorder Models — Dashboard (streamlit run dashboard.py)
# - Pages: Leaderboard, Performance Dashboard (ROC / PR / Gain / Lift), Summary
# - Sidebar settings default to report_config; metrics are re-fetched on every render
# - One shared legend across the four panels

from __future__ import annotations

import io
import os

import matplotlib.pyplot as plt
import pandas as pd
import streamlit as st

import report_config as cfg
from dashboard_composer import compose_from_aggregation, compose_interactive_dashboard
from exec_summary import build_summary
from leaderboard import RankingKey, get_leaderboard, select
from metrics_aggregator import MetricsAggregator
from model_performance import EvaluationDataset
from model_registry import ModelRegistry
from report_errors import EmptyAggregationError, SelectionError

# ---------------- Page + Styles ----------------
st.set_page_config(page_title="Backorder Models — Dashboard", layout="wide")

st.markdown("""
<style>
:root {
  --teal: #007c82;
  --teal-light: #e6f6f7;
  --ink: #0f172a;
  --muted: #475569;
  --radius: 16px;
  --shadow: 0 6px 18px rgba(0,0,0,0.08);
}
.big-title { background: var(--teal); color:#fff!important; padding:18px 22px;
  border-radius: var(--radius); box-shadow: var(--shadow); font-size:1.6rem;
  font-weight:700; margin:8px 0 18px 0; letter-spacing:.2px; }
.section-title { background: var(--teal-light); border:2px solid var(--teal); color:var(--ink);
  padding:10px 14px; border-radius:12px; box-shadow: var(--shadow); font-size:1.05rem;
  font-weight:700; margin:8px 0 10px 0; }
.note { color: var(--muted); font-size:.95rem; margin:6px 2px 14px 2px; }
section[data-testid="stSidebar"] { min-width: 300px; max-width: 300px; }
</style>
""", unsafe_allow_html=True)

def big_title(t: str): st.markdown(f'<div class="big-title">{t}</div>', unsafe_allow_html=True)
def section_title(t: str): st.markdown(f'<div class="section-title">{t}</div>', unsafe_allow_html=True)
def pct(x: float) -> str: return f"{100*x:.1f}%"

RANK_CHOICES = [k.value for k in RankingKey]

# ---------------- Data helpers ----------------
@st.cache_data(show_spinner=False)
def read_frame(path: str) -> pd.DataFrame:
    df = pd.read_csv(path, low_memory=False)
    df.columns = [c.strip() for c in df.columns]
    return df

def load_dataset(path: str, target: str, positive_label: str) -> EvaluationDataset:
    name = os.path.splitext(os.path.basename(path))[0]
    return EvaluationDataset.from_frame(read_frame(path), target, positive_label, cfg.DROP_COLUMNS, name)

# ---------------- Sidebar nav ----------------
with st.sidebar:
    st.title("Navigation")
    page = st.radio("Pages", ["Leaderboard", "Performance Dashboard", "Summary"], index=0, key="page")
    st.markdown("---")
    st.subheader("Settings")
    models_dir = st.text_input("Models directory", cfg.MODELS_DIR, key="models_dir")
    eval_path = st.text_input("Evaluation CSV", cfg.EVAL_DATA_PATH, key="eval_path")
    board_csv = st.text_input("Leaderboard snapshot", cfg.LEADERBOARD_CSV, key="board_csv")
    target = st.text_input("Target column", cfg.TARGET, key="target")
    top_n = st.number_input("Top models", min_value=0, max_value=50, value=cfg.TOP_MODELS, step=1, key="top_n")
    bottom_n = st.number_input("Bottom models", min_value=0, max_value=50, value=cfg.BOTTOM_MODELS, step=1, key="bottom_n")
    rank_by = st.selectbox("Order charts by", RANK_CHOICES, index=RANK_CHOICES.index(cfg.RANKING_KEY), key="rank_by")
    refresh = st.button("Rebuild leaderboard", key="refresh")

if not os.path.exists(eval_path):
    big_title("Backorder Models — Dashboard")
    st.error(f"No evaluation CSV at `{eval_path}`. Set the path in the sidebar and refresh.")
    st.stop()

registry = ModelRegistry(models_dir)
if not registry.list_model_ids() and not os.path.exists(board_csv):
    big_title("Backorder Models — Dashboard")
    st.error(f"No model artifacts (*.joblib) in `{models_dir}` and no saved leaderboard.")
    st.stop()

eval_ds = load_dataset(eval_path, target, cfg.POSITIVE_LABEL)
board_ds = eval_ds
if os.path.exists(cfg.LEADERBOARD_DATA_PATH):
    board_ds = load_dataset(cfg.LEADERBOARD_DATA_PATH, target, cfg.POSITIVE_LABEL)
board = get_leaderboard(registry, board_ds, path=board_csv, sort_by=cfg.LEADERBOARD_SORT, refresh=refresh)
top_n, bottom_n = int(top_n), int(bottom_n)

def run_aggregation():
    try:
        selection = select(board, top_n, bottom_n)
    except SelectionError as e:
        st.error(str(e))
        st.stop()
    try:
        agg = MetricsAggregator(registry).aggregate(selection, eval_ds)
    except EmptyAggregationError as e:
        st.error(f"Every selected model failed: {', '.join(e.failures)}")
        st.stop()
    for err in agg.failures.values():
        st.warning(f"Left out: {err}")
    return agg

# ---------------- 1) Leaderboard ----------------
if page == "Leaderboard":
    big_title("Model Leaderboard")
    c1, c2, c3 = st.columns(3)
    c1.metric("Models", f"{len(board):,}")
    c2.metric("Evaluation rows", f"{len(eval_ds):,}")
    c3.metric("Backorder rate", pct(eval_ds.prevalence))
    section_title(f"Ranked by {board.sort_by.value}")
    st.dataframe(board.to_frame(), use_container_width=True)
    st.markdown(f'<div class="note">Snapshot: <code>{board_csv}</code>. Use “Rebuild leaderboard” '
                f'after adding models.</div>', unsafe_allow_html=True)

# ---------------- 2) Performance Dashboard ----------------
elif page == "Performance Dashboard":
    big_title("Performance Dashboard")
    agg = run_aggregation()
    fig = compose_interactive_dashboard(agg.threshold_metrics, agg.gain_lift, agg.selection,
                                        rank_by, top_n, bottom_n)
    st.plotly_chart(fig, use_container_width=True)

    section_title("Static version")
    dash = compose_from_aggregation(agg, rank_by, top_n, bottom_n)
    buf = io.BytesIO()
    dash.figure.savefig(buf, format="png", dpi=150, bbox_inches="tight")
    plt.close(dash.figure)
    st.download_button("Download PNG", data=buf.getvalue(), file_name=cfg.DASHBOARD_PNG,
                       mime="image/png", key="dl_png")

# ---------------- 3) Summary ----------------
elif page == "Summary":
    big_title("Summary")
    agg = run_aggregation()
    st.markdown(build_summary(board, agg, rank_by, top_n, bottom_n, eval_ds.name))
