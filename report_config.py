# report_config.py
# Shared settings for the backorder model report (CLI, app and library defaults).
# Every value here can be overridden from the command line (main.py) or the app sidebar.

from __future__ import annotations

import os

ROOT = os.path.dirname(os.path.abspath(__file__))

# -------------------- Data & artifacts -------------------------------------
MODELS_DIR          = "models"                       # <model_id>.joblib files
EVAL_DATA_PATH      = "data/backorder_test.csv"      # held-out evaluation frame
LEADERBOARD_DATA_PATH = "data/backorder_valid.csv"   # frame used to rank the board
LEADERBOARD_CSV     = "exports/leaderboard.csv"      # saved snapshot
TARGET              = "went_on_backorder"
POSITIVE_LABEL      = "Yes"
DROP_COLUMNS        = ("sku",)                       # identifiers, never features
# ----------------------------------------------------------------------------

# -------------------- Outputs ----------------------------------------------
OUTPUT_DIR   = "reports/figures"
EXPORTS_DIR  = "exports"
REPORTS_DIR  = "reports"
DASHBOARD_PNG  = "performance_dashboard.png"
DASHBOARD_HTML = "performance_dashboard.html"
SUMMARY_MD     = "model_comparison.md"
SHOW_WINDOWS = False                                 # True to pop up the figure
# ----------------------------------------------------------------------------

# -------------------- Selection & ranking ----------------------------------
TOP_MODELS    = 4
BOTTOM_MODELS = 4
RANKING_KEY   = "logloss"
LEADERBOARD_SORT = "auc"                             # native board order
# ----------------------------------------------------------------------------

# -------------------- Aggregation ------------------------------------------
MAX_WORKERS   = 1          # 1 = sequential fan-out
CALL_TIMEOUT  = None       # seconds per provider call; None = wait forever
RETRIES       = 2          # extra attempts for transient failures
BACKOFF       = 0.5        # first retry delay, doubled each attempt
MAX_BACKOFF   = 8.0
GAIN_LIFT_GROUPS = 10      # deciles
# ----------------------------------------------------------------------------

# ------------------ Palette & layout ---------------------------------------
REPORT_TITLE   = "Backorder prediction: model performance"
SERIES_PALETTE = "viridis"         # colour follows rank
LINESTYLES     = ["-", "--", "-.", ":"]
BASELINE_COLOR = "#9CA3AF"
LEGEND_COLS    = 2
LEGEND_ROW_HEIGHT = 0.32           # inches per legend row
PANEL_HEIGHT   = 4.2               # inches per panel row
FIG_WIDTH      = 12.0
# ----------------------------------------------------------------------------
