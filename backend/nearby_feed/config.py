"""
config.py
~~~~~~~~~
Environment-driven tuning knobs for the feed pipeline.

Values are read once at import time (after ``load_dotenv()``), the same way
the host reads its secrets.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

# ── ChangeGate ────────────────────────────────────────────────────────────
GATE_MIN_INTERVAL_MS = int(os.getenv("GATE_MIN_INTERVAL_MS", "1000"))
GATE_MIN_DISTANCE_M = float(os.getenv("GATE_MIN_DISTANCE_M", "10"))
GATE_MIN_SIGNAL_DBM = float(os.getenv("GATE_MIN_SIGNAL_DBM", "5"))

# ── MergeRanker ───────────────────────────────────────────────────────────
FEED_PER_ORIGIN_CAP = int(os.getenv("FEED_PER_ORIGIN_CAP", "3"))

# ── Fetch cycle ───────────────────────────────────────────────────────────
SEARCH_RADIUS_M = int(os.getenv("SEARCH_RADIUS_M", "5000"))  # 5 km
REMOTE_TIMEOUT_S = float(os.getenv("REMOTE_TIMEOUT_S", "10"))
STOP_TIMEOUT_S = float(os.getenv("STOP_TIMEOUT_S", "5"))

# ── Remote provider ───────────────────────────────────────────────────────
GOOGLE_PLACES_API_KEY = os.getenv("GOOGLE_PLACES_API_KEY", "")

# ── Visit detection ───────────────────────────────────────────────────────
VISIT_ACCURACY_M = float(os.getenv("VISIT_ACCURACY_M", "20"))
VISIT_RADIUS_M = float(os.getenv("VISIT_RADIUS_M", "50"))
RECENT_VISITS_MAX = int(os.getenv("RECENT_VISITS_MAX", "10"))
