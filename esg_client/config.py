"""Runtime configuration read from the environment."""

import os
from pathlib import Path

# --- Upstream game backend ---

ESG_API_URL = os.environ.get("ESG_API_URL", "http://localhost:3001/api").rstrip("/")
REQUEST_TIMEOUT = float(os.environ.get("ESG_REQUEST_TIMEOUT", "5.0"))

# --- Polling ---

POLL_INTERVAL = float(os.environ.get("ESG_POLL_INTERVAL", "1.0"))  # seconds
TOTAL_ROUNDS = int(os.environ.get("ESG_TOTAL_ROUNDS", "8"))

# --- Local cache ---

CACHE_DIR = Path(os.environ.get("ESG_CACHE_DIR", "player_cache"))
SESSION_NAME = os.environ.get("ESG_SESSION", "default")

# --- Companion service bind ---

HOST = os.environ.get("ESG_HOST", "localhost")
PORT = int(os.environ.get("ESG_PORT", "8000"))
