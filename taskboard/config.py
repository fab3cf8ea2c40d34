"""
Runtime configuration for the task board core.

Values are read from the environment once at import time. Domain
constants that callers must not tune live here too so every module
reads them from one place.
"""

import os
from pathlib import Path

# -----------------------------------------------------------------------------
# Storage
# -----------------------------------------------------------------------------
STORE_BACKEND = os.getenv("TASKBOARD_STORE", "json")  # "json" or "memory"

DATA_DIR = Path(os.getenv("TASKBOARD_DATA_DIR", "/var/lib/taskboard"))

# Fallback for local development/testing
try:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
except OSError:
    DATA_DIR = Path("/tmp/taskboard")
    DATA_DIR.mkdir(parents=True, exist_ok=True)

SETTINGS_FILE = Path(os.getenv(
    "TASKBOARD_SETTINGS_FILE",
    str(Path(__file__).parent / "default_settings.yaml")
))

# -----------------------------------------------------------------------------
# Notifications
# -----------------------------------------------------------------------------
WEBHOOK_URL = os.getenv("TASKBOARD_WEBHOOK_URL", "")
WEBHOOK_TIMEOUT_SECONDS = float(os.getenv("TASKBOARD_WEBHOOK_TIMEOUT", "10"))
NOTIFY_WORKERS = int(os.getenv("TASKBOARD_NOTIFY_WORKERS", "2"))
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX = 10  # max notifications per recipient per window

# -----------------------------------------------------------------------------
# Domain Constants
# -----------------------------------------------------------------------------
TITLE_MAX_LENGTH = 255
SETTING_KEY_MAX_LENGTH = 100
SETTING_CATEGORY_MAX_LENGTH = 50

DUE_SOON_HOURS = 72
RECENT_JOIN_DAYS = 30
RECENT_ACTIVITY_DAYS = 7
PROGRESS_PERIODS = (7, 30, 90)

DEFAULT_TASK_CATEGORY = "General"
DEFAULT_SUGGESTION_CATEGORY = "general"
