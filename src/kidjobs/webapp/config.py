"""Configuration constants for the KidJobs web API."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

load_dotenv()

SESSION_SECRET = os.environ.get("SESSION_SECRET", "change-this-session-secret")
DATABASE_URL = os.environ.get("KIDJOBS_DATABASE_URL", "sqlite:///kidjobs.db")
SEED_DEMO_DATA = os.environ.get("KIDJOBS_SEED_DEMO", "0").strip().lower() in {"1", "true", "yes", "on"}
DEFAULT_CHILD_PASSWORD = os.environ.get("KIDJOBS_DEFAULT_CHILD_PASSWORD", "password123")
DEMO_PASSWORD = "password123"

_event_log_raw = os.environ.get("KIDJOBS_EVENT_LOG", "").strip()
EVENT_LOG_PATH: Optional[Path] = Path(_event_log_raw) if _event_log_raw else None

# Split used for new children when every account type is enabled.
DEFAULT_ALLOCATION: Dict[str, int] = {
    "spending": 25,
    "savings": 35,
    "roth_ira": 20,
    "brokerage": 20,
}
DEFAULT_ACCOUNT_TYPES: Dict[str, bool] = {
    "spending": True,
    "savings": True,
    "roth_ira": False,
    "brokerage": False,
}
DEFAULT_JOB_ICON = "briefcase"

LOGIN_MAX_ATTEMPTS = 5
LOGIN_LOCKOUT_MINUTES = 15

__all__ = [
    "SESSION_SECRET",
    "DATABASE_URL",
    "SEED_DEMO_DATA",
    "DEFAULT_CHILD_PASSWORD",
    "DEMO_PASSWORD",
    "EVENT_LOG_PATH",
    "DEFAULT_ALLOCATION",
    "DEFAULT_ACCOUNT_TYPES",
    "DEFAULT_JOB_ICON",
    "LOGIN_MAX_ATTEMPTS",
    "LOGIN_LOCKOUT_MINUTES",
]
