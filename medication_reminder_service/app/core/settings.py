import os
from pathlib import Path

from app.core.env import load_env

load_env()

# dose timing
GRACE_MINUTES = int(os.getenv("GRACE_MINUTES", "10"))
EARLY_DOSE_WINDOW_MINUTES = int(os.getenv("EARLY_DOSE_WINDOW_MINUTES", "60"))
DEFAULT_DELAY_MINUTES = int(os.getenv("DEFAULT_DELAY_MINUTES", "15"))
# a repeated delay whose target is this close to the pending one is a retry
DELAY_REPLAY_SECONDS = int(os.getenv("DELAY_REPLAY_SECONDS", "60"))
DEFAULT_FIRST_DOSE_TIME = os.getenv("DEFAULT_FIRST_DOSE_TIME", "08:00")

# reminder scan
ALERT_LOOKAHEAD_MINUTES = int(os.getenv("ALERT_LOOKAHEAD_MINUTES", "30"))

# analytics
DEFAULT_WINDOW_DAYS = int(os.getenv("DEFAULT_WINDOW_DAYS", "30"))
RECENT_WINDOW_DAYS = int(os.getenv("RECENT_WINDOW_DAYS", "7"))

# request rate limiting
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "60"))
RATE_LIMIT_WINDOW_S = int(os.getenv("RATE_LIMIT_WINDOW_S", "60"))

# notification relay
DISPATCH_RELAY_URL = os.getenv("DISPATCH_RELAY_URL", "http://localhost:8787/notify")
DISPATCH_TIMEOUT_S = int(os.getenv("DISPATCH_TIMEOUT_S", "10"))
DISPATCH_ENABLED = os.getenv("DISPATCH_ENABLED", "true").lower() == "true"

# storage
_DEFAULT_DB = Path(__file__).resolve().parents[1] / "db" / "medications.db"
DB_PATH = os.getenv("DB_PATH", str(_DEFAULT_DB))

# logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = os.getenv("LOG_FORMAT", "text")  # text | json
