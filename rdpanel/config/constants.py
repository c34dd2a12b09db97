"""Pure constants for the hosting panel. No side effects at import time."""

from pathlib import Path

# === Directories ===
DATA_DIR = Path.cwd() / "data"
STORE_FILENAME = "rdpanel.json"

# === Hosting API ===
DEFAULT_BASE_URL = "https://rdp.sh/api/v1"
API_KEY_PATTERN = r"^[A-Za-z0-9_-]{32,64}$"

# === Timeouts and retries (seconds) ===
DEFAULT_REQUEST_TIMEOUT = 30.0
MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0  # Fixed delay between attempts

# === Client-side throttle ===
RATE_LIMIT_MAX_REQUESTS = 60  # Admissions per window, per client instance
RATE_LIMIT_WINDOW = 60.0

# === Server list polling ===
DEFAULT_REFRESH_INTERVAL = 60.0
BACKOFF_BASE_DELAY = 1.0
BACKOFF_MAX_DELAY = 30.0
# Consecutive failures before a manual refresh shows loading/error state.
# TODO: revisit once there is data on typical outage length; 15 has no measured basis.
ERROR_VISIBILITY_THRESHOLD = 15

# === Batch actions ===
BATCH_ACTION_SIZE = 5

# === Accounts ===
ACCOUNT_CHECK_INTERVAL = 30.0

# === Audit ===
AUDIT_MAX_ENTRIES = 500

# === Telegram bot ===
BOT_RATE_LIMIT_REQUESTS = 30
BOT_RATE_LIMIT_WINDOW = 60.0
CONFIRMATION_TTL = 300  # seconds
