"""Application-wide configuration constants."""

import os
from pathlib import Path

# --- Identity ---
APP_NAME = "LocalShare"
SERVICE_TYPE = "_myshare_app._tcp.local."
ALIAS_PROPERTY = "alias"
UNKNOWN_ALIAS = "Unknown"

# --- Networking ---
API_HOST = "0.0.0.0"
DEFAULT_PORT = 3030

# --- Discovery ---
POLL_INTERVAL = 0.5  # seconds between command checks while browsing
RETRY_DELAY = 5  # seconds before retrying a failed browse start
RESTART_GRACE = 0.2  # seconds between closing an old daemon and opening a new one
REREGISTER_GRACE = 1.0  # seconds for an unregistration to propagate
RESOLVE_TIMEOUT = 3000  # milliseconds

# --- Transfer ---
CHUNK_SIZE = 131072  # 128 KB
PROGRESS_INTERVAL = 0.1  # seconds
CONFIRM_TIMEOUT = 60.0  # seconds
REQUEST_TIMEOUT = 300  # seconds
SNIFF_WINDOW = 8192  # bytes

# --- Storage ---
CONFIG_DIR = Path(
    os.environ.get("LOCALSHARE_CONFIG_DIR", Path.home() / ".config" / "localshare")
)
SETTINGS_FILE = CONFIG_DIR / "settings.json"
DOWNLOAD_DIR = Path(
    os.environ.get("LOCALSHARE_DOWNLOAD_DIR", Path.home() / "Downloads")
)
