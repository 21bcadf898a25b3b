"""Central configuration — network, paths, routing limits, expiry."""
from pathlib import Path
import os

# ── Network ───────────────────────────────────────────────────────────────────
HOST = os.environ.get("BROKER_HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3000"))

# Cross-origin policy for the browser page; "*" for local testing
ALLOWED_ORIGINS = [
    o.strip() for o in os.environ.get("ALLOWED_ORIGINS", "*").split(",") if o.strip()
]
ALLOWED_METHODS = ["GET", "POST"]

# ── Filesystem paths ──────────────────────────────────────────────────────────
ROOT = Path(__file__).parent
STATIC_DIR = ROOT / "static"
INDEX_HTML = STATIC_DIR / "index.html"

# ── Routing ───────────────────────────────────────────────────────────────────
MAX_REQUEST_TEXT_LENGTH = int(os.environ.get("MAX_REQUEST_TEXT_LENGTH", "2000"))
KEEPALIVE_SECONDS = float(os.environ.get("KEEPALIVE_SECONDS", "60"))

# ── Expiry ────────────────────────────────────────────────────────────────────
# 0 keeps unanswered requests until their requester disconnects.
REQUEST_TTL_SECONDS = float(os.environ.get("REQUEST_TTL_SECONDS", "0"))
SWEEP_INTERVAL_SECONDS = float(os.environ.get("SWEEP_INTERVAL_SECONDS", "30"))

# ── Logging ───────────────────────────────────────────────────────────────────
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ── Wire event names ──────────────────────────────────────────────────────────
EVENT_NEW_REQUEST = "newRequest"
EVENT_REQUEST_PENDING = "requestPending"
EVENT_REQUEST_RECEIVED = "requestReceived"
EVENT_RESPOND = "respondToRequest"
EVENT_REQUEST_RESPONSE = "requestResponse"
EVENT_REQUEST_EXPIRED = "requestExpired"
EVENT_CONNECTED = "connected"
EVENT_PING = "ping"
EVENT_PONG = "pong"
EVENT_ERROR = "error"
