"""Config & Constants"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root (one level up from sunoflow/)
_ROOT = Path(__file__).parent.parent
load_dotenv(_ROOT / ".env")

# ─── Paths ────────────────────────────────────────────────────────────────────
ROOT_DIR = _ROOT
OUTPUT_DIR = ROOT_DIR / os.getenv("OUTPUT_DIR", "output")
ERRORS_LOG = OUTPUT_DIR / "errors.log"
CACHE_FILE = OUTPUT_DIR / os.getenv("CACHE_FILE", "track_cache.json")

# ─── Suno API ─────────────────────────────────────────────────────────────────
SUNO_API_KEY = os.getenv("SUNO_API_KEY") or None
SUNO_BASE_URL = os.getenv("SUNO_BASE_URL", "https://api.sunoapi.org").rstrip("/")
SUNO_TIMEOUT = float(os.getenv("SUNO_TIMEOUT", "30"))
RATE_LIMIT_DELAY = float(os.getenv("RATE_LIMIT_DELAY", "1.0"))  # seconds between requests

DEFAULT_MODEL = "chirp-v3-5"
VALID_MODELS = ["chirp-v3-5", "chirp-v3-0"]

# ─── Polling ──────────────────────────────────────────────────────────────────
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "5.0"))
MAX_POLL_ATTEMPTS = int(os.getenv("MAX_POLL_ATTEMPTS", "60"))
INITIAL_PROGRESS = 10  # signals the submission was accepted

# ─── Track cache ──────────────────────────────────────────────────────────────
CACHE_KEY_PREFIX = "suno_track_"
CACHE_EXPIRY_HOURS = int(os.getenv("CACHE_EXPIRY_HOURS", "24"))
MAX_CACHED_TRACKS = int(os.getenv("MAX_CACHED_TRACKS", "50"))

APP_VERSION = "0.1.0"

# ─── Web server ──────────────────────────────────────────────────────────────
WEB_PORT = int(os.getenv("WEB_PORT", "8888"))

# ─── Dev mode ─────────────────────────────────────────────────────────────────
DEV_MODE = os.getenv("DEV_MODE", "1").strip() in ("1", "true", "yes")
