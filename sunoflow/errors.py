"""Error kinds + structured error logging — JSON to errors.log."""
import json
import logging
import sys
from datetime import datetime
from typing import Optional

from .config import ERRORS_LOG, OUTPUT_DIR, DEV_MODE

logger = logging.getLogger(__name__)


class SunoError(Exception):
    """Base class for every failure the client reports."""

    kind = "SUNO_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(SunoError):
    """No credential configured. Raised before any network activity."""

    kind = "NO_API_KEY"


class NetworkError(SunoError):
    kind = "NETWORK_ERROR"


class ApiError(SunoError):
    """Non-2xx response. Carries the HTTP status and the remote message."""

    kind = "API_ERROR"

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PollingTimeoutError(SunoError):
    kind = "POLLING_TIMEOUT"


class CacheError(SunoError):
    """Persistence failure. Always absorbed by the cache layer."""

    kind = "CACHE_ERROR"


_FRIENDLY_MESSAGES = {
    "credits": "Couldn't read your credit balance.",
}


def format_error(
    stage: str,
    user_msg: str = "",
    params: Optional[dict] = None,
    raw: str = "",
) -> str:
    entry = {
        "timestamp": datetime.now().isoformat(),
        "stage": stage,
        "input": user_msg,
        "params": params,
        "error": raw,
        "python": sys.version.split()[0],
    }

    _append_to_log(entry)
    logger.error("Error at %s: %s", stage, raw)

    if DEV_MODE:
        return json.dumps(entry, indent=2)
    return _FRIENDLY_MESSAGES.get(stage, f"Something went wrong ({stage}).")


def _append_to_log(entry: dict):
    try:
        OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        with open(ERRORS_LOG, "a") as f:
            f.write(json.dumps(entry, default=str) + "\n")
    except OSError:
        logger.debug("Could not write %s", ERRORS_LOG)
