"""Suno API client — submit, fetch, extend, lyrics, cancel.

Every call goes through ``_request``, which enforces the bearer credential,
the minimum gap between outbound calls, and the error mapping to
``ConfigurationError`` / ``NetworkError`` / ``ApiError``.
"""
import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from .config import (
    SUNO_API_KEY,
    SUNO_BASE_URL,
    SUNO_TIMEOUT,
    RATE_LIMIT_DELAY,
    MAX_POLL_ATTEMPTS,
    POLL_INTERVAL,
)
from .errors import ApiError, ConfigurationError, NetworkError, PollingTimeoutError
from .models import ExtendOptions, Generation, GenerationOptions, Lyrics, Track

logger = logging.getLogger(__name__)

_NO_KEY_MESSAGE = (
    "Suno API key is not configured. Set SUNO_API_KEY in .env or call set_api_key()."
)


class SunoClient:
    def __init__(
        self,
        api_key: Optional[str] = SUNO_API_KEY,
        base_url: str = SUNO_BASE_URL,
        timeout: float = SUNO_TIMEOUT,
        rate_limit_delay: float = RATE_LIMIT_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """transport: optional httpx transport (tests pass httpx.MockTransport)."""
        self._api_key = api_key or None
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limit_delay = rate_limit_delay
        self._transport = transport
        self._last_request_time: Optional[float] = None
        self._throttle_lock = asyncio.Lock()

    # ── Credentials ──────────────────────────────────────────────────────────

    def set_api_key(self, api_key: str):
        self._api_key = api_key or None

    @property
    def api_key(self) -> Optional[str]:
        return self._api_key

    # ── Transport ────────────────────────────────────────────────────────────

    async def _throttle(self):
        """Wait until rate_limit_delay has passed since the previous call."""
        async with self._throttle_lock:
            if self._last_request_time is not None:
                wait = self.rate_limit_delay - (time.monotonic() - self._last_request_time)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_request_time = time.monotonic()

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        if not self._api_key:
            raise ConfigurationError(_NO_KEY_MESSAGE)

        await self._throttle()

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                r = await client.request(method, endpoint, json=json, params=params, headers=headers)
        except httpx.TimeoutException:
            raise NetworkError(f"Suno request timed out after {self.timeout}s")
        except httpx.HTTPError as e:
            raise NetworkError(f"Suno HTTP error: {e}") from e

        try:
            data = r.json()
        except ValueError:
            if r.is_success:
                raise NetworkError(f"Suno returned a non-JSON response: {r.text[:200]}")
            data = {}

        if not r.is_success:
            message = None
            if isinstance(data, dict):
                message = data.get("message") or data.get("error")
            raise ApiError(str(message or f"HTTP {r.status_code}"), status=r.status_code)

        return data

    # ── Generation ───────────────────────────────────────────────────────────

    async def submit(self, prompt: str, options: Optional[GenerationOptions] = None) -> Generation:
        """POST /api/generate — returns the accepted batch."""
        options = options or GenerationOptions()
        data = await self._request("POST", "/api/generate", json=options.to_payload(prompt))
        generation = _parse_generation(data)
        if generation is None:
            raise ApiError("No generation data received")
        logger.info("Submitted generation %s (%d clips)", generation.generation_id, len(generation.tracks))
        return generation

    async def extend(
        self,
        track_id: str,
        prompt: str,
        options: Optional[ExtendOptions] = None,
    ) -> Generation:
        """POST /api/extend_audio — continue an existing track."""
        options = options or ExtendOptions()
        data = await self._request(
            "POST", "/api/extend_audio", json=options.to_payload(track_id, prompt)
        )
        generation = _parse_generation(data)
        if generation is None:
            raise ApiError("No extension data received")
        return generation

    async def fetch_by_ids(self, ids: list[str]) -> list[Track]:
        """GET /api/get?ids=a,b — current state of each clip."""
        data = await self._request("GET", "/api/get", params={"ids": ",".join(ids)})
        return _parse_tracks(data)

    async def fetch_track(self, track_id: str) -> Optional[Track]:
        tracks = await self.fetch_by_ids([track_id])
        return next((t for t in tracks if t.id == track_id), None)

    async def generate_lyrics(self, prompt: str) -> Lyrics:
        data = await self._request("POST", "/api/generate_lyrics", json={"prompt": prompt})
        if not isinstance(data, dict):
            raise ApiError("Unexpected lyrics response")
        return Lyrics(text=data.get("text") or "", title=data.get("title") or "")

    async def cancel(self, generation_id: str):
        await self._request("POST", f"/api/cancel/{generation_id}")

    # ── Account ──────────────────────────────────────────────────────────────

    async def get_credits(self) -> dict:
        data = await self._request("GET", "/api/get_credits")
        return data if isinstance(data, dict) else {"credits": data}

    async def check_status(self) -> bool:
        """True if the API answers an authenticated request."""
        try:
            await self.get_credits()
            return True
        except (NetworkError, ApiError, ConfigurationError):
            return False

    async def get_feed(self, limit: int = 20, page: int = 0) -> list[Track]:
        """Generation history, newest first."""
        data = await self._request("GET", "/api/feed", params={"page": page, "limit": limit})
        return _parse_tracks(data)

    # ── Standalone poller ────────────────────────────────────────────────────

    async def poll_until_complete(
        self,
        ids: list[str],
        max_attempts: int = MAX_POLL_ATTEMPTS,
        interval: float = POLL_INTERVAL,
    ) -> list[Track]:
        """Fetch ids until every clip is terminal. Fetch errors propagate."""
        for _ in range(max_attempts):
            tracks = await self.fetch_by_ids(ids)
            if all(t.is_terminal for t in tracks):
                return tracks
            await asyncio.sleep(interval)

        raise PollingTimeoutError("Tracks did not complete within the expected time frame")


def _parse_tracks(data: Any) -> list[Track]:
    if isinstance(data, dict):
        data = data.get("clips") or data.get("data") or []
    if not isinstance(data, list):
        raise ApiError("Unexpected track list response")
    try:
        return [Track.from_api(item) for item in data if isinstance(item, dict) and item.get("id")]
    except (TypeError, ValueError, AttributeError) as e:
        raise ApiError(f"Unexpected track payload: {e}")


def _parse_generation(data: Any) -> Optional[Generation]:
    try:
        return Generation.from_api(data)
    except (TypeError, ValueError, AttributeError) as e:
        raise ApiError(f"Unexpected generation payload: {e}")
