"""Generation lifecycle manager — submit, poll to completion, write through to the cache.

One manager owns one in-flight generation at a time. State lives in a
GenerationState store so callers can read a snapshot or subscribe to changes.

    idle → generating → polling → completed
                 ↘          ↘
                  error      error          (any state → idle on cancel)
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .cache import TrackCache
from .config import INITIAL_PROGRESS, MAX_POLL_ATTEMPTS, POLL_INTERVAL
from .errors import CacheError, SunoError, format_error
from .models import (
    COMPLETE,
    COMPLETED,
    FAILED,
    GENERATING,
    IDLE,
    POLLING,
    TRACK_STATUSES,
    CachedTrack,
    ExtendOptions,
    Generation,
    GenerationOptions,
    Track,
)
from .state import GenerationSnapshot, GenerationState
from .suno import SunoClient

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Generation timed out. Please try again."


class GenerationManager:
    def __init__(
        self,
        client: SunoClient,
        cache: TrackCache,
        state: Optional[GenerationState] = None,
        poll_interval: float = POLL_INTERVAL,
        max_poll_attempts: int = MAX_POLL_ATTEMPTS,
        auto_start_polling: bool = True,
    ):
        self.client = client
        self.cache = cache
        self.state = state or GenerationState()
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.auto_start_polling = auto_start_polling

        self._poll_task: Optional[asyncio.Task] = None
        self._poll_attempts = 0
        self._track_ids: list[str] = []
        # Bumped on every submit/extend/cancel; responses carrying an older
        # token belong to a superseded generation and are dropped.
        self._token = 0
        self._request: tuple[str, dict] = ("", {})

    # ── State ────────────────────────────────────────────────────────────────

    def snapshot(self) -> GenerationSnapshot:
        return self.state.snapshot()

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def progress(self) -> float:
        return self.state.progress

    @property
    def poll_attempts(self) -> int:
        return self._poll_attempts

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # ── Generation ───────────────────────────────────────────────────────────

    async def submit_generation(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> GenerationSnapshot:
        """Submit a new generation. Returns once the submission succeeds or fails."""
        options = options or GenerationOptions()
        return await self._start(
            "submit", prompt, {"model": options.model, "tags": options.tags, "title": options.title},
            lambda: self.client.submit(prompt, options),
        )

    async def extend_track(
        self,
        track_id: str,
        prompt: str,
        options: Optional[ExtendOptions] = None,
    ) -> GenerationSnapshot:
        """Continue an existing track. Same lifecycle as submit_generation."""
        options = options or ExtendOptions()
        return await self._start(
            "extend", prompt, {"track_id": track_id, "continue_at": options.continue_at},
            lambda: self.client.extend(track_id, prompt, options),
        )

    async def _start(
        self,
        stage: str,
        prompt: str,
        params: dict,
        call: Callable[[], Awaitable[Generation]],
    ) -> GenerationSnapshot:
        await self._stop_polling()
        self._token += 1
        token = self._token
        self._poll_attempts = 0
        self._track_ids = []
        self._request = (prompt, params)
        self.state.update(status=GENERATING, progress=0, error=None, tracks=[], generation_id=None)

        try:
            generation = await call()
        except SunoError as e:
            if token == self._token:
                self._fail(stage, e.message)
            return self.snapshot()
        except Exception as e:
            logger.exception("Unexpected %s failure", stage)
            if token == self._token:
                self._fail(stage, str(e) or f"{stage.capitalize()} failed")
            return self.snapshot()

        if token != self._token:
            logger.info("Discarding %s response for superseded generation %s", stage, generation.generation_id)
            return self.snapshot()

        if not generation.tracks:
            self._fail(stage, "No generation data received")
            return self.snapshot()

        self._track_ids = generation.track_ids
        self.state.update(
            status=POLLING,
            generation_id=generation.generation_id,
            tracks=generation.tracks,
            progress=INITIAL_PROGRESS,
        )
        logger.info("Generation %s accepted: %s", generation.generation_id, ", ".join(self._track_ids))

        if self.auto_start_polling:
            self._poll_task = asyncio.create_task(self._poll_loop(token))
        return self.snapshot()

    def start_polling(self) -> bool:
        """Start polling the current batch (when auto_start_polling is off)."""
        if self.state.status != POLLING or not self._track_ids or self.is_polling:
            return False
        self._poll_task = asyncio.create_task(self._poll_loop(self._token))
        return True

    async def wait(self) -> GenerationSnapshot:
        """Wait for the current polling run to finish."""
        task = self._poll_task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        return self.snapshot()

    # ── Polling ──────────────────────────────────────────────────────────────

    async def _poll_loop(self, token: int):
        ids = list(self._track_ids)
        while True:
            if self._poll_attempts >= self.max_poll_attempts:
                self._fail("poll", TIMEOUT_MESSAGE)
                return

            try:
                fetched = await self.client.fetch_by_ids(ids)
            except SunoError as e:
                if token == self._token:
                    self._fail("poll", e.message)
                return
            except Exception as e:
                logger.exception("Unexpected poll failure")
                if token == self._token:
                    self._fail("poll", str(e) or "Poll failed")
                return

            if token != self._token:
                logger.info("Discarding poll response for superseded generation")
                return

            tracks = _merge_tracks(self.state.tracks, fetched, ids)
            terminal = sum(1 for t in tracks if t.is_terminal)
            total = len(tracks)

            if total and terminal == total:
                self.state.update(tracks=tracks, status=COMPLETED, progress=100)
                logger.info("Generation %s completed", self.state.generation_id)
                await self._cache_tracks(t for t in tracks if t.status == COMPLETE)
                return

            # Never move backwards, even when the 10% acceptance bump
            # is ahead of the terminal ratio.
            ratio = min(terminal / total * 100, 100) if total else 0
            self.state.update(tracks=tracks, progress=max(self.state.progress, ratio))

            self._poll_attempts += 1
            await asyncio.sleep(self.poll_interval)
            if token != self._token:
                return

    async def _cache_tracks(self, tracks):
        for track in tracks:
            try:
                await self.cache.put(track)
            except (CacheError, OSError) as e:
                logger.warning("Could not cache track %s: %s", track.id, e)
        self.state.update(cached_tracks=self.cache.recent)

    def _fail(self, stage: str, message: str):
        prompt, params = self._request
        format_error(stage, prompt, params, message)
        self.state.update(status=FAILED, error=message)

    # ── Cancellation ─────────────────────────────────────────────────────────

    async def cancel(self):
        """Stop polling and return to idle. Remote cancel is best-effort."""
        generation_id = self.state.generation_id
        self._token += 1
        await self._stop_polling()
        self.state.update(status=IDLE, progress=0, generation_id=None)

        if generation_id:
            try:
                await self.client.cancel(generation_id)
            except SunoError as e:
                logger.warning("Failed to cancel generation %s: %s", generation_id, e)

    async def close(self):
        """Drop any polling without contacting the remote service."""
        self._token += 1
        await self._stop_polling()

    async def _stop_polling(self):
        task = self._poll_task
        self._poll_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ── One-shot operations ──────────────────────────────────────────────────

    async def generate_lyrics_only(self, prompt: str) -> Optional[str]:
        """Lyrics text, or None on failure (message goes to the error field)."""
        try:
            lyrics = await self.client.generate_lyrics(prompt)
        except SunoError as e:
            format_error("lyrics", prompt, None, e.message)
            self.state.update(error=e.message)
            return None
        return lyrics.text or None

    async def get_track(self, track_id: str) -> Optional[Track]:
        """Cache first, then the remote service. Completed fetches are cached."""
        cached = await self.cache.get(track_id)
        if cached is not None:
            return cached

        try:
            track = await self.client.fetch_track(track_id)
        except SunoError as e:
            format_error("track", track_id, None, e.message)
            self.state.update(error=e.message)
            return None
        except Exception as e:
            logger.exception("Unexpected failure fetching track %s", track_id)
            message = str(e) or "Track fetch failed"
            format_error("track", track_id, None, message)
            self.state.update(error=message)
            return None

        if track is not None and track.status == COMPLETE:
            await self._cache_tracks([track])
        return track

    def clear_error(self):
        self.state.update(error=None)

    def clear_tracks(self):
        self.state.update(tracks=[])

    # ── Cache management ─────────────────────────────────────────────────────

    async def get_cached_track(self, track_id: str) -> Optional[CachedTrack]:
        return await self.cache.get(track_id)

    async def clear_cache(self):
        await self.cache.clear()
        self.state.update(cached_tracks=[])

    async def refresh_cached_tracks(self) -> list[CachedTrack]:
        tracks = await self.cache.list()
        self.state.update(cached_tracks=tracks)
        return tracks


def _merge_tracks(current: list[Track], fetched: list[Track], ids: list[str]) -> list[Track]:
    """Batch order by id; a fetched status never moves a track backwards."""
    previous = {t.id: t for t in current}
    latest = {t.id: t for t in fetched}
    merged = []
    for track_id in ids:
        old = previous.get(track_id)
        new = latest.get(track_id)
        if new is None:
            merged.append(old or Track(id=track_id))
        elif old is not None and (
            old.is_terminal or TRACK_STATUSES.index(new.status) < TRACK_STATUSES.index(old.status)
        ):
            merged.append(old)
        else:
            merged.append(new)
    return merged
