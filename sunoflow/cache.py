"""Local Track Cache — completed tracks with a 24h expiry and a most-recent-N bound."""
import json
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .config import CACHE_EXPIRY_HOURS, CACHE_KEY_PREFIX, MAX_CACHED_TRACKS
from .errors import CacheError
from .models import COMPLETE, CachedTrack, Track, utcnow
from .store import KeyValueStore

logger = logging.getLogger(__name__)


class TrackCache:
    def __init__(
        self,
        store: KeyValueStore,
        max_cached_tracks: int = MAX_CACHED_TRACKS,
        expiry_hours: float = CACHE_EXPIRY_HOURS,
        prefix: str = CACHE_KEY_PREFIX,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.max_cached_tracks = max_cached_tracks
        self.expiry = timedelta(hours=expiry_hours)
        self.prefix = prefix
        self._clock = clock
        self._recent: list[CachedTrack] = []

    @property
    def recent(self) -> list[CachedTrack]:
        """Most-recently-cached first, as seen by this instance."""
        return list(self._recent)

    def _key(self, track_id: str) -> str:
        return f"{self.prefix}{track_id}"

    def _is_expired(self, entry: CachedTrack) -> bool:
        return self._clock() > entry.cached_at_dt + self.expiry

    @staticmethod
    def _decode(raw: str) -> CachedTrack:
        """Raises ValueError/KeyError/TypeError on a malformed entry."""
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("cache entry is not an object")
        entry = CachedTrack.from_dict(data)
        if entry.status != COMPLETE:
            raise ValueError(f"cache entry has status {entry.status}")
        entry.cached_at_dt  # validates the timestamp
        return entry

    # ── Writes ───────────────────────────────────────────────────────────────

    async def put(self, track: Track) -> Optional[CachedTrack]:
        if track.status != COMPLETE:
            logger.warning("Refusing to cache track %s with status %s", track.id, track.status)
            return None

        entry = CachedTrack.wrap(track, now=self._clock())
        try:
            await self.store.set(self._key(track.id), json.dumps(entry.to_dict()))
        except (CacheError, OSError) as e:
            logger.warning("Failed to cache track %s: %s", track.id, e)
            return None

        updated = [entry] + [t for t in self._recent if t.id != track.id]
        self._recent = updated[: self.max_cached_tracks]

        # The entry is persisted; a failed eviction leaves it in place
        try:
            await self._evict_overflow()
        except (CacheError, OSError) as e:
            logger.warning("Failed to evict old cache entries: %s", e)
        return entry

    async def _evict_overflow(self):
        keys = await self.store.keys(self.prefix)
        if len(keys) <= self.max_cached_tracks:
            return

        dated: list[tuple[datetime, str]] = []
        broken: list[str] = []
        for key, raw in await self.store.multi_get(keys):
            try:
                dated.append((self._decode(raw).cached_at_dt, key))
            except (TypeError, ValueError, KeyError):
                broken.append(key)

        dated.sort(reverse=True)
        evicted = broken + [key for _, key in dated[self.max_cached_tracks:]]
        if evicted:
            logger.info("Evicting %d cached track(s)", len(evicted))
            await self.store.multi_delete(evicted)
            gone = {k[len(self.prefix):] for k in evicted}
            self._recent = [t for t in self._recent if t.id not in gone]

    async def clear(self):
        try:
            keys = await self.store.keys(self.prefix)
            await self.store.multi_delete(keys)
        except (CacheError, OSError) as e:
            logger.warning("Failed to clear track cache: %s", e)
            return
        self._recent = []

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get(self, track_id: str) -> Optional[CachedTrack]:
        key = self._key(track_id)
        try:
            raw = await self.store.get(key)
            if raw is None:
                return None
            try:
                entry = self._decode(raw)
            except (TypeError, ValueError, KeyError):
                await self.store.delete(key)
                return None
            if self._is_expired(entry):
                await self.store.delete(key)
                self._recent = [t for t in self._recent if t.id != track_id]
                return None
            return entry
        except (CacheError, OSError) as e:
            logger.warning("Failed to read cached track %s: %s", track_id, e)
            return None

    async def list(self) -> list[CachedTrack]:
        """Valid entries across the whole store, newest first, bounded."""
        try:
            keys = await self.store.keys(self.prefix)
            items = await self.store.multi_get(keys)
            valid: list[CachedTrack] = []
            stale: list[str] = []
            for key, raw in items:
                if raw is None:
                    continue
                try:
                    entry = self._decode(raw)
                except (TypeError, ValueError, KeyError):
                    stale.append(key)
                    continue
                if self._is_expired(entry):
                    stale.append(key)
                else:
                    valid.append(entry)
            if stale:
                logger.info("Purging %d expired cache entries", len(stale))
                await self.store.multi_delete(stale)
        except (CacheError, OSError) as e:
            logger.warning("Failed to list cached tracks: %s", e)
            return []

        valid.sort(key=lambda t: t.cached_at_dt, reverse=True)
        self._recent = valid[: self.max_cached_tracks]
        return list(self._recent)
