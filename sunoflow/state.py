"""GenerationState — observable state cell between the manager and its callers."""
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from .models import GENERATING, IDLE, POLLING, CachedTrack, Track, copy_tracks

logger = logging.getLogger(__name__)


@dataclass
class GenerationSnapshot:
    status: str = IDLE
    progress: float = 0
    tracks: list[Track] = field(default_factory=list)
    error: Optional[str] = None
    generation_id: Optional[str] = None
    cached_tracks: list[CachedTrack] = field(default_factory=list)

    @property
    def is_generating(self) -> bool:
        return self.status in (GENERATING, POLLING)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["is_generating"] = self.is_generating
        return data


class GenerationState:
    def __init__(self):
        self._snapshot = GenerationSnapshot()
        self._subscribers: dict[str, asyncio.Queue] = {}

    # ── Reads ────────────────────────────────────────────────────────────────

    def snapshot(self) -> GenerationSnapshot:
        """Copy of the current state — safe to keep or mutate."""
        s = self._snapshot
        return GenerationSnapshot(
            status=s.status,
            progress=s.progress,
            tracks=copy_tracks(s.tracks),
            error=s.error,
            generation_id=s.generation_id,
            cached_tracks=copy_tracks(s.cached_tracks),
        )

    @property
    def status(self) -> str:
        return self._snapshot.status

    @property
    def progress(self) -> float:
        return self._snapshot.progress

    @property
    def tracks(self) -> list[Track]:
        return copy_tracks(self._snapshot.tracks)

    @property
    def error(self) -> Optional[str]:
        return self._snapshot.error

    @property
    def generation_id(self) -> Optional[str]:
        return self._snapshot.generation_id

    # ── Writes ───────────────────────────────────────────────────────────────

    def update(self, **changes):
        """Apply field changes and notify subscribers."""
        for key, value in changes.items():
            if not hasattr(self._snapshot, key):
                raise AttributeError(f"Unknown state field: {key}")
            setattr(self._snapshot, key, value)
        self.broadcast("state", self._snapshot.to_dict())

    # ── Subscriptions ────────────────────────────────────────────────────────

    def subscribe(self, client_id: str) -> asyncio.Queue:
        """Register a listener. Returns a queue that receives (event, data) tuples."""
        q: asyncio.Queue = asyncio.Queue(maxsize=50)
        self._subscribers[client_id] = q
        return q

    def unsubscribe(self, client_id: str):
        self._subscribers.pop(client_id, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def broadcast(self, event: str, data: Any):
        """Push an event to every listener."""
        dead = []
        for cid, q in self._subscribers.items():
            try:
                q.put_nowait((event, data))
            except asyncio.QueueFull:
                # Listener too slow — drop oldest
                try:
                    q.get_nowait()
                    q.put_nowait((event, data))
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    dead.append(cid)
        for cid in dead:
            logger.warning("Dropping unresponsive subscriber %s", cid)
            self._subscribers.pop(cid, None)
