"""Track / Generation records and the remote payload mapping."""
import random
import string
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

from .config import DEFAULT_MODEL

# ─── Track status ────────────────────────────────────────────────────────────
SUBMITTED = "submitted"
QUEUED = "queued"
STREAMING = "streaming"
COMPLETE = "complete"
ERROR = "error"

TRACK_STATUSES = (SUBMITTED, QUEUED, STREAMING, COMPLETE, ERROR)
TERMINAL_STATUSES = frozenset({COMPLETE, ERROR})

# ─── Generation status ───────────────────────────────────────────────────────
IDLE = "idle"
GENERATING = "generating"
POLLING = "polling"
COMPLETED = "completed"
FAILED = "error"


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Track:
    """One generated (or in-progress) audio clip."""
    id: str
    status: str = SUBMITTED
    title: str = ""
    prompt: str = ""
    tags: str = ""
    audio_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    created_at: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    model_name: Optional[str] = None

    def __post_init__(self):
        # audio_url is only meaningful once the clip is complete
        if self.status != COMPLETE:
            self.audio_url = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.status)

    @classmethod
    def from_api(cls, data: dict) -> "Track":
        """Map a remote clip payload to a Track."""
        meta = data.get("metadata") or {}
        status = data.get("status") or SUBMITTED
        if status not in TRACK_STATUSES:
            status = SUBMITTED
        duration = data.get("duration")
        if duration is None:
            duration = meta.get("duration")
        return cls(
            id=str(data["id"]),
            status=status,
            title=data.get("title") or "",
            prompt=data.get("prompt") or meta.get("prompt") or "",
            tags=data.get("tags") or meta.get("tags") or "",
            audio_url=data.get("audio_url") or None,
            duration_seconds=float(duration) if duration is not None else None,
            created_at=data.get("created_at"),
            image_url=data.get("image_url") or None,
            video_url=data.get("video_url") or None,
            model_name=data.get("model_name") or None,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Track":
        names = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class CachedTrack(Track):
    """A completed Track as persisted by the local cache."""
    cached_at: str = ""
    local_id: str = ""

    @classmethod
    def wrap(cls, track: Track, now: Optional[datetime] = None) -> "CachedTrack":
        base = {k: v for k, v in track.to_dict().items() if k in Track.__dataclass_fields__}
        return cls(
            **base,
            cached_at=(now or utcnow()).isoformat(),
            local_id=new_local_id(),
        )

    @property
    def cached_at_dt(self) -> datetime:
        """Parsed cached_at. Raises ValueError on a malformed timestamp."""
        dt = datetime.fromisoformat(self.cached_at)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def as_track(self) -> Track:
        data = self.to_dict()
        data.pop("cached_at")
        data.pop("local_id")
        return Track(**data)


def new_local_id() -> str:
    """Surrogate id for cache bookkeeping, never equal to a remote id."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"local_{int(time.time() * 1000)}_{suffix}"


@dataclass
class Generation:
    """A batch submission and the tracks it produced."""
    generation_id: str
    tracks: list[Track] = field(default_factory=list)
    batch_size: int = 0

    @property
    def track_ids(self) -> list[str]:
        return [t.id for t in self.tracks]

    @classmethod
    def from_api(cls, data: Any) -> Optional["Generation"]:
        """None when the payload carries no generation."""
        if not isinstance(data, dict) or not data.get("id"):
            return None
        clips = data.get("clips") or []
        tracks = [Track.from_api(c) for c in clips if isinstance(c, dict) and c.get("id")]
        return cls(
            generation_id=str(data["id"]),
            tracks=tracks,
            batch_size=int(data.get("batch_size") or len(tracks)),
        )


@dataclass
class GenerationOptions:
    model: str = DEFAULT_MODEL
    make_instrumental: bool = False
    wait_audio: bool = False
    tags: Optional[str] = None
    title: Optional[str] = None

    def to_payload(self, prompt: str) -> dict:
        return {
            "prompt": prompt,
            "tags": self.tags,
            "title": self.title,
            "make_instrumental": bool(self.make_instrumental),
            "wait_audio": bool(self.wait_audio),
            "model": self.model or DEFAULT_MODEL,
        }


@dataclass
class ExtendOptions:
    continue_at: Optional[float] = None
    tags: Optional[str] = None
    title: Optional[str] = None
    make_instrumental: bool = False

    def to_payload(self, track_id: str, prompt: str) -> dict:
        return {
            "audio_id": track_id,
            "prompt": prompt,
            "continue_at": self.continue_at,
            "tags": self.tags,
            "title": self.title,
            "make_instrumental": bool(self.make_instrumental),
        }


@dataclass
class Lyrics:
    text: str
    title: str = ""


def copy_tracks(tracks: list[Track]) -> list[Track]:
    return [replace(t) for t in tracks]
