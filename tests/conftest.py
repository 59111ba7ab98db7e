"""Shared fixtures and fakes."""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from sunoflow import errors
from sunoflow.errors import ApiError
from sunoflow.models import Generation, Lyrics, Track


@pytest.fixture(autouse=True)
def isolated_error_log(tmp_path, monkeypatch):
    """Keep format_error from writing into the real output directory."""
    monkeypatch.setattr(errors, "OUTPUT_DIR", tmp_path)
    monkeypatch.setattr(errors, "ERRORS_LOG", tmp_path / "errors.log")
    return tmp_path / "errors.log"


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


def track(track_id, status, **kwargs):
    if status == "complete":
        kwargs.setdefault("audio_url", f"https://cdn.example/{track_id}.mp3")
    return Track(id=track_id, status=status, title=kwargs.pop("title", f"Song {track_id}"), **kwargs)


class FakeSunoClient:
    """Scripted stand-in for SunoClient.

    polls: list of track lists (or exceptions) returned by successive
    fetch_by_ids calls; the last entry repeats.
    """

    def __init__(self, generation=None, polls=None, submit_error=None):
        self.generation = generation
        self.polls = list(polls or [])
        self.submit_error = submit_error
        self.calls: list[tuple] = []
        self.cancel_error = None
        self.lyrics = Lyrics(text="la la la", title="Song")
        self.lyrics_error = None
        self.fetch_gate = None
        self.remote_tracks: dict[str, Track] = {}

    async def submit(self, prompt, options=None):
        self.calls.append(("submit", prompt))
        if self.submit_error:
            raise self.submit_error
        return self.generation

    async def extend(self, track_id, prompt, options=None):
        self.calls.append(("extend", track_id, prompt, options))
        if self.submit_error:
            raise self.submit_error
        return self.generation

    async def fetch_by_ids(self, ids):
        self.calls.append(("fetch", tuple(ids)))
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        result = self.polls.pop(0) if len(self.polls) > 1 else self.polls[0]
        if isinstance(result, Exception):
            raise result
        return [Track(**t.to_dict()) for t in result]

    async def fetch_track(self, track_id):
        self.calls.append(("fetch_track", track_id))
        if track_id not in self.remote_tracks:
            raise ApiError("Track not found", status=404)
        return self.remote_tracks[track_id]

    async def generate_lyrics(self, prompt):
        self.calls.append(("lyrics", prompt))
        if self.lyrics_error:
            raise self.lyrics_error
        return self.lyrics

    async def cancel(self, generation_id):
        self.calls.append(("cancel", generation_id))
        if self.cancel_error:
            raise self.cancel_error

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)


def generation(*tracks, generation_id="gen-1"):
    return Generation(generation_id=generation_id, tracks=list(tracks), batch_size=len(tracks))


def run(coro):
    return asyncio.run(coro)
