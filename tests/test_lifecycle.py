"""Tests for the generation lifecycle manager."""
import asyncio
import json
from unittest.mock import AsyncMock

import httpx

from conftest import FakeSunoClient, generation, run, track
from sunoflow.cache import TrackCache
from sunoflow.errors import CacheError, NetworkError, ApiError
from sunoflow.lifecycle import TIMEOUT_MESSAGE, GenerationManager
from sunoflow.models import ExtendOptions, GenerationOptions
from sunoflow.store import MemoryStore
from sunoflow.suno import SunoClient


def make_manager(client, cache=None, **kwargs):
    kwargs.setdefault("poll_interval", 0)
    return GenerationManager(client, cache or TrackCache(MemoryStore()), **kwargs)


def progress_recorder(manager):
    seen = []
    original = manager.state.update

    def update(**changes):
        original(**changes)
        seen.append((manager.state.status, manager.state.progress))

    manager.state.update = update
    return seen


def test_summer_pop_scenario():
    """Two clips: queued → streaming → one complete, one error."""
    client = FakeSunoClient(
        generation=generation(track("a", "queued"), track("b", "queued")),
        polls=[
            [track("a", "streaming"), track("b", "streaming")],
            [track("a", "complete"), track("b", "error")],
        ],
    )
    cache = TrackCache(MemoryStore())
    cache.put = AsyncMock(wraps=cache.put)
    manager = make_manager(client, cache, auto_start_polling=False)
    seen = progress_recorder(manager)

    async def scenario():
        snap = await manager.submit_generation("upbeat pop about summer")
        assert snap.status == "polling"
        assert snap.progress == 10
        assert [t.status for t in snap.tracks] == ["queued", "queued"]

        assert manager.start_polling() is True
        return await manager.wait()

    final = run(scenario())

    assert final.status == "completed"
    assert final.progress == 100
    assert cache.put.await_count == 1
    assert cache.put.await_args.args[0].id == "a"
    # after the first poll (0/2 terminal) progress stayed at the acceptance value
    polling_progress = [p for status, p in seen if status == "polling"]
    assert polling_progress[-1] == 10
    assert client.count("fetch") == 2


def test_progress_never_decreases():
    client = FakeSunoClient(
        generation=generation(track("a", "queued"), track("b", "queued"), track("c", "queued")),
        polls=[
            [track("a", "complete"), track("b", "queued"), track("c", "queued")],
            [track("a", "complete"), track("b", "streaming"), track("c", "queued")],
            [track("a", "complete"), track("b", "complete"), track("c", "streaming")],
            [track("a", "complete"), track("b", "complete"), track("c", "complete")],
        ],
    )
    manager = make_manager(client)
    seen = progress_recorder(manager)

    async def scenario():
        await manager.submit_generation("ambient")
        return await manager.wait()

    final = run(scenario())

    values = [p for status, p in seen if status in ("polling", "completed")]
    assert values == sorted(values)
    assert final.progress == 100
    assert final.status == "completed"


def test_completed_tracks_are_cached_and_errors_are_not():
    client = FakeSunoClient(
        generation=generation(track("a", "queued"), track("b", "queued")),
        polls=[[track("a", "complete"), track("b", "error")]],
    )
    manager = make_manager(client)

    async def scenario():
        await manager.submit_generation("jazz")
        await manager.wait()
        return await manager.cache.get("a"), await manager.cache.get("b")

    cached_a, cached_b = run(scenario())
    assert cached_a is not None
    assert cached_a.audio_url == "https://cdn.example/a.mp3"
    assert cached_b is None
    assert [t.id for t in manager.snapshot().cached_tracks] == ["a"]


def test_timeout_after_max_attempts():
    client = FakeSunoClient(
        generation=generation(track("a", "queued")),
        polls=[[track("a", "streaming")]],
    )
    manager = make_manager(client, max_poll_attempts=3)

    async def scenario():
        await manager.submit_generation("drill")
        return await manager.wait()

    final = run(scenario())
    assert final.status == "error"
    assert final.error == TIMEOUT_MESSAGE
    assert client.count("fetch") == 3


def test_poll_failure_goes_straight_to_error():
    client = FakeSunoClient(
        generation=generation(track("a", "queued")),
        polls=[NetworkError("connection reset")],
    )
    manager = make_manager(client)

    async def scenario():
        await manager.submit_generation("folk")
        return await manager.wait()

    final = run(scenario())
    assert final.status == "error"
    assert final.error == "connection reset"
    assert client.count("fetch") == 1


def test_submit_failure_sets_error_state(isolated_error_log):
    client = FakeSunoClient(submit_error=ApiError("Insufficient credits", status=402))
    manager = make_manager(client)

    snap = run(manager.submit_generation("metal"))

    assert snap.status == "error"
    assert snap.error == "Insufficient credits"
    assert client.count("fetch") == 0
    entry = json.loads(isolated_error_log.read_text().splitlines()[-1])
    assert entry["stage"] == "submit"
    assert entry["input"] == "metal"


def test_empty_generation_is_an_error():
    client = FakeSunoClient(generation=generation())
    manager = make_manager(client)

    snap = run(manager.submit_generation("nothing"))
    assert snap.status == "error"
    assert snap.error == "No generation data received"


def test_missing_credential_makes_no_network_calls():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    client = SunoClient(api_key=None, transport=httpx.MockTransport(handler), rate_limit_delay=0)
    manager = make_manager(client)

    snap = run(manager.submit_generation("anything"))

    assert snap.status == "error"
    assert "API key is not configured" in snap.error
    assert requests == []


def test_cancel_discards_in_flight_poll():
    client = FakeSunoClient(
        generation=generation(track("a", "queued")),
        polls=[[track("a", "complete")]],
    )
    cache = TrackCache(MemoryStore())
    cache.put = AsyncMock(wraps=cache.put)
    manager = make_manager(client, cache)

    async def scenario():
        client.fetch_gate = asyncio.Event()
        await manager.submit_generation("lofi")
        await asyncio.sleep(0)  # poll task is now waiting on the gate
        await manager.cancel()
        client.fetch_gate.set()
        await asyncio.sleep(0.01)
        return manager.snapshot()

    snap = run(scenario())
    assert snap.status == "idle"
    assert snap.progress == 0
    assert snap.generation_id is None
    assert cache.put.await_count == 0
    assert ("cancel", "gen-1") in client.calls


def test_cancel_during_submit_discards_late_response():
    client = FakeSunoClient(
        generation=generation(track("a", "queued")),
        polls=[[track("a", "complete")]],
    )
    manager = make_manager(client)

    async def scenario():
        release = asyncio.Event()

        async def slow_submit(prompt, options=None):
            await release.wait()
            return client.generation

        client.submit = slow_submit
        submit_task = asyncio.create_task(manager.submit_generation("techno"))
        await asyncio.sleep(0)
        await manager.cancel()
        release.set()
        await submit_task
        await asyncio.sleep(0.01)
        return manager.snapshot()

    snap = run(scenario())
    assert snap.status == "idle"
    assert snap.tracks == []
    assert client.count("fetch") == 0


def test_cancel_failure_is_ignored():
    client = FakeSunoClient(
        generation=generation(track("a", "queued")),
        polls=[[track("a", "streaming")]],
    )
    client.cancel_error = NetworkError("offline")
    manager = make_manager(client, auto_start_polling=False)

    async def scenario():
        await manager.submit_generation("reggae")
        await manager.cancel()
        return manager.snapshot()

    snap = run(scenario())
    assert snap.status == "idle"
    assert snap.error is None


def test_cache_failure_does_not_fail_generation():
    client = FakeSunoClient(
        generation=generation(track("a", "queued")),
        polls=[[track("a", "complete")]],
    )
    cache = TrackCache(MemoryStore())
    cache.put = AsyncMock(side_effect=CacheError("disk full"))
    manager = make_manager(client, cache)

    async def scenario():
        await manager.submit_generation("soul")
        return await manager.wait()

    final = run(scenario())
    assert final.status == "completed"
    assert final.error is None


def test_new_submit_resets_state_after_error():
    client = FakeSunoClient(
        generation=generation(track("a", "queued")),
        polls=[NetworkError("boom")],
    )
    manager = make_manager(client)

    async def scenario():
        await manager.submit_generation("first")
        failed = await manager.wait()
        client.polls = [[track("a", "complete")]]
        await manager.submit_generation("second")
        return failed, await manager.wait()

    failed, final = run(scenario())
    assert failed.status == "error"
    assert final.status == "completed"
    assert final.error is None
    assert manager.poll_attempts == 0


def test_extend_track_follows_same_lifecycle():
    client = FakeSunoClient(
        generation=generation(track("ext", "submitted"), generation_id="gen-ext"),
        polls=[[track("ext", "complete")]],
    )
    manager = make_manager(client)

    async def scenario():
        snap = await manager.extend_track("a", "add a bridge", ExtendOptions(continue_at=42))
        assert snap.status == "polling"
        assert snap.progress == 10
        return await manager.wait()

    final = run(scenario())
    assert final.status == "completed"
    assert final.generation_id == "gen-ext"
    extend_call = next(c for c in client.calls if c[0] == "extend")
    assert extend_call[1] == "a"
    assert extend_call[3].continue_at == 42


def test_generate_lyrics_only_does_not_touch_status():
    client = FakeSunoClient()
    manager = make_manager(client)

    assert run(manager.generate_lyrics_only("summer love")) == "la la la"

    client.lyrics_error = ApiError("Lyrics service down", status=503)
    assert run(manager.generate_lyrics_only("summer love")) is None
    assert manager.status == "idle"
    assert manager.state.error == "Lyrics service down"

    manager.clear_error()
    assert manager.state.error is None


def test_get_track_is_cache_first():
    client = FakeSunoClient()
    client.remote_tracks["a"] = track("a", "complete")
    client.remote_tracks["b"] = track("b", "streaming")
    manager = make_manager(client)

    async def scenario():
        first = await manager.get_track("a")
        second = await manager.get_track("a")
        streaming = await manager.get_track("b")
        cached_b = await manager.get_cached_track("b")
        missing = await manager.get_track("zzz")
        return first, second, streaming, cached_b, missing

    first, second, streaming, cached_b, missing = run(scenario())
    assert first.id == "a"
    assert second.local_id.startswith("local_")
    assert client.count("fetch_track") == 3  # a once, b once, zzz once
    assert streaming.status == "streaming"
    assert cached_b is None
    assert missing is None
    assert manager.state.error == "Track not found"


def test_clear_tracks_and_clear_cache():
    client = FakeSunoClient(
        generation=generation(track("a", "queued")),
        polls=[[track("a", "complete")]],
    )
    manager = make_manager(client)

    async def scenario():
        await manager.submit_generation("house", GenerationOptions(tags="deep house"))
        await manager.wait()
        manager.clear_tracks()
        before = await manager.refresh_cached_tracks()
        await manager.clear_cache()
        after = await manager.refresh_cached_tracks()
        return before, after

    before, after = run(scenario())
    assert manager.snapshot().tracks == []
    assert manager.status == "completed"
    assert [t.id for t in before] == ["a"]
    assert after == []


def test_status_never_regresses_from_terminal():
    client = FakeSunoClient(
        generation=generation(track("a", "queued"), track("b", "queued")),
        polls=[
            [track("a", "complete"), track("b", "queued")],
            [track("a", "streaming"), track("b", "streaming")],
            [track("a", "streaming"), track("b", "complete")],
        ],
    )
    manager = make_manager(client)

    async def scenario():
        await manager.submit_generation("indie")
        return await manager.wait()

    final = run(scenario())
    assert final.status == "completed"
    assert [t.status for t in final.tracks] == ["complete", "complete"]


def test_subscribers_receive_state_events():
    client = FakeSunoClient(
        generation=generation(track("a", "queued")),
        polls=[[track("a", "complete")]],
    )
    manager = make_manager(client)

    async def scenario():
        queue = manager.state.subscribe("test")
        await manager.submit_generation("funk")
        await manager.wait()
        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        return events

    events = run(scenario())
    statuses = [data["status"] for event, data in events if event == "state"]
    assert statuses[0] == "generating"
    assert "polling" in statuses
    assert statuses[-1] == "completed"


def malformed_poll_client():
    def handler(request):
        if request.url.path == "/api/generate":
            return httpx.Response(200, json={"id": "g", "clips": [{"id": "a", "status": "queued"}]})
        return httpx.Response(200, json=[{"id": "a", "status": "streaming", "duration": "n/a"}])

    return SunoClient(api_key="test-key", transport=httpx.MockTransport(handler), rate_limit_delay=0)


def test_malformed_poll_payload_fails_the_generation(isolated_error_log):
    manager = make_manager(malformed_poll_client())

    async def scenario():
        await manager.submit_generation("glitch")
        return await manager.wait()

    final = run(scenario())
    assert final.status == "error"
    assert "Unexpected track payload" in final.error
    assert not manager.is_polling
    entry = json.loads(isolated_error_log.read_text().splitlines()[-1])
    assert entry["stage"] == "poll"


def test_unexpected_poll_exception_fails_the_generation():
    client = FakeSunoClient(
        generation=generation(track("a", "queued")),
        polls=[RuntimeError("decoder exploded")],
    )
    manager = make_manager(client)

    async def scenario():
        await manager.submit_generation("noise")
        return await manager.wait()

    final = run(scenario())
    assert final.status == "error"
    assert final.error == "decoder exploded"


def test_get_track_with_malformed_payload_returns_none():
    manager = make_manager(malformed_poll_client())

    assert run(manager.get_track("a")) is None
    assert "Unexpected track payload" in manager.state.error
    assert manager.status == "idle"
