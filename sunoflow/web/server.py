"""Starlette app — JSON routes + WebSocket state stream over one GenerationManager."""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from ..cache import TrackCache
from ..config import APP_VERSION, CACHE_FILE, VALID_MODELS
from ..errors import SunoError
from ..lifecycle import GenerationManager
from ..models import FAILED, ExtendOptions, GenerationOptions
from ..store import JsonFileStore
from ..suno import SunoClient

logger = logging.getLogger(__name__)


def build_manager() -> GenerationManager:
    """Manager wired to the configured API key and the on-disk cache."""
    return GenerationManager(SunoClient(), TrackCache(JsonFileStore(CACHE_FILE)))


def _manager(request) -> GenerationManager:
    return request.app.state.manager


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=400)


# ── Health ───────────────────────────────────────────────────────────────────

async def health(request):
    manager = _manager(request)
    api_ok = await manager.client.check_status()
    return JSONResponse({
        "status": "ok" if api_ok else "degraded",
        "version": APP_VERSION,
        "checks": {
            "suno": {"ok": api_ok, "configured": manager.client.api_key is not None},
        },
    })


async def credits(request):
    try:
        data = await _manager(request).client.get_credits()
    except SunoError as e:
        return JSONResponse({"error": e.message, "kind": e.kind}, status_code=502)
    return JSONResponse(data)


# ── Generation ───────────────────────────────────────────────────────────────

async def get_state(request):
    return JSONResponse(_manager(request).snapshot().to_dict())


async def generate(request):
    body = await _json_body(request)
    prompt = str(body.get("prompt", "")).strip()
    if not prompt:
        return _bad_request("prompt is required")
    model = body.get("model") or None
    if model and model not in VALID_MODELS:
        return _bad_request(f"unknown model: {model}")

    options = GenerationOptions(
        make_instrumental=bool(body.get("make_instrumental", False)),
        tags=body.get("tags") or None,
        title=body.get("title") or None,
    )
    if model:
        options.model = model
    snapshot = await _manager(request).submit_generation(prompt, options)
    return JSONResponse(snapshot.to_dict(), status_code=502 if snapshot.status == FAILED else 202)


async def extend(request):
    body = await _json_body(request)
    track_id = str(body.get("track_id", "")).strip()
    prompt = str(body.get("prompt", "")).strip()
    if not track_id or not prompt:
        return _bad_request("track_id and prompt are required")

    continue_at = body.get("continue_at")
    try:
        continue_at = float(continue_at) if continue_at is not None else None
    except (TypeError, ValueError):
        return _bad_request("continue_at must be a number of seconds")

    options = ExtendOptions(
        continue_at=continue_at,
        tags=body.get("tags") or None,
        title=body.get("title") or None,
        make_instrumental=bool(body.get("make_instrumental", False)),
    )
    snapshot = await _manager(request).extend_track(track_id, prompt, options)
    return JSONResponse(snapshot.to_dict(), status_code=502 if snapshot.status == FAILED else 202)


async def lyrics(request):
    body = await _json_body(request)
    prompt = str(body.get("prompt", "")).strip()
    if not prompt:
        return _bad_request("prompt is required")
    manager = _manager(request)
    text = await manager.generate_lyrics_only(prompt)
    if text is None:
        return JSONResponse({"error": manager.state.error}, status_code=502)
    return JSONResponse({"text": text})


async def cancel(request):
    manager = _manager(request)
    await manager.cancel()
    return JSONResponse(manager.snapshot().to_dict())


async def get_track(request):
    track_id = request.path_params["track_id"]
    track = await _manager(request).get_track(track_id)
    if track is None:
        return JSONResponse({"error": f"track {track_id} not found"}, status_code=404)
    return JSONResponse(track.to_dict())


# ── Cache ────────────────────────────────────────────────────────────────────

async def list_cache(request):
    tracks = await _manager(request).refresh_cached_tracks()
    return JSONResponse({"tracks": [t.to_dict() for t in tracks]})


async def clear_cache(request):
    await _manager(request).clear_cache()
    return JSONResponse({"tracks": []})


# ── WebSocket ────────────────────────────────────────────────────────────────

async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()
    manager: GenerationManager = websocket.app.state.manager
    client_id = str(uuid.uuid4())
    queue = manager.state.subscribe(client_id)
    logger.info("WS connected: %s", client_id)

    await websocket.send_json({"type": "sync", "data": manager.snapshot().to_dict()})

    async def _reader():
        try:
            while True:
                data = await websocket.receive_json()
                if data.get("type") == "cancel":
                    await manager.cancel()
                else:
                    logger.warning("Unknown WS message type: %s", data.get("type"))
        except WebSocketDisconnect:
            pass

    async def _writer():
        while True:
            event, data = await queue.get()
            await websocket.send_json({"type": event, "data": data})

    reader_task = asyncio.create_task(_reader())
    writer_task = asyncio.create_task(_writer())

    try:
        done, pending = await asyncio.wait(
            [reader_task, writer_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception():
                logger.error("WS task error: %s", task.exception())
    finally:
        manager.state.unsubscribe(client_id)
        logger.info("WS disconnected: %s", client_id)


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(manager: Optional[GenerationManager] = None) -> Starlette:
    routes = [
        Route("/api/health", health),
        Route("/api/credits", credits),
        Route("/api/state", get_state),
        Route("/api/generate", generate, methods=["POST"]),
        Route("/api/extend", extend, methods=["POST"]),
        Route("/api/lyrics", lyrics, methods=["POST"]),
        Route("/api/cancel", cancel, methods=["POST"]),
        Route("/api/tracks/{track_id}", get_track),
        Route("/api/cache", list_cache, methods=["GET"]),
        Route("/api/cache", clear_cache, methods=["DELETE"]),
        WebSocketRoute("/ws", websocket_endpoint),
    ]

    app = Starlette(routes=routes, lifespan=_lifespan)
    app.state.manager = manager or build_manager()
    return app


@asynccontextmanager
async def _lifespan(app: Starlette):
    yield
    # Stop any polling task still running
    await app.state.manager.close()
    logger.info("Generation manager closed")
